"""Main CLI entry point for nodectl."""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from nodectl.config import load_settings, nodectl_home
from nodectl.drivers import DRIVERS, get_backend
from nodectl.exceptions import BackendFailureError, NodectlError, UnreliableOperationError
from nodectl.logging_config import get_logger, setup_logging
from nodectl.models.cluster import ProvisionOptions
from nodectl.orchestrator import Orchestrator
from nodectl.status import StatusReporter
from nodectl.store import StoreRegistry

app = typer.Typer(
    name="nodectl",
    help="Multi-node cluster lifecycle management",
    add_completion=False,
)
node_app = typer.Typer(help="Add, stop, start and delete individual nodes", add_completion=False)
profile_app = typer.Typer(help="Inspect cluster profiles", add_completion=False)
app.add_typer(node_app, name="node")
app.add_typer(profile_app, name="profile")

console = Console()
logger = get_logger(__name__)

DEFAULT_PROFILE = "nodectl"
OUTPUT_FORMATS = ["text", "json", "table"]

# Returned by "node start" when the driver cannot restart nodes reliably
UNRELIABLE_EXIT_CODE = 3


def _profile_option():
    return typer.Option(DEFAULT_PROFILE, "--profile", "-p", help="Name of the cluster profile")


def _orchestrator(profile: str) -> Orchestrator:
    """Build an orchestrator wired to the driver the profile was created with."""
    settings = load_settings()
    registry = StoreRegistry(settings.state_dir)

    options = settings.default_options.model_copy(update={"driver": settings.driver})
    if registry.exists(profile):
        options = registry.get(profile).options

    host, runtime = get_backend(
        profile, options, home=nodectl_home(), timeout=settings.operation_timeout
    )
    logger.debug(f"Using {host.name} host driver and {runtime.name} runtime installer")
    return Orchestrator(registry, host, runtime, settings)


def _print_error(e: NodectlError) -> None:
    logger.error(e.message)
    console.print(f"[red]Error:[/red] {e.message}")
    if e.details:
        console.print(f"\n{e.details}")
    if isinstance(e, BackendFailureError) and e.retryable:
        console.print("\n[yellow]This failure may be transient; retrying may succeed.[/yellow]")


# Global callback to set up logging
@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only show errors on stderr"),
    log_file: str | None = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Global options for all commands."""
    log_path = Path(log_file) if log_file else None
    if verbose and quiet:
        raise typer.BadParameter("--verbose and --quiet cannot be combined")
    setup_logging(verbose=verbose, quiet=quiet, log_file=log_path)
    logger.debug("Logging initialized")


@app.command()
def version() -> None:
    """Show version information."""
    from nodectl import __version__

    typer.echo(f"nodectl version {__version__}")


@app.command()
def start(
    profile: str = _profile_option(),
    nodes: int = typer.Option(1, "--nodes", "-n", help="Number of nodes to create"),
    driver: str | None = typer.Option(
        None, "--driver", "-d", help=f"Backend driver: {', '.join(DRIVERS)}"
    ),
    kubernetes_version: str | None = typer.Option(
        None, "--kubernetes-version", help="Kubernetes version (e.g., v1.30.0)"
    ),
    cpus: int | None = typer.Option(None, "--cpus", help="CPUs per node"),
    memory: int | None = typer.Option(None, "--memory", help="Memory per node in MB"),
    wait: bool = typer.Option(
        True, "--wait/--no-wait", help="Wait for every host and kubelet to report Running"
    ),
    wait_timeout: float | None = typer.Option(
        None, "--wait-timeout", help="Seconds to wait for each node to come up"
    ),
) -> None:
    """
    Create a cluster with one control-plane node and optional workers.

    Nodes are named m01, m02, ... in creation order. If a node fails to come
    up, nodes already running are kept and the failing node and step are
    reported.

    Examples:
        nodectl start -p demo --nodes 3
        nodectl start -p demo --driver docker --cpus 4 --memory 4096
    """
    from pydantic import ValidationError

    try:
        settings = load_settings()
        updates = {
            key: value
            for key, value in {
                "driver": driver or settings.driver,
                "kubernetes_version": kubernetes_version,
                "cpus": cpus,
                "memory_mb": memory,
            }.items()
            if value is not None
        }
        try:
            options = ProvisionOptions.model_validate(
                {**settings.default_options.model_dump(), **updates}
            )
        except ValidationError as e:
            console.print("[red]Validation Error:[/red]")
            for error in e.errors():
                field = ".".join(str(x) for x in error["loc"])
                console.print(f"  - {field}: {error['msg']}")
            raise typer.Exit(code=1)

        settings = settings.model_copy(update={"default_options": options})
        host, runtime = get_backend(
            profile, options, home=nodectl_home(), timeout=settings.operation_timeout
        )
        if wait_timeout is not None:
            settings = settings.model_copy(update={"wait_timeout": wait_timeout})

        with Orchestrator(StoreRegistry(settings.state_dir), host, runtime, settings) as orch:
            created = orch.create_cluster(profile, nodes=nodes, options=options, wait=wait)

        console.print(
            f"[green]✓[/green] Profile '{profile}' is running with {len(created)} node(s)"
        )
        for node in created:
            console.print(f"  {node.name}: {node.machine_name} ({node.role.value})")

    except NodectlError as e:
        _print_error(e)
        raise typer.Exit(code=1)


@app.command()
def status(
    profile: str = _profile_option(),
    output: str = typer.Option("text", "--output", "-o", help="Output format: text, json, table"),
) -> None:
    """
    Show host and kubelet status for every node.

    Exit codes: 0 when every node is running, 7 when some nodes are down,
    8 when no node is running. The values can be changed in config.yml.
    """
    if output not in OUTPUT_FORMATS:
        console.print(
            f"[red]Error:[/red] Invalid output '{output}'. "
            f"Must be one of: {', '.join(OUTPUT_FORMATS)}"
        )
        raise typer.Exit(code=1)

    reporter = StatusReporter()
    try:
        reporter = StatusReporter(load_settings().exit_codes)
        with _orchestrator(profile) as orch:
            snapshot = orch.status(profile)
    except NodectlError as e:
        _print_error(e)
        raise typer.Exit(code=reporter.exit_codes.unavailable)

    if output == "json":
        typer.echo(reporter.render_json(snapshot))
    elif output == "table":
        console.print(reporter.render_table(snapshot))
    elif snapshot.nodes:
        typer.echo(reporter.render_text(snapshot), nl=False)
    else:
        console.print(f"[yellow]Profile '{profile}' has no nodes[/yellow]")

    code = reporter.exit_code(snapshot)
    if code != 0:
        raise typer.Exit(code=code)


@app.command()
def delete(
    profile: str = _profile_option(),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt"),
) -> None:
    """Delete every node of a cluster and forget the profile."""
    try:
        with _orchestrator(profile) as orch:
            nodes = orch.list_nodes(profile)
            if not force:
                console.print(
                    f"[yellow]Warning:[/yellow] About to delete profile '{profile}' "
                    f"and its {len(nodes)} node(s)"
                )
                if not typer.confirm("Are you sure you want to continue?"):
                    console.print("Operation cancelled")
                    raise typer.Exit(code=0)
            orch.delete_cluster(profile)
        console.print(f"[green]✓[/green] Deleted profile '{profile}'")
    except NodectlError as e:
        _print_error(e)
        raise typer.Exit(code=1)


@node_app.command("add")
def node_add(
    profile: str = _profile_option(),
    wait: bool = typer.Option(
        True, "--wait/--no-wait", help="Wait for the host and kubelet to report Running"
    ),
) -> None:
    """Add a worker node using the cluster's provisioning options."""
    try:
        with _orchestrator(profile) as orch:
            node = orch.add_node(profile, wait=wait)
        console.print(
            f"[green]✓[/green] Added node '{node.name}' ({node.machine_name}) "
            f"to profile '{profile}'"
        )
    except NodectlError as e:
        _print_error(e)
        raise typer.Exit(code=1)


@node_app.command("stop")
def node_stop(
    name: str = typer.Argument(..., help="Node name (e.g., m02) or machine name"),
    profile: str = _profile_option(),
) -> None:
    """Stop a node's kubelet and then its host."""
    try:
        with _orchestrator(profile) as orch:
            node = orch.stop_node(profile, name)
        console.print(f"[green]✓[/green] Stopped node '{node.name}'")
    except NodectlError as e:
        _print_error(e)
        raise typer.Exit(code=1)


@node_app.command("start")
def node_start(
    name: str = typer.Argument(..., help="Node name (e.g., m02) or machine name"),
    profile: str = _profile_option(),
    force: bool = typer.Option(
        False, "--force", help="Restart even if the driver reports restarts as unreliable"
    ),
    wait: bool = typer.Option(
        True, "--wait/--no-wait", help="Wait for the host and kubelet to report Running"
    ),
) -> None:
    """Start a stopped node's host and then its kubelet."""
    try:
        with _orchestrator(profile) as orch:
            node = orch.start_node(profile, name, force=force, wait=wait)
        console.print(f"[green]✓[/green] Started node '{node.name}'")
    except UnreliableOperationError as e:
        _print_error(e)
        raise typer.Exit(code=UNRELIABLE_EXIT_CODE)
    except NodectlError as e:
        _print_error(e)
        raise typer.Exit(code=1)


@node_app.command("delete")
def node_delete(
    name: str = typer.Argument(..., help="Node name (e.g., m02) or machine name"),
    profile: str = _profile_option(),
) -> None:
    """Delete a worker node. Its name is never reused."""
    try:
        with _orchestrator(profile) as orch:
            orch.delete_node(profile, name)
        console.print(f"[green]✓[/green] Deleted node '{name}' from profile '{profile}'")
    except NodectlError as e:
        _print_error(e)
        raise typer.Exit(code=1)


@node_app.command("list")
def node_list(profile: str = _profile_option()) -> None:
    """List the recorded nodes of a profile."""
    try:
        with _orchestrator(profile) as orch:
            nodes = orch.list_nodes(profile)
    except NodectlError as e:
        _print_error(e)
        raise typer.Exit(code=1)

    for node in nodes:
        typer.echo(f"{node.name}\t{node.machine_name}\t{node.role.value}\t{node.state.value}")


@profile_app.command("list")
def profile_list() -> None:
    """List every cluster profile."""
    try:
        settings = load_settings()
        registry = StoreRegistry(settings.state_dir)
        names = registry.profiles()
    except NodectlError as e:
        _print_error(e)
        raise typer.Exit(code=1)

    if not names:
        console.print("[yellow]No profiles found[/yellow]")
        return

    table = Table(title="Profiles")
    table.add_column("Profile", style="cyan")
    table.add_column("Driver", style="magenta")
    table.add_column("Kubernetes", style="blue")
    table.add_column("Nodes", style="green")

    for name in names:
        try:
            store = registry.get(name)
        except NodectlError as e:
            logger.warning(f"Skipping profile '{name}': {e.message}")
            table.add_row(name, "?", "?", "[red]unreadable[/red]")
            continue
        table.add_row(
            name,
            store.options.driver,
            store.options.kubernetes_version,
            str(len(store.nodes)),
        )

    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
