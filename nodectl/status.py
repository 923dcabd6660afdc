"""Rendering of status snapshots and derivation of the status exit code.

The text report is consumed by scripts that count lines such as
``host: Running`` and ``kubelet: Stopped``; every node contributes exactly one
``host:`` line and one ``kubelet:`` line, and the label strings must not change.
"""

import json

from rich.table import Table

from nodectl.config import ExitCodes
from nodectl.models.cluster import StatusSnapshot
from nodectl.models.node import HostState, RuntimeState

_STATE_STYLES = {
    "Running": "green",
    "Stopped": "red",
    "Absent": "yellow",
}


class StatusReporter:
    """Turns a StatusSnapshot into reports and an exit code."""

    def __init__(self, exit_codes: ExitCodes | None = None):
        self.exit_codes = exit_codes or ExitCodes()

    def exit_code(self, snapshot: StatusSnapshot) -> int:
        """Derive the overall exit code.

        ``ok`` when every node is fully running, ``degraded`` when some but not
        all are, ``unavailable`` when none are. Only counts are used, so the
        result does not depend on probe order.
        """
        total = len(snapshot.nodes)
        running = snapshot.running_nodes
        if total and running == total:
            return self.exit_codes.ok
        if running == 0:
            return self.exit_codes.unavailable
        return self.exit_codes.degraded

    def render_text(self, snapshot: StatusSnapshot) -> str:
        """Render the line-oriented report, one block per node."""
        blocks = []
        for node in snapshot.nodes:
            lines = [
                node.machine_name,
                f"type: {node.role.label}",
                f"host: {node.host.value}",
                f"kubelet: {node.runtime.value}",
            ]
            if node.error:
                lines.append(f"error: {node.error}")
            blocks.append("\n".join(lines) + "\n")
        return "\n".join(blocks)

    def render_json(self, snapshot: StatusSnapshot) -> str:
        """Render the report as a JSON document."""
        return json.dumps(
            {
                "profile": snapshot.profile,
                "exit_code": self.exit_code(snapshot),
                "nodes": [
                    {
                        "Name": node.machine_name,
                        "Node": node.name,
                        "Role": node.role.value,
                        "Host": node.host.value,
                        "Kubelet": node.runtime.value,
                        "Error": node.error,
                    }
                    for node in snapshot.nodes
                ],
            },
            indent=2,
        )

    def render_table(self, snapshot: StatusSnapshot) -> Table:
        """Render the report as a rich table for interactive use."""
        table = Table(title=f"Profile {snapshot.profile}")
        table.add_column("Name", style="cyan")
        table.add_column("Node", style="magenta")
        table.add_column("Type")
        table.add_column("Host")
        table.add_column("Kubelet")

        for node in snapshot.nodes:
            table.add_row(
                node.machine_name,
                node.name,
                node.role.label,
                self._styled(node.host.value),
                self._styled(node.runtime.value),
            )
        return table

    def summary(self, snapshot: StatusSnapshot) -> dict[str, int]:
        """Count nodes per layer state."""
        return {
            "host_running": snapshot.count_host(HostState.RUNNING),
            "host_stopped": snapshot.count_host(HostState.STOPPED),
            "kubelet_running": snapshot.count_runtime(RuntimeState.RUNNING),
            "kubelet_stopped": snapshot.count_runtime(RuntimeState.STOPPED),
        }

    @staticmethod
    def _styled(value: str) -> str:
        style = _STATE_STYLES.get(value)
        return f"[{style}]{value}[/{style}]" if style else value
