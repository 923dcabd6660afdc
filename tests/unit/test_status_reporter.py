"""Unit tests for status rendering and exit codes."""

import json

import pytest
from rich.table import Table

from nodectl.config import ExitCodes
from nodectl.models.cluster import NodeStatus, StatusSnapshot
from nodectl.models.node import HostState, NodeRole, RuntimeState
from nodectl.status import StatusReporter


def node_status(ordinal, host=HostState.RUNNING, runtime=RuntimeState.RUNNING, error=None):
    return NodeStatus(
        name=f"m{ordinal:02d}",
        machine_name="p" if ordinal == 1 else f"p-m{ordinal:02d}",
        ordinal=ordinal,
        role=NodeRole.CONTROL_PLANE if ordinal == 1 else NodeRole.WORKER,
        host=host,
        runtime=runtime,
        error=error,
    )


def stopped(ordinal):
    return node_status(ordinal, HostState.STOPPED, RuntimeState.STOPPED)


def test_render_text_blocks(reporter):
    snapshot = StatusSnapshot(profile="p", nodes=(node_status(1), stopped(2)))

    text = reporter.render_text(snapshot)

    assert text == (
        "p\n"
        "type: Control Plane\n"
        "host: Running\n"
        "kubelet: Running\n"
        "\n"
        "p-m02\n"
        "type: Worker\n"
        "host: Stopped\n"
        "kubelet: Stopped\n"
    )


def test_render_text_includes_probe_error(reporter):
    snapshot = StatusSnapshot(
        profile="p",
        nodes=(node_status(1, HostState.STOPPED, RuntimeState.STOPPED, error="probe timed out"),),
    )

    text = reporter.render_text(snapshot)

    assert "error: probe timed out" in text
    assert text.count("host: Stopped") == 1


def test_exit_code_all_running(reporter):
    snapshot = StatusSnapshot(profile="p", nodes=(node_status(1), node_status(2)))
    assert reporter.exit_code(snapshot) == 0


def test_exit_code_one_stopped(reporter):
    snapshot = StatusSnapshot(profile="p", nodes=(node_status(1), node_status(2), stopped(3)))
    assert reporter.exit_code(snapshot) == 7


def test_exit_code_kubelet_only_stopped(reporter):
    snapshot = StatusSnapshot(
        profile="p",
        nodes=(node_status(1), node_status(2, HostState.RUNNING, RuntimeState.STOPPED)),
    )
    assert reporter.exit_code(snapshot) == 7


def test_exit_code_all_stopped(reporter):
    snapshot = StatusSnapshot(profile="p", nodes=(stopped(1), stopped(2)))
    assert reporter.exit_code(snapshot) == 8


def test_exit_code_no_nodes(reporter):
    assert reporter.exit_code(StatusSnapshot(profile="p")) == 8


def test_exit_code_ignores_order(reporter):
    nodes = (node_status(1), stopped(2), node_status(3))
    forward = StatusSnapshot(profile="p", nodes=nodes)
    backward = StatusSnapshot(profile="p", nodes=tuple(reversed(nodes)))

    assert reporter.exit_code(forward) == reporter.exit_code(backward)


def test_custom_exit_codes():
    reporter = StatusReporter(ExitCodes(degraded=17, unavailable=18))

    assert reporter.exit_code(StatusSnapshot(profile="p", nodes=(node_status(1), stopped(2)))) == 17
    assert reporter.exit_code(StatusSnapshot(profile="p", nodes=(stopped(1),))) == 18


def test_exit_codes_must_be_distinct():
    with pytest.raises(ValueError):
        ExitCodes(degraded=8, unavailable=8)


def test_render_json(reporter):
    snapshot = StatusSnapshot(profile="p", nodes=(node_status(1), stopped(2)))

    data = json.loads(reporter.render_json(snapshot))

    assert data["profile"] == "p"
    assert data["exit_code"] == 7
    assert [n["Host"] for n in data["nodes"]] == ["Running", "Stopped"]
    assert [n["Kubelet"] for n in data["nodes"]] == ["Running", "Stopped"]
    assert data["nodes"][1]["Name"] == "p-m02"
    assert data["nodes"][1]["Node"] == "m02"


def test_render_table(reporter):
    snapshot = StatusSnapshot(profile="p", nodes=(node_status(1), stopped(2)))

    table = reporter.render_table(snapshot)

    assert isinstance(table, Table)
    assert table.row_count == 2


def test_summary_counts(reporter):
    snapshot = StatusSnapshot(
        profile="p",
        nodes=(
            node_status(1),
            node_status(2, HostState.RUNNING, RuntimeState.STOPPED),
            stopped(3),
        ),
    )

    assert reporter.summary(snapshot) == {
        "host_running": 2,
        "host_stopped": 1,
        "kubelet_running": 1,
        "kubelet_stopped": 2,
    }
