from datetime import datetime, timezone

import pytest
import yaml

from pxcreport.nodes import (
    ConditionState,
    cond_cell_from_condition,
    ephemeral_storage_gib,
    format_memory_quantity,
    kubernetes_quantity_to_bytes,
    load_nodes_from_yaml,
    node_condition_cell,
    node_internal_ip,
    node_to_row,
)
from pxcreport.textutil import humanize_duration_in_state, parse_rfc3339

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
READY_SINCE = "2024-05-01T10:00:00Z"

NODE = {
    "metadata": {
        "name": "node-a",
        "labels": {
            "node-role.kubernetes.io/control-plane": "",
            "node.kubernetes.io/instance-type": "m5.large",
        },
    },
    "status": {
        "addresses": [
            {"type": "Hostname", "address": "node-a"},
            {"type": "InternalIP", "address": "10.0.0.5"},
        ],
        "capacity": {"cpu": "4", "memory": "16Gi", "ephemeral-storage": "100Gi", "pods": "110"},
        "conditions": [
            {"type": "Ready", "status": "True", "lastTransitionTime": READY_SINCE},
            {"type": "DiskPressure", "status": "False", "lastTransitionTime": READY_SINCE},
            {"type": "MemoryPressure", "status": "True", "lastTransitionTime": "not-a-time"},
        ],
        "nodeInfo": {"osImage": "Ubuntu 22.04", "kernelVersion": "5.15.0", "kubeletVersion": "v1.29.1"},
    },
}


def test_node_to_row_fields():
    row = node_to_row(NODE, NOW)
    assert row.hostname == "node-a"
    assert row.role == "control-plane"
    assert row.ip == "10.0.0.5"
    assert row.instance_type == "m5.large"
    assert (row.os, row.kernel, row.kubelet_version) == ("Ubuntu 22.04", "5.15.0", "v1.29.1")
    assert row.cpu_cap == "4"
    assert row.memory == "16"
    assert row.ephemeral_gib == "100"
    assert row.pods == "110"


def test_node_to_row_conditions():
    row = node_to_row(NODE, NOW)
    assert row.ready.status == "True"
    assert row.ready.status_class == "status-true"
    assert row.ready.since_transition == humanize_duration_in_state(parse_rfc3339(READY_SINCE), NOW)
    assert row.disk_pressure.status_class == "pressure-false"
    assert row.memory_pressure.status_class == "pressure-true"
    assert row.memory_pressure.duration_class == "sub-bad"
    assert row.memory_pressure.since_transition == "not-a-time"
    assert row.pid_pressure.status == "—"
    assert row.row_pressure_class == "pressure-alert"


def test_node_defaults():
    row = node_to_row({"metadata": {"name": "w"}}, NOW)
    assert row.role == "worker"
    assert row.ip == "—"
    assert row.instance_type == "—"
    assert row.memory == "—"
    assert row.row_pressure_class == ""


def test_master_label_and_beta_instance_type():
    node = {
        "metadata": {
            "name": "m",
            "labels": {
                "node-role.kubernetes.io/master": "",
                "beta.kubernetes.io/instance-type": "t3.small",
            },
        }
    }
    row = node_to_row(node, NOW)
    assert row.role == "control-plane"
    assert row.instance_type == "t3.small"


def test_missing_condition():
    state = node_condition_cell({"metadata": {"name": "x"}}, "Ready", NOW)
    assert state == ConditionState()
    assert state.status == "—" and state.since_transition == "—"


def test_ready_true_never_highlights():
    state = node_condition_cell(NODE, "Ready", NOW)
    assert state.status_true is True
    assert state.highlight_pressure is False


def test_node_internal_ip_missing():
    node = {"status": {"addresses": [{"type": "InternalIP", "address": "  "}]}}
    assert node_internal_ip(node) == "—"


@pytest.mark.parametrize(
    "state, inverted, expected",
    [
        (ConditionState(status="false"), True, ("False", "pressure-false", "sub-ok")),
        (ConditionState(status="true", highlight_pressure=True), True, ("True", "pressure-true", "sub-bad")),
        (ConditionState(status="Unknown"), False, ("Unknown", "status-muted", "sub-ok")),
        (ConditionState(status="False"), False, ("False", "status-false", "sub-ok")),
        (ConditionState(status=""), False, ("—", "status-muted", "sub-ok")),
    ],
)
def test_cond_cell_from_condition(state, inverted, expected):
    cell = cond_cell_from_condition(state, inverted)
    assert (cell.status, cell.status_class, cell.duration_class) == expected


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1Ki", 1024),
        ("1Mi", 1024 * 1024),
        ("1Gi", 1024 * 1024 * 1024),
        ("12345", 12345),
        ("1.5Gi", None),
        ("10G", None),
        ("abc", None),
        ("", None),
    ],
)
def test_kubernetes_quantity_to_bytes(text, expected):
    assert kubernetes_quantity_to_bytes(text) == expected


@pytest.mark.parametrize("n", [1, 7, 64, 512])
def test_whole_gib_round_trip(n):
    assert format_memory_quantity(f"{n}Gi") == str(n)
    assert ephemeral_storage_gib(f" {n}Gi ") == str(n)


def test_memory_rounding_and_passthrough():
    assert format_memory_quantity("1536Mi") == "2"
    assert format_memory_quantity("lots") == "lots"
    assert format_memory_quantity("  ") == ""


def test_load_nodes_from_yaml(tmp_path):
    path = tmp_path / "nodes.yaml"
    items = [NODE, {"metadata": {}}, {"metadata": {"name": "bad", "labels": ["x"]}}]
    path.write_text(yaml.safe_dump({"apiVersion": "v1", "kind": "List", "items": items}))
    rows = load_nodes_from_yaml(path, NOW)
    assert [r.hostname for r in rows] == ["node-a"]
    assert rows[0] == node_to_row(NODE, NOW)


def test_load_nodes_without_items(tmp_path):
    path = tmp_path / "nodes.yaml"
    path.write_text("kind: List\n")
    assert load_nodes_from_yaml(path, NOW) == []


@pytest.mark.parametrize("text", ["- a\n- b\n", "", "items: [unclosed\n"])
def test_load_nodes_unsupported(tmp_path, text):
    path = tmp_path / "nodes.yaml"
    path.write_text(text)
    with pytest.raises(ValueError):
        load_nodes_from_yaml(path, NOW)