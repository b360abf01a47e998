"""Kubernetes nodes from a nodes.yaml file, turned into report rows."""

from __future__ import annotations

import math
import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from pxcreport.pods import _load_yaml, _mapping, _scalar, _sequence, _string_map
from pxcreport.textutil import humanize_duration_in_state, parse_rfc3339

_DASH = "—"
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_GIB = 1024 * 1024 * 1024
_QUANTITY_SUFFIX = re.compile(r"([0-9]+)(Ki|Mi|Gi|Ti)")
_PLAIN_INT = re.compile(r"[+-]?[0-9]+")
_MULTIPLIERS = {"Ki": 1024, "Mi": 1024**2, "Gi": 1024**3, "Ti": 1024**4}
_CONTROL_PLANE_LABELS = ("node-role.kubernetes.io/control-plane", "node-role.kubernetes.io/master")
_INSTANCE_TYPE_LABELS = ("node.kubernetes.io/instance-type", "beta.kubernetes.io/instance-type")


@dataclass
class ConditionState:
    """A node condition as found in the document."""

    status: str = _DASH
    status_true: bool = False
    since_transition: str = _DASH
    highlight_pressure: bool = False


@dataclass(frozen=True)
class ConditionCell:
    """What the report shows in one condition cell."""

    status: str
    since_transition: str
    status_class: str
    duration_class: str


@dataclass
class NodeRow:
    """One line of the nodes table in the report."""

    hostname: str
    role: str
    ip: str
    instance_type: str
    os: str
    kernel: str
    kubelet_version: str
    cpu_cap: str
    ephemeral_gib: str
    memory: str
    pods: str
    ready: ConditionCell
    pid_pressure: ConditionCell
    disk_pressure: ConditionCell
    memory_pressure: ConditionCell
    row_pressure_class: str = field(default="")


def _section(m: Any, key: str) -> Mapping[str, Any]:
    value = m.get(key) if isinstance(m, Mapping) else None
    return value if isinstance(value, Mapping) else {}


def _text(m: Any, key: str) -> str:
    value = m.get(key) if isinstance(m, Mapping) else None
    try:
        return _scalar(value, key)
    except ValueError:
        return ""


def _list(m: Any, key: str) -> list[Any]:
    value = m.get(key) if isinstance(m, Mapping) else None
    return value if isinstance(value, list) else []


def _str_map(m: Any, key: str) -> dict[str, str]:
    try:
        return _string_map(_section(m, key), key)
    except ValueError:
        return {}


def _validate_node(node: Any) -> None:
    """Raise ValueError where a node document does not fit the expected layout."""
    doc = _mapping(node, "node")
    meta = _mapping(doc.get("metadata"), "metadata")
    _scalar(meta.get("name"), "metadata.name")
    _string_map(meta.get("labels"), "metadata.labels")
    _string_map(meta.get("annotations"), "metadata.annotations")
    status = _mapping(doc.get("status"), "status")
    for address in _sequence(status.get("addresses"), "status.addresses"):
        entry = _mapping(address, "status.addresses")
        for key in ("type", "address"):
            _scalar(entry.get(key), f"status.addresses.{key}")
    _string_map(status.get("capacity"), "status.capacity")
    for condition in _sequence(status.get("conditions"), "status.conditions"):
        entry = _mapping(condition, "status.conditions")
        for key in ("type", "status", "lastTransitionTime"):
            _scalar(entry.get(key), f"status.conditions.{key}")
    info = _mapping(status.get("nodeInfo"), "status.nodeInfo")
    for key in ("operatingSystem", "osImage", "kernelVersion", "kubeletVersion"):
        _scalar(info.get(key), f"status.nodeInfo.{key}")


def load_nodes_from_yaml(path: str | os.PathLike, now: datetime) -> list[NodeRow]:
    """Read a node list document and return a row for every named node."""
    text = Path(path).read_text(encoding="utf-8", errors="replace")
    try:
        doc = _load_yaml(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"{os.fspath(path)}: yaml: {exc}") from exc
    if not isinstance(doc, Mapping) or not all(isinstance(k, str) for k in doc):
        raise ValueError("unsupported nodes.yaml shape")
    items = doc.get("items")
    nodes = []
    for item in items if isinstance(items, list) else []:
        try:
            _validate_node(item)
        except ValueError:
            continue
        if item is None or not _text(_section(item, "metadata"), "name").strip():
            continue
        nodes.append(item)
    return [node_to_row(node, now) for node in nodes]


def node_to_row(node: Mapping[str, Any], now: datetime) -> NodeRow:
    """Turn a decoded Node document into a report row."""
    meta = _section(node, "metadata")
    status = _section(node, "status")
    labels = _str_map(meta, "labels")
    info = _section(status, "nodeInfo")
    capacity = _str_map(status, "capacity")

    role = "control-plane" if any(key in labels for key in _CONTROL_PLANE_LABELS) else "worker"
    instance = next(
        (labels.get(key, "").strip() for key in _INSTANCE_TYPE_LABELS if labels.get(key, "").strip()),
        _DASH,
    )
    ready = node_condition_cell(node, "Ready", now)
    pid = node_condition_cell(node, "PIDPressure", now)
    disk = node_condition_cell(node, "DiskPressure", now)
    memory = node_condition_cell(node, "MemoryPressure", now)
    alert = memory.highlight_pressure or disk.highlight_pressure or pid.highlight_pressure
    return NodeRow(
        hostname=_text(meta, "name").strip() or _DASH,
        role=role,
        ip=node_internal_ip(node),
        instance_type=instance,
        os=_text(info, "osImage").strip() or _DASH,
        kernel=_text(info, "kernelVersion").strip() or _DASH,
        kubelet_version=_text(info, "kubeletVersion").strip() or _DASH,
        cpu_cap=capacity.get("cpu", "").strip() or _DASH,
        ephemeral_gib=ephemeral_storage_gib(capacity.get("ephemeral-storage", "")) or _DASH,
        memory=format_memory_quantity(capacity.get("memory", "")) or _DASH,
        pods=capacity.get("pods", "").strip() or _DASH,
        ready=cond_cell_from_condition(ready, False),
        pid_pressure=cond_cell_from_condition(pid, True),
        disk_pressure=cond_cell_from_condition(disk, True),
        memory_pressure=cond_cell_from_condition(memory, True),
        row_pressure_class="pressure-alert" if alert else "",
    )


def cond_cell_from_condition(state: ConditionState, pressure_inverted: bool) -> ConditionCell:
    """Display text and CSS classes for a condition; pressure conditions are good when False."""
    status = state.status.strip() or _DASH
    lowered = status.lower()
    status_class = "status-muted"
    if pressure_inverted:
        if lowered == "false":
            status, status_class = "False", "pressure-false"
        elif lowered == "true":
            status, status_class = "True", "pressure-true"
    elif lowered == "true":
        status_class = "status-true"
    elif lowered == "false":
        status_class = "status-false"
    return ConditionCell(
        status=status,
        since_transition=state.since_transition,
        status_class=status_class,
        duration_class="sub-bad" if state.highlight_pressure else "sub-ok",
    )


def node_condition_cell(node: Mapping[str, Any], cond_type: str, now: datetime) -> ConditionState:
    """State of the first condition of the given type on a node."""
    for condition in _list(_section(node, "status"), "conditions"):
        if _text(condition, "type").strip() != cond_type:
            continue
        status = _text(condition, "status").strip()
        state = ConditionState(status=status, status_true=status.lower() == "true")
        transition = _text(condition, "lastTransitionTime")
        if transition:
            try:
                state.since_transition = humanize_duration_in_state(
                    parse_rfc3339(transition.strip()), now
                )
            except ValueError:
                state.since_transition = transition.strip()
        state.highlight_pressure = cond_type != "Ready" and state.status_true
        return state
    return ConditionState()


def node_internal_ip(node: Mapping[str, Any]) -> str:
    """First non-empty InternalIP address of a node, or a dash."""
    for address in _list(_section(node, "status"), "addresses"):
        value = _text(address, "address").strip()
        if _text(address, "type").strip() == "InternalIP" and value:
            return value
    return _DASH


def kubernetes_quantity_to_bytes(text: str) -> int | None:
    """Bytes in a plain or Ki/Mi/Gi/Ti quantity; None when the form is not understood."""
    text = text.strip()
    if not text:
        return None
    match = _QUANTITY_SUFFIX.fullmatch(text)
    if match is not None:
        number = int(match.group(1))
        if number > _INT64_MAX:
            return None
        return number * _MULTIPLIERS[match.group(2)]
    if _PLAIN_INT.fullmatch(text):
        number = int(text)
        if _INT64_MIN <= number <= _INT64_MAX:
            return number
    return None


def _whole_gib(text: str) -> str:
    text = text.strip()
    if not text:
        return ""
    size = kubernetes_quantity_to_bytes(text)
    if size is None:
        return text
    gib = size / _GIB
    rounded = math.copysign(math.floor(abs(gib) + 0.5), gib)
    return f"{rounded:.0f}"


def format_memory_quantity(text: str) -> str:
    """Memory capacity in whole GiB; the text itself when not understood; '' when empty."""
    return _whole_gib(text)


def ephemeral_storage_gib(text: str) -> str:
    """Ephemeral storage capacity in whole GiB; the text itself when not understood."""
    return _whole_gib(text)