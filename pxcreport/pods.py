"""Pods from a cluster dump: loading, matching to workloads and rendering rows."""

from __future__ import annotations

import json
import math
import os
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from pxcreport.textutil import humanize_duration_in_state, parse_rfc3339, safe_store_id

PODS_FILE_NAME = "pods.yaml"
_DASH = "—"
_BACKUP_NAME_KEY = "percona.com/backup-name"
_INSTANCE_LABEL = "app.kubernetes.io/instance"
_COMPONENT_LABEL = "app.kubernetes.io/component"
_PXC_COMPONENTS = frozenset({"haproxy", "proxysql", "pxc"})

_HTML_ESCAPES = str.maketrans(
    {"\0": "\ufffd", '"': "&#34;", "'": "&#39;", "&": "&amp;", "<": "&lt;", ">": "&gt;"}
)


def _escape_html(text: str) -> str:
    return text.translate(_HTML_ESCAPES)


class _Loader(yaml.SafeLoader):
    """Safe loader that keeps timestamps as text and only treats true/false as booleans."""


_Loader.yaml_implicit_resolvers = {
    first: [
        (tag, regexp)
        for tag, regexp in resolvers
        if tag not in ("tag:yaml.org,2002:timestamp", "tag:yaml.org,2002:bool")
    ]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
_Loader.add_implicit_resolver(
    "tag:yaml.org,2002:bool",
    re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$"),
    list("tTfF"),
)


def _load_yaml(text: str) -> Any:
    return yaml.load(text, Loader=_Loader)


def _mapping(value: Any, what: str) -> Mapping[Any, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return value
    raise ValueError(f"{what}: expected a mapping, got {type(value).__name__}")


def _sequence(value: Any, what: str) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    raise ValueError(f"{what}: expected a sequence, got {type(value).__name__}")


def _scalar(value: Any, what: str) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    raise ValueError(f"{what}: expected a scalar, got {type(value).__name__}")


def _string_map(value: Any, what: str) -> dict[str, str]:
    return {str(k): _scalar(v, f"{what}.{k}") for k, v in _mapping(value, what).items()}


def _bool(value: Any, what: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    raise ValueError(f"{what}: expected a boolean")


def _int(value: Any, what: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError(f"{what}: expected an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValueError(f"{what}: expected an integer")


@dataclass
class ContainerSpec:
    """A container or init container as declared in a pod spec."""

    name: str = ""
    image: str = ""
    requests: dict[str, Any] = field(default_factory=dict)
    limits: dict[str, Any] = field(default_factory=dict)


@dataclass
class _ContainerStatus:
    name: str = ""
    ready: bool = False
    restart_count: int = 0


@dataclass
class PodItem:
    """The parts of a Pod document the report uses."""

    name: str = ""
    namespace: str = ""
    creation_timestamp: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    node_name: str = ""
    init_containers: list[ContainerSpec] = field(default_factory=list)
    containers: list[ContainerSpec] = field(default_factory=list)
    phase: str = ""
    pod_ip: str = ""
    container_statuses: list[_ContainerStatus] = field(default_factory=list)
    init_container_statuses: list[_ContainerStatus] = field(default_factory=list)


@dataclass
class PodRow:
    """One pod line of a component table in the report."""

    name: str
    ready: str
    status: str
    restarts: str
    age: str
    pod_ip: str
    node: str
    has_pod_log: bool = False
    pod_log_escaped: str = ""
    pod_log_modal_id: str = ""
    pod_spec_modal_id: str = ""
    pod_spec_escaped: str = ""


@dataclass(frozen=True)
class PodImageRef:
    """A container image as written in the pod and in normalized form."""

    display: str
    norm: str


def _parse_container(data: Any, what: str) -> ContainerSpec:
    m = _mapping(data, what)
    resources = _mapping(m.get("resources"), f"{what}.resources")
    return ContainerSpec(
        name=_scalar(m.get("name"), f"{what}.name"),
        image=_scalar(m.get("image"), f"{what}.image"),
        requests=dict(_mapping(resources.get("requests"), f"{what}.resources.requests")),
        limits=dict(_mapping(resources.get("limits"), f"{what}.resources.limits")),
    )


def _parse_status(data: Any, what: str) -> _ContainerStatus:
    m = _mapping(data, what)
    return _ContainerStatus(
        name=_scalar(m.get("name"), f"{what}.name"),
        ready=_bool(m.get("ready"), f"{what}.ready"),
        restart_count=_int(m.get("restartCount"), f"{what}.restartCount"),
    )


def parse_pod_item(data: Any) -> PodItem:
    """Build a PodItem from a decoded Pod document; raise ValueError on a malformed one."""
    doc = _mapping(data, "pod")
    meta = _mapping(doc.get("metadata"), "metadata")
    spec = _mapping(doc.get("spec"), "spec")
    status = _mapping(doc.get("status"), "status")
    return PodItem(
        name=_scalar(meta.get("name"), "metadata.name"),
        namespace=_scalar(meta.get("namespace"), "metadata.namespace"),
        creation_timestamp=_scalar(meta.get("creationTimestamp"), "metadata.creationTimestamp"),
        labels=_string_map(meta.get("labels"), "metadata.labels"),
        annotations=_string_map(meta.get("annotations"), "metadata.annotations"),
        node_name=_scalar(spec.get("nodeName"), "spec.nodeName"),
        init_containers=[
            _parse_container(c, "spec.initContainers")
            for c in _sequence(spec.get("initContainers"), "spec.initContainers")
        ],
        containers=[
            _parse_container(c, "spec.containers")
            for c in _sequence(spec.get("containers"), "spec.containers")
        ],
        phase=_scalar(status.get("phase"), "status.phase"),
        pod_ip=_scalar(status.get("podIP"), "status.podIP"),
        container_statuses=[
            _parse_status(s, "status.containerStatuses")
            for s in _sequence(status.get("containerStatuses"), "status.containerStatuses")
        ],
        init_container_statuses=[
            _parse_status(s, "status.initContainerStatuses")
            for s in _sequence(status.get("initContainerStatuses"), "status.initContainerStatuses")
        ],
    )


def _find_named_files(root: str | os.PathLike, file_name: str) -> list[str]:
    base = os.path.normpath(os.fspath(root))
    if not os.path.isdir(base) or os.path.islink(base):
        os.lstat(base)
        return [base] if os.path.basename(base) == file_name else []
    found: list[str] = []
    pending = [base]
    while pending:
        directory = pending.pop()
        with os.scandir(directory) as entries:
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    pending.append(entry.path)
                elif entry.name == file_name:
                    found.append(entry.path)
    return sorted(found)


def find_pods_yamls(root: str | os.PathLike) -> list[str]:
    """Return every pods.yaml under root, sorted by path."""
    return _find_named_files(root, PODS_FILE_NAME)


def _load_pod_items(path: str) -> list[PodItem]:
    text = Path(path).read_text(encoding="utf-8", errors="replace")
    try:
        doc = _load_yaml(text)
        if doc is None:
            return []
        items = _sequence(_mapping(doc, "document").get("items"), "items")
        return [parse_pod_item(item) for item in items]
    except (yaml.YAMLError, ValueError) as exc:
        raise ValueError(f"{path}: yaml: {exc}") from exc


def load_pod_loader(root: str | os.PathLike) -> PodLoader:
    """Read and merge the pods of every pods.yaml under root."""
    pods: list[PodItem] = []
    for path in find_pods_yamls(root):
        pods.extend(_load_pod_items(path))
    return PodLoader(pods)


def backup_name_matches_pod_metadata(
    labels: Mapping[str, str] | None,
    annotations: Mapping[str, str] | None,
    backup_cr_name: str,
) -> bool:
    """Tell whether a pod's labels or annotations name the given backup resource."""
    return any(
        source is not None and source.get(_BACKUP_NAME_KEY, "").strip() == backup_cr_name
        for source in (labels, annotations)
    )


def _matches_component(pod: PodItem, namespace: str, instance: str, component: str) -> bool:
    if pod.namespace.strip() != namespace or not pod.labels:
        return False
    return (
        pod.labels.get(_INSTANCE_LABEL, "").strip() == instance
        and pod.labels.get(_COMPONENT_LABEL, "").strip() == component
    )


@dataclass
class PodLoader:
    """All pods found in a dump."""

    pods: list[PodItem] = field(default_factory=list)

    def distinct_images_for_pxc_instance(self, namespace: str, instance: str) -> list[PodImageRef]:
        """Unique images of the haproxy, proxysql and pxc pods of one cluster, sorted."""
        from pxcreport.certified import normalize_oci_image_ref

        ns, inst = namespace.strip(), instance.strip()
        seen: dict[str, str] = {}
        for pod in self.pods:
            if pod.namespace.strip() != ns or not pod.labels:
                continue
            if pod.labels.get(_INSTANCE_LABEL, "").strip() != inst:
                continue
            if pod.labels.get(_COMPONENT_LABEL, "").strip() not in _PXC_COMPONENTS:
                continue
            for container in (*pod.init_containers, *pod.containers):
                image = container.image.strip()
                norm = normalize_oci_image_ref(image) if image else ""
                if norm:
                    seen.setdefault(norm, image)
        return [PodImageRef(display=seen[norm], norm=norm) for norm in sorted(seen)]

    def pod_name_for_backup_cr(self, namespace: str, backup_cr_name: str) -> str:
        """Name of the backup job pod for a backup resource, or '' when none matches."""
        ns, bn = namespace.strip(), backup_cr_name.strip()
        if not ns or not bn:
            return ""
        for pod in self.pods:
            if pod.namespace.strip() != ns:
                continue
            if backup_name_matches_pod_metadata(pod.labels, pod.annotations, bn):
                return pod.name.strip()
        return ""

    def pods_for_percona_component(
        self,
        namespace: str,
        instance: str,
        component: str,
        now: datetime,
        dump_root: str | os.PathLike,
    ) -> list[PodRow]:
        """Rows for the pods of one cluster component, sorted by pod name."""
        ns, inst, comp = namespace.strip(), instance.strip(), component.strip()
        matches = [p for p in self.pods if _matches_component(p, ns, inst, comp)]
        matches.sort(key=lambda p: p.name)
        return [pod_item_to_row(p, now, dump_root) for p in matches]


def pod_item_to_row(pod: PodItem, now: datetime, dump_root: str | os.PathLike) -> PodRow:
    """Turn a pod into a report row, reading its log from the dump if present."""
    ready_by_name = {cs.name: cs.ready for cs in pod.container_statuses}
    restarts = sum(cs.restart_count for cs in pod.container_statuses)
    restarts += sum(cs.restart_count for cs in pod.init_container_statuses)
    ready = sum(1 for c in pod.containers if ready_by_name.get(c.name, False))
    total = len(pod.containers) or len(pod.container_statuses)
    ready_text = f"{ready}/{total}" if total else "0/0"

    age = _DASH
    if pod.creation_timestamp:
        try:
            age = humanize_duration_in_state(parse_rfc3339(pod.creation_timestamp.strip()), now)
        except ValueError:
            pass

    log = read_pod_log_from_dump(dump_root, pod.namespace, pod.name)
    return PodRow(
        name=pod.name,
        ready=ready_text,
        status=pod.phase.strip() or _DASH,
        restarts=str(restarts),
        age=age,
        pod_ip=pod.pod_ip.strip() or _DASH,
        node=pod.node_name.strip() or _DASH,
        has_pod_log=log is not None,
        pod_log_escaped=log or "",
        pod_log_modal_id=safe_pod_log_store_id(pod.namespace, pod.name),
        pod_spec_modal_id=safe_pod_spec_store_id(pod.namespace, pod.name),
        pod_spec_escaped=_escape_html(build_pod_spec_detail_plain_text(pod)),
    )


def _resource_cpu_and_mem(resources: Mapping[str, Any]) -> tuple[str, str]:
    cpu = pod_quantity_string(resources.get("cpu")) or _DASH
    mem = pod_quantity_string(resources.get("memory")) or _DASH
    return cpu, mem


def _container_section(title: str, containers: Iterable[ContainerSpec]) -> Iterable[str]:
    containers = list(containers)
    if not containers:
        return
    yield f"=== {title} ===\n\n"
    for c in containers:
        request_cpu, request_mem = _resource_cpu_and_mem(c.requests)
        limit_cpu, limit_mem = _resource_cpu_and_mem(c.limits)
        yield f"{c.name.strip() or _DASH}\n"
        yield f"  image:     {c.image.strip() or _DASH}\n"
        yield f"  requests:  CPU {request_cpu}, memory {request_mem}\n"
        yield f"  limits:    CPU {limit_cpu}, memory {limit_mem}\n"
        yield "\n"


def build_pod_spec_detail_plain_text(pod: PodItem | None) -> str:
    """Plain-text listing of a pod's containers with image and resources."""
    if pod is None:
        return "No pod data."
    text = "".join(
        (
            *_container_section("Init containers", pod.init_containers),
            *_container_section("Containers", pod.containers),
        )
    ).strip()
    return text or "No container specs in this pod document."


def _format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and -(2**63) <= value < 2**63:
        return str(int(value))
    return repr(value).rstrip("0").rstrip(".").strip()


def pod_quantity_string(value: Any) -> str:
    """Render a resource quantity as text; '' when absent."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float(value)
    return str(value).strip()


def safe_pod_spec_store_id(namespace: str, pod_name: str) -> str:
    """HTML id for the hidden store of a pod's container listing."""
    return safe_store_id("podspect-", namespace, pod_name)


def safe_pod_log_store_id(namespace: str, pod_name: str) -> str:
    """HTML id for the hidden store of a pod's log."""
    return safe_store_id("podlog-", namespace, pod_name)


def read_pod_log_from_dump(
    dump_root: str | os.PathLike, namespace: str, pod_name: str
) -> str | None:
    """Read <namespace>/<pod>/logs.txt (or log) under dump_root, HTML-escaped; None if absent."""
    ns, pn = namespace.strip(), pod_name.strip()
    root = os.fspath(dump_root)
    if not ns or not pn or not root.strip():
        return None
    base = Path(os.path.normpath(root))
    raw: bytes | None = None
    for candidate in (base / ns / pn / "logs.txt", base / ns / pn / "log"):
        try:
            raw = candidate.read_bytes()
        except OSError:
            continue
        break
    if not raw:
        return None
    return _escape_html(flatten_pod_log_json_lines(raw.decode("utf-8", errors="replace")))


def _log_field(obj: Mapping[str, Any]) -> Any:
    if "log" in obj:
        return obj["log"]
    for key, value in obj.items():
        if isinstance(key, str) and key.lower() == "log":
            return value
    return None


def _unwrap_line(line: str) -> str:
    stripped = line.strip()
    if not stripped.startswith("{"):
        return line
    try:
        obj = json.loads(stripped)
    except ValueError:
        return line
    if not isinstance(obj, dict):
        return line
    message = _log_field(obj)
    if isinstance(message, str) and message:
        return message
    return line


def flatten_pod_log_json_lines(raw: str) -> str:
    """Replace JSON lines carrying a non-empty "log" field by that message; keep other lines."""
    lines = raw.replace("\r\n", "\n").split("\n")
    return "\n".join(_unwrap_line(line) for line in lines)