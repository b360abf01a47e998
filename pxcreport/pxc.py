"""PerconaXtraDBCluster resources from a cluster dump, turned into report rows."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from pxcreport.certified import CertifiedImageCache
from pxcreport.pods import PodLoader, PodRow, _escape_html, _find_named_files, _load_yaml
from pxcreport.textutil import (
    humanize_duration_in_state,
    parse_rfc3339,
    sanitize_modal_fragment,
)

PXC_FILE_NAME = "perconaxtradbclusters.pxc.percona.com.yaml"
PXC_CONFIGURATION_MAX_LINES = 5
_DASH = "—"

_SIDECAR_SPEC = {"enabled": bool, "size": int, "image": str}
_COMPONENT_STATUS = {"size": int, "ready": int, "status": str}
_CLUSTER_SCHEMA: dict[str, Any] = {
    "metadata": {"name": str, "namespace": str, "creationTimestamp": str},
    "spec": {
        "crVersion": str,
        "updateStrategy": str,
        "pmm": {"enabled": bool},
        "haproxy": _SIDECAR_SPEC,
        "proxysql": _SIDECAR_SPEC,
        "pxc": {"size": int, "image": str, "configuration": str},
        "unsafeFlags": dict,
    },
    "status": {
        "conditions": [{"type": str, "status": str, "lastTransitionTime": str}],
        "haproxy": _COMPONENT_STATUS,
        "proxysql": _COMPONENT_STATUS,
        "pxc": {"size": int, "ready": int, "status": str, "image": str, "version": str},
    },
}


@dataclass(frozen=True)
class ImageCertRow:
    """A pod image and whether it is on the certified list."""

    image_escaped: str
    is_certified: bool


@dataclass
class PXCRow:
    """Everything the report shows for one PerconaXtraDBCluster."""

    name: str
    namespace: str
    cr_version: str
    created: str
    ready_status: str = _DASH
    ready_since: str = _DASH
    ready_status_class: str = "status-muted"
    pmm_enabled: str = "no"
    unsafe_flags_ok: bool = True
    unsafe_flags_escaped: str = ""
    update_strategy: str = _DASH
    haproxy_enabled: bool = False
    proxysql_enabled: bool = False
    haproxy_size: str = ""
    haproxy_status: str = ""
    haproxy_version: str = ""
    proxysql_size: str = ""
    proxysql_status: str = ""
    proxysql_version: str = ""
    pxc_size: str = ""
    pxc_status: str = ""
    pxc_version: str = ""
    pxc_config_snippet: str = ""
    pxc_config_full_escaped: str = ""
    pxc_config_truncated: bool = False
    pxc_config_modal_id: str = ""
    haproxy_pods: list[PodRow] = field(default_factory=list)
    proxysql_pods: list[PodRow] = field(default_factory=list)
    pxc_pods: list[PodRow] = field(default_factory=list)
    certified_doc_url: str = ""
    certified_fetch_err_escaped: str = ""
    image_cert_rows: list[ImageCertRow] = field(default_factory=list)


def _as_int(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{what}: expected an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValueError(f"{what}: expected an integer")


def _check(value: Any, schema: Any, what: str) -> None:
    """Raise ValueError where a decoded document does not fit the cluster layout."""
    if value is None:
        return
    if schema is dict:
        if not isinstance(value, Mapping):
            raise ValueError(f"{what}: expected a mapping")
    elif isinstance(schema, dict):
        if not isinstance(value, Mapping):
            raise ValueError(f"{what}: expected a mapping")
        for key, sub in schema.items():
            _check(value.get(key), sub, f"{what}.{key}")
    elif isinstance(schema, list):
        if not isinstance(value, list):
            raise ValueError(f"{what}: expected a sequence")
        for item in value:
            _check(item, schema[0], what)
    elif schema is str:
        if isinstance(value, (Mapping, list)):
            raise ValueError(f"{what}: expected a scalar")
    elif schema is int:
        _as_int(value, what)
    elif schema is bool and not isinstance(value, bool):
        raise ValueError(f"{what}: expected a boolean")


def _section(m: Mapping[str, Any] | None, key: str) -> Mapping[str, Any]:
    value = m.get(key) if m else None
    return value if isinstance(value, Mapping) else {}


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _opt_int(m: Mapping[str, Any] | None, key: str) -> int | None:
    value = m.get(key) if m else None
    return None if value is None else _as_int(value, key)


def _spec_enabled(spec: Mapping[str, Any] | None) -> bool:
    if spec is None:
        return False
    enabled = spec.get("enabled")
    return True if enabled is None else bool(enabled)


def find_pxc_yamls(root: str | os.PathLike) -> list[str]:
    """Return every PerconaXtraDBCluster list file under root, sorted by path."""
    return _find_named_files(root, PXC_FILE_NAME)


def _load_items(path: str) -> list[Any]:
    text = Path(path).read_text(encoding="utf-8", errors="replace")
    try:
        doc = _load_yaml(text)
        if doc is None:
            return []
        if not isinstance(doc, Mapping):
            raise ValueError("document: expected a mapping")
        items = doc.get("items")
        if items is None:
            return []
        if not isinstance(items, list):
            raise ValueError("items: expected a sequence")
        for item in items:
            _check(item, _CLUSTER_SCHEMA, "item")
        return items
    except (yaml.YAMLError, ValueError) as exc:
        raise ValueError(f"{path}: yaml: {exc}") from exc


def load_pxc_rows_from_dump(
    dump_root: str | os.PathLike,
    now: datetime,
    pods: PodLoader | None,
    cert: CertifiedImageCache | None,
) -> tuple[list[PXCRow], int]:
    """Build a row for every named cluster under dump_root; return (rows, file count)."""
    dump_abs = os.path.abspath(os.fspath(dump_root))
    paths = find_pxc_yamls(dump_abs)
    rows = []
    for path in paths:
        for item in _load_items(path):
            if not _text(_section(item, "metadata").get("name")).strip():
                continue
            rows.append(build_pxc_row(item, now, pods, dump_abs, cert))
    return rows, len(paths)


def build_pxc_row(
    cr: Mapping[str, Any],
    now: datetime,
    pods: PodLoader | None,
    dump_root: str | os.PathLike,
    cert: CertifiedImageCache | None,
) -> PXCRow:
    """Turn a decoded PerconaXtraDBCluster document into a report row."""
    _check(cr, _CLUSTER_SCHEMA, "item")
    meta, spec, status = _section(cr, "metadata"), _section(cr, "spec"), _section(cr, "status")
    name = _text(meta.get("name"))
    namespace = _text(meta.get("namespace"))
    haproxy_spec = spec.get("haproxy")
    proxysql_spec = spec.get("proxysql")
    pxc_spec = _section(spec, "pxc")
    hx_on = _spec_enabled(haproxy_spec)
    ps_on = _spec_enabled(proxysql_spec)
    cr_version_raw = _text(spec.get("crVersion")).strip()

    ready_status, ready_since, ready_class = pxc_ready_condition(status.get("conditions"), now)
    flags_ok, flags_escaped = unsafe_flags_cell(spec.get("unsafeFlags"))
    row = PXCRow(
        name=name,
        namespace=namespace,
        cr_version=cr_version_raw or _DASH,
        created=_text(meta.get("creationTimestamp")),
        ready_status=ready_status,
        ready_since=ready_since,
        ready_status_class=ready_class,
        pmm_enabled="yes" if _section(spec, "pmm").get("enabled") else "no",
        unsafe_flags_ok=flags_ok,
        unsafe_flags_escaped=flags_escaped,
        update_strategy=_text(spec.get("updateStrategy")).strip() or _DASH,
        haproxy_enabled=hx_on,
        proxysql_enabled=ps_on,
    )
    if hx_on:
        row.haproxy_size, row.haproxy_status, row.haproxy_version = sidecar_cols(
            _opt_int(haproxy_spec, "size") or 0,
            status.get("haproxy"),
            _text(haproxy_spec.get("image")),
        )
    if ps_on:
        row.proxysql_size, row.proxysql_status, row.proxysql_version = sidecar_cols(
            _opt_int(proxysql_spec, "size") or 0,
            status.get("proxysql"),
            _text(proxysql_spec.get("image")),
        )
    row.pxc_size, row.pxc_status, row.pxc_version = pxc_cols(pxc_spec, status.get("pxc"))
    (
        row.pxc_config_snippet,
        row.pxc_config_full_escaped,
        row.pxc_config_truncated,
        row.pxc_config_modal_id,
    ) = format_pxc_configuration_for_report(namespace, name, _text(pxc_spec.get("configuration")))

    if pods is not None:
        if hx_on:
            row.haproxy_pods = pods.pods_for_percona_component(namespace, name, "haproxy", now, dump_root)
        if ps_on:
            row.proxysql_pods = pods.pods_for_percona_component(
                namespace, name, "proxysql", now, dump_root
            )
        row.pxc_pods = pods.pods_for_percona_component(namespace, name, "pxc", now, dump_root)

    if cert is not None:
        refs, doc_url, error = cert.lookup(cr_version_raw)
        row.certified_doc_url = doc_url
        row.certified_fetch_err_escaped = _escape_html(error or "")
        list_ok = error is None and refs is not None
        images = pods.distinct_images_for_pxc_instance(namespace, name) if pods is not None else []
        row.image_cert_rows = [
            ImageCertRow(
                image_escaped=_escape_html(image.display),
                is_certified=list_ok and image.norm in refs,
            )
            for image in images
        ]
    return row


def _flag_is_true(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    if isinstance(value, (int, float)):
        return value != 0
    return False


def _flag_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return str(value).strip()


def unsafe_flags_cell(flags: Mapping[Any, Any] | None) -> tuple[bool, str]:
    """Return (True, '') when no unsafe flag is on, else (False, escaped 'key: value; …')."""
    if not flags:
        return True, ""
    active = sorted(
        f"{str(key).strip()}: {_flag_text(value)}"
        for key, value in flags.items()
        if _flag_is_true(value) and str(key).strip()
    )
    if not active:
        return True, ""
    return False, _escape_html("; ".join(active))


def pxc_ready_condition(
    conditions: Iterable[Mapping[str, Any]] | None, now: datetime
) -> tuple[str, str, str]:
    """Status, time in state and CSS class of the last 'ready' condition."""
    ready = None
    for condition in conditions or ():
        if condition and _text(condition.get("type")).strip().lower() == "ready":
            ready = condition
    if ready is None:
        return _DASH, _DASH, "status-muted"
    status = _text(ready.get("status")).strip()
    if not status:
        return _DASH, _DASH, "status-muted"
    if status.lower() == "true":
        status, css = "True", "status-true"
    elif status.lower() == "false":
        status, css = "False", "status-false"
    else:
        css = "status-muted"
    since = _DASH
    transition = _text(ready.get("lastTransitionTime"))
    if transition:
        try:
            since = humanize_duration_in_state(parse_rfc3339(transition.strip()), now)
        except ValueError:
            since = transition.strip()
    return status, since, css


def format_pxc_configuration_for_report(
    namespace: str, cr_name: str, config: str
) -> tuple[str, str, bool, str]:
    """Return (snippet, full escaped text if truncated, truncated flag, modal id)."""
    config = config.rstrip("\n")
    lines = config.split("\n")
    snippet, full_escaped, truncated = config, "", False
    if len(lines) > PXC_CONFIGURATION_MAX_LINES:
        snippet = "\n".join(lines[:PXC_CONFIGURATION_MAX_LINES])
        full_escaped = _escape_html(config)
        truncated = True
    modal_id = f"pxc-cfg-{sanitize_modal_fragment(namespace)}-{sanitize_modal_fragment(cr_name)}"
    return snippet, full_escaped, truncated, modal_id


def _size_text(spec_size: int, status: Mapping[str, Any] | None) -> str:
    ready = _opt_int(status, "ready")
    size = _opt_int(status, "size")
    if ready is not None and size is not None:
        return f"{ready} / {size}"
    if ready is not None:
        return f"{ready} / {spec_size}"
    return str(spec_size)


def sidecar_cols(
    spec_size: int, status: Mapping[str, Any] | None, image: str
) -> tuple[str, str, str]:
    """Size, status and version cells for an HAProxy or ProxySQL sidecar."""
    version = image_tag(image) or _DASH
    state = _text(status.get("status")).strip() if status else ""
    return _size_text(spec_size, status), state or _DASH, version


def pxc_cols(
    spec: Mapping[str, Any] | None, status: Mapping[str, Any] | None
) -> tuple[str, str, str]:
    """Size, status and version cells for the PXC pods."""
    if spec is None:
        return _DASH, _DASH, _DASH
    version = _text(status.get("version")).strip() if status else ""
    version = version or image_tag(_text(spec.get("image"))) or _DASH
    state = _text(status.get("status")).strip() if status else ""
    spec_size = _opt_int(spec, "size") or 0
    return _size_text(spec_size, status), state or _DASH, version


def image_tag(image: str) -> str:
    """Tag of an image reference, or its last path part when it has no tag."""
    image = image.strip()
    if not image:
        return ""
    image = image.rsplit("/", 1)[-1]
    if ":" in image:
        return image.rsplit(":", 1)[1].strip()
    return image