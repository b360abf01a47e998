"""PerconaXtraDBClusterBackup resources from a cluster dump, turned into report rows."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from pxcreport.pods import (
    PodLoader,
    _escape_html,
    _find_named_files,
    _load_yaml,
    _mapping,
    _scalar,
    read_pod_log_from_dump,
    safe_pod_log_store_id,
)
from pxcreport.textutil import humanize_duration_in_state, parse_rfc3339, safe_store_id

PXC_BACKUP_FILE_NAME = "perconaxtradbclusterbackups.pxc.percona.com.yaml"
_DASH = "—"
_ZERO_TIME = datetime.min.replace(tzinfo=timezone.utc)

_ITEM_FIELDS = {
    "metadata": ("name", "namespace", "creationTimestamp"),
    "spec": ("pxcCluster", "storageName"),
    "status": ("state", "destination", "storageName", "storage_type", "completed", "lastscheduled"),
}


@dataclass
class BackupRow:
    """One line of the backups table in the report."""

    name: str
    namespace: str
    cluster: str
    storage: str
    destination: str
    status: str
    age: str
    log_pod_name: str = ""
    has_pod_log: bool = False
    pod_log_escaped: str = ""
    pod_log_modal_id: str = ""
    backup_manifest_escaped: str = ""
    backup_manifest_modal_id: str = ""


def _check_item(item: Mapping[str, Any]) -> None:
    """Raise ValueError where a backup document does not fit the expected layout."""
    for section, keys in _ITEM_FIELDS.items():
        fields = _mapping(item.get(section), section)
        for key in keys:
            _scalar(fields.get(key), f"{section}.{key}")


def _field(item: Any, section: str, key: str) -> str:
    fields = item.get(section) if isinstance(item, Mapping) else None
    if not isinstance(fields, Mapping):
        return ""
    try:
        return _scalar(fields.get(key), f"{section}.{key}")
    except ValueError:
        return ""


def find_pxc_backup_yamls(root: str | os.PathLike) -> list[str]:
    """Return every PerconaXtraDBClusterBackup list file under root, sorted by path."""
    return _find_named_files(root, PXC_BACKUP_FILE_NAME)


def safe_backup_manifest_store_id(namespace: str, backup_name: str) -> str:
    """HTML id for the hidden store of a backup resource's YAML."""
    return safe_store_id("backupyaml-", namespace, backup_name)


def backup_creation_time(item: Mapping[str, Any] | None) -> datetime:
    """Creation time of a backup; the earliest possible time when missing or malformed."""
    if item is None:
        return _ZERO_TIME
    text = _field(item, "metadata", "creationTimestamp").strip()
    if not text:
        return _ZERO_TIME
    try:
        return parse_rfc3339(text)
    except ValueError:
        return _ZERO_TIME


def format_backup_storage(item: Mapping[str, Any] | None) -> str:
    """Storage name and type of a backup, e.g. 'fs-pvc (filesystem)'."""
    if item is None:
        return _DASH
    name = _field(item, "status", "storageName").strip() or _field(item, "spec", "storageName").strip()
    kind = _field(item, "status", "storage_type").strip()
    if name and kind:
        return f"{name} ({kind})"
    return name or kind or _DASH


def build_backup_row(
    item: Mapping[str, Any],
    now: datetime,
    pods: PodLoader | None,
    dump_root: str | os.PathLike,
    manifest_yaml: str,
) -> BackupRow:
    """Turn a decoded backup document into a report row."""
    namespace = _field(item, "metadata", "namespace").strip()
    name = _field(item, "metadata", "name").strip()
    created = _field(item, "metadata", "creationTimestamp")
    age = _DASH
    if created:
        try:
            age = humanize_duration_in_state(parse_rfc3339(created.strip()), now)
        except ValueError:
            pass
    row = BackupRow(
        name=name,
        namespace=namespace,
        cluster=_field(item, "spec", "pxcCluster").strip() or _DASH,
        storage=format_backup_storage(item),
        destination=_field(item, "status", "destination").strip() or _DASH,
        status=_field(item, "status", "state").strip() or _DASH,
        age=age,
        backup_manifest_escaped=_escape_html(manifest_yaml),
        backup_manifest_modal_id=safe_backup_manifest_store_id(namespace, name),
    )
    pod_name = pods.pod_name_for_backup_cr(namespace, name) if pods is not None else ""
    row.log_pod_name = pod_name
    if pod_name:
        log = read_pod_log_from_dump(dump_root, namespace, pod_name)
        row.has_pod_log = log is not None
        row.pod_log_escaped = log or ""
        row.pod_log_modal_id = safe_pod_log_store_id(namespace, pod_name)
    return row


def _dump_manifest(item: Mapping[str, Any]) -> str:
    text = yaml.dump(
        dict(item),
        Dumper=yaml.SafeDumper,
        default_flow_style=False,
        sort_keys=True,
        allow_unicode=True,
    )
    return text.rstrip("\n") + "\n"


def _load_backup_items(path: str) -> list[tuple[datetime, str, Mapping[str, Any], str]]:
    text = Path(path).read_text(encoding="utf-8", errors="replace")
    try:
        doc = _load_yaml(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"{path}: yaml: {exc}") from exc
    if doc is None:
        return []
    if not isinstance(doc, Mapping):
        raise ValueError(f"{path}: yaml: document is not a mapping")
    items = doc.get("items")
    if not isinstance(items, list):
        return []
    found = []
    for item in items:
        if not isinstance(item, Mapping) or not all(isinstance(k, str) for k in item):
            continue
        try:
            manifest = _dump_manifest(item)
            _check_item(item)
        except (yaml.YAMLError, TypeError, ValueError):
            continue
        name = _field(item, "metadata", "name")
        if not name.strip():
            continue
        found.append((backup_creation_time(item), name, item, manifest))
    return found


def load_backup_rows_from_dump(
    dump_root: str | os.PathLike, now: datetime, pods: PodLoader | None
) -> tuple[list[BackupRow], int]:
    """Build rows for every named backup under dump_root, newest first; return (rows, file count)."""
    dump_abs = os.path.abspath(os.fspath(dump_root))
    paths = find_pxc_backup_yamls(dump_abs)
    pending = [entry for path in paths for entry in _load_backup_items(path)]
    pending.sort(key=lambda entry: (entry[0], entry[1]), reverse=True)
    rows = [build_backup_row(item, now, pods, dump_abs, manifest) for _, _, item, manifest in pending]
    return rows, len(paths)