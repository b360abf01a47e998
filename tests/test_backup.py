import html
from datetime import datetime, timezone

import pytest
import yaml

from pxcreport.backup import (
    PXC_BACKUP_FILE_NAME,
    backup_creation_time,
    build_backup_row,
    find_pxc_backup_yamls,
    format_backup_storage,
    load_backup_rows_from_dump,
    safe_backup_manifest_store_id,
)
from pxcreport.pods import PodItem, PodLoader, safe_pod_log_store_id
from pxcreport.textutil import humanize_duration_in_state, parse_rfc3339

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


def _backup(name, created=None, spec=None, status=None):
    meta = {"name": name, "namespace": "default"}
    if created is not None:
        meta["creationTimestamp"] = created
    doc = {
        "apiVersion": "pxc.percona.com/v1",
        "kind": "PerconaXtraDBClusterBackup",
        "metadata": meta,
    }
    if spec is not None:
        doc["spec"] = spec
    if status is not None:
        doc["status"] = status
    return doc


NEW = _backup(
    "b-new",
    "2024-05-30T00:00:00Z",
    spec={"pxcCluster": "cluster1", "storageName": "s3-us-west"},
    status={
        "state": "Succeeded",
        "destination": "s3://bucket/path",
        "storageName": "s3-us-west",
        "storage_type": "s3",
    },
)


def _write_dump(root, items):
    target = root / "default"
    target.mkdir(parents=True, exist_ok=True)
    (target / PXC_BACKUP_FILE_NAME).write_text(
        yaml.safe_dump({"apiVersion": "v1", "kind": "List", "items": items})
    )


@pytest.fixture
def dump(tmp_path):
    items = [
        _backup("b-a", "2024-05-01T00:00:00Z"),
        NEW,
        _backup("b-none"),
        _backup("b-z", "2024-05-01T00:00:00Z"),
        {"metadata": {"namespace": "default"}},
        "junk",
        {"metadata": {"name": ["not", "a", "string"]}},
    ]
    _write_dump(tmp_path, items)
    return tmp_path


def test_rows_sorted_newest_first_then_name_descending(dump):
    rows, count = load_backup_rows_from_dump(dump, NOW, None)
    assert [r.name for r in rows] == ["b-new", "b-z", "b-a", "b-none"]
    assert count == 1


def test_row_fields(dump):
    rows, _ = load_backup_rows_from_dump(dump, NOW, None)
    row = rows[0]
    assert row.namespace == "default"
    assert row.cluster == "cluster1"
    assert row.storage == "s3-us-west (s3)"
    assert row.destination == "s3://bucket/path"
    assert row.status == "Succeeded"
    assert row.age == humanize_duration_in_state(parse_rfc3339("2024-05-30T00:00:00Z"), NOW)
    assert row.log_pod_name == ""
    assert row.has_pod_log is False


def test_row_defaults_for_missing_fields(dump):
    rows, _ = load_backup_rows_from_dump(dump, NOW, None)
    row = rows[-1]
    assert (row.cluster, row.storage, row.destination, row.status, row.age) == ("—",) * 5


def test_manifest_round_trips(dump):
    rows, _ = load_backup_rows_from_dump(dump, NOW, None)
    row = rows[0]
    assert "apiVersion:" in row.backup_manifest_escaped
    assert "kind:" in row.backup_manifest_escaped
    manifest = html.unescape(row.backup_manifest_escaped)
    assert manifest.endswith("\n") and not manifest.endswith("\n\n")
    assert yaml.safe_load(manifest) == NEW
    assert row.backup_manifest_modal_id == safe_backup_manifest_store_id("default", "b-new")


def test_pod_log_attached_from_backup_pod(dump):
    pod_name = "xb-b-new-abc"
    log_dir = dump / "default" / pod_name
    log_dir.mkdir(parents=True)
    (log_dir / "logs.txt").write_text("line <1>\n")
    pods = PodLoader(
        [PodItem(name=pod_name, namespace="default", labels={"percona.com/backup-name": "b-new"})]
    )
    rows, _ = load_backup_rows_from_dump(dump, NOW, pods)
    row = rows[0]
    assert row.log_pod_name == pod_name
    assert row.has_pod_log is True
    assert row.pod_log_escaped == "line &lt;1&gt;\n"
    assert row.pod_log_modal_id == safe_pod_log_store_id("default", pod_name)
    assert all(not r.has_pod_log for r in rows[1:])


def test_empty_dump(tmp_path):
    assert load_backup_rows_from_dump(tmp_path, NOW, None) == ([], 0)


def test_find_sorted(tmp_path):
    for sub in ("b", "a/deep"):
        d = tmp_path / sub
        d.mkdir(parents=True)
        (d / PXC_BACKUP_FILE_NAME).write_text("items: []\n")
    (tmp_path / "other.yaml").write_text("items: []\n")
    found = find_pxc_backup_yamls(tmp_path)
    assert found == sorted(found)
    assert len(found) == 2
    assert all(p.endswith(PXC_BACKUP_FILE_NAME) for p in found)


@pytest.mark.parametrize("text", ["items: [unclosed\n", "- a\n- b\n"])
def test_bad_documents_raise(tmp_path, text):
    d = tmp_path / "ns"
    d.mkdir()
    (d / PXC_BACKUP_FILE_NAME).write_text(text)
    with pytest.raises(ValueError):
        load_backup_rows_from_dump(tmp_path, NOW, None)


@pytest.mark.parametrize(
    "item, expected",
    [
        ({"status": {"storageName": "fs-pvc", "storage_type": "filesystem"}}, "fs-pvc (filesystem)"),
        ({"spec": {"storageName": "fs-pvc"}}, "fs-pvc"),
        ({"status": {"storage_type": "s3"}}, "s3"),
        ({}, "—"),
        (None, "—"),
    ],
)
def test_format_backup_storage(item, expected):
    assert format_backup_storage(item) == expected


def test_backup_creation_time():
    ts = "2024-05-30T00:00:00Z"
    assert backup_creation_time({"metadata": {"creationTimestamp": ts}}) == parse_rfc3339(ts)
    broken = backup_creation_time({"metadata": {"creationTimestamp": "junk"}})
    assert broken == backup_creation_time({})
    assert broken < parse_rfc3339("1970-01-01T00:00:00Z")


def test_safe_backup_manifest_store_id():
    assert safe_backup_manifest_store_id("ns", "a.b") == "backupyaml-ns-a-b"
    assert safe_backup_manifest_store_id("", "x") == "backupyaml-x"


def test_build_backup_row_without_pods(tmp_path):
    row = build_backup_row(NEW, NOW, None, tmp_path, "kind: X\n")
    assert row.name == "b-new"
    assert row.log_pod_name == ""
    assert row.backup_manifest_escaped == "kind: X\n"