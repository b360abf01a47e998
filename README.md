# pxcreport

`pxcreport` reads a Kubernetes cluster dump and turns what it finds into
report rows: plain dataclasses holding display-ready text, with HTML-escaped
fields where the text is meant to go into a page. It covers:

- **Nodes** (`pxcreport.nodes`): role, internal IP, instance type, OS, kernel,
  kubelet version, CPU / memory / ephemeral storage / pod capacity, and the
  `Ready`, `PIDPressure`, `DiskPressure` and `MemoryPressure` conditions with
  the time spent in each state. A row whose pressure condition is true gets
  the `pressure-alert` class.
- **Pods** (`pxcreport.pods`): every `pods.yaml` under the dump root, matched
  to cluster components by the `app.kubernetes.io/instance` and
  `app.kubernetes.io/component` labels, with readiness, restarts, age, IP,
  node, container resources and the pod log.
- **Percona XtraDB Clusters** (`pxcreport.pxc`) from
  `perconaxtradbclusters.pxc.percona.com.yaml` files: CR version, readiness,
  PMM, unsafe flags, update strategy, the HAProxy, ProxySQL and PXC components
  with their pods, and the MySQL configuration (cut to five lines, with the
  full text kept when longer).
- **Certified images** (`pxcreport.certified`): the container images of each
  cluster's pods compared with the certified image list published in the
  operator release notes for the cluster's `spec.crVersion`. Lists are fetched
  over HTTPS once per version and cached.
- **Backups** (`pxcreport.backup`) from
  `perconaxtradbclusterbackups.pxc.percona.com.yaml` files, newest first, with
  the backup manifest re-serialized as YAML and the backup job's pod log.
- **Archives** (`pxcreport.archive`): `.tar.gz` / `.tgz` dumps can be unpacked
  with `extract_cluster_archive`, which refuses entries that escape the
  destination, skips symlinks and devices, and returns the dump root (the
  single top-level directory, if there is one).

## Installation

```
pip install .
```

## Usage

```python
from datetime import datetime, timezone

from pxcreport.backup import load_backup_rows_from_dump
from pxcreport.certified import CertifiedImageCache
from pxcreport.nodes import load_nodes_from_yaml
from pxcreport.pods import load_pod_loader
from pxcreport.pxc import load_pxc_rows_from_dump

now = datetime.now(timezone.utc)
nodes = load_nodes_from_yaml("cluster-dump/nodes.yaml", now)
pods = load_pod_loader("cluster-dump")
clusters, cluster_files = load_pxc_rows_from_dump(
    "cluster-dump", now, pods, CertifiedImageCache(enabled=False)
)
backups, backup_files = load_backup_rows_from_dump("cluster-dump", now, pods)

for cluster in clusters:
    print(cluster.name, cluster.ready_status, cluster.pxc_size, cluster.pxc_version)
```

`CertifiedImageCache(enabled=False)` keeps everything offline; each cluster row
then carries an explanatory message in `certified_fetch_err_escaped` and no
image is marked certified. `CertifiedImageCache.lookup` returns
`(refs or None, documentation URL, error message or None)`.

Pod logs are read from `<dump>/<namespace>/<pod>/logs.txt`, or from
`<dump>/<namespace>/<pod>/log` when the first is missing. Log lines that are
JSON objects with a non-empty `log` field are replaced by that message.

Malformed YAML in a pods, cluster or nodes file raises `ValueError` naming the
file; unsafe archive entries raise `pxcreport.archive.ArchiveError`.

## What it does not do

The package has no command-line program and does not render an HTML page:
it stops at the row data. Laying the rows out in a document is left to the
caller.

## Running the tests

```
pip install ".[test]"
pytest
```