"""Report rows for Kubernetes cluster dumps with Percona XtraDB Cluster resources."""

__version__ = "0.1.0"