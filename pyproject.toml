[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pxcreport"
version = "0.1.0"
description = "Report data for Kubernetes cluster dumps with Percona XtraDB Cluster resources"
requires-python = ">=3.10"
keywords = ["kubernetes", "percona", "xtradb", "pxc", "report", "cluster-dump"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["pxcreport"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
