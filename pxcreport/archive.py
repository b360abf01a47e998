"""Unpacking of gzip-compressed tar archives holding a cluster dump."""

from __future__ import annotations

import os
import shutil
import tarfile
from pathlib import Path


class ArchiveError(Exception):
    """Raised when an archive cannot be unpacked safely."""


def looks_like_cluster_archive(path: str | os.PathLike) -> bool:
    """Tell whether a path names a .tar.gz or .tgz file."""
    lowered = os.fspath(path).lower()
    return lowered.endswith(".tar.gz") or lowered.endswith(".tgz")


def safe_extract_path(dest_dir: str | os.PathLike, name: str) -> Path:
    """Return where an archive entry lands under dest_dir, refusing escapes."""
    dest = os.path.normpath(os.fspath(dest_dir))
    parts = name.split("/")
    if ".." in parts:
        raise ArchiveError("illegal path component")
    target = os.path.normpath(os.path.join(dest, *parts))
    rel = os.path.relpath(target, dest)
    if rel == ".." or rel.startswith(".." + os.sep):
        raise ArchiveError("path escapes destination")
    return Path(target)


def clear_path_for_regular_file(target: str | os.PathLike) -> None:
    """Remove an empty directory standing where a regular file must go."""
    path = Path(target)
    if not os.path.lexists(path) or not path.is_dir() or path.is_symlink():
        return
    if any(path.iterdir()):
        raise ArchiveError(
            f"cannot create file at {os.fspath(path)!r}: a non-empty directory already exists "
            "(tar has conflicting path entries: both a directory and a file for this name)"
        )
    path.rmdir()


def infer_dump_root(extract_dir: str | os.PathLike) -> Path:
    """Return the single top-level directory of extract_dir, or extract_dir itself."""
    root = Path(extract_dir)
    with os.scandir(root) as it:
        entries = list(it)
    if len(entries) == 1 and entries[0].is_dir(follow_symlinks=False):
        return root / entries[0].name
    return root


def _write_member(archive: tarfile.TarFile, member: tarfile.TarInfo, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    clear_path_for_regular_file(target)
    fd = os.open(target, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, member.mode & 0o777)
    with os.fdopen(fd, "wb") as out:
        # Hard-link entries carry no data of their own and come out empty.
        if member.isreg():
            source = archive.extractfile(member)
            if source is not None:
                with source:
                    shutil.copyfileobj(source, out)


def extract_cluster_archive(archive_path: str | os.PathLike, dest_dir: str | os.PathLike) -> Path:
    """Unpack a .tar.gz into an existing dest_dir and return the logical dump root."""
    with tarfile.open(archive_path, "r:gz") as archive:
        for member in archive:
            if not member.name:
                continue
            clean = member.name.removeprefix("/")
            if clean in ("", "."):
                continue
            try:
                target = safe_extract_path(dest_dir, clean)
            except ArchiveError as exc:
                raise ArchiveError(f"{exc}: {member.name!r}") from exc
            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
            elif member.isreg() or member.islnk():
                _write_member(archive, member, target)
            # Symlinks, devices and other special entries are skipped.
    return infer_dump_root(dest_dir)