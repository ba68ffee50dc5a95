"""Content fingerprints for layers.

A layer's *source digest* covers only the files its include/exclude sets
select. Its *fingerprint* chains that digest with the parent's fingerprint,
so any change upstream invalidates every descendant.
"""

from __future__ import annotations

import fnmatch
import hashlib
import os
from pathlib import Path
from typing import Iterable

from layerkit.errors import SourceUnreadableError
from layerkit.layer_types import Layer, normalize_source_entry

FINGERPRINT_SEED = "layerkit/v1"
DEFAULT_IGNORES: tuple[str, ...] = (".git/",)

_GLOB_CHARS = frozenset("*?[")
_CHUNK_SIZE = 1024 * 1024


def _is_glob(entry: str) -> bool:
    return any(ch in _GLOB_CHARS for ch in entry)


def _walk_files(directory: Path, root: Path, excludes: tuple[str, ...] = ()) -> Iterable[str]:
    for dirpath, dirnames, filenames in os.walk(directory):
        current = Path(dirpath)
        # excluded directories are never descended into
        dirnames[:] = sorted(
            name for name in dirnames if not is_excluded((current / name).relative_to(root).as_posix(), excludes)
        )
        for filename in filenames:
            full = current / filename
            if full.is_file():
                yield full.relative_to(root).as_posix()


def _expand_include(layer: Layer, entry: str, root: Path, excludes: tuple[str, ...] = ()) -> list[str]:
    if _is_glob(entry):
        matches: list[str] = []
        for candidate in root.glob(entry.rstrip("/")):
            if candidate.is_dir():
                matches.extend(_walk_files(candidate, root, excludes))
            elif candidate.is_file():
                matches.append(candidate.relative_to(root).as_posix())
        if not matches:
            raise SourceUnreadableError(layer.name, entry, "glob matched no files")
        return matches

    target = root if entry == "." else root / entry.rstrip("/")
    if target.is_dir():
        return list(_walk_files(target, root, excludes))
    if entry.endswith("/"):
        reason = "not a directory" if target.exists() else "no such directory"
        raise SourceUnreadableError(layer.name, entry, reason)
    if target.is_file():
        return [target.relative_to(root).as_posix()]
    raise SourceUnreadableError(layer.name, entry, "no such file or directory")


def is_excluded(path: str, patterns: Iterable[str]) -> bool:
    """Return True when relative POSIX `path` is covered by any exclude entry."""

    for pattern in patterns:
        if pattern == ".":
            return True
        if pattern.endswith("/"):
            base = pattern[:-1]
            if path == base or path.startswith(base + "/"):
                return True
            if _is_glob(base) and _glob_hits_ancestor(path, base):
                return True
            continue
        if _is_glob(pattern):
            if fnmatch.fnmatchcase(path, pattern) or _glob_hits_ancestor(path, pattern):
                return True
            continue
        if path == pattern or path.startswith(pattern + "/"):
            return True
    return False


def _glob_hits_ancestor(path: str, pattern: str) -> bool:
    parts = path.split("/")
    for depth in range(1, len(parts)):
        if fnmatch.fnmatchcase("/".join(parts[:depth]), pattern):
            return True
    return False


def collect_sources(
    layer: Layer, root: str | os.PathLike[str], *, ignore: Iterable[str] = DEFAULT_IGNORES
) -> tuple[str, ...]:
    """Return the sorted relative paths of every file `layer` depends on."""

    root_path = Path(root)
    if not root_path.is_dir():
        raise SourceUnreadableError(layer.name, str(root), "source root is not a directory")

    excludes = (*layer.exclude, *(normalize_source_entry(p, field_name="ignore") for p in ignore))
    matched: set[str] = set()
    for entry in layer.source_entries:
        for path in _expand_include(layer, entry, root_path, excludes):
            if entry == layer.dockerfile or not is_excluded(path, excludes):
                matched.add(path)
    return tuple(sorted(matched))


def _file_digest(layer: Layer, path: Path, rel: str) -> str:
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as exc:
        raise SourceUnreadableError(layer.name, rel, exc.strerror or str(exc)) from exc
    return digest.hexdigest()


def source_digest(
    layer: Layer,
    root: str | os.PathLike[str],
    *,
    sources: Iterable[str] | None = None,
    ignore: Iterable[str] = DEFAULT_IGNORES,
) -> str:
    """SHA-256 over `path NUL sha256(content) LF` for each source, sorted by path."""

    root_path = Path(root)
    paths = sorted(sources) if sources is not None else collect_sources(layer, root_path, ignore=ignore)
    digest = hashlib.sha256()
    for rel in paths:
        digest.update(rel.encode("utf-8"))
        digest.update(b"\0")
        digest.update(_file_digest(layer, root_path / rel, rel).encode("ascii"))
        digest.update(b"\n")
    return digest.hexdigest()


def chain_fingerprint(name: str, digest: str, parent_fingerprint: str | None) -> str:
    payload = "\n".join(
        (FINGERPRINT_SEED, name, digest, parent_fingerprint or FINGERPRINT_SEED)
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
