from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Protocol, TypeAlias

from layerkit.cancel import CancelToken

LayerState: TypeAlias = Literal["unknown", "stale", "building", "fresh", "failed"]


def normalize_source_entry(entry: str, *, field_name: str) -> str:
    """Normalize an include/exclude entry to a relative POSIX path or glob.

    A trailing `/` is preserved so directory entries stay recognisable, and
    `.` (or `./`) stands for the whole source root.
    """

    if not isinstance(entry, str):
        raise TypeError(f"Layer.{field_name} entries must be strings (got {type(entry).__name__})")
    raw = entry.strip().replace("\\", "/")
    if not raw:
        raise ValueError(f"Layer.{field_name} entries cannot be empty")
    if raw.startswith("/"):
        raise ValueError(f"Layer.{field_name} entries must be relative: {entry!r}")

    is_dir = raw.endswith("/")
    normalized = posixpath.normpath(raw)
    if normalized == ".":
        return "."
    if normalized == ".." or normalized.startswith("../"):
        raise ValueError(f"Layer.{field_name} entries must stay inside the source root: {entry!r}")
    return normalized + "/" if is_dir else normalized


def _normalize_entries(values: Any, *, field_name: str) -> tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        values = values.split()
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        normalized = normalize_source_entry(value, field_name=field_name)
        if normalized in seen:
            continue
        seen.add(normalized)
        out.append(normalized)
    return tuple(out)


@dataclass(frozen=True)
class Layer:
    name: str
    parent: str | None = None
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    dockerfile: str | None = None
    doc: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise TypeError("Layer.name must be a non-empty string")
        object.__setattr__(self, "name", self.name.strip())

        if self.parent is not None:
            if not isinstance(self.parent, str):
                raise TypeError("Layer.parent must be a string or None")
            parent = self.parent.strip() or None
            if parent == self.name:
                raise ValueError(f"Layer {self.name} cannot be its own parent")
            object.__setattr__(self, "parent", parent)

        object.__setattr__(self, "include", _normalize_entries(self.include, field_name="include"))
        object.__setattr__(self, "exclude", _normalize_entries(self.exclude, field_name="exclude"))

        if self.dockerfile is not None:
            dockerfile = normalize_source_entry(self.dockerfile, field_name="dockerfile")
            if dockerfile.endswith("/") or dockerfile == ".":
                raise ValueError(f"Layer.dockerfile must name a file: {self.dockerfile!r}")
            object.__setattr__(self, "dockerfile", dockerfile)

        if self.doc is not None and (not isinstance(self.doc, str) or not self.doc.strip()):
            raise TypeError("Layer.doc must be a non-empty string or None")

    @property
    def source_entries(self) -> tuple[str, ...]:
        """Include entries plus the layer's own Dockerfile, when declared."""

        if self.dockerfile and self.dockerfile not in self.include:
            return (*self.include, self.dockerfile)
        return self.include


@dataclass(frozen=True)
class BuildRequest:
    """Everything a build action needs to materialize one layer."""

    layer: Layer
    fingerprint: str
    parent_fingerprint: str | None
    sources: tuple[str, ...]
    cancel: CancelToken = field(default_factory=CancelToken)


class BuildAction(Protocol):
    def __call__(self, request: BuildRequest) -> bool | None:
        ...


class ArtifactVerifier(Protocol):
    """Optional `verify` hook on a build action.

    Called for layers whose marker matches; returning False means the artifact
    the marker names is gone and the layer must be rebuilt.
    """

    def __call__(self, request: BuildRequest) -> bool:
        ...


TransitionHook: TypeAlias = Callable[[str, LayerState, LayerState], None]
