"""Builder image layers.

Each layer corresponds to one image built from `<dockerfiles_dir>/<name>.Dockerfile`.
Include lists should stay minimal so caching is effective; excludes are
applied after inclusion, so a layer may include `.` and filter out the rest.
"""

from __future__ import annotations

import posixpath
from collections.abc import Mapping, Sequence
from typing import Any

from layerkit import Layer, LayerRegistry

# (name, parent, include, exclude, doc)
DEFAULT_PIPELINE: tuple[tuple[str, str | None, tuple[str, ...], tuple[str, ...], str], ...] = (
    ("base", None, (), (), "Base dependencies like libraries and tools."),
    ("yarn", "base", ("ui/yarn.lock", "ui/package.json"), (), "UI dependencies for the ui layer."),
    ("ui", "yarn", ("ui/",), (), "Compiled UI code from ui/."),
    ("static", "ui", (".",), ("release/", ".circleci/"), "Final image used to compile the binary."),
)

_LAYER_KEYS = frozenset({"name", "parent", "include", "exclude", "dockerfile", "doc"})


def dockerfile_for(name: str, dockerfiles_dir: str) -> str:
    return posixpath.join(dockerfiles_dir, f"{name}.Dockerfile") if dockerfiles_dir else f"{name}.Dockerfile"


def default_layers(*, dockerfiles_dir: str) -> tuple[Layer, ...]:
    return tuple(
        Layer(
            name=name,
            parent=parent,
            include=include,
            exclude=exclude,
            dockerfile=dockerfile_for(name, dockerfiles_dir),
            doc=doc,
        )
        for name, parent, include, exclude, doc in DEFAULT_PIPELINE
    )


def _entries(value: Any, path: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(value.split())
    if isinstance(value, Sequence):
        out: list[str] = []
        for idx, item in enumerate(value):
            if not isinstance(item, str):
                raise ValueError(f"Invalid config type for {path}[{idx}]: expected string")
            out.append(item)
        return tuple(out)
    raise ValueError(f"Invalid config type for {path}: expected list of paths")


def layers_from_config(raw: Any, *, dockerfiles_dir: str) -> tuple[Layer, ...]:
    """Parse the `layers:` list.

    `dockerfile` defaults to `<dockerfiles_dir>/<name>.Dockerfile`; set it to
    an empty string to declare a layer without its own Dockerfile.
    """

    if not isinstance(raw, Sequence) or isinstance(raw, str):
        raise ValueError("Invalid config type for layers: expected list of mappings")
    if not raw:
        raise ValueError("Invalid config value for layers: at least one layer is required")

    layers: list[Layer] = []
    for idx, item in enumerate(raw):
        path = f"layers[{idx}]"
        if not isinstance(item, Mapping):
            raise ValueError(f"Invalid config type for {path}: expected mapping")
        unknown = sorted(str(key) for key in item if key not in _LAYER_KEYS)
        if unknown:
            raise ValueError(f"Unknown keys in {path}: {', '.join(unknown)}")

        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValueError(f"Invalid config value for {path}.name: must be a non-empty string")
        name = name.strip()

        dockerfile_raw = item.get("dockerfile", None)
        if dockerfile_raw is None:
            dockerfile = dockerfile_for(name, dockerfiles_dir)
        elif isinstance(dockerfile_raw, str):
            dockerfile = dockerfile_raw.strip() or None
        else:
            raise ValueError(f"Invalid config type for {path}.dockerfile: expected string")

        try:
            layers.append(
                Layer(
                    name=name,
                    parent=item.get("parent"),
                    include=_entries(item.get("include"), f"{path}.include"),
                    exclude=_entries(item.get("exclude"), f"{path}.exclude"),
                    dockerfile=dockerfile,
                    doc=item.get("doc"),
                )
            )
        except TypeError as exc:
            raise ValueError(f"Invalid config for {path}: {exc}") from exc
    return tuple(layers)


def build_registry(layers: Sequence[Layer]) -> LayerRegistry:
    """Register `layers` in order; parents must be declared first."""

    return LayerRegistry.from_layers(layers)
