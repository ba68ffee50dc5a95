"""Locating, reading and layering `config/build.yaml`."""

from __future__ import annotations

import os
from pathlib import Path
from collections.abc import Mapping
from typing import Any

import yaml

CONFIG_ENV_VAR = "RELEASE_BUILD_CONFIG"
CONFIG_DIR = "config"
CONFIG_NAME = "build"
FALLBACK_ROOT_MARKERS = ("pyproject.toml", ".git")


def find_repo_root(
    start: str | os.PathLike[str] | None = None,
    *,
    config_name: str = CONFIG_NAME,
) -> str:
    """Nearest ancestor holding `config/<config_name>.yaml`.

    Without one, the nearest ancestor holding `pyproject.toml` or `.git`.
    """

    start_path = Path(start or os.getcwd()).resolve()
    if start_path.is_file():
        start_path = start_path.parent
    candidates = (start_path, *start_path.parents)

    config_marker = Path(CONFIG_DIR) / f"{config_name}.yaml"
    for candidate in candidates:
        if (candidate / config_marker).is_file():
            return str(candidate)
    for candidate in candidates:
        if (candidate / "pyproject.toml").is_file() or (candidate / ".git").exists():
            return str(candidate)

    raise FileNotFoundError(
        "Cannot locate project root: searched from "
        f"{start_path} for {config_marker.as_posix()}, {', '.join(FALLBACK_ROOT_MARKERS)}"
    )


def read_config_file(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        raise FileNotFoundError(f"Build config not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if payload is None:
        return {}
    if not isinstance(payload, Mapping):
        raise ValueError(
            f"Build config must contain a YAML mapping of sections, got {type(payload).__name__}: {path}"
        )
    return dict(payload)


def merge_overlay(base: Mapping[str, Any], overlay: Mapping[str, Any], *, path: str = "") -> dict[str, Any]:
    """Layer `overlay` (usually `build.local.yaml`) over `base`.

    Sections merge key by key and a null value drops the key so its default
    applies again. `layers` entries are matched by `name`: a matching entry
    updates that layer and a new name is appended to the end of the chain.
    Any other list is replaced as a whole.
    """

    merged: dict[str, Any] = dict(base)
    for key, value in overlay.items():
        key_path = f"{path}.{key}" if path else str(key)
        if value is None:
            merged.pop(key, None)
            continue

        current = merged.get(key)
        if current is None:
            merged[key] = value
        elif key == "layers" and not path:
            merged[key] = _merge_layers(current, value)
        elif isinstance(current, Mapping):
            if not isinstance(value, Mapping):
                raise ValueError(
                    f"Cannot merge config overlay at {key_path}: expected a mapping, got {type(value).__name__}"
                )
            merged[key] = merge_overlay(current, value, path=key_path)
        elif isinstance(value, Mapping) or isinstance(current, list) != isinstance(value, list):
            raise ValueError(
                f"Cannot merge config overlay at {key_path}: "
                f"{type(current).__name__} overlaid with {type(value).__name__}"
            )
        else:
            merged[key] = value
    return merged


def _merge_layers(base: Any, overlay: Any) -> list[Any]:
    if not isinstance(base, list) or not isinstance(overlay, list):
        raise ValueError("Cannot merge config overlay at layers: both sides must be lists of layers")

    merged: list[Any] = [dict(entry) if isinstance(entry, Mapping) else entry for entry in base]
    position = {entry.get("name"): idx for idx, entry in enumerate(merged) if isinstance(entry, Mapping)}
    for idx, entry in enumerate(overlay):
        name = entry.get("name") if isinstance(entry, Mapping) else None
        if not isinstance(name, str) or not name.strip():
            raise ValueError(f"Cannot merge config overlay at layers[{idx}]: overlay layers need a name")
        if name in position:
            merged[position[name]] = merge_overlay(merged[position[name]], entry, path=f"layers[{name}]")
        else:
            position[name] = len(merged)
            merged.append(dict(entry))
    return merged


def _base_dir_for(config_dir: str) -> str:
    # <project>/config/build.yaml anchors paths at <project>
    if os.path.basename(os.path.normpath(config_dir)) == CONFIG_DIR:
        return os.path.dirname(os.path.normpath(config_dir))
    return config_dir


def resolve_config_files(
    *,
    config_path: str | os.PathLike[str] | None = None,
    env_var: str | None = CONFIG_ENV_VAR,
    config_name: str = CONFIG_NAME,
    config_rel_path: str = CONFIG_DIR,
    start_dir: str | os.PathLike[str] | None = None,
) -> tuple[str, list[str], str]:
    """Return `(mode, paths, base_dir)`: which files to load, in merge order.

    `base_dir` is what relative `paths.*` entries resolve against: the project
    that owns the `config/` directory, or the config file's own directory when
    it is kept somewhere else.
    """

    explicit_path = None
    if config_path is not None:
        explicit_path = str(config_path).strip() or None
    elif env_var:
        explicit_path = os.environ.get(str(env_var), "").strip() or None

    if explicit_path:
        expanded = os.path.abspath(os.path.expandvars(os.path.expanduser(explicit_path)))
        mode = "env" if config_path is None else "explicit"
        return mode, [expanded], _base_dir_for(os.path.dirname(expanded))

    if os.path.isabs(str(config_rel_path)):
        config_dir = os.path.abspath(str(config_rel_path))
        base_dir = _base_dir_for(config_dir)
    else:
        base_dir = find_repo_root(start_dir, config_name=config_name)
        config_dir = os.path.join(base_dir, str(config_rel_path))

    base_path = os.path.join(config_dir, config_name + ".yaml")
    local_path = os.path.join(config_dir, config_name + ".local.yaml")
    if not os.path.isfile(base_path):
        raise FileNotFoundError(f"Missing base config file: {base_path}")
    if os.path.isfile(local_path):
        return "base+local", [base_path, local_path], base_dir
    return "base", [base_path], base_dir


def load_config(
    *,
    config_path: str | os.PathLike[str] | None = None,
    env_var: str | None = CONFIG_ENV_VAR,
    config_name: str = CONFIG_NAME,
    config_rel_path: str = CONFIG_DIR,
    start_dir: str | os.PathLike[str] | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Load the build configuration.

    An explicit path (or the env var) loads a single file with no overlay.
    Otherwise `<project>/config/build.yaml` is loaded and merged with
    `config/build.local.yaml` when that file exists.
    """

    mode, paths, base_dir = resolve_config_files(
        config_path=config_path,
        env_var=env_var,
        config_name=config_name,
        config_rel_path=config_rel_path,
        start_dir=start_dir,
    )
    cfg = read_config_file(paths[0])
    for overlay_path in paths[1:]:
        cfg = merge_overlay(cfg, read_config_file(overlay_path))

    meta = {
        "mode": mode,
        "paths": paths,
        "env_var": env_var,
        "base_dir": base_dir,
        "config_dir": os.path.dirname(paths[0]),
    }
    return cfg, meta
