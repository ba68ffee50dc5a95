"""Build orchestration shared by the CLI commands."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from layerkit import BuildReport, CacheController, CancelToken, FileMarkerStore, MarkerStore
from release_build.foundation.config_io import load_config
from release_build.framework.config import BuildConfig
from release_build.framework.docker import DockerBuildAction
from release_build.framework.layers import build_registry
from release_build.framework.package import PackageAssembler

MARKERS_SUBDIR = "markers"


@dataclass(frozen=True)
class BuildResult:
    report: BuildReport
    package_path: Path


def load_build_config(
    *,
    config_path: str | None = None,
    root: str | None = None,
    env: Mapping[str, str] | None = None,
    logger: logging.Logger | None = None,
) -> BuildConfig:
    log = logger or logging.getLogger(__name__)
    payload, meta = load_config(config_path=config_path)
    log.debug("Loaded config (%s): %s", meta["mode"], ", ".join(meta["paths"]))

    base_dir = os.path.abspath(root) if root else meta["base_dir"]
    cfg, warnings = BuildConfig.from_dict(payload, base_dir=base_dir, env=env)
    for warning in warnings:
        log.warning("%s", warning)
    return cfg


def _relative_ignores(config: BuildConfig, extra_files: Iterable[str | os.PathLike[str]] = ()) -> list[str]:
    """Paths the build itself writes must never feed a fingerprint.

    That is the cache and output dirs plus files such as the log file, when they
    sit inside the source root.
    """

    root = Path(config.paths.source_root).resolve()
    candidates = [(config.paths.cache_dir, True), (config.paths.out_root, True)]
    candidates.extend((path, False) for path in extra_files)
    ignores: list[str] = []
    for candidate, is_dir in candidates:
        try:
            rel = Path(candidate).resolve().relative_to(root)
        except ValueError:
            continue
        if rel.parts:
            ignores.append(rel.as_posix() + ("/" if is_dir else ""))
    return ignores


def make_controller(
    config: BuildConfig,
    *,
    store: MarkerStore | None = None,
    logger: logging.Logger | None = None,
    ignore_files: Iterable[str | os.PathLike[str]] = (),
) -> CacheController:
    return CacheController(
        build_registry(config.layers),
        store or FileMarkerStore(Path(config.paths.cache_dir) / MARKERS_SUBDIR),
        config.paths.source_root,
        ignore=_relative_ignores(config, ignore_files),
        logger=logger,
    )


def run_build(
    config: BuildConfig,
    controller: CacheController,
    *,
    action: DockerBuildAction | None = None,
    assembler: PackageAssembler | None = None,
    cancel: CancelToken | None = None,
    force: bool = False,
    logger: logging.Logger | None = None,
) -> BuildResult:
    """Bring the terminal layer up to date, then produce the package inside it."""

    docker_action = action or DockerBuildAction(config, logger=logger)
    package_assembler = assembler or PackageAssembler(config, logger=logger)

    terminal = controller.registry.terminal()
    report = controller.ensure_built(terminal, docker_action, cancel=cancel)
    if cancel is not None:
        cancel.raise_if_cancelled(terminal.name)

    image = docker_action.image_for(terminal.name, report.fingerprint)
    package_path = package_assembler.assemble(report.fingerprint, image, cancel=cancel, force=force)
    return BuildResult(report=report, package_path=package_path)


def debug_lines(controller: CacheController) -> list[str]:
    lines: list[str] = []
    for row in controller.status():
        for suffix, value in (
            ("FINGERPRINT", row.fingerprint),
            ("MARKER", row.marker or "<none>"),
            ("SOURCE_ID", row.source_digest),
        ):
            key = f"{row.name}_{suffix}"
            lines.append(f"{key:<24} = {value}")
    return lines
