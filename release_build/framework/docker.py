"""Container-runtime build action: one `docker build` per stale layer.

The build context is a tarball holding exactly the layer's matched sources,
so files outside the include/exclude sets can never leak into an image.
"""

from __future__ import annotations

import io
import logging
import os
import tarfile
from pathlib import Path
from typing import Iterable

from layerkit import BuildCancelledError, BuildRequest
from release_build.framework.config import BuildConfig
from release_build.framework.process import CommandCancelled, CommandRunner, output_tail, run_command

FINGERPRINT_TAG_LEN = 12


class DockerBuildError(RuntimeError):
    """Raised when `docker build` fails for a layer."""


def image_name(prefix: str, layer: str, fingerprint: str) -> str:
    return f"{prefix}-{layer}:{fingerprint[:FINGERPRINT_TAG_LEN]}"


def build_context_tar(root: str | os.PathLike[str], sources: Iterable[str]) -> bytes:
    """Pack `sources` (relative to `root`) into a deterministic tar stream."""

    root_path = Path(root)
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.PAX_FORMAT) as archive:
        for rel in sorted(set(sources)):
            full = root_path / rel
            info = archive.gettarinfo(str(full), arcname=rel)
            info.mtime = 0
            info.uid = info.gid = 0
            info.uname = info.gname = ""
            with open(full, "rb") as handle:
                archive.addfile(info, handle)
    return buffer.getvalue()


class DockerBuildAction:
    def __init__(
        self,
        config: BuildConfig,
        *,
        runner: CommandRunner | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.runner = runner or run_command
        self.logger = logger or logging.getLogger(__name__)

    def image_for(self, layer: str, fingerprint: str) -> str:
        return image_name(self.config.image_prefix, layer, fingerprint)

    def argv(self, request: BuildRequest) -> list[str]:
        layer = request.layer
        if not layer.dockerfile:
            raise DockerBuildError(f"Layer {layer.name} declares no Dockerfile")
        argv = [
            self.config.docker.binary,
            "build",
            "-f",
            layer.dockerfile,
            "-t",
            self.image_for(layer.name, request.fingerprint),
            "--label",
            f"layer.fingerprint={request.fingerprint}",
        ]
        if layer.parent and request.parent_fingerprint:
            argv.extend(
                ["--build-arg", f"BASE_IMAGE={self.image_for(layer.parent, request.parent_fingerprint)}"]
            )
        for key, value in self.config.docker.build_args:
            argv.extend(["--build-arg", f"{key}={value}"])
        argv.append("-")
        return argv

    def __call__(self, request: BuildRequest) -> bool:
        argv = self.argv(request)
        sources = list(request.sources)
        if request.layer.dockerfile and request.layer.dockerfile not in sources:
            sources.append(request.layer.dockerfile)
        context = build_context_tar(self.config.paths.source_root, sources)
        self.logger.debug(
            "docker build for %s: %d source files, %d byte context",
            request.layer.name,
            len(sources),
            len(context),
        )

        try:
            proc = self.runner(argv, cancel=request.cancel, input=context)
        except CommandCancelled as exc:
            raise BuildCancelledError(request.layer.name, expired=exc.expired) from exc
        if proc.returncode != 0:
            raise DockerBuildError(
                f"docker build failed for layer {request.layer.name}. {output_tail(proc)}"
            )
        return True

    def verify(self, request: BuildRequest) -> bool:
        """Return True when the image a matching marker names still exists locally."""

        image = self.image_for(request.layer.name, request.fingerprint)
        argv = [self.config.docker.binary, "image", "inspect", image]
        try:
            proc = self.runner(argv, cancel=request.cancel)
        except CommandCancelled as exc:
            raise BuildCancelledError(request.layer.name, expired=exc.expired) from exc
        except OSError as exc:
            self.logger.warning("Cannot inspect image %s: %s", image, exc)
            return False
        return proc.returncode == 0
