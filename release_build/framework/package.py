"""Package naming and the final `docker run` that compiles and archives the binary.

The package step only needs the terminal layer's image; it never re-validates
the rest of the chain itself.
"""

from __future__ import annotations

import logging
import os
import posixpath
import shlex
import shutil
from pathlib import Path

from layerkit import BuildCancelledError, CancelToken
from release_build.framework.config import BuildConfig, PackageParams, ToolchainParams
from release_build.framework.process import CommandCancelled, CommandRunner, output_tail, run_command


class PackageBuildError(RuntimeError):
    """Raised when the package cannot be produced."""


def package_name(package: PackageParams, toolchain: ToolchainParams) -> str:
    return f"{package.bundle_name}_{package.full_version}_{toolchain.goos}_{toolchain.goarch}"


def package_filename(package: PackageParams, toolchain: ToolchainParams) -> str:
    return package_name(package, toolchain) + ".zip"


class PackageLayout:
    """Derived output locations for one set of package parameters."""

    def __init__(self, config: BuildConfig) -> None:
        self.config = config
        self.name = package_name(config.package, config.toolchain)
        self.filename = self.name + ".zip"

    def out_dir(self, fingerprint: str) -> Path:
        return Path(self.config.paths.out_root) / self.name / fingerprint

    def binary_path(self, fingerprint: str) -> Path:
        return self.out_dir(fingerprint) / self.config.package.binary_name

    def package_path(self, fingerprint: str) -> Path:
        return self.out_dir(fingerprint) / self.filename

    def container_out_dir(self, fingerprint: str) -> str:
        root_name = os.path.basename(os.path.normpath(self.config.paths.out_root)) or "dist"
        return posixpath.join("/", root_name, self.name, fingerprint)


def ldflags(config: BuildConfig, fingerprint: str) -> str:
    pkg = config.package
    return " ".join(
        [
            f'-X {pkg.version_package}.GitCommit="{fingerprint}"',
            f'-X {pkg.version_package}.Version="{pkg.version}"',
            f'-X {pkg.version_package}.VersionPrerelease="{pkg.prerelease}"',
        ]
    )


def build_env(config: BuildConfig) -> list[str]:
    tc = config.toolchain
    return [
        f"GO111MODULE={tc.go111module}",
        f"GOOS={tc.goos}",
        f"GOARCH={tc.goarch}",
        f"CC={tc.cc}",
        f"CGO_ENABLED={tc.cgo_enabled}",
        f"BUILD_VERSION={config.package.version}",
        f"BUILD_PRERELEASE={config.package.prerelease}",
    ]


def build_command(config: BuildConfig, fingerprint: str) -> str:
    layout = PackageLayout(config)
    out_dir = layout.container_out_dir(fingerprint)
    return " ".join(
        [
            *build_env(config),
            "go build -v",
            f"-tags '{','.join(config.toolchain.build_tags)}'",
            f"-ldflags '{ldflags(config, fingerprint)}'",
            f"-o {posixpath.join(out_dir, config.package.binary_name)}",
        ]
    )


def archive_command(config: BuildConfig, fingerprint: str) -> str:
    layout = PackageLayout(config)
    out_dir = layout.container_out_dir(fingerprint)
    return f"cd {out_dir} && zip {layout.filename} {config.package.binary_name}"


def docker_run_argv(config: BuildConfig, image: str, fingerprint: str) -> list[str]:
    layout = PackageLayout(config)
    host_dir = layout.out_dir(fingerprint)
    container_dir = layout.container_out_dir(fingerprint)
    return [
        config.docker.binary,
        "run",
        "--rm",
        "-v",
        f"{host_dir}:{container_dir}",
        image,
        *shlex.split(config.docker.shell),
        f"{build_command(config, fingerprint)} && {archive_command(config, fingerprint)}",
    ]


class PackageAssembler:
    def __init__(
        self,
        config: BuildConfig,
        *,
        runner: CommandRunner | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.layout = PackageLayout(config)
        self.runner = runner or run_command
        self.logger = logger or logging.getLogger(__name__)

    @property
    def terminal_layer(self) -> str:
        return self.config.layers[-1].name if self.config.layers else "package"

    def assemble(
        self,
        fingerprint: str,
        image: str,
        *,
        cancel: CancelToken | None = None,
        force: bool = False,
    ) -> Path:
        """Compile and archive the binary inside `image`; returns the archive path.

        The output directory is keyed by `fingerprint`, so an existing archive
        there is already current and is returned as is unless `force` is set.
        """

        out_dir = self.layout.out_dir(fingerprint)
        package_path = self.layout.package_path(fingerprint)
        if package_path.is_file() and not force:
            self.logger.info("==> Package up to date: %s", package_path)
            return package_path

        self.logger.info("==> Building package: %s", package_path)
        try:
            if out_dir.exists():
                shutil.rmtree(out_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PackageBuildError(f"Cannot prepare output directory {out_dir}: {exc}") from exc

        argv = docker_run_argv(self.config, image, fingerprint)
        self.logger.debug("Package command: %s", shlex.join(argv))
        try:
            proc = self.runner(argv, cancel=cancel)
        except CommandCancelled as exc:
            raise BuildCancelledError(self.terminal_layer, expired=exc.expired) from exc
        except OSError as exc:
            raise PackageBuildError(f"Cannot run {self.config.docker.binary}: {exc}") from exc
        if proc.returncode != 0:
            raise PackageBuildError(f"Package build failed. {output_tail(proc)}")
        if not package_path.is_file():
            raise PackageBuildError(f"Package build finished but {package_path} was not produced")
        return package_path
