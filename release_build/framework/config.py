from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Any, Mapping

from layerkit import Layer
from release_build.framework.layers import default_layers, layers_from_config

DEFAULT_VERSION_PACKAGE = "github.com/hashicorp/vault/sdk/version"
KNOWN_TOP_LEVEL_KEYS = ("paths", "package", "toolchain", "docker", "layers")

# Environment-style overrides: env var -> (section, key).
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "GOOS": ("toolchain", "goos"),
    "GOARCH": ("toolchain", "goarch"),
    "CC": ("toolchain", "cc"),
    "CGO_ENABLED": ("toolchain", "cgo_enabled"),
    "GO111MODULE": ("toolchain", "go111module"),
    "GO_BUILD_TAGS": ("toolchain", "build_tags"),
    "BINARY_NAME": ("package", "binary_name"),
    "PRODUCT_NAME": ("package", "product_name"),
    "BUILD_VERSION": ("package", "version"),
    "BUILD_PRERELEASE": ("package", "prerelease"),
    "EDITION": ("package", "edition"),
    "BUNDLE_NAME": ("package", "bundle_name"),
    "PACKAGE_OUT_ROOT": ("paths", "out_root"),
}


def parse_str(value: Any, path: str, *, default: str, allow_empty: bool = False) -> str:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ValueError(f"Invalid config type for {path}: expected string")
    text = str(value).strip()
    if not text and not allow_empty:
        raise ValueError(f"Invalid config value for {path}: must be a non-empty string")
    return text


def parse_optional_str(value: Any, path: str) -> str | None:
    if value is None:
        return None
    text = parse_str(value, path, default="", allow_empty=True)
    return text or None


def parse_str_list(value: Any, path: str) -> tuple[str, ...]:
    """Accept a YAML list or a comma/space separated string."""

    if value is None:
        return ()
    if isinstance(value, str):
        items = value.replace(",", " ").split()
    elif isinstance(value, (list, tuple)):
        items = []
        for idx, item in enumerate(value):
            if not isinstance(item, str):
                raise ValueError(f"Invalid config type for {path}[{idx}]: expected string")
            items.append(item.strip())
    else:
        raise ValueError(f"Invalid config type for {path}: expected list of strings")
    return tuple(item for item in items if item)


def _go_env(name: str, default: str) -> str:
    """Ask the Go toolchain for a default (`go env GOOS`), falling back quietly."""

    go = shutil.which("go")
    if not go:
        return default
    try:
        proc = subprocess.run(
            [go, "env", name], check=False, capture_output=True, text=True, timeout=30
        )
    except (OSError, subprocess.TimeoutExpired):
        return default
    value = (proc.stdout or "").strip()
    return value if proc.returncode == 0 and value else default


@dataclass(frozen=True)
class PackageParams:
    binary_name: str = "vault"
    product_name: str = "vault"
    version: str = "0.0.0"
    prerelease: str = "-dev"
    edition: str = ""
    bundle_name_override: str | None = None
    version_package: str = DEFAULT_VERSION_PACKAGE

    def __post_init__(self) -> None:
        if self.prerelease and not self.prerelease.startswith("-"):
            raise ValueError(
                f"Invalid package.prerelease: must be empty or begin with '-' (got {self.prerelease!r})"
            )
        if self.edition and not self.edition.startswith("+"):
            raise ValueError(
                f"Invalid package.edition: must be empty or begin with '+' (got {self.edition!r})"
            )

    @property
    def full_version(self) -> str:
        return f"{self.version}{self.prerelease}"

    @property
    def bundle_name(self) -> str:
        return self.bundle_name_override or f"{self.product_name}{self.edition}"


@dataclass(frozen=True)
class ToolchainParams:
    goos: str = "linux"
    goarch: str = "amd64"
    cc: str = "gcc"
    cgo_enabled: str = "0"
    go111module: str = "off"
    build_tags: tuple[str, ...] = ("vault",)


@dataclass(frozen=True)
class DockerParams:
    binary: str = "docker"
    image_prefix: str | None = None
    shell: str = "/bin/bash -euo pipefail -c"
    build_args: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class PathsConfig:
    source_root: str
    dockerfiles_dir: str
    cache_dir: str
    out_root: str


@dataclass(frozen=True)
class BuildConfig:
    package: PackageParams
    toolchain: ToolchainParams
    docker: DockerParams
    paths: PathsConfig
    layers: tuple[Layer, ...]

    @property
    def image_prefix(self) -> str:
        return self.docker.image_prefix or f"{self.package.product_name}-builder"

    @classmethod
    def from_dict(
        cls,
        payload: Mapping[str, Any],
        *,
        base_dir: str | os.PathLike[str],
        env: Mapping[str, str] | None = None,
    ) -> tuple["BuildConfig", list[str]]:
        """Parse a config mapping, applying environment-style overrides.

        Relative paths resolve against `base_dir`. Returns the config and a
        list of warnings for keys that were ignored.
        """

        if not isinstance(payload, Mapping):
            raise ValueError("Build config must be a mapping")
        environ = os.environ if env is None else env
        warnings: list[str] = []

        for key in payload:
            if key not in KNOWN_TOP_LEVEL_KEYS:
                warnings.append(f"Unknown config key ignored: {key}")

        sections: dict[str, dict[str, Any]] = {}
        for name in ("paths", "package", "toolchain", "docker"):
            raw = payload.get(name)
            if raw is None:
                raw = {}
            if not isinstance(raw, Mapping):
                raise ValueError(f"Invalid config type for {name}: expected mapping")
            sections[name] = dict(raw)

        for env_name, (section, key) in ENV_OVERRIDES.items():
            if env_name in environ:
                sections[section][key] = environ[env_name]

        pkg = sections["package"]
        package = PackageParams(
            binary_name=parse_str(pkg.pop("binary_name", None), "package.binary_name", default="vault"),
            product_name=parse_str(pkg.pop("product_name", None), "package.product_name", default="vault"),
            version=parse_str(pkg.pop("version", None), "package.version", default="0.0.0"),
            prerelease=parse_str(
                pkg.pop("prerelease", None), "package.prerelease", default="-dev", allow_empty=True
            ),
            edition=parse_str(pkg.pop("edition", None), "package.edition", default="", allow_empty=True),
            bundle_name_override=parse_optional_str(pkg.pop("bundle_name", None), "package.bundle_name"),
            version_package=parse_str(
                pkg.pop("version_package", None), "package.version_package", default=DEFAULT_VERSION_PACKAGE
            ),
        )

        tc = sections["toolchain"]
        goos = parse_optional_str(tc.pop("goos", None), "toolchain.goos")
        goarch = parse_optional_str(tc.pop("goarch", None), "toolchain.goarch")
        build_tags_raw = tc.pop("build_tags", None)
        toolchain = ToolchainParams(
            goos=goos or _go_env("GOOS", "linux"),
            goarch=goarch or _go_env("GOARCH", "amd64"),
            cc=parse_str(tc.pop("cc", None), "toolchain.cc", default="gcc"),
            cgo_enabled=parse_str(tc.pop("cgo_enabled", None), "toolchain.cgo_enabled", default="0"),
            go111module=parse_str(tc.pop("go111module", None), "toolchain.go111module", default="off"),
            build_tags=(
                ("vault",)
                if build_tags_raw is None
                else parse_str_list(build_tags_raw, "toolchain.build_tags")
            ),
        )

        dk = sections["docker"]
        build_args_raw = dk.pop("build_args", None) or {}
        if not isinstance(build_args_raw, Mapping):
            raise ValueError("Invalid config type for docker.build_args: expected mapping")
        docker = DockerParams(
            binary=parse_str(dk.pop("binary", None), "docker.binary", default="docker"),
            image_prefix=parse_optional_str(dk.pop("image_prefix", None), "docker.image_prefix"),
            shell=parse_str(dk.pop("shell", None), "docker.shell", default="/bin/bash -euo pipefail -c"),
            build_args=tuple(sorted((str(k), str(v)) for k, v in build_args_raw.items())),
        )

        base = os.path.abspath(os.fspath(base_dir))

        def resolve(value: Any, path: str, default: str) -> str:
            text = parse_str(value, path, default=default)
            expanded = os.path.expandvars(os.path.expanduser(text))
            if not os.path.isabs(expanded):
                expanded = os.path.join(base, expanded)
            return os.path.normpath(expanded)

        pth = sections["paths"]
        source_root = resolve(pth.pop("source_root", None), "paths.source_root", ".")
        paths = PathsConfig(
            source_root=source_root,
            dockerfiles_dir=parse_str(
                pth.pop("dockerfiles_dir", None), "paths.dockerfiles_dir", default="release/build/layers"
            ).replace("\\", "/").strip("/"),
            cache_dir=resolve(pth.pop("cache_dir", None), "paths.cache_dir", ".buildcache"),
            out_root=resolve(pth.pop("out_root", None), "paths.out_root", "dist"),
        )

        for section, leftovers in sections.items():
            for key in leftovers:
                warnings.append(f"Unknown config key ignored: {section}.{key}")

        layers_raw = payload.get("layers")
        if layers_raw is None:
            layers = default_layers(dockerfiles_dir=paths.dockerfiles_dir)
        else:
            layers = layers_from_config(layers_raw, dockerfiles_dir=paths.dockerfiles_dir)

        return (
            cls(package=package, toolchain=toolchain, docker=docker, paths=paths, layers=layers),
            warnings,
        )
