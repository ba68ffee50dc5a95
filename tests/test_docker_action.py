import io
import subprocess
import tarfile
from pathlib import Path

import pytest

from layerkit import BuildCancelledError, BuildRequest, CancelToken, Layer
from release_build.framework.config import BuildConfig
from release_build.framework.docker import DockerBuildAction, DockerBuildError, build_context_tar, image_name
from release_build.framework.process import CommandCancelled


def _config(tmp_path: Path) -> BuildConfig:
    cfg, _warnings = BuildConfig.from_dict(
        {
            "toolchain": {"goos": "linux", "goarch": "amd64"},
            "docker": {"build_args": {"GO_VERSION": "1.21"}},
        },
        base_dir=tmp_path,
        env={},
    )
    return cfg


def _request(tmp_path: Path, **kwargs) -> BuildRequest:
    (tmp_path / "ui").mkdir(exist_ok=True)
    (tmp_path / "ui" / "yarn.lock").write_text("lock", encoding="utf-8")
    (tmp_path / "yarn.Dockerfile").write_text("ARG BASE_IMAGE\nFROM $BASE_IMAGE", encoding="utf-8")
    layer = Layer(name="yarn", parent="base", include=("ui/yarn.lock",), dockerfile="yarn.Dockerfile")
    defaults = dict(
        layer=layer,
        fingerprint="a" * 64,
        parent_fingerprint="b" * 64,
        sources=("ui/yarn.lock", "yarn.Dockerfile"),
    )
    defaults.update(kwargs)
    return BuildRequest(**defaults)


def test_image_name_uses_short_fingerprint():
    assert image_name("vault-builder", "static", "0123456789abcdef") == "vault-builder-static:0123456789ab"


def test_build_context_contains_only_declared_sources(tmp_path):
    (tmp_path / "a.txt").write_text("a", encoding="utf-8")
    (tmp_path / "b.txt").write_text("b", encoding="utf-8")
    payload = build_context_tar(tmp_path, ["a.txt"])

    with tarfile.open(fileobj=io.BytesIO(payload)) as archive:
        assert archive.getnames() == ["a.txt"]
        assert archive.getmember("a.txt").mtime == 0
    assert build_context_tar(tmp_path, ["a.txt"]) == payload


def test_docker_build_argv_and_context(tmp_path):
    calls = []

    def runner(argv, *, cancel=None, input=None):
        calls.append((list(argv), cancel, input))
        return subprocess.CompletedProcess(argv, 0, b"", b"")

    action = DockerBuildAction(_config(tmp_path), runner=runner)
    assert action(_request(tmp_path)) is True

    argv, cancel, context = calls[0]
    assert argv[:6] == ["docker", "build", "-f", "yarn.Dockerfile", "-t", "vault-builder-yarn:" + "a" * 12]
    assert f"BASE_IMAGE=vault-builder-base:{'b' * 12}" in argv
    assert "GO_VERSION=1.21" in argv
    assert argv[-1] == "-"
    assert cancel is None
    with tarfile.open(fileobj=io.BytesIO(context)) as archive:
        assert sorted(archive.getnames()) == ["ui/yarn.lock", "yarn.Dockerfile"]


def test_docker_build_failure_raises(tmp_path):
    def runner(argv, *, cancel=None, input=None):
        return subprocess.CompletedProcess(argv, 1, b"", b"no space left on device")

    action = DockerBuildAction(_config(tmp_path), runner=runner)
    with pytest.raises(DockerBuildError, match=r"layer yarn.*no space left"):
        action(_request(tmp_path))


def test_docker_build_timeout_becomes_cancellation(tmp_path):
    def runner(argv, *, cancel=None, input=None):
        assert cancel is not None
        raise CommandCancelled(argv, expired=True)

    action = DockerBuildAction(_config(tmp_path), runner=runner)
    with pytest.raises(BuildCancelledError, match=r"timed out before layer yarn"):
        action(_request(tmp_path, cancel=CancelToken(timeout=60)))


def test_layer_without_dockerfile_cannot_be_built(tmp_path):
    action = DockerBuildAction(_config(tmp_path))
    request = _request(tmp_path, layer=Layer(name="bare"), parent_fingerprint=None)
    with pytest.raises(DockerBuildError, match=r"declares no Dockerfile"):
        action(request)


def test_docker_build_cancel_reaches_the_running_command(tmp_path):
    token = CancelToken()

    def runner(argv, *, cancel=None, input=None):
        assert cancel is token
        cancel.cancel()
        raise CommandCancelled(argv, expired=False)

    action = DockerBuildAction(_config(tmp_path), runner=runner)
    with pytest.raises(BuildCancelledError) as excinfo:
        action(_request(tmp_path, cancel=token))
    assert excinfo.value.expired is False


@pytest.mark.parametrize("returncode, expected", [(0, True), (1, False)])
def test_verify_inspects_the_layer_image(tmp_path, returncode, expected):
    calls = []

    def runner(argv, *, cancel=None, input=None):
        calls.append(list(argv))
        return subprocess.CompletedProcess(argv, returncode, b"", b"")

    action = DockerBuildAction(_config(tmp_path), runner=runner)
    assert action.verify(_request(tmp_path)) is expected
    assert calls == [["docker", "image", "inspect", "vault-builder-yarn:" + "a" * 12]]


def test_verify_without_docker_binary_reports_missing(tmp_path):
    def runner(argv, *, cancel=None, input=None):
        raise FileNotFoundError(argv[0])

    action = DockerBuildAction(_config(tmp_path), runner=runner)
    assert action.verify(_request(tmp_path)) is False
