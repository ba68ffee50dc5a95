from pathlib import Path

import pytest

from layerkit import Layer, SourceUnreadableError, collect_sources, source_digest
from layerkit.fingerprint import chain_fingerprint, is_excluded


def _write(root: Path, rel: str, text: str) -> None:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.fixture()
def tree(tmp_path: Path) -> Path:
    _write(tmp_path, "ui/package.json", "{}")
    _write(tmp_path, "ui/yarn.lock", "lock")
    _write(tmp_path, "ui/app/index.js", "console.log(1)")
    _write(tmp_path, "main.go", "package main")
    _write(tmp_path, "release/notes.md", "notes")
    _write(tmp_path, ".circleci/config.yml", "ci")
    _write(tmp_path, ".git/HEAD", "ref: refs/heads/main")
    _write(tmp_path, "layers/static.Dockerfile", "FROM scratch")
    return tmp_path


def test_collect_sources_expands_directories_and_applies_excludes(tree):
    layer = Layer(name="static", include=(".",), exclude=("release/", ".circleci/"))
    assert collect_sources(layer, tree) == (
        "layers/static.Dockerfile",
        "main.go",
        "ui/app/index.js",
        "ui/package.json",
        "ui/yarn.lock",
    )


def test_collect_sources_supports_globs(tree):
    layer = Layer(name="deps", include=("ui/*.json", "ui/*.lock"))
    assert collect_sources(layer, tree) == ("ui/package.json", "ui/yarn.lock")


def test_declared_dockerfile_is_always_a_source(tree):
    layer = Layer(
        name="static",
        include=("main.go",),
        exclude=("layers/",),
        dockerfile="layers/static.Dockerfile",
    )
    assert collect_sources(layer, tree) == ("layers/static.Dockerfile", "main.go")


def test_missing_include_raises_source_unreadable(tree):
    layer = Layer(name="yarn", include=("ui/missing.lock",))
    with pytest.raises(SourceUnreadableError, match=r"Layer yarn: cannot read source 'ui/missing.lock'"):
        collect_sources(layer, tree)


def test_directory_entry_pointing_at_file_raises(tree):
    layer = Layer(name="bad", include=("main.go/",))
    with pytest.raises(SourceUnreadableError, match=r"not a directory"):
        collect_sources(layer, tree)


def test_empty_glob_raises(tree):
    layer = Layer(name="bad", include=("*.rs",))
    with pytest.raises(SourceUnreadableError, match=r"glob matched no files"):
        collect_sources(layer, tree)


def test_source_digest_ignores_declaration_order(tree):
    first = Layer(name="yarn", include=("ui/yarn.lock", "ui/package.json"))
    second = Layer(name="yarn", include=("ui/package.json", "ui/yarn.lock"))
    assert source_digest(first, tree) == source_digest(second, tree)


def test_source_digest_tracks_included_content_only(tree):
    layer = Layer(name="static", include=(".",), exclude=("release/",))
    before = source_digest(layer, tree)
    assert source_digest(layer, tree) == before

    _write(tree, "release/notes.md", "changed notes")
    assert source_digest(layer, tree) == before

    _write(tree, "main.go", "package main // edited")
    assert source_digest(layer, tree) != before


def test_source_digest_tracks_renames(tree):
    layer = Layer(name="ui", include=("ui/",))
    before = source_digest(layer, tree)
    (tree / "ui/app/index.js").rename(tree / "ui/app/main.js")
    assert source_digest(layer, tree) != before


def test_chain_fingerprint_depends_on_parent_and_name():
    digest = "0" * 64
    root = chain_fingerprint("base", digest, None)
    assert chain_fingerprint("base", digest, None) == root
    assert chain_fingerprint("other", digest, None) != root
    assert chain_fingerprint("child", digest, root) != chain_fingerprint("child", digest, "f" * 64)


def test_is_excluded_matches_dirs_files_and_globs():
    assert is_excluded("release/build/build.mk", ("release/",))
    assert is_excluded("release", ("release/",))
    assert not is_excluded("releases/x", ("release/",))
    assert is_excluded("docs/readme.md", ("docs",))
    assert is_excluded("ui/node_modules/pkg/index.js", ("*/node_modules",))
    assert is_excluded("notes.tmp", ("*.tmp",))
    assert not is_excluded("main.go", ("*.tmp",))


def test_collect_sources_never_descends_into_excluded_directories(tree, monkeypatch):
    from layerkit import fingerprint

    _write(tree, "release/build/deep/file.txt", "x")
    visited: list[str] = []
    real_walk = fingerprint.os.walk

    def recording_walk(top, *args, **kwargs):
        for dirpath, dirnames, filenames in real_walk(top, *args, **kwargs):
            visited.append(Path(dirpath).relative_to(tree).as_posix())
            yield dirpath, dirnames, filenames

    monkeypatch.setattr(fingerprint.os, "walk", recording_walk)
    layer = Layer(name="static", include=(".",), exclude=("release/",))

    sources = collect_sources(layer, tree)

    assert "main.go" in sources
    assert "ui/app" in visited
    assert not any(path == ".git" or path.startswith(".git/") for path in visited)
    assert not any(path == "release" or path.startswith("release/") for path in visited)
