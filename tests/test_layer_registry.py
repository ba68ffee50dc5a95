import pytest

from layerkit import (
    DuplicateLayerError,
    Layer,
    LayerRegistry,
    RegistryFrozenError,
    UnknownLayerError,
    UnknownParentError,
)


def _pipeline() -> LayerRegistry:
    registry = LayerRegistry()
    registry.define("base", None, [], [])
    registry.define("yarn", "base", ["ui/yarn.lock", "ui/package.json"], [])
    registry.define("ui", "yarn", ["ui/"], [])
    registry.define("static", "ui", ["."], ["release/", ".circleci/"])
    return registry


def test_define_rejects_duplicate_names():
    registry = _pipeline()
    with pytest.raises(DuplicateLayerError, match=r"Duplicate layer name: ui"):
        registry.define("ui", "base", [], [])


def test_define_rejects_unknown_or_forward_parent():
    registry = LayerRegistry()
    registry.define("base")
    with pytest.raises(UnknownParentError, match=r"unknown parent 'later'"):
        registry.define("child", "later", [], [])
    assert registry.available() == ("base",)


def test_layer_cannot_be_its_own_parent():
    with pytest.raises(ValueError, match=r"cannot be its own parent"):
        Layer(name="loop", parent="loop")


def test_resolve_chain_is_root_first():
    registry = _pipeline()
    assert [layer.name for layer in registry.resolve_chain("static")] == [
        "base",
        "yarn",
        "ui",
        "static",
    ]
    assert [layer.name for layer in registry.resolve_chain("base")] == ["base"]


def test_resolve_chain_unknown_layer_suggests_close_matches():
    registry = _pipeline()
    with pytest.raises(UnknownLayerError, match=r"Unknown layer: statc") as excinfo:
        registry.resolve_chain("statc")
    assert "did you mean: static" in str(excinfo.value)
    assert excinfo.value.layer == "statc"


def test_all_layers_is_ordered_and_restartable():
    registry = _pipeline()
    view = registry.all_layers()
    first = [layer.name for layer in view]
    second = [layer.name for layer in view]
    assert first == second == ["base", "yarn", "ui", "static"]
    assert len(view) == 4


def test_frozen_registry_rejects_new_layers():
    registry = _pipeline().freeze()
    with pytest.raises(RegistryFrozenError):
        registry.define("extra", "static", [], [])


def test_layer_entries_are_normalized():
    layer = Layer(
        name=" ui ",
        parent="yarn",
        include=("./ui/", "ui/", "src\\main.go"),
        exclude=("./release/",),
        dockerfile="layers/ui.Dockerfile",
    )
    assert layer.name == "ui"
    assert layer.include == ("ui/", "src/main.go")
    assert layer.exclude == ("release/",)
    assert layer.source_entries == ("ui/", "src/main.go", "layers/ui.Dockerfile")


@pytest.mark.parametrize("entry", ["/etc/passwd", "../outside", ""])
def test_layer_rejects_entries_outside_root(entry):
    with pytest.raises(ValueError):
        Layer(name="bad", include=(entry,))


def test_describe_and_terminal():
    registry = _pipeline()
    rows = registry.describe()
    assert rows[1]["name"] == "yarn"
    assert rows[1]["parent"] == "base"
    assert rows[1]["include"] == ["ui/yarn.lock", "ui/package.json"]
    assert registry.terminal().name == "static"
    assert "static" in registry
    assert "missing" not in registry
