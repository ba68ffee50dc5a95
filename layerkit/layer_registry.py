from __future__ import annotations

import difflib
from typing import Any, Iterable, Iterator

from layerkit.errors import (
    DuplicateLayerError,
    RegistryFrozenError,
    UnknownLayerError,
    UnknownParentError,
)
from layerkit.layer_types import Layer


class _LayerView:
    """Restartable, lazy view over registered layers in registration order."""

    def __init__(self, by_name: dict[str, Layer]) -> None:
        self._by_name = by_name

    def __iter__(self) -> Iterator[Layer]:
        return iter(tuple(self._by_name.values()))

    def __len__(self) -> int:
        return len(self._by_name)


class LayerRegistry:
    def __init__(self) -> None:
        self._by_name: dict[str, Layer] = {}
        self._frozen = False

    @classmethod
    def from_layers(cls, layers: Iterable[Layer]) -> "LayerRegistry":
        registry = cls()
        for layer in layers:
            registry.add(layer)
        return registry

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> "LayerRegistry":
        self._frozen = True
        return self

    def define(
        self,
        name: str,
        parent: str | None = None,
        includes: Iterable[str] = (),
        excludes: Iterable[str] = (),
        *,
        dockerfile: str | None = None,
        doc: str | None = None,
    ) -> Layer:
        layer = Layer(
            name=name,
            parent=parent,
            include=tuple(includes),
            exclude=tuple(excludes),
            dockerfile=dockerfile,
            doc=doc,
        )
        return self.add(layer)

    def add(self, layer: Layer) -> Layer:
        if self._frozen:
            raise RegistryFrozenError(layer.name)
        if layer.name in self._by_name:
            raise DuplicateLayerError(layer.name)
        if layer.parent is not None and layer.parent not in self._by_name:
            raise UnknownParentError(layer.name, layer.parent, self.available())
        self._by_name[layer.name] = layer
        return layer

    def available(self) -> tuple[str, ...]:
        return tuple(self._by_name.keys())

    def all_layers(self) -> _LayerView:
        return _LayerView(self._by_name)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip() in self._by_name

    def __len__(self) -> int:
        return len(self._by_name)

    def get(self, name: str) -> Layer:
        key = name.strip() if isinstance(name, str) else ""
        layer = self._by_name.get(key)
        if layer is None:
            raise UnknownLayerError(name, self.available(), self.suggest(key))
        return layer

    def terminal(self) -> Layer:
        if not self._by_name:
            raise UnknownLayerError("<terminal>", ())
        return next(reversed(self._by_name.values()))

    def resolve_chain(self, name: str) -> tuple[Layer, ...]:
        """Return the layers from the root down to `name`, inclusive."""

        chain: list[Layer] = []
        seen: set[str] = set()
        current: Layer | None = self.get(name)
        while current is not None:
            if current.name in seen or len(chain) > len(self._by_name):
                raise UnknownParentError(current.name, current.parent or "", self.available())
            seen.add(current.name)
            chain.append(current)
            current = self._by_name[current.parent] if current.parent is not None else None
        chain.reverse()
        return tuple(chain)

    def describe(self) -> tuple[dict[str, Any], ...]:
        rows: list[dict[str, Any]] = []
        for layer in self._by_name.values():
            rows.append(
                {
                    "name": layer.name,
                    "parent": layer.parent,
                    "include": list(layer.include),
                    "exclude": list(layer.exclude),
                    "dockerfile": layer.dockerfile,
                    "doc": layer.doc,
                }
            )
        return tuple(rows)

    def suggest(self, name: str, *, limit: int = 3) -> tuple[str, ...]:
        key = (name or "").strip()
        if not key or not self._by_name:
            return ()
        return tuple(difflib.get_close_matches(key, list(self._by_name.keys()), n=limit))
