"""Error taxonomy for layer registration, fingerprinting and builds."""

from __future__ import annotations

from typing import Iterable


class LayerError(Exception):
    """Base class for every error raised by `layerkit`."""

    def __init__(self, message: str, *, layer: str | None = None) -> None:
        super().__init__(message)
        self.layer = layer


class LayerConfigError(LayerError):
    """Raised while the pipeline is being declared; always fatal."""


class DuplicateLayerError(LayerConfigError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Duplicate layer name: {name}", layer=name)


class UnknownParentError(LayerConfigError):
    def __init__(self, name: str, parent: str, available: Iterable[str] = ()) -> None:
        known = ", ".join(available) or "<none>"
        super().__init__(
            f"Layer {name} declares unknown parent {parent!r} "
            f"(parents must be defined earlier; defined: {known})",
            layer=name,
        )
        self.parent = parent


class UnknownLayerError(LayerConfigError):
    def __init__(
        self,
        name: str,
        available: Iterable[str] = (),
        suggestions: Iterable[str] = (),
    ) -> None:
        known = ", ".join(available) or "<none>"
        message = f"Unknown layer: {name} (available: {known})"
        hints = list(suggestions)
        if hints:
            message += f"; did you mean: {', '.join(hints)}?"
        super().__init__(message, layer=name)


class RegistryFrozenError(LayerConfigError):
    def __init__(self, name: str) -> None:
        super().__init__(
            f"Cannot define layer {name}: registry is read-only once in use", layer=name
        )


class SourceUnreadableError(LayerError):
    def __init__(self, layer: str, path: str, reason: str) -> None:
        super().__init__(f"Layer {layer}: cannot read source {path!r}: {reason}", layer=layer)
        self.path = path


class BuildActionFailedError(LayerError):
    def __init__(self, layer: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause is not None else ": build action reported failure"
        super().__init__(f"Build failed for layer {layer}{detail}", layer=layer)
        self.cause = cause


class MarkerStoreUnavailableError(LayerError):
    def __init__(self, layer: str | None, cause: BaseException) -> None:
        target = f"layer {layer}" if layer else "marker store"
        super().__init__(f"Marker store unavailable ({target}): {cause}", layer=layer)
        self.cause = cause


class BuildCancelledError(LayerError):
    def __init__(self, layer: str, *, expired: bool = False) -> None:
        reason = "timed out" if expired else "cancelled"
        super().__init__(f"Build {reason} before layer {layer}", layer=layer)
        self.expired = expired
