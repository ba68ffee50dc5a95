"""Content-addressed incremental build cache for a linear chain of layers.

This package is application-agnostic and must not import `release_build.*`.
Applications supply the layers, a marker store and a build action.
"""

from layerkit.cancel import CancelToken
from layerkit.controller import BuildReport, CacheController, LayerStatus
from layerkit.errors import (
    BuildActionFailedError,
    BuildCancelledError,
    DuplicateLayerError,
    LayerConfigError,
    LayerError,
    MarkerStoreUnavailableError,
    RegistryFrozenError,
    SourceUnreadableError,
    UnknownLayerError,
    UnknownParentError,
)
from layerkit.fingerprint import FINGERPRINT_SEED, collect_sources, source_digest
from layerkit.layer_registry import LayerRegistry
from layerkit.layer_types import ArtifactVerifier, BuildAction, BuildRequest, Layer, LayerState
from layerkit.markers import FileMarkerStore, InMemoryMarkerStore, MarkerStore

__all__ = [
    "ArtifactVerifier",
    "BuildAction",
    "BuildActionFailedError",
    "BuildCancelledError",
    "BuildReport",
    "BuildRequest",
    "CacheController",
    "CancelToken",
    "DuplicateLayerError",
    "FINGERPRINT_SEED",
    "FileMarkerStore",
    "InMemoryMarkerStore",
    "Layer",
    "LayerConfigError",
    "LayerError",
    "LayerRegistry",
    "LayerState",
    "LayerStatus",
    "MarkerStore",
    "RegistryFrozenError",
    "SourceUnreadableError",
    "UnknownLayerError",
    "UnknownParentError",
    "collect_sources",
    "source_digest",
]
