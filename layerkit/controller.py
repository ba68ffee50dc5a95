"""Cache-key / marker controller.

Decides per layer whether a rebuild is needed and walks the chain from the
root to a requested layer, building only the stale part. Work is bounded by
the chain length; layers outside the chain are never inspected.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from layerkit.cancel import CancelToken
from layerkit.errors import BuildActionFailedError, LayerError
from layerkit.fingerprint import DEFAULT_IGNORES, chain_fingerprint, collect_sources, source_digest
from layerkit.layer_registry import LayerRegistry
from layerkit.layer_types import ArtifactVerifier, BuildAction, BuildRequest, Layer, LayerState, TransitionHook
from layerkit.markers import MarkerStore


@dataclass(frozen=True)
class LayerStatus:
    name: str
    fingerprint: str
    marker: str | None
    source_digest: str

    @property
    def fresh(self) -> bool:
        return self.marker == self.fingerprint


@dataclass
class BuildReport:
    target: str
    fingerprint: str
    rebuilt: list[str] = field(default_factory=list)
    states: dict[str, LayerState] = field(default_factory=dict)

    @property
    def up_to_date(self) -> bool:
        return not self.rebuilt


@dataclass(frozen=True)
class _Computed:
    sources: tuple[str, ...]
    digest: str
    fingerprint: str


class CacheController:
    def __init__(
        self,
        registry: LayerRegistry,
        store: MarkerStore,
        root: str | os.PathLike[str],
        *,
        ignore: Iterable[str] = (),
        logger: logging.Logger | None = None,
        on_transition: TransitionHook | None = None,
    ) -> None:
        self.registry = registry.freeze()
        self.store = store
        self.root = Path(root)
        self.ignore = (*DEFAULT_IGNORES, *ignore)
        self.logger = logger or logging.getLogger(__name__)
        self.on_transition = on_transition

    def _layer(self, layer: Layer | str) -> Layer:
        return self.registry.get(layer.name if isinstance(layer, Layer) else layer)

    def _compute(self, layer: Layer, memo: dict[str, _Computed]) -> _Computed:
        cached = memo.get(layer.name)
        if cached is not None:
            return cached

        parent_fp: str | None = None
        for ancestor in self.registry.resolve_chain(layer.name):
            if ancestor.name in memo:
                parent_fp = memo[ancestor.name].fingerprint
                continue
            sources = collect_sources(ancestor, self.root, ignore=self.ignore)
            digest = source_digest(ancestor, self.root, sources=sources)
            computed = _Computed(
                sources=sources,
                digest=digest,
                fingerprint=chain_fingerprint(ancestor.name, digest, parent_fp),
            )
            memo[ancestor.name] = computed
            parent_fp = computed.fingerprint
        return memo[layer.name]

    def fingerprint(self, layer: Layer | str) -> str:
        return self._compute(self._layer(layer), {}).fingerprint

    def source_id(self, layer: Layer | str) -> str:
        return self._compute(self._layer(layer), {}).digest

    def needs_rebuild(self, layer: Layer | str) -> bool:
        resolved = self._layer(layer)
        return self.store.get(resolved.name) != self.fingerprint(resolved)

    def _transition(
        self, report: BuildReport, name: str, new: LayerState
    ) -> None:
        old = report.states.get(name, "unknown")
        report.states[name] = new
        self.logger.debug("Layer %s: %s -> %s", name, old, new)
        if self.on_transition is not None:
            self.on_transition(name, old, new)

    def ensure_built(
        self,
        layer: Layer | str,
        build_action: BuildAction,
        *,
        cancel: CancelToken | None = None,
    ) -> BuildReport:
        """Build every stale layer from the root down to `layer`, in order.

        Stops at the first failure; markers are only written after the build
        action for that layer succeeded.
        """

        token = cancel or CancelToken()
        target = self._layer(layer)
        chain = self.registry.resolve_chain(target.name)
        memo: dict[str, _Computed] = {}
        report = BuildReport(target=target.name, fingerprint="")
        for item in chain:
            report.states[item.name] = "unknown"

        parent_fp: str | None = None
        for item in chain:
            token.raise_if_cancelled(item.name)
            computed = self._compute(item, memo)
            request = BuildRequest(
                layer=item,
                fingerprint=computed.fingerprint,
                parent_fingerprint=parent_fp,
                sources=computed.sources,
                cancel=token,
            )
            marker = self.store.get(item.name)
            if marker == computed.fingerprint:
                if self._artifact_present(build_action, request):
                    self._transition(report, item.name, "fresh")
                    parent_fp = computed.fingerprint
                    continue
                self.logger.info(
                    "Marker for layer %s names a missing artifact (%s); deleting marker",
                    item.name,
                    marker[:12],
                )
                self.store.delete(item.name)
                marker = None

            if marker is not None:
                self.logger.info(
                    "Marker for layer %s is stale (%s != %s)",
                    item.name,
                    marker[:12],
                    computed.fingerprint[:12],
                )
            self._transition(report, item.name, "stale")
            self._transition(report, item.name, "building")
            self.logger.info("==> Building layer: %s (%s)", item.name, computed.fingerprint[:12])

            try:
                outcome = build_action(request)
            except LayerError:
                self._transition(report, item.name, "failed")
                raise
            except Exception as exc:
                self._transition(report, item.name, "failed")
                raise BuildActionFailedError(item.name, exc) from exc
            if outcome is False:
                self._transition(report, item.name, "failed")
                raise BuildActionFailedError(item.name)

            self.store.set(item.name, computed.fingerprint)
            report.rebuilt.append(item.name)
            self._transition(report, item.name, "fresh")
            parent_fp = computed.fingerprint

        report.fingerprint = memo[target.name].fingerprint
        if report.up_to_date:
            self.logger.info("Layer %s is up to date (%s)", target.name, report.fingerprint[:12])
        return report

    def _artifact_present(self, build_action: BuildAction, request: BuildRequest) -> bool:
        verify: ArtifactVerifier | None = getattr(build_action, "verify", None)
        if verify is None:
            return True
        try:
            return bool(verify(request))
        except LayerError:
            raise
        except Exception as exc:
            raise BuildActionFailedError(request.layer.name, exc) from exc

    def write_cache_keys(self) -> dict[str, str]:
        """Persist the current fingerprint of every layer as its marker."""

        memo: dict[str, _Computed] = {}
        written: dict[str, str] = {}
        for layer in self.registry.all_layers():
            fingerprint = self._compute(layer, memo).fingerprint
            self.store.set(layer.name, fingerprint)
            written[layer.name] = fingerprint
            self.logger.debug("Wrote cache key for %s: %s", layer.name, fingerprint)
        self.logger.info("==> All cache keys written.")
        return written

    def status(self) -> tuple[LayerStatus, ...]:
        memo: dict[str, _Computed] = {}
        rows: list[LayerStatus] = []
        for layer in self.registry.all_layers():
            computed = self._compute(layer, memo)
            rows.append(
                LayerStatus(
                    name=layer.name,
                    fingerprint=computed.fingerprint,
                    marker=self.store.get(layer.name),
                    source_digest=computed.digest,
                )
            )
        return tuple(rows)

    def invalidate(self, layer: Layer | str) -> None:
        self.store.delete(self._layer(layer).name)

    def clear(self) -> None:
        self.store.clear()
