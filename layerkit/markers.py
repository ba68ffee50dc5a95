"""Persisted markers: the fingerprint each layer was last built from."""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

from layerkit.errors import MarkerStoreUnavailableError

MARKER_SUFFIX = ".marker"
_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]")


class MarkerStore(Protocol):
    def get(self, name: str) -> str | None:
        ...

    def set(self, name: str, fingerprint: str) -> None:
        ...

    def delete(self, name: str) -> None:
        ...

    def clear(self) -> None:
        ...


class InMemoryMarkerStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._markers: dict[str, str] = dict(initial or {})

    def get(self, name: str) -> str | None:
        return self._markers.get(name)

    def set(self, name: str, fingerprint: str) -> None:
        self._markers[name] = fingerprint

    def delete(self, name: str) -> None:
        self._markers.pop(name, None)

    def clear(self) -> None:
        self._markers.clear()

    def snapshot(self) -> dict[str, str]:
        return dict(self._markers)


class FileMarkerStore:
    """One `<layer>.marker` file per layer, written atomically."""

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory)

    def _path(self, name: str) -> Path:
        return self.directory / (_SAFE_NAME.sub("_", name) + MARKER_SUFFIX)

    def get(self, name: str) -> str | None:
        path = self._path(name)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            # NotADirectoryError lands here when the store path is a file.
            raise MarkerStoreUnavailableError(name, exc) from exc
        return text.strip() or None

    def set(self, name: str, fingerprint: str) -> None:
        path = self._path(name)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                delete=False,
                dir=str(self.directory),
                prefix=path.name + ".",
                suffix=".tmp",
            ) as handle:
                handle.write(fingerprint + "\n")
                temp_path = Path(handle.name)
            os.replace(temp_path, path)
        except OSError as exc:
            raise MarkerStoreUnavailableError(name, exc) from exc

    def delete(self, name: str) -> None:
        try:
            self._path(name).unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise MarkerStoreUnavailableError(name, exc) from exc

    def clear(self) -> None:
        if not self.directory.is_dir():
            return
        try:
            for path in self.directory.glob("*" + MARKER_SUFFIX):
                path.unlink()
        except OSError as exc:
            raise MarkerStoreUnavailableError(None, exc) from exc
