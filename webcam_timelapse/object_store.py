"""Filesystem-backed object store for captured frames and rendered animations."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path, PurePosixPath

from webcam_timelapse.exceptions import StorageError, ValidationError

LOGGER = logging.getLogger(__name__)


class LocalObjectStore:
    """Store objects under ``root`` using slash-separated keys."""

    def __init__(self, root: Path | str, public_base_url: str = "") -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _path_for(self, key: str) -> Path:
        relative = PurePosixPath(key.lstrip("/"))
        if not key or ".." in relative.parts:
            raise ValidationError(f"Invalid object key: '{key}'")
        return self.root.joinpath(*relative.parts)

    def put(self, key: str, data: bytes) -> None:
        """Write ``data`` atomically under ``key``."""
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StorageError(f"Failed to store object '{key}': {exc}") from exc
        LOGGER.debug("Stored object %s (%d bytes)", key, len(data))

    def get(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to read object '{key}': {exc}") from exc

    def exists(self, key: str) -> bool:
        return self._path_for(key).is_file()

    def delete(self, key: str) -> bool:
        """Remove ``key``; return False when it was already absent."""
        path = self._path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"Failed to delete object '{key}': {exc}") from exc
        return True

    def public_url(self, key: str) -> str:
        key = key.lstrip("/")
        if not self.public_base_url:
            return key
        return f"{self.public_base_url}/{key}"


__all__ = ["LocalObjectStore"]
