"""Key-value backends for resource server records.

Records are plain JSON-compatible documents keyed by server id. The file
backend keeps one JSON file per server, readable only by the current user.
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class RecordBackend(Protocol):
    """Persistent storage keyed by resource server id."""

    async def read(self, key: str) -> dict[str, Any] | None:
        """Return the stored document or None."""
        ...

    async def write(self, key: str, document: dict[str, Any]) -> None:
        """Create or replace a document."""
        ...

    async def update(self, key: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Merge top-level fields into an existing document and return it.

        Raises:
            KeyError: If no document exists for key
        """
        ...

    async def exists(self, key: str) -> bool:
        ...


class MemoryRecordBackend:
    """In-process backend, used for development and tests."""

    def __init__(self) -> None:
        self._documents: dict[str, dict[str, Any]] = {}

    async def read(self, key: str) -> dict[str, Any] | None:
        document = self._documents.get(key)
        return copy.deepcopy(document) if document is not None else None

    async def write(self, key: str, document: dict[str, Any]) -> None:
        self._documents[key] = copy.deepcopy(document)

    async def update(self, key: str, changes: dict[str, Any]) -> dict[str, Any]:
        if key not in self._documents:
            raise KeyError(key)
        self._documents[key].update(copy.deepcopy(changes))
        return copy.deepcopy(self._documents[key])

    async def exists(self, key: str) -> bool:
        return key in self._documents


class JsonFileRecordBackend:
    """One JSON file per record under ``directory``.

    File access runs in a worker thread so the event loop is never blocked.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)

    def _sanitize_key(self, key: str) -> str:
        """Map a server id to a unique, filesystem-safe file stem.

        Ids that need rewriting get a digest of the original id appended so
        that two ids never share a file.
        """
        safe = "".join(c if c.isalnum() or c in "-_" else "_" for c in key)
        if safe == key:
            return key
        digest = hashlib.sha256(key.encode()).hexdigest()[:12]
        return f"{safe}.{digest}"

    def _path_for(self, key: str) -> Path:
        return self.directory / f"{self._sanitize_key(key)}.json"

    def _read_file(self, path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        with open(path) as f:
            return json.load(f)

    def _write_file(self, path: Path, document: dict[str, Any]) -> None:
        tmp_path = path.with_suffix(".json.tmp")

        # Records hold tokens and client secrets
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(document, f, indent=2)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, path)

    async def read(self, key: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._read_file, self._path_for(key))

    async def write(self, key: str, document: dict[str, Any]) -> None:
        path = self._path_for(key)
        await asyncio.to_thread(self._write_file, path, document)
        logger.debug(f"Wrote record {key} to {path}")

    async def update(self, key: str, changes: dict[str, Any]) -> dict[str, Any]:
        document = await self.read(key)
        if document is None:
            raise KeyError(key)
        document.update(changes)
        await self.write(key, document)
        return document

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path_for(key).exists)
