"""
JSON-file credential store.

All records live in a single JSON document (orjson). Writes go to a
temporary file that atomically replaces the document. File I/O runs in a
worker thread so the event loop is never blocked.
"""
import os
import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

import orjson

from ..exceptions import StorageUnavailable
from ..master.stores import CredentialStore

logger = logging.getLogger("vaultlock.backends")


class JsonFileStore(CredentialStore):
    """``CredentialStore`` persisted as ``{name: record}`` in one JSON file."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._initialized = False
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def init(self) -> None:
        await asyncio.to_thread(self.path.parent.mkdir, parents=True, exist_ok=True)
        self._initialized = True
        logger.debug("Credential store opened at %s", self.path)

    def _load(self) -> dict:
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            return {}
        if not data:
            return {}
        document = orjson.loads(data)
        if not isinstance(document, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return document

    def _dump(self, document: dict) -> None:
        tmp = self.path.with_name(f"{self.path.name}.tmp")
        with open(tmp, "wb") as fp:
            fp.write(orjson.dumps(document, option=orjson.OPT_SORT_KEYS))
            fp.flush()
            os.fsync(fp.fileno())
        os.replace(tmp, self.path)

    def _require_open(self) -> None:
        if not self._initialized:
            raise StorageUnavailable("Credential store not initialized")

    async def get(self, key: str) -> Optional[dict]:
        self._require_open()
        try:
            document = await asyncio.to_thread(self._load)
        except (OSError, ValueError) as err:
            raise StorageUnavailable(f"Cannot read {self.path}: {err}") from err
        return document.get(key)

    async def put(self, key: str, record: dict) -> None:
        self._require_open()
        async with self._lock:
            try:
                document = await asyncio.to_thread(self._load)
                document[key] = record
                await asyncio.to_thread(self._dump, document)
            except (OSError, ValueError, TypeError) as err:
                raise StorageUnavailable(f"Cannot write {self.path}: {err}") from err
