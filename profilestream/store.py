"""Local JSON record store.

One JSON file per record plus a counter file for id assignment. Writes go
to a temp file in the same directory and are moved into place, so a crash
mid-write never leaves a half-written record.

Frames (``bytes``) inside records are stored as base64 JPEG data URLs, and
datetimes as ISO-8601 strings.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from profilestream.errors import StorageError

logger = logging.getLogger(__name__)

Record = dict[str, Any]

COUNTER_FILE = "_counter.json"


def frame_to_data_url(frame: bytes, mime_type: str = "image/jpeg") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(frame).decode('ascii')}"


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return frame_to_data_url(bytes(value))
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class JsonRecordStore:
    """File-backed record store with integer ids.

    All methods are coroutines; file I/O runs in a worker thread and writes
    are serialized per store instance.

    Attributes:
        directory: Where record files live.

    Example:
        >>> store = JsonRecordStore(tmp_path / "matches")
        >>> record_id = await store.create({"name": "Sam"})
        >>> await store.update(record_id, {"name": "Sam", "age": 29})
        >>> (await store.get_by_id(record_id))["age"]
        29
    """

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def create(self, record: Record) -> int:
        """Store a new record and return its assigned id."""
        async with self._lock:
            record_id = await asyncio.to_thread(self._next_id)
            await asyncio.to_thread(self._write, record_id, {**record, "id": record_id})
        logger.debug(f"Created record {record_id} in {self.directory.name}")
        return record_id

    async def update(self, record_id: int, record: Record) -> None:
        """Merge ``record`` into an existing record.

        Raises:
            StorageError: No record with ``record_id`` exists.
        """
        async with self._lock:
            existing = await asyncio.to_thread(self._read, record_id)
            if existing is None:
                raise StorageError(
                    f"Cannot update missing record {record_id}",
                    context={"record_id": record_id},
                )
            await asyncio.to_thread(self._write, record_id, {**existing, **record, "id": record_id})
        logger.debug(f"Updated record {record_id} in {self.directory.name}")

    async def put(self, record_id: int, record: Record) -> None:
        """Create or replace the record stored under ``record_id``."""
        async with self._lock:
            await asyncio.to_thread(self._write, record_id, {**record, "id": record_id})
            await asyncio.to_thread(self._bump_counter, record_id)

    async def get_by_id(self, record_id: int) -> Record | None:
        return await asyncio.to_thread(self._read, record_id)

    async def list_records(self) -> list[Record]:
        """All records, oldest id first."""
        return await asyncio.to_thread(self._read_all)

    # -------------------------------------------------------------------------
    # File operations
    # -------------------------------------------------------------------------

    def _path(self, record_id: int) -> Path:
        return self.directory / f"{record_id}.json"

    def _atomic_write(self, path: Path, payload: Any) -> None:
        try:
            text = json.dumps(payload, indent=2, default=_json_default)
            self.directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w", dir=self.directory, delete=False, suffix=".tmp", encoding="utf-8"
            ) as tf:
                tf.write(text)
                temp_name = tf.name
            Path(temp_name).replace(path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(
                f"Failed to write {path.name}: {e}",
                context={"path": str(path)},
                original_error=e,
            ) from e

    def _write(self, record_id: int, record: Record) -> None:
        self._atomic_write(self._path(record_id), record)

    def _read(self, record_id: int) -> Record | None:
        path = self._path(record_id)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(
                f"Failed to read record {record_id}: {e}",
                context={"path": str(path)},
                original_error=e,
            ) from e

    def _read_all(self) -> list[Record]:
        if not self.directory.exists():
            return []
        ids = sorted(int(p.stem) for p in self.directory.glob("*.json") if p.stem.isdigit())
        records = []
        for record_id in ids:
            record = self._read(record_id)
            if record is not None:
                records.append(record)
        return records

    def _current_counter(self) -> int:
        path = self.directory / COUNTER_FILE
        if not path.exists():
            return 0
        try:
            with open(path, "r", encoding="utf-8") as f:
                return int(json.load(f).get("last_id", 0))
        except (OSError, ValueError, AttributeError) as e:
            raise StorageError(
                f"Corrupt id counter in {self.directory}: {e}", original_error=e
            ) from e

    def _next_id(self) -> int:
        record_id = self._current_counter() + 1
        self._atomic_write(self.directory / COUNTER_FILE, {"last_id": record_id})
        return record_id

    def _bump_counter(self, record_id: int) -> None:
        if record_id > self._current_counter():
            self._atomic_write(self.directory / COUNTER_FILE, {"last_id": record_id})
