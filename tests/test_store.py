"""Tests for the local JSON record store."""

from __future__ import annotations

import asyncio
import base64
import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from profilestream.errors import StorageError
from profilestream.models import MatchIdentity
from profilestream.store import COUNTER_FILE, JsonRecordStore, frame_to_data_url


@pytest.fixture
def record_store(tmp_path: Path) -> JsonRecordStore:
    return JsonRecordStore(tmp_path / "matches")


# =============================================================================
# Create / Update
# =============================================================================


class TestCreateAndUpdate:
    def test_ids_are_sequential(self, record_store: JsonRecordStore) -> None:
        async def scenario() -> list[int]:
            return [await record_store.create({"name": n}) for n in ("a", "b", "c")]

        assert asyncio.run(scenario()) == [1, 2, 3]

    def test_ids_survive_a_new_instance(self, tmp_path: Path) -> None:
        asyncio.run(JsonRecordStore(tmp_path).create({"name": "first"}))

        record_id = asyncio.run(JsonRecordStore(tmp_path).create({"name": "second"}))

        assert record_id == 2

    def test_update_merges_fields(self, record_store: JsonRecordStore) -> None:
        async def scenario() -> dict:
            record_id = await record_store.create({"name": "Sam", "age": None})
            await record_store.update(record_id, {"age": 29})
            return await record_store.get_by_id(record_id)

        record = asyncio.run(scenario())

        assert record == {"name": "Sam", "age": 29, "id": 1}

    def test_update_missing_record_raises(self, record_store: JsonRecordStore) -> None:
        with pytest.raises(StorageError, match="missing record 5"):
            asyncio.run(record_store.update(5, {"name": "ghost"}))

    def test_concurrent_creates_get_distinct_ids(self, record_store: JsonRecordStore) -> None:
        async def scenario() -> list[int]:
            return list(await asyncio.gather(*(record_store.create({"n": i}) for i in range(5))))

        assert sorted(asyncio.run(scenario())) == [1, 2, 3, 4, 5]


# =============================================================================
# Put / Read
# =============================================================================


class TestPutAndRead:
    def test_put_uses_fixed_id_and_bumps_counter(self, record_store: JsonRecordStore) -> None:
        async def scenario() -> int:
            await record_store.put(1, {"synthesis": {}})
            return await record_store.create({"name": "next"})

        assert asyncio.run(scenario()) == 2
        counter = json.loads((record_store.directory / COUNTER_FILE).read_text())
        assert counter == {"last_id": 2}

    def test_get_missing_returns_none(self, record_store: JsonRecordStore) -> None:
        assert asyncio.run(record_store.get_by_id(42)) is None

    def test_corrupt_record_raises(self, record_store: JsonRecordStore) -> None:
        record_store.directory.mkdir(parents=True)
        (record_store.directory / "3.json").write_text("{not json")

        with pytest.raises(StorageError, match="Failed to read record 3"):
            asyncio.run(record_store.get_by_id(3))

    def test_list_records_in_id_order(self, record_store: JsonRecordStore) -> None:
        async def scenario() -> list[dict]:
            await record_store.put(10, {"name": "ten"})
            await record_store.put(2, {"name": "two"})
            return await record_store.list_records()

        assert [r["name"] for r in asyncio.run(scenario())] == ["two", "ten"]

    def test_list_records_without_directory(self, tmp_path: Path) -> None:
        assert asyncio.run(JsonRecordStore(tmp_path / "nothing").list_records()) == []


# =============================================================================
# Serialization
# =============================================================================


class TestSerialization:
    def test_frames_become_data_urls(self, record_store: JsonRecordStore) -> None:
        record = asyncio.run(
            _create_and_read(record_store, {"thumbnail": b"\xff\xd8jpeg", "frames": [b"a"]})
        )

        assert record["thumbnail"] == frame_to_data_url(b"\xff\xd8jpeg")
        assert base64.b64decode(record["frames"][0].split(",", 1)[1]) == b"a"

    def test_datetimes_and_models(self, record_store: JsonRecordStore) -> None:
        when = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

        record = asyncio.run(
            _create_and_read(record_store, {"at": when, "identity": MatchIdentity(name="Sam")})
        )

        assert record["at"] == "2024-05-01T12:00:00+00:00"
        assert record["identity"]["name"] == "Sam"

    def test_unserializable_value_raises_storage_error(self, record_store: JsonRecordStore) -> None:
        with pytest.raises(StorageError, match="not JSON serializable"):
            asyncio.run(record_store.create({"bad": object()}))

    def test_no_temp_files_left_behind(self, record_store: JsonRecordStore) -> None:
        asyncio.run(record_store.create({"name": "Sam"}))

        assert list(record_store.directory.glob("*.tmp")) == []


async def _create_and_read(store: JsonRecordStore, record: dict) -> dict:
    record_id = await store.create(record)
    return await store.get_by_id(record_id)
