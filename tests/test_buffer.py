"""Local durable buffer."""

from __future__ import annotations

import asyncio

import orjson
import pytest

from conftest import FakeSink, make_record
from jobharvest.core.orchestrator import LocalBuffer


def ids(records):
    return [r.external_id for r in records]


async def test_appended_records_survive_a_restart(tmp_path):
    path = tmp_path / "local_jobs.json"
    buffer = LocalBuffer(path)
    await buffer.append([make_record("1"), make_record("2", salary_text="$100K")])
    await buffer.append([make_record("3")])

    reloaded = LocalBuffer(path)
    assert reloaded.load() == 3
    assert ids(reloaded.records()) == ["1", "2", "3"]
    assert reloaded.records()[1].salary_text == "$100K"

    # The file is a plain JSON array of records
    data = orjson.loads(path.read_bytes())
    assert isinstance(data, list)
    assert data[0]["external_id"] == "1"


async def test_flush_commits_in_sub_batches(tmp_path):
    buffer = LocalBuffer(tmp_path / "buf.json", flush_batch_size=2)
    await buffer.append([make_record(str(i)) for i in range(5)])
    sink = FakeSink()

    result = await buffer.flush(sink)

    assert result.ok
    assert result.flushed == 5
    assert result.batches == 3
    assert result.remaining == 0
    assert sink.upsert_calls == 3
    assert set(sink.stored) == {"0", "1", "2", "3", "4"}
    assert LocalBuffer(tmp_path / "buf.json").load() == 0


async def test_flush_halts_at_first_failed_batch(tmp_path):
    path = tmp_path / "buf.json"
    buffer = LocalBuffer(path, flush_batch_size=2)
    await buffer.append([make_record(str(i)) for i in range(5)])

    class FlakySink(FakeSink):
        async def upsert_records(self, records):
            if self.upsert_calls == 1:
                self.upsert_calls += 1
                raise ConnectionError("connection reset")
            return await super().upsert_records(records)

    sink = FlakySink()
    result = await buffer.flush(sink)

    assert not result.ok
    assert "connection reset" in result.error
    assert result.flushed == 2
    assert result.remaining == 3
    assert ids(buffer.records()) == ["2", "3", "4"]
    reloaded = LocalBuffer(path)
    reloaded.load()
    assert ids(reloaded.records()) == ["2", "3", "4"]


async def test_records_appended_during_flush_are_kept(tmp_path):
    buffer = LocalBuffer(tmp_path / "buf.json")
    await buffer.append([make_record("a"), make_record("b"), make_record("c")])

    entered = asyncio.Event()
    release = asyncio.Event()

    class SlowSink(FakeSink):
        async def upsert_records(self, records):
            entered.set()
            await release.wait()
            return await super().upsert_records(records)

    sink = SlowSink()
    flushing = asyncio.create_task(buffer.flush(sink))
    await entered.wait()

    await buffer.append([make_record("d"), make_record("e")])
    release.set()
    result = await flushing

    assert result.ok
    assert result.batches == 2
    assert set(sink.stored) == {"a", "b", "c", "d", "e"}
    assert buffer.count == 0


async def test_corrupt_buffer_file_is_moved_aside(tmp_path):
    path = tmp_path / "buf.json"
    path.write_text('[{"external_id": "1"', encoding="utf-8")

    buffer = LocalBuffer(path)
    assert buffer.load() == 0
    assert (tmp_path / "buf.json.corrupt").exists()

    await buffer.append([make_record("2")])
    assert LocalBuffer(path).load() == 1


async def test_non_array_buffer_file_is_moved_aside(tmp_path):
    path = tmp_path / "buf.json"
    path.write_text('{"external_id": "1"}', encoding="utf-8")

    assert LocalBuffer(path).load() == 0
    assert (tmp_path / "buf.json.corrupt").exists()


async def test_invalid_entries_are_skipped(tmp_path):
    path = tmp_path / "buf.json"
    path.write_text('[{"external_id": "1"}, {"title": "no id"}]', encoding="utf-8")

    buffer = LocalBuffer(path)
    assert buffer.load() == 1
    assert ids(buffer.records()) == ["1"]


async def test_clear_drops_everything(tmp_path):
    buffer = LocalBuffer(tmp_path / "buf.json")
    await buffer.append([make_record("1"), make_record("2")])

    assert await buffer.clear() == 2
    assert buffer.count == 0
    assert LocalBuffer(tmp_path / "buf.json").load() == 0


def test_flush_batch_size_must_be_positive(tmp_path):
    with pytest.raises(ValueError):
        LocalBuffer(tmp_path / "buf.json", flush_batch_size=0)
