from __future__ import annotations

import pytest

from feedsync.services.datastore.errors import DatastoreError, WriteFailureError
from feedsync.services.datastore.scanning import EmptySlotPool, ensure_fields, find_empty_records
from feedsync.services.datastore.scheduler import WriteScheduler
from feedsync.services.datastore.types import FieldType
from feedsync.services.runs.cancellation import CancellationToken

SPECS = [("video_url", FieldType.URL), ("title", FieldType.TEXT)]


def _records(count: int, start: int = 0) -> list[dict[str, str]]:
    return [
        {"video_url": f"https://v.example.com/{n}", "title": f"video {n}"}
        for n in range(start, start + count)
    ]


async def _scheduler(store, chunk_size: int = 50) -> WriteScheduler:
    writers = await ensure_fields(store, SPECS)
    return WriteScheduler(store=store, writers=writers, chunk_size=chunk_size)


@pytest.mark.asyncio
async def test_empty_rows_are_filled_before_appending(memory_store) -> None:
    scheduler = await _scheduler(memory_store)
    memory_store.add_row({"title": "kept"})
    empty_ids = [memory_store.add_row() for _ in range(3)]
    slots = EmptySlotPool(await find_empty_records(memory_store))
    assert list(empty_ids) == ["rec2", "rec3", "rec4"]

    result = await scheduler.persist(_records(5), slots)

    assert result.filled == 3
    assert result.appended == 2
    assert result.dropped == 0
    assert result.written == 5
    assert result.assigned_ids[:3] == empty_ids
    assert all(result.assigned_ids)
    assert len(slots) == 0
    assert len(memory_store.rows) == 6
    assert sorted(memory_store.column("video_url")[1:]) == sorted(r["video_url"] for r in _records(5))


@pytest.mark.asyncio
async def test_leftover_slots_stay_available_for_later_pages(memory_store) -> None:
    scheduler = await _scheduler(memory_store)
    for _ in range(4):
        memory_store.add_row()
    slots = EmptySlotPool(await find_empty_records(memory_store))

    first = await scheduler.persist(_records(3), slots)
    second = await scheduler.persist(_records(2, start=3), slots)

    assert (first.filled, first.appended) == (3, 0)
    assert (second.filled, second.appended) == (1, 1)
    assert slots.consumed == 4


@pytest.mark.asyncio
async def test_failed_fill_is_requeued_into_append(memory_store) -> None:
    scheduler = await _scheduler(memory_store)
    locked = memory_store.add_row()
    open_slot = memory_store.add_row()
    memory_store.failing_fill_ids.add(locked)
    slots = EmptySlotPool([locked, open_slot])

    result = await scheduler.persist(_records(2), slots)

    assert result.filled == 1
    assert result.appended == 1
    assert result.assigned_ids[1] == open_slot
    assert result.assigned_ids[0] not in {"", locked}
    assert memory_store.values(result.assigned_ids[0])["video_url"] == "https://v.example.com/0"
    assert memory_store.rows[locked] == {}


@pytest.mark.asyncio
async def test_batch_insert_is_used_in_chunks(batch_store) -> None:
    scheduler = await _scheduler(batch_store, chunk_size=2)

    result = await scheduler.persist(_records(5), EmptySlotPool())

    assert batch_store.batch_sizes == [2, 2, 1]
    assert result.appended == 5
    assert batch_store.add_record_calls == 0


@pytest.mark.asyncio
async def test_batch_failure_falls_back_to_single_inserts(batch_store) -> None:
    scheduler = await _scheduler(batch_store, chunk_size=10)
    batch_store.batch_error = DatastoreError("payload too large")
    batch_store.reject_record = lambda cells: "https://v.example.com/1" in cells.values()

    result = await scheduler.persist(_records(3), EmptySlotPool())

    assert result.appended == 2
    assert result.dropped == 1
    assert result.assigned_ids[1] == ""
    assert batch_store.add_record_calls == 3


@pytest.mark.asyncio
async def test_chunk_rejected_entirely_raises_write_failure(memory_store) -> None:
    scheduler = await _scheduler(memory_store)
    memory_store.reject_record = lambda _cells: True

    with pytest.raises(WriteFailureError) as exc_info:
        await scheduler.persist(_records(2), EmptySlotPool())

    assert exc_info.value.failed_count == 2
    assert exc_info.value.partial is not None
    assert exc_info.value.partial.written == 0


@pytest.mark.asyncio
async def test_rejected_later_chunk_reports_rows_already_committed(memory_store) -> None:
    scheduler = await _scheduler(memory_store, chunk_size=3)
    memory_store.add_row()
    slots = EmptySlotPool(await find_empty_records(memory_store))
    rejected = {f"https://v.example.com/{n}" for n in (2, 4, 5, 6)}
    memory_store.reject_record = lambda cells: bool(rejected & set(cells.values()))

    with pytest.raises(WriteFailureError) as exc_info:
        await scheduler.persist(_records(7), slots)

    partial = exc_info.value.partial
    assert (partial.filled, partial.appended, partial.dropped) == (1, 2, 4)
    assert partial.written == 3
    assert exc_info.value.failed_count == 4
    assert partial.assigned_ids[0] == "rec1"
    assert partial.assigned_ids[4:] == ["", "", ""]
    assert len(memory_store.rows) == 3


@pytest.mark.asyncio
async def test_cancelled_token_stops_between_chunks(memory_store) -> None:
    scheduler = await _scheduler(memory_store, chunk_size=1)
    token = CancellationToken("keyword")
    token.cancel()

    result = await scheduler.persist(_records(3), EmptySlotPool(), token=token)

    assert result.interrupted is True
    assert result.written == 0
    assert memory_store.rows == {}
