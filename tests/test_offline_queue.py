"""Test the persistent offline operation queue"""

import asyncio

import pytest

from fieldsync.sync.models import SyncOperation
from fieldsync.sync.offline_queue import (
    OfflineQueue, OfflineQueueProcessor, OperationStatus, QueuedOperation
)
from fieldsync.sync.retry import SyncCancelled


def op(entity_id, operation=SyncOperation.UPDATE, entity_type="Record", **kwargs):
    return QueuedOperation(
        operation=operation,
        entity_type=entity_type,
        entity_id=entity_id,
        payload={'id': entity_id},
        **kwargs
    )


class TestOfflineQueue:
    """Queue persistence and bookkeeping"""

    @pytest.mark.asyncio
    async def test_enqueue_persists(self, temp_dir):
        path = temp_dir / "queue.json"
        queue = OfflineQueue(path)
        first = op("a", correlation_id="batch-1")
        await queue.enqueue(first)

        reloaded = OfflineQueue(path)
        stored = await reloaded.get(first.id)

        assert stored is not None
        assert stored.entity_id == "a"
        assert stored.operation == SyncOperation.UPDATE
        assert stored.status == OperationStatus.PENDING
        assert [o.id for o in await reloaded.get_by_correlation_id("batch-1")] == [first.id]

    @pytest.mark.asyncio
    async def test_pending_ordered_by_priority_then_age(self, temp_dir):
        queue = OfflineQueue(temp_dir / "queue.json")
        low = op("low", priority=200, created_at=1.0)
        old = op("old", created_at=2.0)
        new = op("new", created_at=3.0)
        urgent = op("urgent", priority=1, created_at=4.0)
        for item in (low, new, urgent, old):
            await queue.enqueue(item)

        pending = await queue.get_pending()

        assert [o.entity_id for o in pending] == ["urgent", "old", "new", "low"]

    @pytest.mark.asyncio
    async def test_failed_operations_retry_until_exhausted(self, temp_dir):
        queue = OfflineQueue(temp_dir / "queue.json")
        item = op("a", max_attempts=2)
        await queue.enqueue(item)

        await queue.mark_failed(item.id, "timeout")
        assert await queue.get_pending_count() == 1

        await queue.mark_failed(item.id, "timeout")
        assert await queue.get_pending_count() == 0

        stored = await queue.get(item.id)
        assert stored.attempts == 2
        assert stored.error_message == "timeout"

        assert await queue.reset_failed() == 1
        assert await queue.get_pending_count() == 1
        assert (await queue.get(item.id)).attempts == 0

    @pytest.mark.asyncio
    async def test_cancel_by_entity(self, temp_dir):
        queue = OfflineQueue(temp_dir / "queue.json")
        await queue.enqueue(op("a"))
        await queue.enqueue(op("a", operation=SyncOperation.DELETE))
        await queue.enqueue(op("b"))

        assert await queue.cancel_by_entity("Record", "a") == 2

        ops = await queue.get_by_entity("Record", "a")
        assert all(o.status == OperationStatus.CANCELLED for o in ops)
        assert [o.entity_id for o in await queue.get_pending()] == ["b"]

    @pytest.mark.asyncio
    async def test_statistics_and_clear_completed(self, temp_dir):
        queue = OfflineQueue(temp_dir / "queue.json")
        done = op("done", created_at=1.0)
        waiting = op("waiting", created_at=2.0)
        broken = op("broken", created_at=3.0)
        for item in (done, waiting, broken):
            await queue.enqueue(item)

        await queue.mark_processed(done.id)
        await queue.mark_failed(broken.id, "bad payload")

        stats = await queue.get_statistics()
        assert stats == {
            'total': 3,
            'pending': 1,
            'failed': 1,
            'completed': 1,
            'oldest_pending_at': 2.0
        }
        assert (await queue.get(done.id)).completed_at is not None

        assert await queue.clear_completed() == 1
        assert await queue.get(done.id) is None

    @pytest.mark.asyncio
    async def test_corrupt_file_starts_empty(self, temp_dir):
        path = temp_dir / "queue.json"
        path.write_text("{not json")

        queue = OfflineQueue(path)

        assert await queue.get_pending() == []

    def test_to_record(self):
        item = op("a", operation=SyncOperation.INSERT, created_at=42.0)

        record = item.to_record(sync_version=3)

        assert record.entity_id == "a"
        assert record.operation == SyncOperation.INSERT
        assert record.payload == {'id': "a"}
        assert record.sync_version == 3
        assert record.local_timestamp == 42.0


class TestOfflineQueueProcessor:
    """Replaying the queue"""

    @pytest.mark.asyncio
    async def test_process_routes_to_handlers(self, temp_dir):
        queue = OfflineQueue(temp_dir / "queue.json")
        ok = op("ok")
        refused = op("refused")
        crashing = op("crash")
        orphan = op("orphan", entity_type="Unknown")
        for item in (ok, refused, crashing, orphan):
            await queue.enqueue(item)

        async def handler(operation):
            if operation.entity_id == "crash":
                raise ConnectionError("server gone")
            return operation.entity_id == "ok"

        processor = OfflineQueueProcessor(queue).register_handler("Record", handler)
        processed = await processor.process()

        assert processed == 1
        assert (await queue.get(ok.id)).status == OperationStatus.COMPLETED
        assert (await queue.get(refused.id)).error_message == "Handler returned false"
        assert (await queue.get(crashing.id)).error_message == "server gone"
        assert (await queue.get(orphan.id)).status == OperationStatus.PENDING

    @pytest.mark.asyncio
    async def test_process_honours_cancellation(self, temp_dir):
        queue = OfflineQueue(temp_dir / "queue.json")
        await queue.enqueue(op("a"))
        cancel = asyncio.Event()
        cancel.set()

        async def handler(operation):
            return True

        processor = OfflineQueueProcessor(queue).register_handler("Record", handler)

        with pytest.raises(SyncCancelled):
            await processor.process(cancel)

    @pytest.mark.asyncio
    async def test_empty_queue(self, temp_dir):
        processor = OfflineQueueProcessor(OfflineQueue(temp_dir / "queue.json"))
        assert await processor.process() == 0

    def test_register_requires_handler(self, temp_dir):
        processor = OfflineQueueProcessor(OfflineQueue(temp_dir / "queue.json"))
        with pytest.raises(ValueError):
            processor.register_handler("Record", None)
