"""
sync/offline_queue.py - Offline Operation Queue
Captures changes made while offline and replays them once the server is back
"""

import asyncio
import json
import time
import uuid
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional
from dataclasses import dataclass, asdict, field
import logging

import aiofiles

from .models import SyncOperation, SyncRecord
from .retry import check_cancelled

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_PRIORITY = 100


class OperationStatus(Enum):
    """Lifecycle of a queued operation"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class QueuedOperation:
    """
    A change waiting to be replayed against the server
    Lower ``priority`` values run first
    """
    operation: SyncOperation
    entity_type: str
    entity_id: str
    payload: Optional[dict] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: OperationStatus = OperationStatus.PENDING
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    created_at: float = field(default_factory=time.time)
    last_attempt_at: Optional[float] = None
    completed_at: Optional[float] = None
    error_message: Optional[str] = None
    priority: int = DEFAULT_PRIORITY
    correlation_id: Optional[str] = None

    @property
    def is_replayable(self) -> bool:
        if self.status == OperationStatus.PENDING:
            return True
        return self.status == OperationStatus.FAILED and self.attempts < self.max_attempts

    def to_record(self, sync_version: int = 0) -> SyncRecord:
        return SyncRecord(
            entity_id=self.entity_id,
            operation=self.operation,
            payload=self.payload,
            sync_version=sync_version,
            local_timestamp=self.created_at
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data['operation'] = self.operation.value
        data['status'] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'QueuedOperation':
        data = dict(data)
        data['operation'] = SyncOperation(data['operation'])
        data['status'] = OperationStatus(data['status'])
        return cls(**data)


class OfflineQueue:
    """
    Persistent queue of offline operations
    Backed by a JSON file; every mutation is written through
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        self.operations: Dict[str, QueuedOperation] = {}
        self._lock = asyncio.Lock()
        self._loaded = False

    async def load(self):
        """Load operations from disk"""
        async with self._lock:
            await self._load_unlocked()

    async def _load_unlocked(self):
        if self._loaded:
            return
        self._loaded = True

        if not self.path.exists():
            return

        try:
            async with aiofiles.open(self.path, 'r') as f:
                data = json.loads(await f.read())
            self.operations = {k: QueuedOperation.from_dict(v) for k, v in data.items()}
            logger.info(f"Loaded {len(self.operations)} queued operations")
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to load offline queue: {e}")
            self.operations = {}

    async def _save(self):
        data = {k: v.to_dict() for k, v in self.operations.items()}
        tmp_path = self.path.with_suffix('.tmp')
        async with aiofiles.open(tmp_path, 'w') as f:
            await f.write(json.dumps(data, indent=2))
        tmp_path.replace(self.path)

    async def enqueue(self, operation: QueuedOperation):
        async with self._lock:
            await self._load_unlocked()
            self.operations[operation.id] = operation
            await self._save()

        logger.info(
            f"Enqueued operation {operation.id} "
            f"({operation.operation.value} {operation.entity_type})")

    async def get_pending(self) -> List[QueuedOperation]:
        """Pending operations plus failed ones with attempts left, in replay order"""
        async with self._lock:
            await self._load_unlocked()
            pending = [op for op in self.operations.values() if op.is_replayable]

        return sorted(pending, key=lambda op: (op.priority, op.created_at))

    async def get(self, operation_id: str) -> Optional[QueuedOperation]:
        async with self._lock:
            await self._load_unlocked()
            return self.operations.get(operation_id)

    async def get_pending_count(self) -> int:
        return len(await self.get_pending())

    async def get_by_entity(self, entity_type: str, entity_id: str) -> List[QueuedOperation]:
        async with self._lock:
            await self._load_unlocked()
            ops = [
                op for op in self.operations.values()
                if op.entity_type == entity_type and op.entity_id == entity_id
            ]
        return sorted(ops, key=lambda op: op.created_at)

    async def get_by_correlation_id(self, correlation_id: str) -> List[QueuedOperation]:
        async with self._lock:
            await self._load_unlocked()
            ops = [op for op in self.operations.values() if op.correlation_id == correlation_id]
        return sorted(ops, key=lambda op: op.created_at)

    async def mark_processing(self, operation_id: str):
        await self._update(operation_id, OperationStatus.PROCESSING)

    async def mark_processed(self, operation_id: str):
        await self._update(operation_id, OperationStatus.COMPLETED)

    async def mark_failed(self, operation_id: str, error_message: Optional[str] = None):
        async with self._lock:
            await self._load_unlocked()
            op = self.operations.get(operation_id)
            if op is None:
                logger.warning(f"Unknown queued operation {operation_id}")
                return

            op.status = OperationStatus.FAILED
            op.attempts += 1
            op.last_attempt_at = time.time()
            op.error_message = error_message
            await self._save()

        logger.warning(f"Operation {operation_id} marked as failed: {error_message}")

    async def cancel_by_entity(self, entity_type: str, entity_id: str) -> int:
        """Cancel outstanding operations for one entity"""
        cancelled = 0
        async with self._lock:
            await self._load_unlocked()
            for op in self.operations.values():
                if (op.entity_type == entity_type and op.entity_id == entity_id
                        and op.status in (OperationStatus.PENDING, OperationStatus.PROCESSING)):
                    op.status = OperationStatus.CANCELLED
                    op.completed_at = time.time()
                    cancelled += 1
            if cancelled:
                await self._save()
        return cancelled

    async def reset_failed(self) -> int:
        """Give every failed operation a fresh set of attempts"""
        async with self._lock:
            await self._load_unlocked()
            failed = [op for op in self.operations.values() if op.status == OperationStatus.FAILED]
            for op in failed:
                op.status = OperationStatus.PENDING
                op.attempts = 0
                op.error_message = None
            if failed:
                await self._save()

        logger.info(f"Reset {len(failed)} failed operations to pending")
        return len(failed)

    async def clear_completed(self) -> int:
        async with self._lock:
            await self._load_unlocked()
            completed = [
                k for k, op in self.operations.items()
                if op.status == OperationStatus.COMPLETED
            ]
            for k in completed:
                del self.operations[k]
            if completed:
                await self._save()

        logger.info(f"Cleared {len(completed)} completed operations from offline queue")
        return len(completed)

    async def get_statistics(self) -> dict:
        """Get queue statistics"""
        async with self._lock:
            await self._load_unlocked()
            ops = list(self.operations.values())

        pending = [op for op in ops if op.status == OperationStatus.PENDING]

        return {
            'total': len(ops),
            'pending': len(pending),
            'failed': sum(1 for op in ops if op.status == OperationStatus.FAILED),
            'completed': sum(1 for op in ops if op.status == OperationStatus.COMPLETED),
            'oldest_pending_at': min((op.created_at for op in pending), default=None)
        }

    async def _update(self, operation_id: str, status: OperationStatus):
        async with self._lock:
            await self._load_unlocked()
            op = self.operations.get(operation_id)
            if op is None:
                logger.warning(f"Unknown queued operation {operation_id}")
                return

            op.status = status
            op.last_attempt_at = time.time()
            if status == OperationStatus.COMPLETED:
                op.completed_at = op.last_attempt_at
            await self._save()

        logger.debug(f"Operation {operation_id} status updated to {status.value}")


OperationHandler = Callable[[QueuedOperation], Awaitable[bool]]


class OfflineQueueProcessor:
    """
    Replays queued operations through per-entity-type handlers
    Works with OfflineQueue; a handler returns True when the server accepted
    """

    def __init__(self, queue: OfflineQueue):
        self.queue = queue
        self.handlers: Dict[str, OperationHandler] = {}

    def register_handler(self, entity_type: str,
                         handler: OperationHandler) -> 'OfflineQueueProcessor':
        if handler is None:
            raise ValueError("handler is required")
        self.handlers[entity_type] = handler
        return self

    async def process(self, cancel: Optional[asyncio.Event] = None) -> int:
        """Replay pending operations; returns how many succeeded"""
        pending = await self.queue.get_pending()
        if not pending:
            return 0

        logger.info(f"Processing {len(pending)} offline operations...")
        processed = 0

        for op in pending:
            check_cancelled(cancel)

            handler = self.handlers.get(op.entity_type)
            if handler is None:
                logger.warning(f"No handler registered for entity type '{op.entity_type}'")
                continue

            try:
                await self.queue.mark_processing(op.id)

                if await handler(op):
                    await self.queue.mark_processed(op.id)
                    processed += 1
                else:
                    await self.queue.mark_failed(op.id, "Handler returned false")
            except Exception as e:
                logger.error(f"Error processing operation {op.id}: {e}", exc_info=True)
                await self.queue.mark_failed(op.id, str(e))

        logger.info(f"Processed {processed}/{len(pending)} operations successfully")
        return processed
