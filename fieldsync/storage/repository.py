"""JSON-file repository implementing the engine's storage contract"""

import asyncio
import json
from pathlib import Path
from typing import Dict, List, Optional
import logging

import aiofiles

from ..crypto.cipher import PayloadCipher
from .records import Record

logger = logging.getLogger(__name__)


class FileRepository:
    """
    Local durable store for Records
    All reads and writes go through one lock so the engine and the host
    application can share it
    """

    def __init__(self, path: Path, cipher: Optional[PayloadCipher] = None):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.cipher = cipher

        self.records: Dict[str, Record] = {}
        self._lock = asyncio.Lock()
        self._loaded = False

        # Local edit counters, and the counter each record had when the
        # engine last read or wrote it; a newer edit keeps the record pending
        self._edits: Dict[str, int] = {}
        self._seen: Dict[str, int] = {}

    async def _ensure_loaded(self):
        if self._loaded:
            return
        self._loaded = True

        if not self.path.exists():
            return

        async with aiofiles.open(self.path, 'rb') as f:
            raw = await f.read()

        if self.cipher:
            raw = self.cipher.decrypt(raw)

        data = json.loads(raw.decode('utf-8'))
        self.records = {k: Record.from_dict(v) for k, v in data.items()}
        logger.info(f"Loaded {len(self.records)} records from {self.path}")

    async def _save(self):
        raw = json.dumps(
            {k: v.to_dict() for k, v in self.records.items()},
            indent=None if self.cipher else 2
        ).encode('utf-8')

        if self.cipher:
            raw = self.cipher.encrypt(raw)

        tmp_path = self.path.with_suffix('.tmp')
        async with aiofiles.open(tmp_path, 'wb') as f:
            await f.write(raw)
        tmp_path.replace(self.path)

    # Engine contract

    async def get_pending(self) -> List[Record]:
        async with self._lock:
            await self._ensure_loaded()
            pending = [r.copy() for r in self.records.values() if r.has_pending_changes]
            for record in pending:
                self._seen[record.entity_id] = self._edits.get(record.entity_id, 0)
            return pending

    async def get_all(self) -> List[Record]:
        async with self._lock:
            await self._ensure_loaded()
            return [r.copy() for r in self.records.values()]

    async def get_by_id(self, entity_id: str) -> Optional[Record]:
        async with self._lock:
            await self._ensure_loaded()
            record = self.records.get(entity_id)
            return record.copy() if record else None

    async def add(self, record: Record):
        async with self._lock:
            await self._ensure_loaded()
            if record.entity_id in self.records:
                raise KeyError(f"Record {record.entity_id} already exists")
            self.records[record.entity_id] = record.copy()
            self._seen[record.entity_id] = self._edits.get(record.entity_id, 0)
            await self._save()

    async def update(self, record: Record):
        async with self._lock:
            await self._ensure_loaded()
            if record.entity_id not in self.records:
                raise KeyError(f"Record {record.entity_id} not found")
            self.records[record.entity_id] = record.copy()
            self._seen[record.entity_id] = self._edits.get(record.entity_id, 0)
            await self._save()

    async def mark_synced(self, entity_id: str, synced_at: float):
        async with self._lock:
            await self._ensure_loaded()
            record = self.records.get(entity_id)
            if record is None:
                raise KeyError(f"Record {entity_id} not found")
            record.synced_at = synced_at
            record.sync_error = None

            seen = self._seen.pop(entity_id, None)
            if seen is not None and self._edits.get(entity_id, 0) > seen:
                logger.info(f"Record {entity_id} was edited during sync, keeping it pending")
            else:
                record.has_pending_changes = False
            await self._save()

    async def mark_failed(self, entity_id: str, reason: str):
        async with self._lock:
            await self._ensure_loaded()
            record = self.records.get(entity_id)
            if record is None:
                raise KeyError(f"Record {entity_id} not found")
            record.sync_error = reason
            await self._save()

        logger.warning(f"Record {entity_id} failed to sync: {reason}")

    # Host-side edits

    async def save(self, record: Record):
        """Insert or replace a record edited locally"""
        async with self._lock:
            await self._ensure_loaded()
            record.has_pending_changes = True
            self.records[record.entity_id] = record.copy()
            self._edits[record.entity_id] = self._edits.get(record.entity_id, 0) + 1
            await self._save()

    async def delete(self, entity_id: str) -> bool:
        """Soft-delete so the deletion itself gets synced"""
        async with self._lock:
            await self._ensure_loaded()
            record = self.records.get(entity_id)
            if record is None:
                return False
            record.deleted = True
            record.touch()
            self._edits[entity_id] = self._edits.get(entity_id, 0) + 1
            await self._save()
            return True

    async def get_pending_count(self) -> int:
        async with self._lock:
            await self._ensure_loaded()
            return sum(1 for r in self.records.values() if r.has_pending_changes)
