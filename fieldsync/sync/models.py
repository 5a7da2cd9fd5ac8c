"""Sync data model: statuses, envelopes, results and conflicts"""

import time
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable
from dataclasses import dataclass, field

BUSY_MESSAGE = "Sync already in progress"
OFFLINE_MESSAGE = "Server is offline"
PAUSED_MESSAGE = "Sync is paused"


class SyncStatus(Enum):
    """Status of the sync engine"""
    IDLE = "idle"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PAUSED = "paused"
    OFFLINE = "offline"


class SyncDirection(Enum):
    """Which phases a sync pass runs"""
    UPLOAD = "upload"
    DOWNLOAD = "download"
    BIDIRECTIONAL = "bidirectional"

    @property
    def uploads(self) -> bool:
        return self in (SyncDirection.UPLOAD, SyncDirection.BIDIRECTIONAL)

    @property
    def downloads(self) -> bool:
        return self in (SyncDirection.DOWNLOAD, SyncDirection.BIDIRECTIONAL)


class SyncOperation(Enum):
    """Kind of change carried by a SyncRecord"""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@runtime_checkable
class SyncableEntity(Protocol):
    """
    Minimal shape of anything the engine can sync.

    ``created_at`` / ``modified_at`` are optional; when present they are
    epoch seconds and feed the last-write-wins strategy.
    """

    @property
    def entity_id(self) -> str:
        ...

    @property
    def has_pending_changes(self) -> bool:
        ...


def entity_timestamp(entity: Any) -> Optional[float]:
    """Return ``modified_at`` falling back to ``created_at``, or None"""
    modified = getattr(entity, 'modified_at', None)
    if modified is not None:
        return modified
    return getattr(entity, 'created_at', None)


@dataclass
class SyncRecord:
    """Transport envelope for a single change"""
    entity_id: str
    operation: SyncOperation
    payload: Optional[dict]
    sync_version: int = 0
    local_timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            'entity_id': self.entity_id,
            'operation': self.operation.value,
            'payload': self.payload,
            'sync_version': self.sync_version,
            'local_timestamp': self.local_timestamp
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'SyncRecord':
        return cls(
            entity_id=data['entity_id'],
            operation=SyncOperation(data['operation']),
            payload=data.get('payload'),
            sync_version=data.get('sync_version', 0),
            local_timestamp=data.get('local_timestamp', 0.0)
        )


@dataclass(frozen=True)
class SyncProgress:
    """Progress notification emitted during a pass"""
    status: SyncStatus
    total_items: int = 0
    completed_items: int = 0
    current_item: Optional[str] = None
    message: Optional[str] = None

    @property
    def percentage(self) -> int:
        if self.total_items <= 0:
            return 0
        return int(self.completed_items / self.total_items * 100)


@dataclass
class SyncConflict:
    """
    A remote change that hit a local entity with unsynced edits.

    Manual handlers fill ``resolved_entity`` and set ``is_resolved``.
    """
    entity_id: str
    entity_type: str
    local_entity: Any
    remote_entity: Any
    resolved_entity: Any = None
    is_resolved: bool = False
    detected_at: float = field(default_factory=time.time)

    def resolve(self, entity: Any):
        """Mark the conflict resolved with the given entity"""
        self.resolved_entity = entity
        self.is_resolved = True


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one sync pass"""
    success: bool
    status: SyncStatus
    uploaded: int = 0
    downloaded: int = 0
    conflicts: int = 0
    conflicts_resolved: int = 0
    errors: int = 0
    duration: float = 0.0
    started_at: float = 0.0
    completed_at: float = 0.0
    error_message: Optional[str] = None

    @classmethod
    def failed(cls, error: str, started_at: float,
               status: SyncStatus = SyncStatus.FAILED, **counts) -> 'SyncResult':
        now = time.time()
        return cls(
            success=False,
            status=status,
            error_message=error,
            duration=max(0.0, now - started_at),
            started_at=started_at,
            completed_at=now,
            **counts
        )

    @classmethod
    def cancelled(cls, started_at: float, **counts) -> 'SyncResult':
        return cls.failed("Sync was cancelled", started_at,
                          status=SyncStatus.CANCELLED, **counts)

    @property
    def is_busy(self) -> bool:
        return not self.success and self.error_message == BUSY_MESSAGE
