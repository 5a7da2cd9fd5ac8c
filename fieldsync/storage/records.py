import time
from dataclasses import dataclass, field, asdict, replace
from typing import Any, Dict, Optional


@dataclass
class Record:
    """
    Generic syncable record
    ``data`` holds the business fields; everything else is sync bookkeeping
    """
    entity_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)
    modified_at: Optional[float] = None
    has_pending_changes: bool = True
    synced_at: Optional[float] = None
    sync_error: Optional[str] = None
    deleted: bool = False
    version: int = 0  # server-assigned

    def touch(self, **changes) -> 'Record':
        """Apply a local edit and flag it for upload"""
        self.data.update(changes)
        self.modified_at = time.time()
        self.has_pending_changes = True
        return self

    def copy(self) -> 'Record':
        return replace(self, data=dict(self.data))

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'Record':
        return cls(**data)

    def to_wire(self) -> dict:
        """Fields the server stores; local bookkeeping stays local"""
        return {
            'entity_id': self.entity_id,
            'data': self.data,
            'created_at': self.created_at,
            'modified_at': self.modified_at,
            'deleted': self.deleted,
            'version': self.version
        }

    @classmethod
    def from_wire(cls, data: dict) -> 'Record':
        return cls(
            entity_id=data['entity_id'],
            data=dict(data.get('data') or {}),
            created_at=data.get('created_at') or time.time(),
            modified_at=data.get('modified_at'),
            has_pending_changes=False,
            deleted=data.get('deleted', False),
            version=data.get('version', 0)
        )
