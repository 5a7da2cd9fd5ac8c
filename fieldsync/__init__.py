"""fieldsync - offline-first record synchronization"""

from .sync import (
    SyncEngine, SyncConfig, SyncResult, SyncStatus, SyncDirection,
    ResolutionStrategy, SyncConflict, SyncProgress
)

__version__ = "1.0.0"

__all__ = [
    'SyncEngine',
    'SyncConfig',
    'SyncResult',
    'SyncStatus',
    'SyncDirection',
    'ResolutionStrategy',
    'SyncConflict',
    'SyncProgress'
]
