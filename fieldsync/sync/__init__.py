from .models import (
    SyncStatus, SyncDirection, SyncOperation, SyncableEntity,
    SyncRecord, SyncProgress, SyncConflict, SyncResult
)
from .conflict import ConflictResolver, ResolutionStrategy
from .config import SyncConfig
from .retry import RetryPolicy, SyncCancelled
from .checkpoint import Checkpoint, CheckpointStore
from .engine import SyncEngine, SyncRepository, SyncApiClient
from .offline_queue import OfflineQueue, OfflineQueueProcessor, QueuedOperation, OperationStatus

__all__ = [
    'SyncStatus',
    'SyncDirection',
    'SyncOperation',
    'SyncableEntity',
    'SyncRecord',
    'SyncProgress',
    'SyncConflict',
    'SyncResult',
    'ConflictResolver',
    'ResolutionStrategy',
    'SyncConfig',
    'RetryPolicy',
    'SyncCancelled',
    'Checkpoint',
    'CheckpointStore',
    'SyncEngine',
    'SyncRepository',
    'SyncApiClient',
    'OfflineQueue',
    'OfflineQueueProcessor',
    'QueuedOperation',
    'OperationStatus'
]
