"""Offline-first synchronization engine"""

import asyncio
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple
import logging

from .checkpoint import Checkpoint, CheckpointStore
from .config import SyncConfig
from .conflict import ConflictHandler, ConflictResolver
from .models import (
    BUSY_MESSAGE, OFFLINE_MESSAGE, PAUSED_MESSAGE,
    SyncConflict, SyncDirection, SyncProgress, SyncResult, SyncStatus,
    entity_timestamp,
)
from .retry import SyncCancelled, check_cancelled, wait_cancellable

logger = logging.getLogger(__name__)

ProgressListener = Callable[[SyncProgress], None]


class SyncRepository(Protocol):
    """Local durable store the engine reads pending changes from"""

    async def get_pending(self) -> Iterable[Any]: ...

    async def get_all(self) -> Iterable[Any]: ...

    async def get_by_id(self, entity_id: str) -> Optional[Any]: ...

    async def add(self, entity: Any) -> None: ...

    async def update(self, entity: Any) -> None: ...

    async def mark_synced(self, entity_id: str, synced_at: float) -> None: ...

    async def mark_failed(self, entity_id: str, reason: str) -> None: ...


class SyncApiClient(Protocol):
    """Remote authority the engine pushes to and pulls from"""

    async def is_online(self) -> bool: ...

    async def push(self, entity: Any) -> bool: ...

    async def push_batch(self, entities: List[Any]) -> int: ...

    async def pull(self, since_version: int) -> Iterable[Any]: ...

    async def get_server_version(self) -> int: ...


@dataclass
class _PassCounters:
    uploaded: int = 0
    downloaded: int = 0
    conflicts: int = 0
    conflicts_resolved: int = 0
    errors: int = 0
    messages: List[str] = field(default_factory=list)
    # entity_id -> timestamp of the copy pushed this pass
    pushed: Dict[str, Optional[float]] = field(default_factory=dict)

    def record_error(self, message: str):
        self.errors += 1
        self.messages.append(message)

    def as_counts(self) -> dict:
        return {
            'uploaded': self.uploaded,
            'downloaded': self.downloaded,
            'conflicts': self.conflicts,
            'conflicts_resolved': self.conflicts_resolved,
            'errors': self.errors
        }


def _chunked(items: list, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _is_echo(remote: Any, pushed: Dict[str, Optional[float]]) -> bool:
    """True when ``remote`` is our own upload from this pass coming back"""
    if remote.entity_id not in pushed:
        return False
    stamp = pushed[remote.entity_id]
    return stamp is not None and entity_timestamp(remote) == stamp


class SyncEngine:
    """
    Reconciles a local repository with a remote authority

    One pass: connectivity check -> upload pending -> download deltas.
    Only one pass runs at a time; a second caller gets a busy result
    immediately instead of waiting.
    """

    def __init__(self, repository: SyncRepository, api_client: SyncApiClient,
                 config: Optional[SyncConfig] = None,
                 conflict_handler: Optional[ConflictHandler] = None,
                 checkpoint_store: Optional[CheckpointStore] = None):
        self.repository = repository
        self.api_client = api_client
        self.config = config or SyncConfig()
        self.retry_policy = self.config.retry_policy
        self.resolver = ConflictResolver(self.config.strategy, conflict_handler)
        self.checkpoint_store = checkpoint_store

        # Capacity-one gate; acquired without blocking
        self._gate = threading.Lock()
        self._status = SyncStatus.IDLE
        self._paused = False
        self._force_full = False
        self._checkpoint_loaded = checkpoint_store is None
        self._progress_listeners: List[ProgressListener] = []

        self.last_sync_time: Optional[float] = None
        self.last_sync_version: int = 0

    @classmethod
    def upload_only(cls, repository: SyncRepository, api_client: SyncApiClient,
                    **kwargs) -> 'SyncEngine':
        return cls(repository, api_client,
                   SyncConfig(direction=SyncDirection.UPLOAD), **kwargs)

    @classmethod
    def download_only(cls, repository: SyncRepository, api_client: SyncApiClient,
                      **kwargs) -> 'SyncEngine':
        return cls(repository, api_client,
                   SyncConfig(direction=SyncDirection.DOWNLOAD), **kwargs)

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def is_syncing(self) -> bool:
        return self._gate.locked()

    @property
    def deferred_conflicts(self) -> List[SyncConflict]:
        return self.resolver.get_deferred_conflicts()

    def add_progress_listener(self, listener: ProgressListener):
        self._progress_listeners.append(listener)

    def remove_progress_listener(self, listener: ProgressListener):
        if listener in self._progress_listeners:
            self._progress_listeners.remove(listener)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def sync(self, cancel: Optional[asyncio.Event] = None) -> SyncResult:
        """
        Run one sync pass
        ``cancel`` is an optional event; setting it stops the pass at the
        next batch, item or backoff boundary
        """
        started_at = time.time()

        if self._paused:
            logger.info("Sync is paused, skipping")
            return SyncResult.failed(PAUSED_MESSAGE, started_at, status=SyncStatus.PAUSED)

        if not self._gate.acquire(blocking=False):
            logger.warning("Sync already in progress, skipping")
            return SyncResult.failed(BUSY_MESSAGE, started_at)

        try:
            return await self._run_pass(started_at, cancel)
        finally:
            self._gate.release()

    async def force_sync(self, cancel: Optional[asyncio.Event] = None) -> SyncResult:
        """Forget the checkpoint and pull the full remote dataset"""
        self.last_sync_version = 0
        self.last_sync_time = None
        self._force_full = True
        logger.info("Checkpoint reset, next download is a full resync")
        return await self.sync(cancel)

    def pause(self):
        """
        Stop new passes from starting
        A pass already running is left to finish
        """
        self._paused = True
        self._status = SyncStatus.PAUSED
        logger.info("Sync paused")

    def resume(self):
        if self._paused:
            self._paused = False
            self._status = SyncStatus.IDLE
            logger.info("Sync resumed")

    # ------------------------------------------------------------------
    # Pass lifecycle
    # ------------------------------------------------------------------

    async def _run_pass(self, started_at: float,
                        cancel: Optional[asyncio.Event]) -> SyncResult:
        counts = _PassCounters()

        try:
            self._set_status(SyncStatus.SYNCING)
            self._emit(SyncProgress(SyncStatus.SYNCING, message="Starting sync..."))

            await self._load_checkpoint()
            check_cancelled(cancel)

            if not await self._check_connectivity():
                self._set_status(SyncStatus.OFFLINE)
                self._emit(SyncProgress(SyncStatus.OFFLINE, message=OFFLINE_MESSAGE))
                return SyncResult.failed(OFFLINE_MESSAGE, started_at, status=SyncStatus.OFFLINE)

            if self.config.direction.uploads:
                await self._upload_changes(counts, cancel)

            if self.config.direction.downloads:
                await self._download_changes(counts, cancel)

            self.last_sync_time = time.time()
            await self._save_checkpoint()
            self._set_status(SyncStatus.COMPLETED)

            message = f"Sync completed. Uploaded: {counts.uploaded}, Downloaded: {counts.downloaded}"
            self._emit(SyncProgress(SyncStatus.COMPLETED, message=message))
            logger.info(f"{message}, Conflicts: {counts.conflicts}, Errors: {counts.errors}")

            now = time.time()
            return SyncResult(
                success=True,
                status=SyncStatus.COMPLETED,
                duration=now - started_at,
                started_at=started_at,
                completed_at=now,
                error_message="; ".join(counts.messages) or None,
                **counts.as_counts()
            )

        except SyncCancelled:
            self._set_status(SyncStatus.CANCELLED)
            self._emit(SyncProgress(SyncStatus.CANCELLED, message="Sync was cancelled"))
            logger.warning("Sync was cancelled")
            return SyncResult.cancelled(started_at, **counts.as_counts())

        except asyncio.CancelledError:
            self._set_status(SyncStatus.CANCELLED)
            logger.warning("Sync task was cancelled")
            raise

        except Exception as e:
            self.last_sync_time = time.time()
            self._set_status(SyncStatus.FAILED)
            self._emit(SyncProgress(SyncStatus.FAILED, message=str(e)))
            logger.error(f"Sync failed: {e}", exc_info=True)
            return SyncResult.failed(str(e) or type(e).__name__, started_at, **counts.as_counts())

    async def _check_connectivity(self) -> bool:
        try:
            return bool(await self.api_client.is_online())
        except Exception as e:
            logger.warning(f"Connectivity check failed: {e}")
            return False

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def _upload_changes(self, counts: _PassCounters, cancel: Optional[asyncio.Event]):
        pending = list(await self.repository.get_pending())
        if not pending:
            return

        total = len(pending)
        completed = 0
        logger.info(f"Uploading {total} pending items...")

        for batch in _chunked(pending, self.config.batch_size):
            check_cancelled(cancel)

            for entity in batch:
                entity_id = entity.entity_id
                ok, reason = await self._upload_with_retry(entity, cancel)

                if ok:
                    await self.repository.mark_synced(entity_id, time.time())
                    counts.pushed[entity_id] = entity_timestamp(entity)
                    self.resolver.deferred.pop(entity_id, None)
                    counts.uploaded += 1
                else:
                    await self.repository.mark_failed(entity_id, reason)
                    counts.errors += 1

                completed += 1
                self._emit(SyncProgress(
                    SyncStatus.SYNCING,
                    total_items=total,
                    completed_items=completed,
                    current_item=entity_id,
                    message=f"Uploading {completed}/{total}..."
                ))

    async def _upload_with_retry(self, entity: Any,
                                 cancel: Optional[asyncio.Event]) -> Tuple[bool, Optional[str]]:
        """
        Push one entity, retrying with exponential backoff
        Returns (success, failure reason)
        """
        max_attempts = self.retry_policy.max_attempts
        last_error = "rejected by server"

        for attempt in range(1, max_attempts + 1):
            try:
                if await self.api_client.push(entity):
                    return True, None
                last_error = "rejected by server"
                logger.warning(
                    f"Upload attempt {attempt}/{max_attempts} rejected for entity {entity.entity_id}")
            except Exception as e:
                last_error = str(e) or type(e).__name__
                logger.warning(
                    f"Upload attempt {attempt}/{max_attempts} failed for entity {entity.entity_id}: {e}")

            if attempt < max_attempts:
                await wait_cancellable(self.retry_policy.delay_for(attempt), cancel)

        return False, f"Upload failed after {max_attempts} attempts: {last_error}"

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def _download_changes(self, counts: _PassCounters, cancel: Optional[asyncio.Event]):
        since_version = 0 if self._force_full else self.last_sync_version
        self._force_full = False

        try:
            # Read the version first so changes racing the pull are seen again, not lost
            server_version = int(await self.api_client.get_server_version())
            if server_version < since_version:
                # Server lost history (e.g. restarted); the checkpoint no longer applies
                logger.warning(
                    f"Server version {server_version} is behind checkpoint {since_version}, "
                    f"pulling everything")
                since_version = 0
            changes = list(await self.api_client.pull(since_version))
        except Exception as e:
            logger.error(f"Failed to pull changes from server: {e}", exc_info=True)
            counts.record_error(f"Pull failed: {e}")
            return

        total = len(changes)
        if total:
            logger.info(f"Applying {total} changes from server (since version {since_version})...")

        for index, remote in enumerate(changes, 1):
            check_cancelled(cancel)
            await self._apply_remote(remote, counts, cancel)

            self._emit(SyncProgress(
                SyncStatus.SYNCING,
                total_items=total,
                completed_items=index,
                current_item=remote.entity_id,
                message=f"Downloading {index}/{total}..."
            ))

        self.last_sync_version = max(since_version, server_version)

    async def _apply_remote(self, remote: Any, counts: _PassCounters,
                            cancel: Optional[asyncio.Event]):
        entity_id = remote.entity_id
        local = await self.repository.get_by_id(entity_id)

        if local is None:
            await self.repository.add(remote)
            await self.repository.mark_synced(entity_id, time.time())
            counts.downloaded += 1
            return

        if not local.has_pending_changes:
            await self.repository.update(remote)
            await self.repository.mark_synced(entity_id, time.time())
            if not _is_echo(remote, counts.pushed):
                counts.downloaded += 1
            return

        if _is_echo(remote, counts.pushed):
            # Edited again after our push; the newer local copy goes up next pass
            logger.debug(f"Entity {entity_id} changed locally during upload, leaving it pending")
            return

        counts.conflicts += 1
        conflict = SyncConflict(
            entity_id=entity_id,
            entity_type=type(local).__name__,
            local_entity=local,
            remote_entity=remote
        )
        resolved = await self.resolver.resolve(conflict)

        if resolved is None:
            # Stays pending; retried next pass
            return

        await self.repository.update(resolved)
        counts.conflicts_resolved += 1
        counts.downloaded += 1

        if resolved is not remote:
            # Server doesn't have the winning version yet
            ok, reason = await self._upload_with_retry(resolved, cancel)
            if not ok:
                await self.repository.mark_failed(entity_id, reason)
                counts.errors += 1
                return
            counts.uploaded += 1

        await self.repository.mark_synced(entity_id, time.time())

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    async def _load_checkpoint(self):
        if self._checkpoint_loaded:
            return

        checkpoint = await self.checkpoint_store.load()
        if not self._force_full:
            self.last_sync_version = checkpoint.version
            self.last_sync_time = checkpoint.synced_at
        self._checkpoint_loaded = True

    async def _save_checkpoint(self):
        if self.checkpoint_store is None:
            return
        await self.checkpoint_store.save(
            Checkpoint(version=self.last_sync_version, synced_at=self.last_sync_time))

    def _set_status(self, status: SyncStatus):
        # A pause requested mid-pass sticks until resume()
        if self._paused:
            return
        self._status = status

    def _emit(self, progress: SyncProgress):
        for listener in list(self._progress_listeners):
            try:
                listener(progress)
            except Exception as e:
                logger.error(f"Progress listener failed: {e}", exc_info=True)
