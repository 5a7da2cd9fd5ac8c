import inspect
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
import logging

from .models import SyncConflict, entity_timestamp

logger = logging.getLogger(__name__)

ConflictHandler = Callable[[SyncConflict], Union[None, Awaitable[None]]]


class ResolutionStrategy(Enum):
    """Conflict resolution strategies"""
    SERVER_WINS = "server_wins"
    LOCAL_WINS = "local_wins"
    LAST_WRITE_WINS = "last_write_wins"
    MANUAL = "manual"


class ConflictResolver:
    """
    Decides the outcome of a sync conflict
    Never writes to the repository; the engine applies the result
    """

    def __init__(self, strategy: ResolutionStrategy = ResolutionStrategy.SERVER_WINS,
                 handler: Optional[ConflictHandler] = None):
        self.strategy = strategy
        self.handler = handler

        # Conflicts the manual handler left open, one per entity
        self.deferred: Dict[str, SyncConflict] = {}

    def decide(self, local: Any, remote: Any) -> Any:
        """
        Pick a winner for the automatic strategies
        Returns the entity that should be stored locally
        """
        if self.strategy == ResolutionStrategy.LOCAL_WINS:
            return local

        if self.strategy == ResolutionStrategy.LAST_WRITE_WINS:
            local_time = entity_timestamp(local)
            remote_time = entity_timestamp(remote)

            if local_time is None or remote_time is None:
                # Can't compare without audit timestamps
                return remote

            return local if local_time > remote_time else remote

        if self.strategy == ResolutionStrategy.MANUAL:
            raise ValueError("Manual conflicts must go through resolve()")

        return remote

    async def resolve(self, conflict: SyncConflict) -> Optional[Any]:
        """
        Resolve a conflict under the configured strategy
        Returns the resolved entity, or None when it was declined
        """
        if self.strategy != ResolutionStrategy.MANUAL:
            conflict.resolve(self.decide(conflict.local_entity, conflict.remote_entity))
            logger.info(f"Resolved conflict {conflict.entity_id} with {self.strategy.value}")
            return conflict.resolved_entity

        await self._ask_handler(conflict)

        if conflict.is_resolved and conflict.resolved_entity is not None:
            self.deferred.pop(conflict.entity_id, None)
            logger.info(f"Conflict {conflict.entity_id} resolved manually")
            return conflict.resolved_entity

        self.deferred[conflict.entity_id] = conflict
        logger.warning(f"Conflict for entity {conflict.entity_id} was not resolved")
        return None

    async def _ask_handler(self, conflict: SyncConflict):
        """Hand the conflict to the manual handler and wait for its answer"""
        if self.handler is None:
            logger.warning(f"No conflict handler registered for {conflict.entity_id}")
            return

        try:
            outcome = self.handler(conflict)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"Conflict handler failed for {conflict.entity_id}: {e}", exc_info=True)
            conflict.is_resolved = False
            conflict.resolved_entity = None

    def get_deferred_conflicts(self) -> List[SyncConflict]:
        """Get conflicts still waiting for a decision"""
        return list(self.deferred.values())

    def clear_deferred_conflicts(self):
        """Forget deferred conflicts"""
        self.deferred.clear()
