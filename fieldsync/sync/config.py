from dataclasses import dataclass

from .conflict import ResolutionStrategy
from .models import SyncDirection
from .retry import RetryPolicy, DEFAULT_MAX_ATTEMPTS, DEFAULT_BASE_DELAY

DEFAULT_BATCH_SIZE = 50


@dataclass(frozen=True)
class SyncConfig:
    """Engine configuration, fixed for the engine's lifetime"""
    direction: SyncDirection = SyncDirection.BIDIRECTIONAL
    strategy: ResolutionStrategy = ResolutionStrategy.SERVER_WINS
    batch_size: int = DEFAULT_BATCH_SIZE
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY

    def __post_init__(self):
        # Accept plain strings, e.g. from YAML or argparse
        if not isinstance(self.direction, SyncDirection):
            object.__setattr__(self, 'direction', SyncDirection(self.direction))
        if not isinstance(self.strategy, ResolutionStrategy):
            object.__setattr__(self, 'strategy', ResolutionStrategy(self.strategy))
        if self.batch_size <= 0:
            object.__setattr__(self, 'batch_size', DEFAULT_BATCH_SIZE)
        # Validates max_attempts and base_delay
        object.__setattr__(self, '_retry_policy',
                           RetryPolicy(max_attempts=self.max_attempts, base_delay=self.base_delay))

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy
