"""Persistent sync checkpoint"""

import json
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, asdict
import logging

import aiofiles

logger = logging.getLogger(__name__)


@dataclass
class Checkpoint:
    """Last server version seen and when the last pass finished"""
    version: int = 0
    synced_at: Optional[float] = None


class CheckpointStore:
    """
    Keeps the download checkpoint across restarts
    Stored as a small JSON document next to the local data
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    async def load(self) -> Checkpoint:
        """Load the checkpoint, or a fresh one when missing or unreadable"""
        if not self.path.exists():
            return Checkpoint()

        try:
            async with aiofiles.open(self.path, 'r') as f:
                data = json.loads(await f.read())
            return Checkpoint(**data)
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Failed to load checkpoint {self.path}: {e}")
            return Checkpoint()

    async def save(self, checkpoint: Checkpoint):
        tmp_path = self.path.with_suffix('.tmp')
        async with aiofiles.open(tmp_path, 'w') as f:
            await f.write(json.dumps(asdict(checkpoint), indent=2))
        tmp_path.replace(self.path)
        logger.debug(f"Saved checkpoint version {checkpoint.version}")

    async def reset(self):
        await self.save(Checkpoint())
