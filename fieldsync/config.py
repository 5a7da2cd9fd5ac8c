"""Application configuration loaded from YAML"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import logging

import yaml

from .sync.config import SyncConfig

logger = logging.getLogger(__name__)

_SYNC_KEYS = ('direction', 'strategy', 'batch_size', 'max_attempts', 'base_delay')


@dataclass
class ServerConfig:
    host: str = "localhost"
    port: int = 8443


@dataclass
class StorageConfig:
    data_dir: str = "./sync_data"
    secret: Optional[str] = None  # enables encryption at rest and on the wire


@dataclass
class AppConfig:
    """Everything the host CLI needs"""
    sync: SyncConfig = field(default_factory=SyncConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @property
    def data_dir(self) -> Path:
        return Path(self.storage.data_dir)


def load_config(path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration from a YAML file

    Example::

        sync:
          direction: bidirectional
          strategy: last_write_wins
          batch_size: 50
        server:
          host: sync.example.org
          port: 8443
        storage:
          data_dir: ./sync_data
    """
    if path is None:
        return AppConfig()

    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")

    sync_data = data.get('sync') or {}
    unknown = set(sync_data) - set(_SYNC_KEYS)
    if unknown:
        raise ValueError(f"{path}: unknown sync options {sorted(unknown)}")

    config = AppConfig(
        sync=SyncConfig(**sync_data),
        server=ServerConfig(**(data.get('server') or {})),
        storage=StorageConfig(**(data.get('storage') or {}))
    )
    logger.debug(f"Loaded configuration from {path}")
    return config
