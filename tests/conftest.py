"""Pytest configuration and fixtures"""

import pytest
import asyncio
import tempfile
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fieldsync.sync import engine as engine_module
from fieldsync.sync.retry import check_cancelled


@dataclass
class Item:
    """Minimal syncable entity used by the engine tests"""
    entity_id: str
    value: str = ""
    has_pending_changes: bool = False
    created_at: Optional[float] = None
    modified_at: Optional[float] = None


class FakeRepository:
    """In-memory repository recording every call the engine makes"""

    def __init__(self, items=()):
        self.items = {i.entity_id: i for i in items}
        self.added = []
        self.updated = []
        self.synced = []
        self.failed = {}
        self.error: Optional[Exception] = None

    async def get_pending(self):
        if self.error:
            raise self.error
        return [i for i in self.items.values() if i.has_pending_changes]

    async def get_all(self):
        return list(self.items.values())

    async def get_by_id(self, entity_id):
        return self.items.get(entity_id)

    async def add(self, entity):
        self.items[entity.entity_id] = entity
        self.added.append(entity.entity_id)

    async def update(self, entity):
        self.items[entity.entity_id] = entity
        self.updated.append(entity.entity_id)

    async def mark_synced(self, entity_id, synced_at):
        self.items[entity_id].has_pending_changes = False
        self.synced.append(entity_id)

    async def mark_failed(self, entity_id, reason):
        self.failed[entity_id] = reason


class FakeApiClient:
    """
    Scriptable remote
    ``push_outcomes[entity_id]`` is consumed one entry per push: True, False
    or an exception instance; an exhausted script means success
    """

    def __init__(self, online=True, changes=None, server_version=0):
        self.online = online
        self.changes = list(changes or [])
        self.server_version = server_version
        self.push_outcomes = {}
        self.pushed = []
        self.pull_calls = []
        self.online_error: Optional[Exception] = None
        self.pull_error: Optional[Exception] = None
        self.online_delay = 0.0
        self.online_calls = 0

    async def is_online(self):
        self.online_calls += 1
        if self.online_delay:
            await asyncio.sleep(self.online_delay)
        if self.online_error:
            raise self.online_error
        return self.online

    async def push(self, entity):
        self.pushed.append(entity.entity_id)
        outcomes = self.push_outcomes.get(entity.entity_id)
        outcome = outcomes.pop(0) if outcomes else True
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def push_batch(self, entities):
        accepted = 0
        for entity in entities:
            if await self.push(entity):
                accepted += 1
        return accepted

    async def pull(self, since_version):
        self.pull_calls.append(since_version)
        if self.pull_error:
            raise self.pull_error
        return list(self.changes)

    async def get_server_version(self):
        return self.server_version


@pytest.fixture
def repo():
    return FakeRepository()


@pytest.fixture
def api():
    return FakeApiClient()


@pytest.fixture
def backoff_delays(monkeypatch):
    """Skip real backoff sleeps and record the requested delays"""
    delays = []

    async def fake_wait(delay, cancel=None):
        delays.append(delay)
        check_cancelled(cancel)

    monkeypatch.setattr(engine_module, 'wait_cancellable', fake_wait)
    return delays


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def temp_sync_dir():
    """Create temporary directory for sync data"""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)
