"""Test conflict resolution strategies"""

import pytest

from fieldsync.sync.conflict import ConflictResolver, ResolutionStrategy
from fieldsync.sync.models import SyncConflict

from conftest import Item


def make_conflict(local, remote):
    return SyncConflict(
        entity_id=local.entity_id,
        entity_type=type(local).__name__,
        local_entity=local,
        remote_entity=remote
    )


class TestAutomaticStrategies:
    """Strategies that never ask anyone"""

    @pytest.fixture
    def local(self):
        return Item("a", "local", has_pending_changes=True, created_at=100.0, modified_at=200.0)

    @pytest.fixture
    def remote(self):
        return Item("a", "remote", created_at=100.0, modified_at=150.0)

    def test_server_wins(self, local, remote):
        resolver = ConflictResolver(ResolutionStrategy.SERVER_WINS)
        assert resolver.decide(local, remote) is remote

    def test_local_wins(self, local, remote):
        resolver = ConflictResolver(ResolutionStrategy.LOCAL_WINS)
        assert resolver.decide(local, remote) is local

    def test_last_write_wins_picks_newer(self, local, remote):
        resolver = ConflictResolver(ResolutionStrategy.LAST_WRITE_WINS)
        assert resolver.decide(local, remote) is local

        remote.modified_at = 300.0
        assert resolver.decide(local, remote) is remote

    def test_last_write_wins_falls_back_to_created_at(self):
        resolver = ConflictResolver(ResolutionStrategy.LAST_WRITE_WINS)
        local = Item("a", has_pending_changes=True, created_at=500.0)
        remote = Item("a", created_at=400.0)

        assert resolver.decide(local, remote) is local

    def test_last_write_wins_tie_goes_to_server(self):
        resolver = ConflictResolver(ResolutionStrategy.LAST_WRITE_WINS)
        local = Item("a", has_pending_changes=True, modified_at=100.0)
        remote = Item("a", modified_at=100.0)

        assert resolver.decide(local, remote) is remote

    def test_last_write_wins_without_timestamps_is_server_wins(self):
        resolver = ConflictResolver(ResolutionStrategy.LAST_WRITE_WINS)
        local = Item("a", has_pending_changes=True, modified_at=999.0)
        remote = Item("a")

        assert resolver.decide(local, remote) is remote

    @pytest.mark.asyncio
    async def test_resolve_fills_conflict(self, local, remote):
        resolver = ConflictResolver(ResolutionStrategy.SERVER_WINS)
        conflict = make_conflict(local, remote)

        resolved = await resolver.resolve(conflict)

        assert resolved is remote
        assert conflict.is_resolved
        assert conflict.resolved_entity is remote
        assert resolver.get_deferred_conflicts() == []


class TestManualStrategy:
    """Manual strategy defers to a handler"""

    @pytest.mark.asyncio
    async def test_handler_resolves(self):
        merged = Item("a", "merged")

        def handler(conflict):
            conflict.resolve(merged)

        resolver = ConflictResolver(ResolutionStrategy.MANUAL, handler)
        resolved = await resolver.resolve(make_conflict(Item("a", has_pending_changes=True), Item("a")))

        assert resolved is merged

    @pytest.mark.asyncio
    async def test_async_handler_is_awaited(self):
        async def handler(conflict):
            conflict.resolved_entity = conflict.local_entity
            conflict.is_resolved = True

        resolver = ConflictResolver(ResolutionStrategy.MANUAL, handler)
        local = Item("a", has_pending_changes=True)

        assert await resolver.resolve(make_conflict(local, Item("a"))) is local

    @pytest.mark.asyncio
    async def test_unresolved_is_declined_and_deferred(self):
        seen = []
        resolver = ConflictResolver(ResolutionStrategy.MANUAL, seen.append)
        conflict = make_conflict(Item("a", has_pending_changes=True), Item("a"))

        assert await resolver.resolve(conflict) is None
        assert seen == [conflict]
        assert resolver.get_deferred_conflicts() == [conflict]

        resolver.clear_deferred_conflicts()
        assert resolver.get_deferred_conflicts() == []

    @pytest.mark.asyncio
    async def test_no_handler_declines(self):
        resolver = ConflictResolver(ResolutionStrategy.MANUAL)
        assert await resolver.resolve(make_conflict(Item("a"), Item("a"))) is None

    @pytest.mark.asyncio
    async def test_failing_handler_declines(self):
        def handler(conflict):
            conflict.resolve(conflict.remote_entity)
            raise RuntimeError("dialog crashed")

        resolver = ConflictResolver(ResolutionStrategy.MANUAL, handler)
        conflict = make_conflict(Item("a"), Item("a"))

        assert await resolver.resolve(conflict) is None
        assert not conflict.is_resolved

    def test_decide_rejects_manual(self):
        resolver = ConflictResolver(ResolutionStrategy.MANUAL)
        with pytest.raises(ValueError):
            resolver.decide(Item("a"), Item("a"))
