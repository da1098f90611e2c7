"""Tests for the LoanMonitor refresh cycle.

These tests don't require network access or credentials.
"""

import asyncio

import pytest

from bibliotheek_client import AuthError, FetchError
from bibliotheek_monitor.models import LoanOverdue
from bibliotheek_monitor.service import SNAPSHOT_KEY, LoanMonitor
from bibliotheek_monitor.storage import MemoryStore

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


class FailingStore(MemoryStore):
    """Store whose writes fail like a full disk."""

    def set(self, key, value):
        raise OSError(28, "No space left on device")


class TestRefresh:
    """Tests for one refresh cycle."""

    @pytest.mark.asyncio
    async def test_first_refresh(self, site, make_client):
        """Test that the first cycle persists the snapshot and stays quiet."""
        store = MemoryStore()
        received = []
        async with make_client() as client:
            monitor = LoanMonitor(client, store, sink=received.append)
            result = await monitor.refresh()

        assert result.snapshot.loan_count == 3
        assert result.events == []
        assert received == []
        assert monitor.previous is result.snapshot
        assert monitor.available is True
        assert store.get(SNAPSHOT_KEY)["loans"]["De avondene-1"]["extend_id"] == "e-1"

    @pytest.mark.asyncio
    async def test_events_reach_the_sink(self, site, make_client):
        received = []
        async with make_client() as client:
            monitor = LoanMonitor(client, MemoryStore(), sink=received.append, warning_threshold=7)
            await monitor.refresh()

            site.set_days("Kuifje", -1)
            site.set_days("Het diner", 6)
            result = await monitor.refresh()

        assert [e.kind for e in result.events] == ["days_changed", "loan_overdue", "loan_expiring"]
        assert received == result.events

    @pytest.mark.asyncio
    async def test_async_sink(self, site, make_client):
        received = []

        async def sink(event):
            await asyncio.sleep(0)
            received.append(event)

        site.set_days("Kuifje", -3)
        async with make_client() as client:
            monitor = LoanMonitor(client, MemoryStore(), sink=sink)
            await monitor.refresh()

        assert len(received) == 1
        assert isinstance(received[0], LoanOverdue)

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_break_the_cycle(self, site, make_client):
        def sink(event):
            raise RuntimeError("notification service down")

        site.set_days("Kuifje", -3)
        store = MemoryStore()
        async with make_client() as client:
            monitor = LoanMonitor(client, store, sink=sink)
            result = await monitor.refresh()

        assert len(result.events) == 1
        assert store.get(SNAPSHOT_KEY) is not None

    @pytest.mark.asyncio
    async def test_previous_snapshot_survives_restart(self, site, make_client):
        """Test that transitions are detected across a new monitor instance."""
        store = MemoryStore()
        async with make_client() as client:
            await LoanMonitor(client, store).refresh()

        site.set_days("De avonden", 5)
        async with make_client() as client:
            monitor = LoanMonitor(client, store)
            assert monitor.previous is not None
            assert monitor.previous.loan_count == 3
            result = await monitor.refresh()

        assert [e.kind for e in result.events] == ["loan_expiring"]

    @pytest.mark.asyncio
    async def test_unreadable_stored_snapshot_is_ignored(self, site, make_client):
        store = MemoryStore()
        store.set(SNAPSHOT_KEY, {"something": "else"})
        async with make_client() as client:
            monitor = LoanMonitor(client, store)
            assert monitor.previous is None
            result = await monitor.refresh()

        assert result.snapshot.loan_count == 3

    @pytest.mark.asyncio
    async def test_concurrent_refresh_is_dropped(self, site, make_client):
        """Test that at most one refresh cycle runs at a time."""
        async with make_client() as client:
            monitor = LoanMonitor(client, MemoryStore())
            first, second = await asyncio.gather(monitor.refresh(), monitor.refresh())

            assert first is not None
            assert second is None
            assert monitor.is_refreshing is False

    @pytest.mark.asyncio
    async def test_failed_refresh_marks_unavailable(self, site, make_client):
        store = MemoryStore()
        async with make_client() as client:
            monitor = LoanMonitor(client, store)
            await monitor.refresh()
            stored = store.get(SNAPSHOT_KEY)

            site.failing_paths.add("/api/my-library/memberships")
            with pytest.raises(FetchError):
                await monitor.refresh()

            assert monitor.available is False
            assert "500" in monitor.last_error
            assert store.get(SNAPSHOT_KEY) is stored

            site.failing_paths.clear()
            await monitor.refresh()
            assert monitor.available is True
            assert monitor.last_error is None

    @pytest.mark.asyncio
    async def test_store_failure_does_not_repeat_events(self, site, make_client):
        """Test that events go out once even when the snapshot cannot be written."""
        received = []
        store = FailingStore()
        async with make_client() as client:
            monitor = LoanMonitor(client, store, sink=received.append)
            await monitor.refresh()

            site.set_days("De avonden", 5)
            first = await monitor.refresh()
            second = await monitor.refresh()

        assert [e.kind for e in first.events] == ["loan_expiring"]
        assert second.events == []
        assert [e.kind for e in received] == ["loan_expiring"]
        assert monitor.previous is second.snapshot

    @pytest.mark.asyncio
    async def test_rejected_login(self, site, make_client):
        site.reject_login = True
        async with make_client() as client:
            monitor = LoanMonitor(client, MemoryStore())
            with pytest.raises(AuthError):
                await monitor.refresh()
            assert monitor.available is False
            assert monitor.previous is None


class TestExtendLoans:
    """Tests for extending through the monitor."""

    @pytest.mark.asyncio
    async def test_extend_then_refresh(self, site, make_client):
        async with make_client() as client:
            monitor = LoanMonitor(client, MemoryStore(), settle_delay=0)
            await monitor.refresh()

            report = await monitor.extend_loans(max_days=10)

            assert report.total_extended == 1
            assert monitor.previous.loans["De avondene-1"].days_remaining == 38

    @pytest.mark.asyncio
    async def test_nothing_eligible_skips_refresh(self, site, make_client):
        async with make_client() as client:
            monitor = LoanMonitor(client, MemoryStore(), settle_delay=0)
            await monitor.refresh()
            requests_before = len(site.requests)

            report = await monitor.extend_loans(max_days=1)

            assert report.total_extended == 0
            assert len(site.requests) == requests_before

    @pytest.mark.asyncio
    async def test_extend_without_data(self, site, make_client):
        async with make_client() as client:
            monitor = LoanMonitor(client, MemoryStore())
            report = await monitor.extend_loans(max_days=10)

        assert report.total_extended == 0
        assert site.requests == []

    @pytest.mark.asyncio
    async def test_extend_from_stored_snapshot_logs_in(self, site, make_client):
        """Test extending in a new process before its first refresh."""
        store = MemoryStore()
        async with make_client() as client:
            await LoanMonitor(client, store).refresh()

        site.authenticated = False
        async with make_client() as client:
            monitor = LoanMonitor(client, store, settle_delay=0)
            assert client.is_logged_in is False

            report = await monitor.extend_loans(max_days=10)

        assert report.total_extended == 1
        assert report.errors == {}
        assert site.loans["111"][0]["days"] == 38
