"""Refresh cycle orchestration: aggregation, change detection, persistence."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from bibliotheek_client import BibliotheekClient, LibraryClientError

from bibliotheek_monitor.aggregator import LoanAggregator
from bibliotheek_monitor.changes import DEFAULT_WARNING_THRESHOLD, ChangeDetector
from bibliotheek_monitor.extension import ExtensionCoordinator, ExtensionReport
from bibliotheek_monitor.models import Event, Snapshot
from bibliotheek_monitor.storage import Store

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "snapshot"

DEFAULT_SETTLE_DELAY = 2.0

TriggerSink = Callable[[Event], Any]


@dataclass
class RefreshResult:
    """The snapshot of one cycle and the events derived from it."""

    snapshot: Snapshot
    events: list[Event] = field(default_factory=list)


class LoggingTriggerSink:
    """Trigger sink that only logs the events it receives."""

    def __call__(self, event: Event) -> None:
        logger.info("Event %s: %s", event.kind, event)


class LoanMonitor:
    """
    Runs refresh cycles with at most one in flight.

    Each cycle builds a snapshot, diffs it against the previous one, hands
    the events to the trigger sink and persists the snapshot. The previous
    snapshot is loaded from the store at start-up so transitions survive a
    restart.
    """

    def __init__(
        self,
        client: BibliotheekClient,
        store: Store,
        sink: Optional[TriggerSink] = None,
        warning_threshold: int = DEFAULT_WARNING_THRESHOLD,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
    ):
        """
        Initialize the monitor.

        Args:
            client: Client used for every request.
            store: Where the latest snapshot is persisted.
            sink: Receives every event; may be a plain or an async callable.
            warning_threshold: Days remaining at or below which a loan is expiring soon.
            settle_delay: Seconds to wait after an extension before refreshing.
        """
        self.client = client
        self.store = store
        self.sink = sink or LoggingTriggerSink()
        self.settle_delay = settle_delay

        self.aggregator = LoanAggregator(client)
        self.detector = ChangeDetector(warning_threshold)
        self.coordinator = ExtensionCoordinator(client)

        self.available = True
        self.last_error: Optional[str] = None

        self._lock = asyncio.Lock()
        self._previous = self._load_snapshot()

    @property
    def previous(self) -> Optional[Snapshot]:
        """The snapshot of the last successful cycle (or the stored one)."""
        return self._previous

    @property
    def is_refreshing(self) -> bool:
        return self._lock.locked()

    def _load_snapshot(self) -> Optional[Snapshot]:
        data = self.store.get(SNAPSHOT_KEY)
        if not data:
            return None
        try:
            return Snapshot.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring stored snapshot that cannot be read: %s", e)
            return None

    async def refresh(self) -> Optional[RefreshResult]:
        """
        Run one refresh cycle.

        Returns:
            The result, or None when a refresh was already in progress and this
            call was dropped.

        Raises:
            LibraryClientError: If the cycle failed (login, memberships or
                activities); the monitor is then marked unavailable.
        """
        if self._lock.locked():
            logger.debug("Refresh already in progress, skipping")
            return None

        async with self._lock:
            return await self._refresh_locked()

    async def _refresh_locked(self) -> RefreshResult:
        logger.info("Refreshing data")
        try:
            snapshot = await self.aggregator.refresh()
        except LibraryClientError as e:
            logger.error("Failed to refresh data: %s", e)
            self.available = False
            self.last_error = str(e)
            raise

        events = self.detector.diff(self._previous, snapshot)

        # The snapshot is recorded before any event goes out
        try:
            self.store.set(SNAPSHOT_KEY, snapshot.to_dict())
        except OSError as e:
            logger.error("Failed to persist snapshot: %s", e)
        self._previous = snapshot

        for event in events:
            await self._dispatch(event)

        self.available = True
        self.last_error = None

        logger.info("Data refresh complete: %d event(s)", len(events))
        return RefreshResult(snapshot=snapshot, events=events)

    async def _dispatch(self, event: Event) -> None:
        try:
            result = self.sink(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Trigger sink failed for %s event", event.kind)

    async def extend_loans(self, max_days: int) -> ExtensionReport:
        """
        Extend every loan with at most ``max_days`` days left.

        Waits for an in-flight refresh, works on the latest snapshot, and
        after at least one extension waits the settle delay and refreshes.

        Raises:
            AuthError: If the client has to log in first and cannot.
        """
        async with self._lock:
            snapshot = self._previous
            if snapshot is None:
                logger.info("No loan data available")
                return ExtensionReport()
            if not self.client.is_logged_in:
                # Snapshot loaded from the store before any refresh
                await self.client.login()
            report = await self.coordinator.extend(snapshot, max_days)

        if report.total_extended > 0:
            await asyncio.sleep(self.settle_delay)
            try:
                await self.refresh()
            except LibraryClientError as e:
                logger.warning("Refresh after extension failed: %s", e)

        return report
