"""Aggregator combining every account of one bibliotheek.be login into a snapshot."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from bibliotheek_client import (
    BibliotheekClient,
    FetchError,
    LoanDetail,
    OverviewLoan,
    ParseError,
    Reservation,
    UserList,
    account_loans_url,
    account_open_amounts_url,
    account_reservations_url,
    library_name_from_url,
)

from bibliotheek_monitor.merge import merge_loans
from bibliotheek_monitor.models import AccountView, Snapshot

logger = logging.getLogger(__name__)


class LoanAggregator:
    """
    Builds one consistent Snapshot per refresh cycle.

    Accounts are fetched one after the other: they share a single session and
    cookie store, and the website sees a predictable number of requests.

    Memberships and activity counters are core data; failing to fetch them
    aborts the cycle with FetchError. A failing loans page only affects its own
    account, whose loans then come from the overview. Personal lists are
    fetched last and skipped when they cannot be read.

    Example:
        >>> async with BibliotheekClient("me@example.com", "secret") as client:
        ...     snapshot = await LoanAggregator(client).refresh()
        ...     for loan in snapshot.sorted_by_days_remaining():
        ...         print(f"[{loan.account_name}] {loan}")
    """

    def __init__(
        self,
        client: BibliotheekClient,
        include_reservations: bool = True,
        include_lists: bool = True,
    ):
        """
        Initialize the aggregator.

        Args:
            client: The client whose session is used for every request.
            include_reservations: Also fetch the reservations overview.
            include_lists: Also fetch the user's personal lists.
        """
        self.client = client
        self.include_reservations = include_reservations
        self.include_lists = include_lists

    async def refresh(self, today: Optional[date] = None) -> Snapshot:
        """
        Fetch everything and build a new snapshot.

        Args:
            today: Reference day for days-remaining, defaults to today.

        Raises:
            AuthError: If logging in fails.
            FetchError: If memberships or activities cannot be fetched.
        """
        await self.client.login()

        try:
            accounts = await self.client.get_memberships()
        except ParseError as e:
            raise FetchError(f"Malformed memberships: {e}") from e
        logger.debug("Fetched %d membership(s)", len(accounts))

        views: dict[str, AccountView] = {}
        details: dict[str, list[LoanDetail]] = {}
        libraries: dict[str, str] = {}

        for account in accounts:
            if account.has_error:
                logger.info("Skipping account %s: flagged with an error", account.id)
                continue

            try:
                activities = await self.client.get_activities(account.id)
            except ParseError as e:
                raise FetchError(f"Malformed activities for account {account.id}: {e}") from e

            view = AccountView(
                account=account,
                activities=activities,
                loans_url=account_loans_url(account.id),
                reservations_url=account_reservations_url(account.id),
                open_amounts_url=account_open_amounts_url(account.id),
                history_url=f"{account.library_url}{activities.loan_history_url}",
            )
            views[account.id] = view

            library_name = library_name_from_url(account.library_url)
            if library_name:
                libraries[library_name] = account.library_url

            if activities.loans_count > 0:
                try:
                    account_details = await self.client.get_loan_details(view.loans_url)
                except (FetchError, ParseError) as e:
                    logger.warning("Failed to get loan details for %s: %s", account.id, e)
                    view.detail_error = str(e)
                    continue
                details[account.id] = list(account_details.values())

        overview = await self._fetch_overview()
        reservations = await self._fetch_reservations()
        user_lists = await self._fetch_user_lists()

        snapshot = Snapshot(
            accounts=views,
            loans=merge_loans(views, details, overview, today),
            reservations=reservations,
            libraries=libraries,
            user_lists=user_lists,
            captured_at=datetime.now().astimezone(),
        )
        logger.info(
            "Processed: %d loans, %d reservations, min days: %s",
            snapshot.loan_count, snapshot.reservation_count, snapshot.min_days_remaining,
        )
        return snapshot

    async def _fetch_overview(self) -> list[OverviewLoan]:
        try:
            loans = await self.client.get_loans()
        except (FetchError, ParseError) as e:
            logger.warning("Failed to fetch loans overview: %s", e)
            return []
        logger.debug("Fetched %d loan(s) from the overview", len(loans))
        return loans

    async def _fetch_reservations(self) -> list[Reservation]:
        if not self.include_reservations:
            return []
        try:
            return await self.client.get_reservations()
        except (FetchError, ParseError) as e:
            logger.warning("Failed to fetch reservations: %s", e)
            return []

    async def _fetch_user_lists(self) -> list[UserList]:
        if not self.include_lists:
            return []
        try:
            return await self.client.get_user_lists()
        except (FetchError, ParseError) as e:
            logger.warning("Failed to fetch user lists: %s", e)
            return []
