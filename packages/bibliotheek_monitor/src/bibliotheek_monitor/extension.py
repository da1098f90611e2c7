"""Batch extension of loans close to their due date."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from bibliotheek_client import BibliotheekClient, LibraryClientError, account_loans_url

from bibliotheek_monitor.models import Loan, Snapshot

logger = logging.getLogger(__name__)


@dataclass
class ExtensionReport:
    """Outcome of extending loans across accounts."""

    total_extended: int = 0
    per_account: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.total_extended > 0


def select_eligible(snapshot: Snapshot, max_days: int) -> dict[str, list[Loan]]:
    """
    Group the loans that can be extended now by account id.

    A loan qualifies when it is extendable, has an extend id, belongs to a
    known account and has at most ``max_days`` days left.
    """
    groups: dict[str, list[Loan]] = {}
    for loan in snapshot.loans.values():
        if (
            loan.is_extendable
            and loan.extend_id
            and loan.account_id
            and loan.days_remaining <= max_days
        ):
            groups.setdefault(loan.account_id, []).append(loan)
    return groups


class ExtensionCoordinator:
    """Submits one extension batch per account."""

    def __init__(self, client: BibliotheekClient):
        self.client = client

    async def extend(self, snapshot: Snapshot, max_days: int) -> ExtensionReport:
        """
        Extend every eligible loan of the snapshot.

        A failing batch is recorded in the report and does not stop the
        batches of other accounts.
        """
        report = ExtensionReport()

        for account_id, loans in select_eligible(snapshot, max_days).items():
            view = snapshot.accounts.get(account_id)
            loans_url = view.loans_url if view and view.loans_url else account_loans_url(account_id)
            base_url = re.sub(r"/loans$", "", loans_url)

            logger.info("Extending %d loan(s) for account %s", len(loans), account_id)
            try:
                count = await self.client.extend_loans(base_url, [loan.extend_id for loan in loans])
            except LibraryClientError as e:
                logger.warning("Extending loans for account %s failed: %s", account_id, e)
                report.errors[account_id] = str(e)
                continue

            report.per_account[account_id] = count
            report.total_extended += count

        logger.info("Extended %d loan(s) total", report.total_extended)
        return report
