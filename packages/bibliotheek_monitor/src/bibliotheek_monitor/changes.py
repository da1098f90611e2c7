"""Edge-triggered change detection between two snapshots."""

from __future__ import annotations

import logging
from typing import Optional

from bibliotheek_monitor.models import (
    DaysChanged,
    Event,
    Loan,
    LoanExpiringSoon,
    LoanOverdue,
    Snapshot,
)

logger = logging.getLogger(__name__)

DEFAULT_WARNING_THRESHOLD = 7


def diff_snapshots(
    previous: Optional[Snapshot],
    current: Snapshot,
    warning_threshold: int = DEFAULT_WARNING_THRESHOLD,
) -> list[Event]:
    """
    Derive the events between two consecutive snapshots.

    Events fire on transitions only, so a loan that stays in the warning
    window is reported once. Without a previous snapshot only overdue loans
    are reported: seeing an overdue loan for the first time needs action,
    while a loan already in the warning window is not announced.

    Args:
        previous: The snapshot of the last successful cycle, None if there is none.
        current: The snapshot just produced.
        warning_threshold: Days remaining at or below which a loan is expiring soon.

    Returns:
        DaysChanged first (if any), then per loan in snapshot order its
        LoanExpiringSoon and LoanOverdue events.
    """
    events: list[Event] = []

    if previous is not None and previous.min_days_remaining != current.min_days_remaining:
        logger.info(
            "Days changed from %s to %s", previous.min_days_remaining, current.min_days_remaining
        )
        events.append(DaysChanged(new_min=current.min_days_remaining, loan_count=current.loan_count))

    for key, loan in current.loans.items():
        before = _find_previous(previous, key, loan) if previous is not None else None
        days = loan.days_remaining

        if (
            previous is not None
            and 0 <= days <= warning_threshold
            and (before is None or before.days_remaining > warning_threshold)
        ):
            logger.info("Loan expiring soon: %s (%d days)", loan.title, days)
            events.append(LoanExpiringSoon(loan=loan, days_left=days))

        if days < 0 and (before is None or before.days_remaining >= 0):
            logger.info("Loan overdue: %s (%d days overdue)", loan.title, -days)
            events.append(LoanOverdue(loan=loan, days_overdue=-days))

    return events


def _find_previous(previous: Snapshot, key: str, loan: Loan) -> Optional[Loan]:
    """The same loan in the previous snapshot.

    Keys differ between cycles when an account's loans page could be read in
    one cycle and not in the other (extend id against title and user name),
    so a loan missing under its key is looked up by title and holder.
    """
    before = previous.loans.get(key)
    if before is not None:
        return before
    for candidate in previous.loans.values():
        if candidate.title != loan.title:
            continue
        if loan.account_id and candidate.account_id == loan.account_id:
            return candidate
        if loan.account_name and candidate.account_name == loan.account_name:
            return candidate
    return None


class ChangeDetector:
    """Holds the warning threshold and diffs snapshots with it."""

    def __init__(self, warning_threshold: int = DEFAULT_WARNING_THRESHOLD):
        self.warning_threshold = warning_threshold

    def diff(self, previous: Optional[Snapshot], current: Snapshot) -> list[Event]:
        return diff_snapshots(previous, current, self.warning_threshold)
