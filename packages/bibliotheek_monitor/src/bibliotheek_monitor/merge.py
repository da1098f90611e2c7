"""Reconciliation of overview and detail loan records into one canonical view."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from bibliotheek_client import Account, LoanDetail, OverviewLoan

from bibliotheek_monitor.models import AccountView, Loan

logger = logging.getLogger(__name__)


def parse_due_date(raw: Optional[str]) -> Optional[date]:
    """Parse a due date in DD/MM/YYYY or ISO-8601 form.

    ISO datetimes carrying an offset are converted to local time first, so the
    calendar day matches what the user sees.
    """
    if not raw:
        return None
    raw = raw.strip()

    try:
        parts = raw.split("/")
        if len(parts) == 3:
            day, month, year = (int(p) for p in parts)
            return date(year, month, day)

        if len(raw) == 10:
            return date.fromisoformat(raw)

        moment = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        if moment.tzinfo is not None:
            moment = moment.astimezone()
        return moment.date()
    except ValueError:
        return None


def days_remaining(raw: Optional[str], today: Optional[date] = None) -> int:
    """
    Whole days from today until a due date, negative when overdue.

    Both days are taken at local midnight, so the result does not depend on
    the time of day. Empty or unparseable input yields 0.

    Examples:
        due three days from today -> 3
        due yesterday -> -1
    """
    due = parse_due_date(raw)
    if due is None:
        return 0
    return (due - (today or date.today())).days


def loan_key(title: str, extend_id: Optional[str], account_name: Optional[str]) -> str:
    """Identity of a loan within a snapshot.

    The extend id makes a key unique when the website offers one; otherwise
    title and user name are used, which merges two copies of the same title
    held by one user.
    """
    if extend_id:
        return f"{title}{extend_id}"
    return f"{title}|{account_name or ''}"


def reconcile(
    coarse: Optional[OverviewLoan],
    detail: Optional[LoanDetail],
    account: Optional[Account] = None,
    today: Optional[date] = None,
) -> Loan:
    """
    Build the canonical loan from an overview record and/or a detail record.

    The detail record is authoritative for days remaining, extend id and
    extendability. Every other field comes from the detail record when it has
    a value and from the overview record otherwise.
    """
    if coarse is None and detail is None:
        raise ValueError("reconcile() needs at least one record")

    if detail is None:
        return Loan(
            title=coarse.title,
            account_id=account.id if account else None,
            account_name=coarse.account_name or (account.name if account else None),
            author=coarse.author,
            due_date=coarse.due_date,
            days_remaining=days_remaining(coarse.due_date, today),
            is_extendable=coarse.is_renewable,
            extend_id=coarse.extend_id,
            library_name=coarse.library_name,
            source="overview",
        )

    def pick(detail_value, coarse_attr: str):
        if detail_value:
            return detail_value
        return getattr(coarse, coarse_attr) if coarse is not None else None

    account_name = coarse.account_name if coarse is not None else None
    return Loan(
        title=detail.title,
        account_id=detail.account_id or (account.id if account else None),
        account_name=account_name or (account.name if account else None),
        author=pick(detail.author, "author"),
        due_date=(coarse.due_date if coarse is not None else None) or detail.loan_till,
        days_remaining=detail.days_remaining,
        is_extendable=detail.is_extendable,
        extend_id=detail.extend_id or None,
        library_name=pick(detail.library, "library_name"),
        loan_type=detail.loan_type,
        url=detail.url,
        image_src=detail.image_src,
        loan_from=detail.loan_from,
        loan_till=detail.loan_till,
        source="merged" if coarse is not None else "detail",
    )


def merge_loans(
    accounts: dict[str, AccountView],
    details: dict[str, list[LoanDetail]],
    overview: list[OverviewLoan],
    today: Optional[date] = None,
) -> dict[str, Loan]:
    """
    Merge per-account detail records with the global overview.

    Detail records are matched to overview records by title and user name.
    Overview records without a matching detail record (for example because the
    account's loans page failed) are added on their own.

    Args:
        accounts: Account views of this cycle, keyed by account id.
        details: Detail records per account id.
        overview: Records from the loans overview.
        today: Reference day for days-remaining, defaults to today.

    Returns:
        Loans keyed by loan_key().
    """
    coarse_index: dict[tuple[str, str], OverviewLoan] = {}
    for record in overview:
        coarse_index.setdefault((record.title, record.account_name or ""), record)

    loans: dict[str, Loan] = {}
    matched: set[tuple[str, str]] = set()

    for account_id, records in details.items():
        view = accounts.get(account_id)
        account = view.account if view else None
        user = account.name if account else ""
        for record in records:
            coarse = coarse_index.get((record.title, user))
            if coarse is not None:
                matched.add((record.title, user))
            loan = reconcile(coarse, record, account, today)
            loans[loan_key(loan.title, loan.extend_id, loan.account_name)] = loan

    accounts_by_name = {view.account.name: view.account for view in accounts.values() if view.account.name}
    for record in overview:
        if (record.title, record.account_name or "") in matched:
            continue
        loan = reconcile(record, None, accounts_by_name.get(record.account_name or ""), today)
        key = loan_key(loan.title, loan.extend_id, loan.account_name)
        if key in loans:
            continue
        loans[key] = loan

    logger.debug(
        "Merged %d detail record(s) and %d overview record(s) into %d loan(s)",
        sum(len(r) for r in details.values()), len(overview), len(loans),
    )
    return loans
