"""Data models for the monitored loan state."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Optional, Union

from bibliotheek_client import Account, Activities, ListItem, Reservation, UserList

# Summary text is shown in small widgets
SUMMARY_MAX_LENGTH = 500


@dataclass
class Loan:
    """One borrowed item, reconciled from the overview and the account page."""

    title: str
    account_id: Optional[str] = None
    account_name: Optional[str] = None
    author: Optional[str] = None
    due_date: Optional[str] = None  # raw, as served
    days_remaining: int = 0  # negative when overdue
    is_extendable: bool = False
    extend_id: Optional[str] = None
    library_name: Optional[str] = None
    loan_type: Optional[str] = None
    url: Optional[str] = None
    image_src: Optional[str] = None
    loan_from: Optional[str] = None
    loan_till: Optional[str] = None
    source: str = "overview"  # "overview", "detail" or "merged"

    @property
    def is_overdue(self) -> bool:
        return self.days_remaining < 0

    def __str__(self) -> str:
        if self.days_remaining < 0:
            days_str = f"{-self.days_remaining}d overdue!"
        else:
            days_str = f"{self.days_remaining}d"
        extendable = "" if self.is_extendable else " [!]"
        return f"{self.title} ({days_str}){extendable}"


@dataclass
class AccountView:
    """An account as seen during one refresh cycle."""

    account: Account
    activities: Activities = field(default_factory=Activities)
    loans_url: str = ""
    reservations_url: str = ""
    open_amounts_url: str = ""
    history_url: str = ""
    detail_error: Optional[str] = None  # set when the loans page could not be read

    @property
    def id(self) -> str:
        return self.account.id


@dataclass(frozen=True)
class Snapshot:
    """
    The complete state of all accounts and loans after one refresh cycle.

    Snapshots are built in one go by the aggregator and never updated
    afterwards; change detection compares two of them.
    """

    accounts: dict[str, AccountView] = field(default_factory=dict)
    loans: dict[str, Loan] = field(default_factory=dict)
    reservations: list[Reservation] = field(default_factory=list)
    libraries: dict[str, str] = field(default_factory=dict)  # short name -> library site
    user_lists: list[UserList] = field(default_factory=list)
    captured_at: datetime = field(default_factory=lambda: datetime.now().astimezone())

    @property
    def min_days_remaining(self) -> Optional[int]:
        """Smallest days-remaining over all loans, None when there are no loans."""
        if not self.loans:
            return None
        return min(loan.days_remaining for loan in self.loans.values())

    @property
    def loan_count(self) -> int:
        return len(self.loans)

    @property
    def reservation_count(self) -> int:
        """Reservations summed over the per-account counters."""
        return sum(view.activities.reservations_count for view in self.accounts.values())

    @property
    def some_not_extendable(self) -> bool:
        return any(not loan.is_extendable for loan in self.loans.values())

    @property
    def can_extend_all(self) -> bool:
        return not self.some_not_extendable

    @property
    def has_overdue_loans(self) -> bool:
        minimum = self.min_days_remaining
        return minimum is not None and minimum < 0

    def has_expiring_loans(self, days: int) -> bool:
        """Check if at least one loan is due within ``days`` days."""
        minimum = self.min_days_remaining
        return minimum is not None and minimum <= days

    def expiring_soon(self, warning_threshold: int) -> int:
        """Number of loans at or below the warning threshold (overdue included)."""
        return sum(1 for loan in self.loans.values() if loan.days_remaining <= warning_threshold)

    def loans_for_account(self, account_id: str) -> list[Loan]:
        """Loans belonging to one account, matched by id or by user name."""
        view = self.accounts.get(account_id)
        name = view.account.name if view else None
        return [
            loan for loan in self.loans.values()
            if loan.account_id == account_id or (name and loan.account_name == name)
        ]

    def sorted_by_days_remaining(self) -> list[Loan]:
        """Get all loans, most urgent first."""
        return sorted(self.loans.values(), key=lambda loan: (loan.days_remaining, loan.title))

    def summary(self) -> str:
        """Short text listing who has which loans, most urgent first per user."""
        by_user: dict[str, list[Loan]] = {}
        for loan in self.loans.values():
            by_user.setdefault(loan.account_name or "Unknown", []).append(loan)

        lines = []
        for user, loans in by_user.items():
            loans.sort(key=lambda loan: loan.days_remaining)
            lines.append(f"{user} ({len(loans)}):")
            lines.extend(f"  - {loan}" for loan in loans)

        summary = "\n".join(lines)
        if len(summary) > SUMMARY_MAX_LENGTH:
            summary = summary[:SUMMARY_MAX_LENGTH - 3] + "..."
        return summary or "No loans"

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dict for persistence."""
        return {
            "accounts": {key: asdict(view) for key, view in self.accounts.items()},
            "loans": {key: asdict(loan) for key, loan in self.loans.items()},
            "reservations": [asdict(r) for r in self.reservations],
            "libraries": dict(self.libraries),
            "user_lists": [asdict(user_list) for user_list in self.user_lists],
            "captured_at": self.captured_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        """Rebuild a snapshot stored with to_dict().

        Raises:
            KeyError, TypeError, ValueError: If the data is not a stored snapshot.
        """
        accounts = {}
        for key, raw in data["accounts"].items():
            raw = dict(raw)
            account = Account(**raw.pop("account"))
            activities = Activities(**raw.pop("activities"))
            accounts[key] = AccountView(account=account, activities=activities, **raw)

        user_lists = []
        for raw in data.get("user_lists", []):
            raw = dict(raw)
            items = [ListItem(**item) for item in raw.pop("items", [])]
            user_lists.append(UserList(items=items, **raw))

        return cls(
            accounts=accounts,
            loans={key: Loan(**raw) for key, raw in data["loans"].items()},
            reservations=[Reservation(**raw) for raw in data.get("reservations", [])],
            libraries=dict(data.get("libraries", {})),
            user_lists=user_lists,
            captured_at=datetime.fromisoformat(data["captured_at"]),
        )


@dataclass(frozen=True)
class DaysChanged:
    """The smallest days-remaining over all loans changed."""

    kind: ClassVar[str] = "days_changed"

    new_min: Optional[int]
    loan_count: int


@dataclass(frozen=True)
class LoanExpiringSoon:
    """A loan entered the warning window."""

    kind: ClassVar[str] = "loan_expiring"

    loan: Loan
    days_left: int


@dataclass(frozen=True)
class LoanOverdue:
    """A loan went past its due date."""

    kind: ClassVar[str] = "loan_overdue"

    loan: Loan
    days_overdue: int


Event = Union[DaysChanged, LoanExpiringSoon, LoanOverdue]
