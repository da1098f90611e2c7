"""Data models for bibliotheek.be interactions.

The records mirror what the website serves rather than a normalized structure.
Loans arrive in two shapes: ``OverviewLoan`` from the JSON overview (covers every
account, coarse) and ``LoanDetail`` from a per-account HTML page (carries the
extend id and an exact days-remaining value).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse


def library_name_from_url(url: Optional[str]) -> Optional[str]:
    """
    Derive a short library name from the first label of a URL's host.

    Examples:
        "https://gent.bibliotheek.be/some/page" -> "gent"
        "not a url" -> None
    """
    if not url:
        return None
    host = urlparse(url).hostname
    if not host:
        return None
    return host.split(".")[0]


def spell_barcode(barcode: str) -> list[str]:
    """
    Group repeated digits so a barcode can be read aloud.

    Examples:
        "122255" -> ["1", "3x2", "2x5"]
        "" -> []
    """
    groups: list[str] = []
    current: Optional[str] = None
    count = 0

    for char in barcode:
        if char == current:
            count += 1
            continue
        if current is not None:
            groups.append(f"{count}x{current}" if count > 1 else current)
        current = char
        count = 1

    if current is not None:
        groups.append(f"{count}x{current}" if count > 1 else current)

    return groups


@dataclass
class Account:
    """A library membership visible to the logged in user."""

    id: str
    name: str = ""  # user name on the membership, e.g. "John Doe"
    library_name: str = ""  # long name, e.g. "Dijk 92 - Bibliotheek Gent"
    library_url: str = ""
    barcode: str = ""
    has_error: bool = False

    @property
    def library_short_name(self) -> str:
        """Capitalised first host label of the library URL."""
        name = library_name_from_url(self.library_url) or ""
        return name[:1].upper() + name[1:]

    @property
    def barcode_spell(self) -> list[str]:
        return spell_barcode(self.barcode)

    def __str__(self) -> str:
        return f"{self.name} @ {self.library_name or self.library_short_name} ({self.id})"


@dataclass
class Activities:
    """Counters reported by the activities endpoint for one account."""

    loans_count: int = 0
    reservations_count: int = 0
    open_amount: float = 0.0
    loan_history_url: str = ""


@dataclass
class OverviewLoan:
    """A loan as listed by the global overview endpoint."""

    title: str
    author: Optional[str] = None
    due_date: Optional[str] = None  # raw, usually DD/MM/YYYY
    is_renewable: bool = True
    account_name: Optional[str] = None
    library_name: Optional[str] = None
    library_url: Optional[str] = None
    extend_id: Optional[str] = None

    def __str__(self) -> str:
        due_str = f" (due: {self.due_date})" if self.due_date else ""
        author_str = f" by {self.author}" if self.author else ""
        return f"{self.title}{author_str}{due_str}"


@dataclass
class LoanDetail:
    """A loan as listed on an account's loans page."""

    title: str
    author: Optional[str] = None
    loan_type: str = "Unknown"  # e.g. "Boek", "Strip"
    url: Optional[str] = None
    image_src: Optional[str] = None
    days_remaining: int = 0
    loan_from: Optional[str] = None
    loan_till: Optional[str] = None
    extend_id: str = ""
    library: Optional[str] = None
    account_id: Optional[str] = None

    @property
    def is_extendable(self) -> bool:
        """Only loans offering an extend checkbox can be renewed."""
        return bool(self.extend_id)

    @property
    def key(self) -> str:
        return f"{self.title}{self.extend_id}"


@dataclass
class Reservation:
    """An item on hold, from the reservations overview endpoint."""

    title: str
    author: Optional[str] = None
    account_name: Optional[str] = None
    library_name: Optional[str] = None


@dataclass
class LibraryInfo:
    """Address, contact details and opening hours of one library."""

    url: str
    name_from_url: Optional[str] = None
    hours: dict[str, list[str]] = field(default_factory=dict)
    lat: Optional[str] = None
    lon: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    closed_dates: list[tuple[str, str]] = field(default_factory=list)


@dataclass
class ListItem:
    """One title on a personal list."""

    id: str = ""
    title: str = ""
    author: str = ""
    url: str = ""
    cover: str = ""


@dataclass
class UserList:
    """A personal reading list kept on the website."""

    id: str
    name: str
    url: str
    num_items: int = 0
    last_changed: Optional[str] = None
    items: list[ListItem] = field(default_factory=list)
