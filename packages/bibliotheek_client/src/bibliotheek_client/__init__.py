"""
Bibliotheek Client - A utility library for interacting with bibliotheek.be.

This library provides functionality to:
- Login to "Mijn Bibliotheek" with the website's redirect-based protocol
- List library memberships and their activity counters
- Get loans and reservations, both as overview and per account
- Extend loans in batches
- Read library opening hours and personal lists
"""

from bibliotheek_client.client import (
    BibliotheekClient,
    account_loans_url,
    account_open_amounts_url,
    account_reservations_url,
)
from bibliotheek_client.exceptions import (
    AuthError,
    AuthFailure,
    FetchError,
    LibraryClientError,
    ParseError,
    SessionError,
    SessionExpiredError,
)
from bibliotheek_client.models import (
    Account,
    Activities,
    LibraryInfo,
    ListItem,
    LoanDetail,
    OverviewLoan,
    Reservation,
    UserList,
    library_name_from_url,
)

__all__ = [
    "BibliotheekClient",
    "account_loans_url",
    "account_open_amounts_url",
    "account_reservations_url",
    "AuthError",
    "AuthFailure",
    "FetchError",
    "LibraryClientError",
    "ParseError",
    "SessionError",
    "SessionExpiredError",
    "Account",
    "Activities",
    "LibraryInfo",
    "ListItem",
    "LoanDetail",
    "OverviewLoan",
    "Reservation",
    "UserList",
    "library_name_from_url",
]
