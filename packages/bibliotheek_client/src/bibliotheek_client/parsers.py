"""Parsers turning bibliotheek.be pages and JSON payloads into records.

Every markup assumption about the website lives in this module. Optional fields
that cannot be read are left at their defaults; a page without its main
container yields an empty result instead of raising.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from bs4 import BeautifulSoup

from bibliotheek_client.exceptions import ParseError
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

logger = logging.getLogger(__name__)

BASE_URL = "https://bibliotheek.be"

# CSS class prefix of the account loans page
_LOANS = "my-library-user-library-account-loans"

_ACCOUNT_ID_RE = re.compile(r"/memberships/(\d+)/")


def _text(element) -> str:
    return element.get_text(strip=True) if element is not None else ""


def account_id_from_url(url: str) -> Optional[str]:
    """Extract the membership id from a ``/memberships/<id>/...`` URL."""
    match = _ACCOUNT_ID_RE.search(url or "")
    return match.group(1) if match else None


def parse_days_phrase(text: Optional[str]) -> int:
    """
    Parse the "days left" phrase shown next to a loan.

    Examples:
        "nog 5 dagen" -> 5
        "Nog 1 dag" -> 1
        "vandaag" -> 0
    """
    if not text:
        return 0
    stripped = (
        text.strip()
        .lower()
        .replace("nog ", "")
        .replace(" dagen", "")
        .replace(" dag", "")
        .strip()
    )
    try:
        return int(stripped)
    except ValueError:
        return 0


def parse_loan_details(html: str, account_id: Optional[str] = None) -> dict[str, LoanDetail]:
    """Parse an account's loans page.

    Loans are grouped per sub-library in wrapper elements. Each loan's key is its
    title followed by its extend id, so two non-extendable loans with the same
    title collapse into one entry.
    """
    details: dict[str, LoanDetail] = {}
    soup = BeautifulSoup(html, "lxml")

    for wrapper in soup.select(f".{_LOANS}__loan-wrapper"):
        for entry in wrapper.select(f".{_LOANS}__loan"):
            detail = _parse_loan_entry(entry, account_id)
            if detail is not None:
                details[detail.key] = detail

    logger.debug("Parsed %d loan details for account %s", len(details), account_id)
    return details


def _parse_loan_entry(entry, account_id: Optional[str]) -> Optional[LoanDetail]:
    """Parse a single loan entry, skipping entries without a title."""
    link = entry.select_one(f".{_LOANS}__loan-title a")
    title = _text(link)
    if not title:
        return None

    href = link.get("href") or None
    library = None
    if href:
        # "https://gent.bibliotheek.be/..." -> "Gent"
        name = library_name_from_url(href)
        if name:
            library = name[:1].upper() + name[1:]

    cover = entry.select_one(f".{_LOANS}__loan-cover-img")
    image_src = cover.get("src") if cover is not None else None

    loan_from, loan_till = _parse_loan_period(entry.select_one(f".{_LOANS}__loan-from-to"))

    checkbox = entry.select_one(f'.{_LOANS}__extend-loan input[type="checkbox"]')
    extend_id = (checkbox.get("id") or "") if checkbox is not None else ""

    return LoanDetail(
        title=title,
        author=_text(entry.select_one(".author")) or None,
        loan_type=_text(entry.select_one(f".{_LOANS}__loan-type-label")) or "Unknown",
        url=href,
        image_src=image_src or None,
        days_remaining=parse_days_phrase(_text(entry.select_one(f".{_LOANS}__loan-days"))),
        loan_from=loan_from,
        loan_till=loan_till,
        extend_id=extend_id,
        library=library,
        account_id=account_id,
    )


def _parse_loan_period(container) -> tuple[Optional[str], Optional[str]]:
    """Read the from/till display strings.

    The container holds one ``div`` per date, each with a label span followed by
    a value span.
    """
    if container is None:
        return None, None

    values: list[Optional[str]] = [None, None]
    for i, row in enumerate(container.find_all("div", recursive=False)[:2]):
        spans = row.find_all("span", recursive=False)
        if len(spans) > 1:
            values[i] = _text(spans[1]) or None
    return values[0], values[1]


def parse_library_details(html: str, url: str) -> LibraryInfo:
    """Parse a library's "address and opening hours" page."""
    base_url = url.replace("/adres-en-openingsuren", "")
    info = LibraryInfo(url=base_url, name_from_url=library_name_from_url(base_url))

    soup = BeautifulSoup(html, "lxml")
    article = soup.select_one(".library.library--page-item")
    if article is None:
        logger.debug("No library article found at %s", url)
        return info

    for day_list in article.select(".library__date-open"):
        day = _text(day_list.find("dt"))
        if day:
            info.hours[day] = [_text(t) for t in day_list.select(".timespan time")]

    gps = article.select_one(".library__pane--address-address--gps")
    if gps is not None:
        # "Gps 51.05° NB 3.72° OL"
        gps_text = gps.get_text().replace("\n", " ").replace("°", "").replace("Gps", "").strip()
        parts = gps_text.split("NB")
        if len(parts) >= 2:
            info.lat = parts[0].strip()
            info.lon = parts[1].split("OL")[0].strip()

    address = article.select_one(".library__pane--address--address")
    if address is not None:
        text = (
            address.get_text()
            .replace("\n", " ")
            .replace("Adres", "")
            .replace("Toon op kaart", "")
            .strip()
        )
        info.address = re.sub(r"\s{2,}", ", ", text) or None

    phone = article.select_one("a.tel")
    if phone is not None:
        info.phone = _text(phone) or None

    email = article.select_one(".spamspan")
    if email is not None:
        info.email = email.get_text().strip().replace(" [at] ", "@") or None

    for closed in article.select(".library__date-closed"):
        info.closed_dates.append((_text(closed.find("dt")), _text(closed.find("dd"))))

    return info


def parse_user_lists(html: str) -> list[UserList]:
    """Parse the lists overview page.

    The list metadata is embedded as JSON in the ``:lists`` attribute of the
    ``item-lists-overview`` component. Items are fetched separately.
    """
    soup = BeautifulSoup(html, "lxml")
    tag = soup.find("item-lists-overview")
    raw = tag.get(":lists") if tag is not None else None
    if not raw:
        logger.debug("No lists data found")
        return []

    try:
        data = json.loads(raw)
    except ValueError as e:
        logger.warning("Failed to parse lists JSON: %s", e)
        return []

    lists = []
    for entry in data if isinstance(data, list) else []:
        if not isinstance(entry, dict):
            continue
        path = str(entry.get("url") or "")
        list_id = path.rstrip("/").split("/")[-1]
        if not list_id:
            continue
        lists.append(UserList(
            id=list_id,
            name=entry.get("title") or "",
            url=f"{BASE_URL}{path}",
            num_items=_as_int(entry.get("numberOfItems")),
            last_changed=entry.get("modifiedDate"),
        ))
    return lists


def parse_list_items(payload: Any) -> list[ListItem]:
    """Parse the JSON returned by a list's items endpoint."""
    if not isinstance(payload, list):
        return []
    return [
        ListItem(
            id=str(item.get("id") or ""),
            title=item.get("title") or "",
            author=item.get("author") or "",
            url=item.get("url") or "",
            cover=item.get("cover") or "",
        )
        for item in payload
        if isinstance(item, dict)
    ]


def parse_extension_form(html: str) -> Optional[list[tuple[str, str]]]:
    """Collect the name/value pairs of the extension confirmation form.

    Returns None when the page holds no extension form.
    """
    soup = BeautifulSoup(html, "lxml")
    form = soup.select_one(".my-library-extend-loan-form")
    if form is None:
        return None

    fields = []
    for inp in form.find_all("input"):
        name = inp.get("name")
        if name:
            fields.append((name, inp.get("value") or ""))
    return fields


def parse_memberships(payload: Any) -> list[Account]:
    """Flatten the memberships payload into a list of accounts.

    The payload maps region names to objects whose ``library`` (or ``region``)
    entry is either a list of accounts or a mapping of lists of accounts.
    """
    if not isinstance(payload, dict):
        raise ParseError(f"Unexpected memberships payload: {type(payload).__name__}")

    accounts = []
    for region in payload.values():
        if not isinstance(region, dict):
            continue
        entries = region.get("library") or region.get("region") or []
        if isinstance(entries, dict):
            flattened = []
            for sub in entries.values():
                if isinstance(sub, list):
                    flattened.extend(sub)
            entries = flattened
        if not isinstance(entries, list):
            continue

        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("id"):
                continue
            accounts.append(Account(
                id=str(entry["id"]),
                name=entry.get("name") or "",
                library_name=entry.get("libraryName") or "",
                library_url=entry.get("library") or "",
                barcode=str(entry.get("barcode") or ""),
                has_error=bool(entry.get("hasError")),
            ))
    return accounts


def parse_activities(payload: Any) -> Activities:
    """Parse the activities counters of one account."""
    if not isinstance(payload, dict):
        raise ParseError(f"Unexpected activities payload: {type(payload).__name__}")
    try:
        open_amount = float(payload.get("openAmount") or 0)
    except (TypeError, ValueError):
        open_amount = 0.0
    return Activities(
        loans_count=_as_int(payload.get("numberOfLoans")),
        reservations_count=_as_int(payload.get("numberOfHolds")),
        open_amount=open_amount,
        loan_history_url=payload.get("loanHistoryUrl") or "",
    )


def parse_overview_loans(payload: Any) -> list[OverviewLoan]:
    """Parse the flat loans overview array."""
    if not isinstance(payload, list):
        logger.warning("Unexpected loans overview payload: %s", type(payload).__name__)
        return []

    loans = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        location = item.get("location") if isinstance(item.get("location"), dict) else {}
        loans.append(OverviewLoan(
            title=item.get("title") or "Unknown",
            author=item.get("author") or None,
            due_date=item.get("dueDate") or None,
            is_renewable=item.get("isRenewable") is not False,
            account_name=item.get("accountName") or None,
            library_name=location.get("libraryName") or None,
            library_url=location.get("libraryUrl") or None,
            extend_id=item.get("extendLoanId") or None,
        ))
    return loans


def parse_reservations(payload: Any) -> list[Reservation]:
    """Parse the flat reservations overview array."""
    if not isinstance(payload, list):
        logger.warning("Unexpected reservations payload: %s", type(payload).__name__)
        return []

    reservations = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        location = item.get("location") if isinstance(item.get("location"), dict) else {}
        reservations.append(Reservation(
            title=item.get("title") or "Unknown",
            author=item.get("author") or None,
            account_name=item.get("accountName") or None,
            library_name=location.get("libraryName") or None,
        ))
    return reservations


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
