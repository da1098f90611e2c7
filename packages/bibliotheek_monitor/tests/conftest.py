"""A fake bibliotheek.be website served through httpx.MockTransport."""

import asyncio
import json
from datetime import date, timedelta
from html import escape
from urllib.parse import parse_qs, urlencode

import httpx
import pytest

from bibliotheek_client import BibliotheekClient

P = "my-library-user-library-account-loans"

CALLBACK_URL = "https://bibliotheek.be/mijn-bibliotheek/callback"
LOGIN_START_URL = "https://bibliotheek.be/mijn-bibliotheek/aanmelden"

EXTENSION_DAYS = 28


class FakeLibrarySite:
    """
    Two memberships with three loans, one reservation and one personal list.

    Loans are kept as plain dicts per account id and rendered on request, so
    tests can change days or break endpoints between refresh cycles.
    """

    def __init__(self, today=None):
        self.today = today or date.today()
        self.authenticated = False
        self.reject_login = False
        self.login_count = 0
        self.failing_paths: set[str] = set()
        self.requests: list[httpx.Request] = []
        self.extend_posts: list[dict] = []

        self.accounts = {
            "111": {
                "id": "111",
                "name": "Jan Peeters",
                "libraryName": "Bibliotheek Gent",
                "library": "https://gent.bibliotheek.be",
                "barcode": "1222",
                "hasError": False,
            },
            "222": {
                "id": "222",
                "name": "An Peeters",
                "libraryName": "Bibliotheek Antwerpen",
                "library": "https://antwerpen.bibliotheek.be",
                "barcode": "3344",
                "hasError": False,
            },
        }
        self.loans = {
            "111": [
                {"title": "De avonden", "author": "Gerard Reve", "days": 10, "extend_id": "e-1"},
                {"title": "Kuifje", "author": "Hergé", "days": 3, "extend_id": ""},
            ],
            "222": [
                {"title": "Het diner", "author": "Herman Koch", "days": 20, "extend_id": "e-2"},
            ],
        }
        self.reservations = [
            {"title": "Max Havelaar", "accountName": "Jan Peeters", "location": {"libraryName": "Gent"}},
        ]
        self.user_lists = [
            {"url": "/mijn-bibliotheek/lijsten/55", "title": "Zomerlezen", "numberOfItems": 1,
             "modifiedDate": "2026-09-01"},
        ]
        self.list_items = {
            "55": [{"id": "i-1", "title": "Het Achterhuis", "author": "Anne Frank"}],
        }

    def set_days(self, title: str, days: int) -> None:
        for loans in self.loans.values():
            for loan in loans:
                if loan["title"] == title:
                    loan["days"] = days

    def paths_requested(self) -> list[str]:
        return [r.url.path for r in self.requests]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        # Give other tasks a chance to run, like a real network round trip
        await asyncio.sleep(0)
        self.requests.append(request)
        if request.url.path in self.failing_paths:
            return httpx.Response(500, text="Internal Server Error")
        return self._route(request)

    def _route(self, request: httpx.Request) -> httpx.Response:
        method, host, path = request.method, request.url.host, request.url.path

        if host == "mijn.bibliotheek.be":
            if path == "/openbibid/rest/auth/login":
                self.login_count += 1
                if self.reject_login:
                    return httpx.Response(401)
                return httpx.Response(303, headers={"location": CALLBACK_URL})
            return httpx.Response(200, text="<html>aanmelden</html>")

        if path == "/mijn-bibliotheek/aanmelden":
            if self.authenticated:
                return httpx.Response(200, text="<html>mijn bibliotheek</html>")
            query = urlencode({"hint": "login", "oauth_token": "tok", "oauth_callback": CALLBACK_URL})
            return httpx.Response(
                302, headers={"location": f"https://mijn.bibliotheek.be/openbibid/login?{query}"}
            )

        if path == "/mijn-bibliotheek/callback":
            self.authenticated = True
            return httpx.Response(200, text="<html>welkom</html>")

        if not self.authenticated:
            return httpx.Response(302, headers={"location": LOGIN_START_URL})

        if path == "/mijn-bibliotheek/lidmaatschappen":
            return httpx.Response(200, text="<html>lidmaatschappen</html>")

        if path == "/api/my-library/memberships":
            return httpx.Response(200, json={"Vlaanderen": {"library": list(self.accounts.values())}})

        if path == "/my-library-overview-loans":
            return httpx.Response(200, json=self._overview())

        if path == "/my-library-overview-reservations":
            return httpx.Response(200, json=self.reservations)

        if path == "/mijn-bibliotheek/lijsten":
            lists = escape(json.dumps(self.user_lists))
            return httpx.Response(
                200, text=f'<html><body><item-lists-overview :lists="{lists}"></item-lists-overview></body></html>'
            )

        if path == "/adres-en-openingsuren":
            return httpx.Response(200, text=self._library_page(host))

        parts = path.strip("/").split("/")
        if len(parts) == 4 and parts[:2] == ["my-library", "list"] and parts[3] == "list-items":
            return httpx.Response(200, json=self.list_items.get(parts[2], []))

        if len(parts) == 4 and parts[:2] == ["api", "my-library"] and parts[3] == "activities":
            return httpx.Response(200, json=self._activities(parts[2]))

        if len(parts) == 4 and parts[:2] == ["my-library", "memberships"]:
            account_id, page = parts[2], parts[3]
            if page == "loans":
                return httpx.Response(200, text=self._loans_page(account_id))
            if page == "extend":
                return self._extend(request, account_id)

        return httpx.Response(404)

    def _activities(self, account_id: str) -> dict:
        name = self.accounts[account_id]["name"]
        return {
            "numberOfLoans": len(self.loans.get(account_id, [])),
            "numberOfHolds": sum(1 for r in self.reservations if r["accountName"] == name),
            "openAmount": 0,
            "loanHistoryUrl": "/mijn-bibliotheek/historiek",
        }

    def _overview(self) -> list:
        items = []
        for account_id, loans in self.loans.items():
            account = self.accounts[account_id]
            for loan in loans:
                due = self.today + timedelta(days=loan["days"])
                items.append({
                    "title": loan["title"],
                    "author": loan["author"],
                    "dueDate": due.strftime("%d/%m/%Y"),
                    "isRenewable": bool(loan["extend_id"]),
                    "accountName": account["name"],
                    "location": {"libraryName": account["libraryName"], "libraryUrl": account["library"]},
                })
        return items

    def _library_page(self, host: str) -> str:
        town = host.split(".")[0]
        return (
            '<article class="library library--page-item">'
            f'<div class="library__pane--address--address">Adres Kouter 1  9000 {town.capitalize()}</div>'
            '<a class="tel">09 123 45 67</a>'
            f'<span class="spamspan">info [at] {town}.bibliotheek.be</span>'
            '</article>'
        )

    def _loans_page(self, account_id: str) -> str:
        host = self.accounts[account_id]["library"]
        entries = []
        for loan in self.loans.get(account_id, []):
            checkbox = ""
            if loan["extend_id"]:
                checkbox = (
                    f'<div class="{P}__extend-loan">'
                    f'<input type="checkbox" id="{loan["extend_id"]}"></div>'
                )
            entries.append(
                f'<div class="{P}__loan">'
                f'<div class="{P}__loan-title"><a href="{host}/catalogus/{loan["title"]}">{loan["title"]}</a></div>'
                f'<span class="author">{loan["author"]}</span>'
                f'<span class="{P}__loan-type-label">Boek</span>'
                f'<div class="{P}__loan-days">nog {loan["days"]} dagen</div>'
                f"{checkbox}</div>"
            )
        return f'<html><body><div class="{P}__loan-wrapper">{"".join(entries)}</div></body></html>'

    def _extend(self, request: httpx.Request, account_id: str) -> httpx.Response:
        ids = request.url.params.get("loan-ids", "").split(",")
        if request.method == "GET":
            return httpx.Response(
                200,
                text=(
                    '<form class="my-library-extend-loan-form" method="post">'
                    f'<input type="hidden" name="loan-ids" value="{",".join(ids)}">'
                    '<input type="submit" value="Verlengen"></form>'
                ),
            )

        self.extend_posts.append({"account_id": account_id, **parse_qs(request.content.decode())})
        for loan in self.loans.get(account_id, []):
            if loan["extend_id"] in ids:
                loan["days"] += EXTENSION_DAYS
        return httpx.Response(200, text="<html>verlengd</html>")


@pytest.fixture
def site():
    return FakeLibrarySite()


@pytest.fixture
def make_client(site):
    """Factory for clients talking to the fake site."""
    def factory(**kwargs):
        return BibliotheekClient(
            "jan@example.com", "secret", transport=httpx.MockTransport(site.handler), **kwargs
        )
    return factory
