"""Client for interacting with bibliotheek.be."""

from __future__ import annotations

import logging
import os
from typing import Any, Optional
from urllib.parse import parse_qs, urljoin, urlparse

import httpx

from bibliotheek_client.exceptions import (
    AuthError,
    AuthFailure,
    FetchError,
    ParseError,
    SessionError,
    SessionExpiredError,
)
from bibliotheek_client.models import (
    Account,
    Activities,
    LibraryInfo,
    LoanDetail,
    OverviewLoan,
    Reservation,
    UserList,
)
from bibliotheek_client.parsers import (
    account_id_from_url,
    parse_activities,
    parse_extension_form,
    parse_library_details,
    parse_list_items,
    parse_loan_details,
    parse_memberships,
    parse_overview_loans,
    parse_reservations,
    parse_user_lists,
)

logger = logging.getLogger(__name__)

BASE_URL = "https://bibliotheek.be"
AUTH_BASE_URL = "https://mijn.bibliotheek.be"

LOGIN_START_URL = f"{BASE_URL}/mijn-bibliotheek/aanmelden"
LOGIN_SUBMIT_URL = f"{AUTH_BASE_URL}/openbibid/rest/auth/login"
ACCESS_TOKEN_URL = f"{AUTH_BASE_URL}/openbibid/rest/accessToken"
VERIFY_URL = f"{BASE_URL}/mijn-bibliotheek/lidmaatschappen"

MEMBERSHIPS_URL = f"{BASE_URL}/api/my-library/memberships"
LOANS_OVERVIEW_URL = f"{BASE_URL}/my-library-overview-loans"
RESERVATIONS_OVERVIEW_URL = f"{BASE_URL}/my-library-overview-reservations"
USER_LISTS_URL = f"{BASE_URL}/mijn-bibliotheek/lijsten"

# Substrings of a URL that mean the request ended up on the login flow
LOGGED_OUT_MARKERS = ("/mijn-bibliotheek/aanmelden", "mijn.bibliotheek.be/openbibid")

DEFAULT_TIMEOUT = 30.0


def account_loans_url(account_id: str) -> str:
    return f"{BASE_URL}/my-library/memberships/{account_id}/loans"


def account_reservations_url(account_id: str) -> str:
    return f"{BASE_URL}/my-library/memberships/{account_id}/holds"


def account_open_amounts_url(account_id: str) -> str:
    return f"{BASE_URL}/my-library/memberships/{account_id}/pay"


class BibliotheekClient:
    """
    Async client for the "Mijn Bibliotheek" section of bibliotheek.be.

    The client keeps one cookie-bearing HTTP session. ``login()`` runs the
    redirect-driven OAuth-like protocol of the website; afterwards every call
    goes through ``request()``, which re-runs the login once when the website
    answers as if the session was logged out.

    Example:
        >>> async with BibliotheekClient("me@example.com", "secret") as client:
        ...     await client.login()
        ...     for account in await client.get_memberships():
        ...         print(account)

    Using environment variables:
        >>> import os
        >>> os.environ["BIBLIOTHEEK_USERNAME"] = "me@example.com"
        >>> os.environ["BIBLIOTHEEK_PASSWORD"] = "secret"
        >>> async with BibliotheekClient() as client:
        ...     await client.login()  # Uses environment variables
        ...     loans = await client.get_loans()
    """

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the client.

        Args:
            username: The e-mail address. If not provided, uses BIBLIOTHEEK_USERNAME env var.
            password: The password. If not provided, uses BIBLIOTHEEK_PASSWORD env var.
            timeout: Timeout in seconds applied to every HTTP request.
            transport: Optional httpx transport, e.g. httpx.MockTransport in tests.
        """
        self._username = username or os.environ.get("BIBLIOTHEEK_USERNAME", "")
        self._password = password or os.environ.get("BIBLIOTHEEK_PASSWORD", "")

        self._logged_in = False

        # Redirects are followed per request; the login flow needs them manual
        self._client = httpx.AsyncClient(
            follow_redirects=False,
            timeout=timeout,
            transport=transport,
            headers={
                "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36",
                "Accept": "application/json, text/html, application/xhtml+xml",
                "Accept-Language": "nl-BE,nl;q=0.9,en;q=0.8",
            },
        )

    async def __aenter__(self) -> "BibliotheekClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    @property
    def is_logged_in(self) -> bool:
        """Check if the client is logged in."""
        return self._logged_in

    @property
    def cookies(self) -> httpx.Cookies:
        """The cookie store shared by every request of this session."""
        return self._client.cookies

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send one request, translating transport failures into FetchError."""
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise FetchError(f"{method} {url} timed out") from e
        except httpx.HTTPError as e:
            raise FetchError(f"{method} {url} failed: {e}") from e

    async def login(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> bool:
        """
        Login to bibliotheek.be.

        Args:
            username: The e-mail address. Uses stored value if not provided.
            password: The password. Uses stored value if not provided.

        Returns:
            True if login was successful (or the session was already authenticated).

        Raises:
            AuthError: If any step of the login protocol fails.
        """
        username = username or self._username
        password = password or self._password

        if not username or not password:
            raise AuthError(AuthFailure.CREDENTIALS_REJECTED, "Username and password are required")

        try:
            await self._run_login(username, password)
        except AuthError:
            self._logged_in = False
            raise
        except FetchError as e:
            self._logged_in = False
            raise AuthError(AuthFailure.NETWORK, f"Login failed: {e}") from e

        self._logged_in = True
        self._username = username
        self._password = password
        return True

    async def _run_login(self, username: str, password: str) -> None:
        logger.debug("Starting authentication")

        # Step 1: a protected page redirects to the authorization server
        start = await self._send("GET", LOGIN_START_URL, follow_redirects=False)
        if not httpx.codes.is_redirect(start.status_code):
            logger.debug("Already authenticated (status %s)", start.status_code)
            return

        # Step 2: protocol parameters travel in the redirect target's query
        location = start.headers.get("location")
        if not location:
            raise AuthError(AuthFailure.MISSING_PARAMETERS, "No authorization location in response")
        oauth_url = urljoin(str(start.url), location)
        params = parse_qs(urlparse(oauth_url).query)
        token = params.get("oauth_token", [""])[0]
        callback = params.get("oauth_callback", [""])[0]
        hint = params.get("hint", ["login"])[0]
        if not token or not callback:
            raise AuthError(
                AuthFailure.MISSING_PARAMETERS,
                "Authorization redirect is missing oauth_token or oauth_callback",
            )

        # Step 3: the authorization page sets further session cookies
        await self._send("GET", oauth_url, follow_redirects=True)

        # Step 4: submit credentials
        payload = {
            "hint": hint,
            "token": token,
            "callback": callback,
            "email": username,
            "password": password,
        }
        login_headers = {"Origin": BASE_URL, "Referer": oauth_url}
        response = await self._send(
            "POST",
            LOGIN_SUBMIT_URL,
            data=payload,
            headers=login_headers,
            follow_redirects=False,
        )
        logger.debug("Login response status: %s", response.status_code)

        if response.status_code not in (200, 303):
            raise AuthError(
                AuthFailure.CREDENTIALS_REJECTED,
                f"Login failed with status {response.status_code}",
            )

        # Step 5: follow the callback; a second redirect asks for a token exchange
        if response.status_code == 303:
            callback_location = response.headers.get("location")
            if callback_location:
                callback_response = await self._send(
                    "GET",
                    urljoin(str(response.url), callback_location),
                    follow_redirects=False,
                )
                logger.debug("Callback response status: %s", callback_response.status_code)

                if callback_response.is_redirect:
                    await self._send(
                        "POST",
                        ACCESS_TOKEN_URL,
                        data=payload,
                        headers=login_headers,
                        follow_redirects=True,
                    )

        # Step 6: a protected page must now be served directly
        verify = await self._send("GET", VERIFY_URL, follow_redirects=False)
        if verify.status_code != 200:
            raise AuthError(
                AuthFailure.VERIFICATION_FAILED,
                f"Authentication verification failed with status {verify.status_code}",
            )

        logger.info("Authentication successful")

    def _ensure_logged_in(self) -> None:
        """Ensure the client is logged in, raising an error if not."""
        if not self._logged_in:
            raise SessionError("Not logged in. Call login() first.")

    @staticmethod
    def _is_logged_out(response: httpx.Response) -> bool:
        """Check whether a response shows the session is no longer authenticated."""
        if response.status_code in (401, 403):
            return True

        urls = [str(response.url)]
        if response.is_redirect:
            urls.append(response.headers.get("location", ""))
        return any(marker in url for url in urls for marker in LOGGED_OUT_MARKERS)

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Send an authenticated request.

        Redirects are followed unless ``follow_redirects=False`` is passed. When
        the website answers with its login flow, the client logs in once more
        and retries the request.

        Raises:
            SessionError: If login() was never called successfully.
            SessionExpiredError: If the session is still logged out after re-login.
            FetchError: On transport errors and timeouts.
        """
        self._ensure_logged_in()
        kwargs.setdefault("follow_redirects", True)

        response = await self._send(method, url, **kwargs)
        if not self._is_logged_out(response):
            return response

        logger.info("Session expired while requesting %s, logging in again", url)
        self._logged_in = False
        await self.login()

        response = await self._send(method, url, **kwargs)
        if self._is_logged_out(response):
            self._logged_in = False
            raise SessionExpiredError("Session has expired and re-login did not help.", response.status_code)
        return response

    async def _get_checked(self, url: str, what: str) -> httpx.Response:
        response = await self.request("GET", url)
        if not response.is_success:
            raise FetchError(f"Failed to fetch {what}: {response.status_code}", response.status_code)
        return response

    async def _get_json(self, url: str, what: str) -> Any:
        response = await self._get_checked(url, what)
        try:
            return response.json()
        except ValueError as e:
            raise ParseError(f"Invalid JSON for {what}") from e

    async def get_memberships(self) -> list[Account]:
        """
        Get all library memberships of the logged in user.

        Returns:
            Flat list of accounts, including accounts flagged with an error.
        """
        return parse_memberships(await self._get_json(MEMBERSHIPS_URL, "memberships"))

    async def get_activities(self, account_id: str) -> Activities:
        """Get loan/reservation/open amount counters for one account."""
        url = f"{BASE_URL}/api/my-library/{account_id}/activities"
        return parse_activities(await self._get_json(url, "activities"))

    async def get_loans(self) -> list[OverviewLoan]:
        """Get the loans overview covering every account."""
        return parse_overview_loans(await self._get_json(LOANS_OVERVIEW_URL, "loans"))

    async def get_reservations(self) -> list[Reservation]:
        """Get the reservations overview covering every account."""
        return parse_reservations(await self._get_json(RESERVATIONS_OVERVIEW_URL, "reservations"))

    async def get_loan_details(self, url: str) -> dict[str, LoanDetail]:
        """
        Get the detailed loans of one account.

        Args:
            url: The account's loans page, e.g. from account_loans_url().

        Returns:
            Loan details keyed by title + extend id.
        """
        logger.debug("Fetching loan details from %s", url)
        response = await self._get_checked(url, "loan details")
        return parse_loan_details(response.text, account_id_from_url(url))

    async def get_library_details(self, url: str) -> LibraryInfo:
        """Get address, contact details and opening hours of a library."""
        if "/adres-en-openingsuren" not in url:
            url = f"{url.rstrip('/')}/adres-en-openingsuren"
        response = await self._get_checked(url, "library details")
        return parse_library_details(response.text, url)

    async def get_user_lists(self) -> list[UserList]:
        """
        Get the user's personal lists, each with its items.

        Lists are not essential data: failures are logged and yield what
        could be read.
        """
        response = await self.request("GET", USER_LISTS_URL)
        if not response.is_success:
            logger.warning("Failed to fetch user lists: %s", response.status_code)
            return []

        lists = parse_user_lists(response.text)
        for user_list in lists:
            items_url = (
                f"{BASE_URL}/my-library/list/{user_list.id}/list-items"
                "?items_per_page=300&status=1"
            )
            try:
                user_list.items = parse_list_items(await self._get_json(items_url, "list items"))
            except (FetchError, ParseError) as e:
                logger.warning("Failed to fetch items for list %s: %s", user_list.id, e)

        return lists

    async def extend_loans(self, base_url: str, extend_ids: list[str]) -> int:
        """
        Extend several loans of one account in a single batch.

        Args:
            base_url: The account's membership URL (the loans URL without "/loans").
            extend_ids: Extend ids of the loans to renew.

        Returns:
            The number of loans submitted, or 0 when the website offered no
            extension form.

        Raises:
            FetchError: If the extension page cannot be fetched.
        """
        if not extend_ids:
            return 0

        extend_url = f"{base_url.rstrip('/')}/extend?loan-ids={'%2C'.join(extend_ids)}"
        logger.info("Extending %d loan(s) via %s", len(extend_ids), extend_url)

        response = await self.request("GET", extend_url, follow_redirects=False)
        if response.status_code >= 400:
            raise FetchError(f"Failed to get extension form: {response.status_code}", response.status_code)

        fields = parse_extension_form(response.text)
        if fields is None:
            logger.info("No extension form found")
            return 0

        form_data: dict[str, list[str]] = {}
        for name, value in fields:
            form_data.setdefault(name, []).append(value)

        confirm = await self.request("POST", extend_url, data=form_data)
        logger.info("Extension confirmation status: %s", confirm.status_code)

        return len(extend_ids)
