"""
APIC login session.

Owns the login token for one session attempt: logging in, refreshing the
token before the APIC expires it, and the background loop that does so.
"""

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from .config import HTTP_TIMEOUT, REFRESH_THRESHOLD, TICK_INTERVAL
from .connection import create_request_timeout
from .errors import AuthenticationError, TransportError

# Name of the cookie the APIC sets on login
TOKEN_COOKIE = "APIC-cookie"

# Errors raised by aiohttp for anything that went wrong on the wire
TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[Any]]


def parse_body(data: str | bytes) -> Optional[dict]:
    """Parse an APIC reply body, returning None if it is not a UTF-8 JSON object."""
    if isinstance(data, (bytes, bytearray)):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError:
            return None
    try:
        body = json.loads(data)
    except (json.JSONDecodeError, TypeError):
        return None
    return body if isinstance(body, dict) else None


def first_record(body: Optional[dict]) -> dict:
    """Return imdata[0] of an APIC reply, or an empty dict."""
    if not body:
        return {}
    imdata = body.get("imdata")
    if isinstance(imdata, list) and imdata and isinstance(imdata[0], dict):
        return imdata[0]
    return {}


def get_error_text(body: Optional[dict]) -> str:
    """Extract imdata[0].error.attributes.text from an APIC reply.

    Returns an empty string when the reply carries no error.
    """
    error = first_record(body).get("error")
    if not isinstance(error, dict):
        return ""
    attributes = error.get("attributes")
    if not isinstance(attributes, dict):
        return ""
    text = attributes.get("text")
    return text if isinstance(text, str) else ""


def _get_refresh_timeout(body: Optional[dict]) -> Optional[int]:
    """Token lifetime advertised in a login reply (refreshTimeoutSeconds)."""
    login = first_record(body).get("aaaLogin")
    if not isinstance(login, dict) or not isinstance(login.get("attributes"), dict):
        return None
    try:
        return int(login["attributes"].get("refreshTimeoutSeconds"))
    except (TypeError, ValueError):
        return None


class Session:
    """Login state for one APIC session attempt."""

    def __init__(
        self,
        http: aiohttp.ClientSession,
        apic_url: str,
        username: str,
        password: str,
        request_timeout: float = HTTP_TIMEOUT,
        refresh_threshold: float = REFRESH_THRESHOLD,
        tick_interval: float = TICK_INTERVAL,
        strict_refresh: bool = False,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize a session.

        Args:
            http: ClientSession whose cookie jar holds the login token
            apic_url: Normalized APIC base URL (scheme://host)
            username: APIC user name
            password: APIC password
            request_timeout: Timeout for each REST call in seconds
            refresh_threshold: Token age in seconds after which it is refreshed
            tick_interval: How often refresh_loop() checks the token age
            strict_refresh: Treat an error payload in a refresh reply as failure
            clock: Monotonic time source
            sleep: Coroutine used to wait between ticks
            logger: Logger to report to (defaults to the module logger)
        """
        self._http = http
        self.apic_url = apic_url
        self.username = username
        self.password = password
        self.refresh_threshold = refresh_threshold
        self.tick_interval = tick_interval
        self.strict_refresh = strict_refresh
        self.token_issued_at: Optional[float] = None
        self.refresh_timeout: Optional[int] = None
        self._timeout = create_request_timeout(request_timeout)
        self._clock = clock
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)

    @property
    def token(self) -> str:
        """The current login token, read from the cookie jar."""
        for cookie in self._http.cookie_jar:
            if cookie.key == TOKEN_COOKIE:
                return cookie.value
        return ""

    def token_age(self) -> float:
        """Seconds since the token was issued or last refreshed."""
        if self.token_issued_at is None:
            raise AuthenticationError("Not logged in")
        return self._clock() - self.token_issued_at

    def _check_login_reply(self, status: int, body: Optional[dict]) -> None:
        error_text = get_error_text(body)
        if error_text:
            raise AuthenticationError(error_text, status)
        if status != 200:
            raise AuthenticationError(f"Login failed with HTTP status {status}", status)
        if body is None:
            raise AuthenticationError("Login reply is not a UTF-8 JSON object", status)
        if not self.token:
            raise AuthenticationError(f"No {TOKEN_COOKIE} cookie in login reply", status)

    async def login(self) -> None:
        """
        Authenticate against the APIC.

        Raises:
            AuthenticationError: Login rejected, or the reply had no token
            TransportError: The request did not complete
        """
        self._logger.info(f"Logging in to {self.apic_url} as {self.username}")
        payload = {
            "aaaUser": {
                "attributes": {
                    "name": self.username,
                    "pwd": self.password,
                },
            },
        }
        try:
            async with self._http.post(
                f"{self.apic_url}/api/aaaLogin.json",
                json=payload,
                timeout=self._timeout,
            ) as res:
                status = res.status
                raw = await res.read()
        except TRANSPORT_ERRORS as e:
            raise TransportError(f"Login request failed: {type(e).__name__}: {e}") from e

        body = parse_body(raw)
        try:
            self._check_login_reply(status, body)
        except AuthenticationError:
            # A rejected login must not leave a usable token behind
            self._http.cookie_jar.clear()
            raise

        self.refresh_timeout = _get_refresh_timeout(body)
        if self.refresh_timeout is not None and self.refresh_timeout <= self.refresh_threshold:
            self._logger.warning(
                f"APIC token lifetime ({self.refresh_timeout}s) is not longer than "
                f"the refresh threshold ({self.refresh_threshold}s)"
            )

        self.token_issued_at = self._clock()
        self._logger.info("Login successful")

    async def refresh(self) -> None:
        """
        Refresh the login token using the current cookie.

        Any 2xx reply counts as success. The body is only inspected when
        strict_refresh is set.

        Raises:
            TransportError: The request did not complete or was not 2xx
            AuthenticationError: strict_refresh is set and the reply has an error
        """
        self._logger.debug("Refreshing login token")
        try:
            async with self._http.get(
                f"{self.apic_url}/api/aaaRefresh.json",
                timeout=self._timeout,
            ) as res:
                res.raise_for_status()
                raw = await res.read() if self.strict_refresh else b""
        except TRANSPORT_ERRORS as e:
            raise TransportError(f"Token refresh failed: {type(e).__name__}: {e}") from e

        if self.strict_refresh:
            error_text = get_error_text(parse_body(raw))
            if error_text:
                raise AuthenticationError(error_text)

        self.token_issued_at = self._clock()

    async def refresh_loop(self) -> None:
        """Refresh the token whenever it is older than the threshold.

        Runs until refresh() raises; that exception is the only way out.
        """
        self._logger.info("Starting token refresh loop")
        while True:
            if self.token_age() >= self.refresh_threshold:
                await self.refresh()
            await self._sleep(self.tick_interval)
