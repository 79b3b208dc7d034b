"""
APIC class subscription.

A subscription asks the APIC to push changes for every object of a class
over the event WebSocket. The APIC drops subscriptions that are not
refreshed, so a background loop keeps it alive.
"""

import asyncio
import logging
import time
from typing import Optional

import aiohttp

from .config import HTTP_TIMEOUT, SUBSCRIPTION_REFRESH_THRESHOLD, TICK_INTERVAL
from .connection import create_request_timeout
from .errors import SubscriptionError, TransportError
from .session import TRANSPORT_ERRORS, Clock, Sleeper, get_error_text, parse_body


class Subscription:
    """One registered interest in a class of fabric events."""

    def __init__(
        self,
        http: aiohttp.ClientSession,
        apic_url: str,
        request_timeout: float = HTTP_TIMEOUT,
        refresh_threshold: float = SUBSCRIPTION_REFRESH_THRESHOLD,
        tick_interval: float = TICK_INTERVAL,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self._http = http
        self.apic_url = apic_url
        self.target_class = ""
        self.filter_params: dict[str, str] = {}
        self.subscription_id = ""
        self.last_refreshed_at: Optional[float] = None
        self.refresh_threshold = refresh_threshold
        self.tick_interval = tick_interval
        self._timeout = create_request_timeout(request_timeout)
        self._clock = clock
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)

    @property
    def active(self) -> bool:
        return bool(self.subscription_id)

    async def _get(self, path: str, params: dict[str, str]) -> Optional[dict]:
        """GET an API path and return the parsed reply body."""
        try:
            async with self._http.get(
                f"{self.apic_url}{path}",
                params=params,
                timeout=self._timeout,
            ) as res:
                raw = await res.read()
        except TRANSPORT_ERRORS as e:
            raise TransportError(f"GET {path} failed: {type(e).__name__}: {e}") from e
        return parse_body(raw)

    async def subscribe(self, target_class: str, filter_params: Optional[dict[str, str]] = None) -> str:
        """
        Subscribe to a managed object class.

        Args:
            target_class: APIC class name, e.g. faultInst
            filter_params: Extra query parameters (paging, filters)

        Returns:
            The subscription ID assigned by the APIC

        Raises:
            SubscriptionError: The APIC returned an error or no subscription ID
            TransportError: The request did not complete
        """
        self._logger.info(f"Subscribing to {target_class}")
        self.target_class = target_class
        self.filter_params = dict(filter_params or {})

        params = {"subscription": "yes"}
        for key, value in self.filter_params.items():
            if key != "subscription":
                params[key] = value

        body = await self._get(f"/api/class/{target_class}.json", params)
        error_text = get_error_text(body)
        if error_text:
            raise SubscriptionError(error_text)
        if body is None:
            raise SubscriptionError("Subscription reply is not a UTF-8 JSON object")

        subscription_id = body.get("subscriptionId")
        if not subscription_id or not isinstance(subscription_id, str):
            raise SubscriptionError("no subscription ID in reply")

        self.subscription_id = subscription_id
        self.last_refreshed_at = self._clock()
        self._logger.info(f"Subscribed to {target_class} (id {subscription_id})")
        return subscription_id

    async def refresh_subscription(self) -> None:
        """
        Keep the subscription alive on the APIC.

        Raises:
            SubscriptionError: No active subscription, or the APIC returned an error
            TransportError: The request did not complete
        """
        if not self.subscription_id:
            raise SubscriptionError("No active subscription to refresh")

        self._logger.debug(f"Refreshing subscription {self.subscription_id}")
        body = await self._get(
            "/api/subscriptionRefresh.json", {"id": self.subscription_id}
        )
        error_text = get_error_text(body)
        if error_text:
            raise SubscriptionError(error_text)
        self.last_refreshed_at = self._clock()

    async def refresh_loop(self) -> None:
        """Refresh the subscription whenever it is older than the threshold.

        Runs until refresh_subscription() raises.
        """
        self._logger.info("Starting subscription refresh loop")
        while True:
            if self.last_refreshed_at is None:
                raise SubscriptionError("Not subscribed")
            if self._clock() - self.last_refreshed_at >= self.refresh_threshold:
                await self.refresh_subscription()
            await self._sleep(self.tick_interval)

    def reset(self) -> None:
        """Forget the subscription (the session it belonged to is gone)."""
        self.subscription_id = ""
        self.last_refreshed_at = None
