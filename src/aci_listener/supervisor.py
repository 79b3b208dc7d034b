"""
Session supervisor.

Runs one session attempt at a time: login, start the token refresh loop,
open the event stream, start the listener, subscribe, start the
subscription refresh loop, then wait for the first failure from any of
them. The attempt is then torn down completely and a new one starts after
a fixed cooldown. There is no retry limit.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import aiohttp
from aiohttp import ClientWebSocketResponse

from .config import Config
from .connection import build_stream_url, create_http_session
from .errors import ListenerError, TransportError
from .listener import EventListener, EventSink, print_event
from .session import TRANSPORT_ERRORS, Clock, Session, Sleeper
from .subscription import Subscription

# Where a failure came from
ORIGIN_LOGIN = "login"
ORIGIN_STREAM = "stream-open"
ORIGIN_SUBSCRIBE = "subscribe"
ORIGIN_REFRESH = "refresh"
ORIGIN_LISTENER = "listener"
ORIGIN_SUBSCRIPTION_REFRESH = "subscription-refresh"

HttpSessionFactory = Callable[[Config], aiohttp.ClientSession]


class AttemptState(Enum):
    """Progress of the current session attempt."""
    LOGGING_IN = "logging-in"
    AUTHENTICATED = "authenticated"
    STREAM_OPEN = "stream-open"
    SUBSCRIBED = "subscribed"
    RUNNING = "running"
    FAILED = "failed"


@dataclass(frozen=True)
class FailureSignal:
    """The error that ended (or tried to end) a session attempt."""
    generation: int
    origin: str
    error: BaseException

    def describe(self) -> str:
        return f"{self.origin}: {type(self.error).__name__}: {self.error}"


class Supervisor:
    """Keeps an APIC event subscription alive, restarting it on any failure."""

    def __init__(
        self,
        config: Config,
        sink: EventSink = print_event,
        stop_event: Optional[asyncio.Event] = None,
        http_factory: HttpSessionFactory = create_http_session,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize the supervisor.

        Args:
            config: Listener configuration
            sink: Callback receiving every decoded event
            stop_event: Event that ends run() when set
            http_factory: Builds a fresh ClientSession for each attempt
            clock: Monotonic time source shared by the maintenance loops
            sleep: Coroutine used for ticks and the restart cooldown
            logger: Logger handed down to every component
        """
        self.config = config
        self.stop_event = stop_event if stop_event is not None else asyncio.Event()
        self.state: Optional[AttemptState] = None
        self.generation = 0
        self.session: Optional[Session] = None
        self.subscription: Optional[Subscription] = None
        self.listener: Optional[EventListener] = None
        self._sink = sink
        self._http_factory = http_factory
        self._clock = clock
        self._sleep = sleep
        self._logger = logger or logging.getLogger(__name__)
        self._failures: asyncio.Queue[FailureSignal] = asyncio.Queue()
        self._tasks: list[asyncio.Task] = []

    def _set_state(self, state: AttemptState) -> None:
        if state != self.state:
            self._logger.debug(f"Attempt {self.generation}: {state.value}")
        self.state = state

    def _report(self, generation: int, origin: str, error: BaseException) -> None:
        """Put a failure on the channel unless it belongs to an older attempt."""
        if generation != self.generation:
            self._logger.debug(
                f"Discarding failure from attempt {generation} "
                f"(current {self.generation}): {origin}: {error}"
            )
            return
        self._failures.put_nowait(FailureSignal(generation, origin, error))

    async def _watch(self, generation: int, origin: str, coro: Awaitable[Any]) -> None:
        """Run a maintenance loop and report how it ended."""
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except ListenerError as e:
            self._report(generation, origin, e)
        except Exception as e:
            self._logger.exception(f"Unexpected error in {origin} loop")
            self._report(generation, origin, TransportError(f"{type(e).__name__}: {e}"))
        else:
            self._report(generation, origin, TransportError(f"{origin} loop exited"))

    def _spawn(self, generation: int, origin: str, coro: Awaitable[Any]) -> None:
        task = asyncio.create_task(
            self._watch(generation, origin, coro),
            name=f"{origin}-{generation}",
        )
        self._tasks.append(task)

    async def _next_failure(self, generation: int) -> FailureSignal:
        """Wait for the first failure of the given attempt."""
        while True:
            signal = await self._failures.get()
            if signal.generation == generation:
                return signal
            self._logger.debug(f"Discarding stale failure: {signal.describe()}")

    async def _fail(self, generation: int, origin: str, error: ListenerError) -> FailureSignal:
        """Report a setup failure and return whichever failure came first."""
        self._report(generation, origin, error)
        return await self._next_failure(generation)

    async def _open_stream(self, http: aiohttp.ClientSession, token: str) -> ClientWebSocketResponse:
        """Open the event WebSocket for a login token."""
        self._logger.info("Connecting websocket")
        try:
            return await http.ws_connect(
                build_stream_url(self.config.apic_url, token),
                heartbeat=self.config.heartbeat_interval or None,
            )
        except aiohttp.WSServerHandshakeError as e:
            raise TransportError(f"WebSocket handshake failed ({e.status}): {e.message}") from e
        except TRANSPORT_ERRORS as e:
            raise TransportError(f"WebSocket connection failed: {type(e).__name__}: {e}") from e

    async def _teardown(
        self,
        http: aiohttp.ClientSession,
        ws: Optional[ClientWebSocketResponse],
        subscription: Subscription,
    ) -> None:
        """Cancel and await every task of the attempt, then release its resources."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if ws is not None and not ws.closed:
            try:
                await asyncio.wait_for(ws.close(), timeout=2.0)
            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                self._logger.debug(f"Event stream close error: {type(e).__name__}: {e}")

        subscription.reset()
        await http.close()

        while not self._failures.empty():
            signal = self._failures.get_nowait()
            self._logger.debug(f"Ignoring later failure: {signal.describe()}")

    async def run_attempt(self) -> FailureSignal:
        """
        Run one session attempt until its first failure.

        Every attempt starts from a fresh HTTP session, cookie jar, Session
        and Subscription; nothing carries over from earlier attempts.

        Returns:
            The first failure reported for this attempt
        """
        self.generation += 1
        generation = self.generation
        config = self.config

        http = self._http_factory(config)
        session = Session(
            http,
            config.apic_url,
            config.username,
            config.password,
            request_timeout=config.http_timeout,
            refresh_threshold=config.refresh_threshold,
            tick_interval=config.tick_interval,
            strict_refresh=config.strict_refresh,
            clock=self._clock,
            sleep=self._sleep,
            logger=self._logger,
        )
        subscription = Subscription(
            http,
            config.apic_url,
            request_timeout=config.http_timeout,
            refresh_threshold=config.subscription_refresh_threshold,
            tick_interval=config.tick_interval,
            clock=self._clock,
            sleep=self._sleep,
            logger=self._logger,
        )
        self.session = session
        self.subscription = subscription
        self.listener = None
        ws: Optional[ClientWebSocketResponse] = None

        try:
            self._set_state(AttemptState.LOGGING_IN)
            try:
                await session.login()
            except ListenerError as e:
                return await self._fail(generation, ORIGIN_LOGIN, e)
            self._set_state(AttemptState.AUTHENTICATED)

            self._spawn(generation, ORIGIN_REFRESH, session.refresh_loop())
            try:
                ws = await self._open_stream(http, session.token)
            except ListenerError as e:
                return await self._fail(generation, ORIGIN_STREAM, e)
            self._set_state(AttemptState.STREAM_OPEN)

            self.listener = EventListener(ws, self._sink, logger=self._logger)
            self._spawn(generation, ORIGIN_LISTENER, self.listener.listen())
            try:
                await subscription.subscribe(config.target_class, config.query_params)
            except ListenerError as e:
                return await self._fail(generation, ORIGIN_SUBSCRIBE, e)
            self._set_state(AttemptState.SUBSCRIBED)

            self._spawn(generation, ORIGIN_SUBSCRIPTION_REFRESH, subscription.refresh_loop())
            self._set_state(AttemptState.RUNNING)
            return await self._next_failure(generation)
        finally:
            self._set_state(AttemptState.FAILED)
            await self._teardown(http, ws, subscription)

    async def _until_stopped(self, coro: Awaitable[Any]) -> tuple[bool, Any]:
        """Await coro unless stop_event fires first.

        Returns (stopped, result); the coroutine is cancelled and awaited
        when stopped.
        """
        work = asyncio.ensure_future(coro)
        stopper = asyncio.ensure_future(self.stop_event.wait())
        try:
            await asyncio.wait({work, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stopper.cancel()
            if not work.done():
                work.cancel()
            await asyncio.gather(work, stopper, return_exceptions=True)
        if work.cancelled():
            return True, None
        return False, work.result()

    async def run(self) -> None:
        """Run session attempts forever, until stop_event is set."""
        self._logger.info(
            f"Supervising {self.config.target_class} subscription on {self.config.apic_url}"
        )
        while not self.stop_event.is_set():
            stopped, failure = await self._until_stopped(self.run_attempt())
            if stopped:
                break
            self._logger.error(f"Session attempt {failure.generation} failed in {failure.describe()}")
            self._logger.debug("Restarting due to error")

            cooldown = self.config.restart_cooldown
            self._logger.info(f"Pausing for {cooldown}s")
            stopped, _ = await self._until_stopped(self._sleep(cooldown))
            if stopped:
                break
        self._logger.info("Supervisor stopped")
