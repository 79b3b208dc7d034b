"""
Event stream listener.

Reads messages from the APIC event WebSocket, hands every well-formed JSON
document to a sink and reports malformed ones without stopping.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Optional

import aiohttp
from aiohttp import ClientWebSocketResponse, WSMsgType

from .errors import DecodeError, TransportError
from .session import TRANSPORT_ERRORS

# Longest slice of a bad message that is written to the log
MAX_LOGGED_MESSAGE = 200

EventSink = Callable[[Any], None]


def print_event(event: Any) -> None:
    """Print an event as indented JSON on stdout."""
    print(json.dumps(event, indent=2), flush=True)


def decode_message(data: str | bytes) -> Any:
    """
    Decode one stream message.

    Returns:
        The parsed JSON object or array

    Raises:
        DecodeError: The message is not UTF-8 JSON, or is a bare scalar
    """
    if isinstance(data, (bytes, bytearray)):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Message is not UTF-8: {e}", repr(data)) from e
    try:
        event = json.loads(data)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Message is not JSON: {e}", data) from e
    if not isinstance(event, (dict, list)):
        raise DecodeError(f"Message is a JSON {type(event).__name__}, not an object", data)
    return event


class EventListener:
    """Consumes one open event WebSocket until it fails."""

    def __init__(
        self,
        ws: ClientWebSocketResponse,
        sink: EventSink = print_event,
        logger: Optional[logging.Logger] = None,
    ):
        self._ws = ws
        self._sink = sink
        self._logger = logger or logging.getLogger(__name__)
        self.messages_received = 0
        self.events_emitted = 0
        self.decode_failures = 0

    def _handle(self, data: str | bytes) -> None:
        self.messages_received += 1
        try:
            event = decode_message(data)
        except DecodeError as e:
            self.decode_failures += 1
            self._logger.warning(f"Non-JSON message received ({e}): {e.raw[:MAX_LOGGED_MESSAGE]}")
            return
        self._sink(event)
        self.events_emitted += 1

    async def listen(self) -> None:
        """
        Read messages until the stream errors or closes.

        The stream is closed on the way out, whatever the reason.

        Raises:
            TransportError: Always, once the stream is no longer readable
        """
        self._logger.info("Listening for incoming messages")
        try:
            while True:
                try:
                    msg = await self._ws.receive()
                except TRANSPORT_ERRORS as e:
                    raise TransportError(f"Event stream read failed: {type(e).__name__}: {e}") from e

                if msg.type in (WSMsgType.TEXT, WSMsgType.BINARY):
                    self._handle(msg.data)
                elif msg.type == WSMsgType.ERROR:
                    raise TransportError(f"Event stream error: {self._ws.exception()}")
                elif msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED):
                    raise TransportError(f"Event stream closed (code {self._ws.close_code})")
        finally:
            await self.close()

    async def close(self) -> None:
        """Close the stream if it is still open."""
        if self._ws.closed:
            return
        try:
            await asyncio.wait_for(self._ws.close(), timeout=2.0)
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            self._logger.debug(f"Event stream close error: {type(e).__name__}: {e}")
