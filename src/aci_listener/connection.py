"""
Connection utilities for the APIC listener.

Contains SSL context, timeout, connector and HTTP session factories used to
reach the APIC REST API and its event WebSocket.
"""

import logging
import ssl
from typing import Optional

import aiohttp

from .config import Config, WS_CONNECT_TIMEOUT

logger = logging.getLogger(__name__)


def create_ssl_context(
    verify: bool = False,
    ca_bundle: Optional[str] = None,
) -> ssl.SSLContext:
    """
    Create an SSL context for APIC connections.

    Args:
        verify: Whether to verify the APIC certificate. Fabric controllers
                usually present self-signed certificates, so the default is
                to trust any certificate.
        ca_bundle: Path to a CA certificate file. Only used when verify is
                   True.

    Returns:
        ssl.SSLContext configured for APIC connections.
    """
    ssl_ctx = ssl.create_default_context()

    if not verify:
        ssl_ctx.check_hostname = False
        ssl_ctx.verify_mode = ssl.CERT_NONE
        logger.debug("TLS certificate verification is disabled for APIC connections")
        return ssl_ctx

    if ca_bundle:
        ssl_ctx.load_verify_locations(cafile=ca_bundle)

    return ssl_ctx


def create_stream_timeout(
    connect_timeout: float = WS_CONNECT_TIMEOUT,
) -> aiohttp.ClientTimeout:
    """
    Create the session-wide ClientTimeout.

    No total timeout, so the event WebSocket can stay open indefinitely.
    REST calls pass their own timeout from create_request_timeout().
    """
    return aiohttp.ClientTimeout(
        total=None,
        connect=connect_timeout,
        sock_connect=connect_timeout,
    )


def create_request_timeout(total: float) -> aiohttp.ClientTimeout:
    """Create a ClientTimeout bounding a single REST request."""
    return aiohttp.ClientTimeout(total=total)


def create_connector(
    ssl_context: Optional[ssl.SSLContext] = None,
    verify_ssl: bool = False,
    ca_bundle: Optional[str] = None,
) -> aiohttp.TCPConnector:
    """
    Create a TCPConnector for APIC connections.

    Args:
        ssl_context: Optional SSL context. If None, creates one.
        verify_ssl: Passed to create_ssl_context if ssl_context is None.
        ca_bundle: Passed to create_ssl_context if ssl_context is None.
    """
    if ssl_context is None:
        ssl_context = create_ssl_context(verify=verify_ssl, ca_bundle=ca_bundle)
    return aiohttp.TCPConnector(ssl=ssl_context)


def create_http_session(config: Config) -> aiohttp.ClientSession:
    """
    Create a fresh ClientSession with its own cookie jar.

    The APIC hands out the login token as a cookie and is often addressed by
    IP, so the jar must accept cookies from IP hosts (unsafe=True).
    """
    connector = create_connector(
        verify_ssl=config.verify_ssl, ca_bundle=config.ca_bundle
    )
    return aiohttp.ClientSession(
        connector=connector,
        timeout=create_stream_timeout(config.ws_connect_timeout),
        cookie_jar=aiohttp.CookieJar(unsafe=True),
    )


def build_stream_url(apic_url: str, token: str) -> str:
    """
    Build the event WebSocket URL for a login token.

    The APIC serves the stream at /socket<token> on the same host, over wss
    when the API is https.
    """
    scheme, host = apic_url.split("://", 1)
    ws_scheme = "wss" if scheme == "https" else "ws"
    return f"{ws_scheme}://{host}/socket{token}"
