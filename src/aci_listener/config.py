"""
Configuration for the APIC listener.

Settings come from command-line arguments with environment variable
fallbacks. Timing constants are module level so they can be tuned per
deployment without code changes.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def get_int_env(name: str, default: int) -> int:
    """Get an integer from environment variable, with fallback to default."""
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_bool_env(name: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(name, "").lower()
    if not value:
        return default
    return value in ("1", "true", "yes", "on")


# Session maintenance timing (seconds)
TICK_INTERVAL = 1  # how often maintenance loops check elapsed time
REFRESH_THRESHOLD = get_int_env("ACI_REFRESH_THRESHOLD", 60)  # well below the APIC token lifetime
SUBSCRIPTION_REFRESH_THRESHOLD = get_int_env("ACI_SUBSCRIPTION_REFRESH_THRESHOLD", 30)
RESTART_COOLDOWN = get_int_env("ACI_RESTART_COOLDOWN", 30)  # pause between session attempts

HTTP_TIMEOUT = get_int_env("ACI_HTTP_TIMEOUT", 60)  # seconds - per API request
WS_CONNECT_TIMEOUT = get_int_env("ACI_WS_CONNECT_TIMEOUT", 30)  # seconds - stream handshake
HEARTBEAT_INTERVAL = get_int_env("ACI_HEARTBEAT_INTERVAL", 30)  # seconds - 0 disables pings

# APIC fabrics are commonly deployed with self-signed certificates
VERIFY_SSL_DEFAULT = _get_bool_env("ACI_VERIFY_SSL", False)
CA_BUNDLE_DEFAULT = os.environ.get("ACI_CA_BUNDLE", "")

# Paging parameters sent with every class subscription
DEFAULT_QUERY_PARAMS = {
    "page": "0",
    "page-size": "1",
}


def normalize_apic_url(apic: str) -> str:
    """Normalize an APIC hostname or URL to a base URL without a path.

    Accepts: bare hostname (https assumed), or a URL with http/https scheme.
    """
    apic = apic.strip().rstrip("/")
    if not apic:
        raise ValueError("APIC address is empty")
    if apic.startswith(("http://", "https://")):
        scheme, rest = apic.split("://", 1)
        return f"{scheme}://{rest.split('/', 1)[0]}"
    return f"https://{apic.split('/', 1)[0]}"


@dataclass
class Config:
    """Listener configuration for one fabric and one object class."""
    apic_url: str
    username: str
    password: str = field(repr=False)
    target_class: str
    query_params: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_QUERY_PARAMS))
    http_timeout: float = HTTP_TIMEOUT
    ws_connect_timeout: float = WS_CONNECT_TIMEOUT
    heartbeat_interval: float = HEARTBEAT_INTERVAL
    verify_ssl: bool = VERIFY_SSL_DEFAULT
    ca_bundle: Optional[str] = CA_BUNDLE_DEFAULT or None
    tick_interval: float = TICK_INTERVAL
    refresh_threshold: float = REFRESH_THRESHOLD
    subscription_refresh_threshold: float = SUBSCRIPTION_REFRESH_THRESHOLD
    restart_cooldown: float = RESTART_COOLDOWN
    strict_refresh: bool = False

    def __post_init__(self) -> None:
        self.apic_url = normalize_apic_url(self.apic_url)
        if not self.target_class:
            raise ValueError("target class is required")

    @property
    def host(self) -> str:
        """The host[:port] part of the APIC URL."""
        return self.apic_url.split("://", 1)[1]

    @classmethod
    def from_env(cls, **overrides) -> "Config":
        """Create config from ACI_* environment variables.

        Keyword arguments with a value other than None take precedence.
        """
        values = {
            "apic_url": os.environ.get("ACI_URL", ""),
            "username": os.environ.get("ACI_USER", ""),
            "password": os.environ.get("ACI_PASSWORD", ""),
            "target_class": os.environ.get("ACI_CLASS", ""),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
