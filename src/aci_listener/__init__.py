"""
APIC event stream listener.

Logs in to a Cisco ACI fabric controller, subscribes to a managed object
class and prints every event pushed over the controller's WebSocket. Any
failure in login, subscription or transport tears the session down and
starts a new one after a fixed cooldown.
"""

__version__ = "0.3.0"

from .errors import (
    ListenerError,
    TransportError,
    AuthenticationError,
    SubscriptionError,
    DecodeError,
)
from .config import (
    Config,
    normalize_apic_url,
    get_int_env,
    DEFAULT_QUERY_PARAMS,
    TICK_INTERVAL,
    REFRESH_THRESHOLD,
    SUBSCRIPTION_REFRESH_THRESHOLD,
    RESTART_COOLDOWN,
)
from .session import Session, TOKEN_COOKIE
from .subscription import Subscription
from .listener import EventListener, EventSink, print_event
from .supervisor import Supervisor, AttemptState, FailureSignal

__all__ = [
    "__version__",
    # Errors
    "ListenerError",
    "TransportError",
    "AuthenticationError",
    "SubscriptionError",
    "DecodeError",
    # Configuration
    "Config",
    "normalize_apic_url",
    "get_int_env",
    "DEFAULT_QUERY_PARAMS",
    "TICK_INTERVAL",
    "REFRESH_THRESHOLD",
    "SUBSCRIPTION_REFRESH_THRESHOLD",
    "RESTART_COOLDOWN",
    # Session lifecycle
    "Session",
    "TOKEN_COOKIE",
    "Subscription",
    "EventListener",
    "EventSink",
    "print_event",
    "Supervisor",
    "AttemptState",
    "FailureSignal",
]
