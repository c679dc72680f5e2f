"""Constants shared across the dispatch pipeline."""

from __future__ import annotations

from enum import Enum

VERSION = "0.4.0"


class Lang(str, Enum):
    """Languages the fallback error parser can localize messages into."""

    RU = "ru"
    EN = "en"


DEFAULT_LANG = Lang.RU
DEFAULT_LANG_HEADER = "accept-language"

# Inbound headers always forwarded upstream unless set explicitly
DEFAULT_PROXY_HEADERS: tuple[str, ...] = ("x-forwarded-for", "x-real-ip")

REQUEST_ID_HEADER = "x-request-id"
IDEMPOTENCY_HEADER = "idempotency-key"
GATEWAY_VERSION_HEADER = "x-gateway-version"

# Debug body preview is dropped at or above this many encoded characters
DEBUG_BODY_LIMIT = 256
BINARY_BODY_PLACEHOLDER = "[Buffer]"

# Bytes per character used when estimating response size from its JSON form
STRING_CHAR_SIZE = 2

REDACTED = "[REDACTED]"
SENSITIVE_HEADERS: frozenset[str] = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "proxy-authorization",
        "x-api-key",
        "x-csrf-token",
    }
)

# Used when neither the call, the action, the endpoint nor the service sets one
DEFAULT_TIMEOUT = 30.0
