"""Transport - sends requests upstream and selects which client to use.

HttpxTransport wraps an httpx.AsyncClient. Connection pooling, connect
retries and redirects are left to httpx. Non-2xx responses are raised as
TransportResponseError so callers see a single error path.

TransportCache holds the default transport of each action, keyed by its
(timeout, retries, transport config). Transports built for per-call
overrides are not cached; whoever selects one closes it after the call.
"""

from __future__ import annotations

import ssl
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import httpx

from rest_gateway.constants import DEFAULT_TIMEOUT
from rest_gateway.models import RequestConfig, TransportConfig, TransportResponse
from rest_gateway.params import build_request_url


class TransportError(Exception):
    """Base class for transport errors.

    Attributes:
        response: The upstream response, when one was received.
        status: HTTP status of the response, when one was received.
    """

    def __init__(self, message: str, response: TransportResponse | None = None) -> None:
        self.message = message
        self.response = response
        self.status = response.status if response is not None else None
        super().__init__(message)


class TransportTimeoutError(TransportError):
    """Raised when the request did not complete within its timeout."""


class TransportConnectionError(TransportError):
    """Raised when the upstream could not be reached."""


class TransportResponseError(TransportError):
    """Raised when the upstream answered with a non-2xx status."""


class Transport(Protocol):
    async def request(self, config: RequestConfig) -> TransportResponse: ...

    async def aclose(self) -> None: ...


TransportFactory = Callable[[float | None, int | None, TransportConfig], Transport]


class HttpxTransport:
    """Transport backed by httpx.AsyncClient.

    Usage:
        transport = HttpxTransport(timeout=5.0, retries=2, config=TransportConfig())
        try:
            response = await transport.request(request_config)
        finally:
            await transport.aclose()
    """

    def __init__(
        self,
        timeout: float | None,
        retries: int | None,
        config: TransportConfig,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            timeout: Timeout in seconds. Falls back to config.timeout, then
                     DEFAULT_TIMEOUT.
            retries: Connect retries performed by httpx.
            config: Client settings (TLS, redirects, default headers).
            http_transport: Replaces the httpx network transport (tests use
                            httpx.MockTransport).
        """
        self.timeout = _first_set(timeout, config.timeout, DEFAULT_TIMEOUT)
        self.retries = retries or 0
        self.config = config
        self._client = httpx.AsyncClient(
            **self._build_client_kwargs(config, self.timeout, self.retries, http_transport)
        )

    async def __aenter__(self) -> HttpxTransport:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _build_client_kwargs(
        config: TransportConfig,
        timeout: float,
        retries: int,
        http_transport: httpx.AsyncBaseTransport | None,
    ) -> dict[str, Any]:
        """Build kwargs for httpx.AsyncClient including TLS configuration."""
        kwargs: dict[str, Any] = {
            "timeout": timeout,
            "headers": config.headers,
            "follow_redirects": True if config.follow_redirects is None else config.follow_redirects,
        }
        if config.max_redirects is not None:
            kwargs["max_redirects"] = config.max_redirects

        if http_transport is not None:
            kwargs["transport"] = http_transport
            return kwargs

        # A custom CA bundle or client certificate needs its own SSL context
        verify: ssl.SSLContext | bool = config.verify is not False
        if isinstance(config.verify, str) or config.cert:
            cafile = config.verify if isinstance(config.verify, str) else None
            ssl_context = ssl.create_default_context(cafile=cafile)
            if config.cert:
                ssl_context.load_cert_chain(config.cert)
            verify = ssl_context

        kwargs["transport"] = httpx.AsyncHTTPTransport(verify=verify, retries=retries)
        return kwargs

    async def request(self, config: RequestConfig) -> TransportResponse:
        """Send one request.

        Raises:
            TransportTimeoutError: If the request timed out.
            TransportConnectionError: If the upstream could not be reached.
            TransportResponseError: If the upstream answered with a non-2xx status.
            TransportError: For any other request failure.
        """
        url = config.url
        params = config.params or None
        if params and config.params_serializer is not None:
            url = build_request_url(url, config.params_serializer(params))
            params = None

        kwargs: dict[str, Any] = {
            "method": config.method,
            "url": url,
            "params": params,
            "headers": config.headers,
        }
        kwargs.update(_body_kwargs(config.data))
        if config.max_redirects == 0:
            kwargs["follow_redirects"] = False

        try:
            response = await self._client.request(**kwargs)
        except httpx.TimeoutException as e:
            raise TransportTimeoutError(f"Request timeout: {e}") from e
        except httpx.ConnectError as e:
            raise TransportConnectionError(f"Connection error: {e}") from e
        except httpx.RequestError as e:
            raise TransportError(f"Request error: {e}") from e

        converted = _convert_response(response)
        if not response.is_success:
            raise TransportResponseError(
                f"Request failed with status code {response.status_code}", response=converted
            )
        return converted


def _first_set(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _body_kwargs(data: Any) -> dict[str, Any]:
    """Map a request body onto httpx's content= or json= arguments."""
    if data is None:
        return {}
    if isinstance(data, (bytes, bytearray)):
        return {"content": bytes(data)}
    if isinstance(data, str):
        return {"content": data.encode("utf-8")}
    if isinstance(data, (dict, list, int, float, bool)):
        return {"json": data}
    return {"content": str(data).encode("utf-8")}


def _convert_response(response: httpx.Response) -> TransportResponse:
    """Convert an httpx Response, parsing the body by content-type.

    JSON -> parsed value, text/* -> str, anything else -> bytes.
    """
    headers: dict[str, str] = {}
    for key, value in response.headers.multi_items():
        key_lower = key.lower()
        headers[key_lower] = f"{headers[key_lower]}, {value}" if key_lower in headers else value

    data: Any = None
    content_type = response.headers.get("content-type", "").lower()
    if response.content:
        if "json" in content_type:
            try:
                data = response.json()
            except ValueError:
                # Not valid JSON despite content-type
                data = response.text
        elif content_type.startswith("text/"):
            data = response.text
        else:
            data = response.content

    return TransportResponse(status=response.status_code, headers=headers, data=data)


# =============================================================================
# Transport Selector
# =============================================================================


class TransportCache:
    """Default transports keyed by (timeout, retries, transport config)."""

    def __init__(self, factory: TransportFactory = HttpxTransport) -> None:
        self._factory = factory
        self._transports: dict[tuple[Any, ...], Transport] = {}

    @staticmethod
    def key(
        timeout: float | None, retries: int | None, config: TransportConfig
    ) -> tuple[Any, ...]:
        return (timeout, retries, config.model_dump_json())

    def get(self, timeout: float | None, retries: int | None, config: TransportConfig) -> Transport:
        """Return the shared transport for these settings, building it once."""
        key = self.key(timeout, retries, config)
        if key not in self._transports:
            self._transports[key] = self._factory(timeout, retries, config)
        return self._transports[key]

    def build(self, timeout: float | None, retries: int | None, config: TransportConfig) -> Transport:
        """Build an uncached transport for one call."""
        return self._factory(timeout, retries, config)

    async def aclose(self) -> None:
        transports = list(self._transports.values())
        self._transports.clear()
        for transport in transports:
            await transport.aclose()


@dataclass
class SelectedTransport:
    transport: Transport
    owned: bool = False  # True when built for this call and must be closed after it


def with_redirect_limit(config: TransportConfig, max_redirects: int | None) -> TransportConfig:
    """Apply an action's redirect limit to a client config.

    A limit of 0 is handled per request by disabling redirects, so only
    positive limits change the client.
    """
    if not max_redirects:
        return config
    return config.merged(TransportConfig(max_redirects=max_redirects))


def select_transport(
    cache: TransportCache,
    default: Transport,
    *,
    call_timeout: float | None,
    action_timeout: float | None,
    service_timeout: float | None,
    retries: int | None,
    service_config: TransportConfig,
    endpoint_config: TransportConfig | None,
    max_redirects: int | None = None,
) -> SelectedTransport:
    """Pick the default transport, or build one for per-call overrides.

    Effective timeout precedence: call > action > endpoint > service. An
    action's redirect limit wins over the endpoint's and the service's.
    """
    if call_timeout is None and endpoint_config is None:
        return SelectedTransport(default)

    endpoint_timeout = endpoint_config.timeout if endpoint_config is not None else None
    timeout = _first_set(call_timeout, action_timeout, endpoint_timeout, service_timeout)
    config = with_redirect_limit(service_config.merged(endpoint_config), max_redirects)
    return SelectedTransport(cache.build(timeout, retries, config), owned=True)
