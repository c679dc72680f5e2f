"""Endpoint resolution.

Config values that may be static or computed per call (the endpoint
selector, the action path) are wrapped once at action setup into a
Static/Computed selector and evaluated per dispatch by an explicit type check.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar, Union

from rest_gateway.errors import EndpointNotFound
from rest_gateway.models import (
    DEFAULT_ENDPOINT_KEY,
    EndpointDescriptor,
    EndpointTable,
    TransportConfig,
)

T = TypeVar("T")


@dataclass(frozen=True)
class Static(Generic[T]):
    value: T


@dataclass(frozen=True)
class Computed(Generic[T]):
    fn: Callable[..., T]


Selector = Union[Static[T], Computed[T]]


def to_selector(value: Any) -> Selector[Any] | None:
    """Wrap a config value that is either a plain value or a callable."""
    if value is None:
        return None
    if callable(value):
        return Computed(value)
    return Static(value)


def evaluate(selector: Selector[T], *args: Any) -> T:
    """Evaluate a selector; computed selectors receive args."""
    if isinstance(selector, Computed):
        return selector.fn(*args)
    return selector.value


@dataclass(frozen=True)
class ResolvedEndpoint:
    """A resolved base URL plus any transport overrides the endpoint carries."""

    base_url: str
    transport_config: TransportConfig | None = None


def resolve_endpoint(
    endpoints: EndpointTable | None,
    selector: Selector[Any] | None,
    args: dict[str, Any],
    service_key: str,
) -> ResolvedEndpoint:
    """Resolve the base URL of an action.

    Order: a computed selector is called with (endpoints, args); a static
    selector is looked up in the table; without a selector the table's
    default entry is used.

    Raises:
        EndpointNotFound: If nothing resolves to a non-empty entry.
    """
    table = endpoints or {}

    if isinstance(selector, Computed):
        entry = selector.fn(table, args)
    elif isinstance(selector, Static):
        entry = table.get(selector.value)
    else:
        entry = table.get(DEFAULT_ENDPOINT_KEY)

    if not entry:
        raise EndpointNotFound(service_key)

    if isinstance(entry, dict):
        entry = EndpointDescriptor.model_validate(entry)
    if isinstance(entry, EndpointDescriptor):
        return ResolvedEndpoint(entry.path, entry.transport_config)
    return ResolvedEndpoint(str(entry))
