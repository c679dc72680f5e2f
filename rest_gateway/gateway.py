"""Gateway - registry of REST actions grouped by service.

All actions of a gateway share one TransportCache, so actions with the same
timeout, retries and transport config share one default httpx client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from rest_gateway.action import RestAction
from rest_gateway.errors import GatewayConfigError
from rest_gateway.models import (
    ActionConfig,
    CallInvocation,
    DispatchResult,
    EndpointTable,
    GatewayConfig,
    ServiceOptions,
)
from rest_gateway.transport import TransportCache


@dataclass
class ServiceSchema:
    """Actions of one service and the endpoint table they resolve against."""

    actions: dict[str, ActionConfig] = field(default_factory=dict)
    endpoints: EndpointTable | None = None


class Gateway:
    """Dispatches calls to configured actions.

    Usage:
        async with Gateway(schema, options) as gateway:
            result = await gateway.call("users", "getUser", invocation)
    """

    def __init__(
        self,
        schema: dict[str, ServiceSchema],
        options: ServiceOptions,
        service_options: dict[str, ServiceOptions] | None = None,
        transport_cache: TransportCache | None = None,
    ) -> None:
        """Build every action of every service.

        Args:
            schema: Service key -> actions and endpoints.
            options: Options used by services without their own entry.
            service_options: Per-service options.
            transport_cache: Cache of default transports; created when None.
        """
        self._transport_cache = transport_cache or TransportCache()
        self._actions: dict[tuple[str, str], RestAction] = {}

        per_service = service_options or {}
        for service_key, service in schema.items():
            service_opts = per_service.get(service_key, options)
            for action_name, action_config in service.actions.items():
                self._actions[(service_key, action_name)] = RestAction(
                    service.endpoints,
                    action_config,
                    service_key,
                    action_name,
                    service_opts,
                    transport_cache=self._transport_cache,
                )

    @classmethod
    def from_config(
        cls,
        config: GatewayConfig,
        actions: dict[str, dict[str, ActionConfig]],
        options: ServiceOptions,
        transport_cache: TransportCache | None = None,
    ) -> Gateway:
        """Combine a loaded config file with action definitions from code.

        Raises:
            GatewayConfigError: If actions reference a service the config
                                does not define.
        """
        unknown = sorted(set(actions) - set(config.services))
        if unknown:
            raise GatewayConfigError(f"Services missing from gateway config: {', '.join(unknown)}")

        schema: dict[str, ServiceSchema] = {}
        service_options: dict[str, ServiceOptions] = {}
        for service_key, settings in config.services.items():
            schema[service_key] = ServiceSchema(
                actions=actions.get(service_key, {}),
                endpoints=dict(settings.endpoints),
            )
            service_options[service_key] = settings.apply_to(options)

        return cls(schema, options, service_options, transport_cache)

    async def __aenter__(self) -> Gateway:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._transport_cache.aclose()

    @property
    def actions(self) -> list[tuple[str, str]]:
        return sorted(self._actions)

    def action(self, service_key: str, action_name: str) -> RestAction:
        try:
            return self._actions[(service_key, action_name)]
        except KeyError:
            raise GatewayConfigError(
                f'Action "{action_name}" is not configured in service "{service_key}"'
            ) from None

    async def call(
        self, service_key: str, action_name: str, invocation: CallInvocation
    ) -> DispatchResult:
        return await self.action(service_key, action_name)(invocation)
