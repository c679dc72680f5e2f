"""REST action - the request dispatch pipeline.

A RestAction is built once per configured action and awaited once per call:

    validation -> endpoint resolution -> header composition -> body/query
    -> transport selection -> request -> (error normalization) -> stats

Every call runs inside its own tracing span, opened on entry and ended
exactly once whichever way the call exits.
"""

from __future__ import annotations

import time
from typing import Any

from jsonschema import SchemaError

from rest_gateway.constants import DEFAULT_LANG, DEFAULT_LANG_HEADER
from rest_gateway.context import TracingContext, open_span
from rest_gateway.endpoint import ResolvedEndpoint, evaluate, resolve_endpoint, to_selector
from rest_gateway.errors import (
    DispatchError,
    GatewayConfigError,
    ValidationFailed,
    attempt_async,
    maybe_await,
)
from rest_gateway.headers import compose_headers, sanitize_debug_headers
from rest_gateway.models import (
    ActionConfig,
    CallInvocation,
    DispatchResult,
    EndpointTable,
    GatewayError,
    Headers,
    RequestConfig,
    ServiceOptions,
    StatsRecord,
)
from rest_gateway.params import (
    body_preview,
    build_debug_headers,
    build_request_url,
    get_serializer,
    produce_params,
    serialize_query,
)
from rest_gateway.parse_error import normalize_error, parse_rest_error, resolve_status
from rest_gateway.stats import emit_stats
from rest_gateway.transport import TransportCache, select_transport, with_redirect_limit
from rest_gateway.validation import get_path_args, validate_args


class RestAction:
    """One configured REST action.

    Usage:
        action = RestAction(endpoints, config, "users", "getUser", options)
        try:
            result = await action(CallInvocation(args={"id": 1}, ctx=ctx))
        except DispatchError as e:
            print(e.error.status, e.error.code)
        finally:
            await action.aclose()
    """

    def __init__(
        self,
        endpoints: EndpointTable | None,
        config: ActionConfig,
        service_key: str,
        action_name: str,
        options: ServiceOptions,
        transport_cache: TransportCache | None = None,
    ) -> None:
        """Initialize the action and its default transport.

        Args:
            endpoints: Endpoint table of the service.
            config: Action configuration.
            service_key: Key of the service in the gateway schema.
            action_name: Name of the action within the service.
            options: Service-level options.
            transport_cache: Shared cache of default transports. A private
                             one is created (and closed by aclose) when None.
        """
        self.config = config
        self.service_key = service_key
        self.action_name = action_name
        self.options = options
        self.service_name = options.service_name or service_key

        self._endpoints = endpoints
        self._endpoint_selector = to_selector(config.endpoint)
        self._path_selector = to_selector(config.path)
        self._validation_schema = config.validation_schema or options.validation_schema
        self._get_auth_headers = config.get_auth_headers or options.get_auth_headers
        self._serializer = get_serializer(config.params_serializer)

        self._timeout = config.timeout if config.timeout is not None else options.timeout
        self._retries = config.retries if config.retries is not None else options.retries
        self._owns_cache = transport_cache is None
        self._transport_cache = transport_cache or TransportCache()
        self._default_transport = self._transport_cache.get(
            self._timeout,
            self._retries,
            with_redirect_limit(options.transport_config, config.max_redirects),
        )

    async def aclose(self) -> None:
        if self._owns_cache:
            await self._transport_cache.aclose()

    async def __call__(self, invocation: CallInvocation) -> DispatchResult:
        """Dispatch one call.

        Returns:
            DispatchResult with the (possibly transformed) response payload.

        Raises:
            DispatchError: On any failure, carrying the normalized error.
                           Misconfiguration maps to 400, an unexpected
                           failure before the request to 500.
        """
        lang = invocation.headers.get(DEFAULT_LANG_HEADER) or DEFAULT_LANG.value
        debug_headers: Headers = {}
        span_name = f"Gateway {self.service_name} {self.action_name} [rest]"
        tags = {"action": self.action_name, "service": self.service_name, "type": "rest"}

        with open_span(invocation.ctx, span_name, tags=tags) as ctx:
            ctx.log("Initiating request")

            try:
                await self._validate(invocation.args, ctx)
                endpoint = resolve_endpoint(
                    self._endpoints, self._endpoint_selector, invocation.args, self.service_key
                )
            except ValidationFailed as e:
                ctx.log("Invalid params", {"invalid_params": e.invalid_params})
                raise DispatchError.from_exception(e, invocation.request_id, debug_headers) from e
            except GatewayConfigError as e:
                ctx.log_error(
                    str(e), e, {"service_name": self.service_name, "action_name": self.action_name}
                )
                raise DispatchError.from_exception(e, invocation.request_id, debug_headers) from e
            except Exception as e:
                raise self._unexpected(e, invocation, lang, debug_headers, ctx) from e

            try:
                return await self._dispatch(invocation, endpoint, lang, debug_headers, ctx)
            except DispatchError:
                raise
            except Exception as e:
                raise self._unexpected(e, invocation, lang, debug_headers, ctx) from e

    async def _validate(self, args: dict[str, Any], ctx: TracingContext) -> None:
        if not self._validation_schema:
            return

        if self.options.validator is not None:
            invalid = await maybe_await(self.options.validator(args, self._validation_schema))
        else:
            try:
                invalid = validate_args(args, self._validation_schema)
            except SchemaError as e:
                raise GatewayConfigError(
                    f"Gateway config error. Invalid validation schema: {e.message}"
                ) from e

        if invalid:
            raise ValidationFailed(list(invalid))

    async def _dispatch(
        self,
        invocation: CallInvocation,
        endpoint: ResolvedEndpoint,
        lang: str,
        debug_headers: Headers,
        ctx: TracingContext,
    ) -> DispatchResult:
        config = self.config
        args = invocation.args
        request_id = invocation.request_id

        path_args = get_path_args(
            args, config.validation_schema is not None, self.options.encode_path_args
        )
        action_url = endpoint.base_url + evaluate(self._path_selector, path_args)

        headers = await compose_headers(
            action_url=action_url,
            lang=lang,
            request_headers=invocation.headers,
            service_proxy_headers=self.options.proxy_headers,
            action_proxy_headers=config.proxy_headers,
            request_id=request_id,
            idempotency=config.idempotency,
            get_auth_headers=self._get_auth_headers,
            service_name=self.service_name,
            auth_args=invocation.auth_args,
        )

        params = await produce_params(config.params, args, headers, ctx)
        request_url = build_request_url(action_url, serialize_query(params.query, self._serializer))

        debug_headers.update(
            build_debug_headers(
                method=config.method,
                request_url=request_url,
                preview=body_preview(params.body, ctx),
                lang=lang,
                request_id=request_id,
                content_type=params.headers.get("content-type"),
            )
        )

        selected = select_transport(
            self._transport_cache,
            self._default_transport,
            call_timeout=invocation.timeout,
            action_timeout=config.timeout,
            service_timeout=self.options.timeout,
            retries=self._retries,
            service_config=self.options.transport_config,
            endpoint_config=endpoint.transport_config,
            max_redirects=config.max_redirects,
        )

        ctx.log("Starting request", {"debug_headers": sanitize_debug_headers(debug_headers)})

        request_config = RequestConfig(
            url=action_url,
            method=config.method,
            data=params.body,
            params=params.query,
            headers={**ctx.get_metadata(), **params.headers},
            max_redirects=config.max_redirects,
            params_serializer=self._serializer,
        )
        record = {
            "timestamp": int(time.time() * 1000),
            "service": self.service_name,
            "action": self.action_name,
            "request_id": request_id,
            "request_method": config.method,
            "request_url": action_url,
        }

        started = time.monotonic()
        try:
            response = await selected.transport.request(request_config)
        except Exception as error:
            record["request_time"] = _elapsed_ms(started)
            raise await self._failure(
                error, record, params.headers, debug_headers, invocation, lang, action_url, ctx
            ) from error
        finally:
            if selected.owned:
                await selected.transport.aclose()

        record["request_time"] = _elapsed_ms(started)

        data = response.data
        if config.transform_response_data is not None:
            transformed = await attempt_async(
                ctx,
                "Transform response data failed",
                config.transform_response_data,
                data,
                {"args": args, "ctx": ctx, "headers": response.headers},
            )
            if transformed.ok:
                data = transformed.value
                ctx.log("Transformed response data")

        await emit_stats(
            StatsRecord(**record, status=response.status),
            response_data=data,
            send_stats=self.options.send_stats,
            headers=params.headers,
            debug_headers=debug_headers,
            parent_ctx=invocation.ctx,
            ctx=ctx,
        )

        ctx.log("Request completed", {"debug_headers": sanitize_debug_headers(debug_headers)})
        return DispatchResult(response_data=data, debug_headers=debug_headers)

    async def _failure(
        self,
        error: Exception,
        record: dict[str, Any],
        headers: dict[str, str],
        debug_headers: Headers,
        invocation: CallInvocation,
        lang: str,
        action_url: str,
        ctx: TracingContext,
    ) -> DispatchError:
        """Normalize a failed request, report it and build the caller's error."""
        parsed = await normalize_error(
            error,
            lang=lang,
            transform_response_error=self.config.transform_response_error,
            args=invocation.args,
            ctx=ctx,
        )
        status = resolve_status(parsed, error)
        response = getattr(error, "response", None)

        await emit_stats(
            StatsRecord(**record, status=status),
            response_data=getattr(response, "data", None),
            send_stats=self.options.send_stats,
            headers=headers,
            debug_headers=debug_headers,
            parent_ctx=invocation.ctx,
            ctx=ctx,
        )

        parsed_data = parsed.model_dump(exclude={"request_id"}) if parsed is not None else {}
        ctx.log_error(
            "Request failed",
            error,
            {
                "action_url": action_url,
                "parsed_error": parsed_data or None,
                "service_name": self.service_name,
                "debug_headers": sanitize_debug_headers(debug_headers),
            },
        )

        gateway_error = GatewayError(**parsed_data, request_id=invocation.request_id)
        return DispatchError(gateway_error, debug_headers)

    def _unexpected(
        self,
        error: Exception,
        invocation: CallInvocation,
        lang: str,
        debug_headers: Headers,
        ctx: TracingContext,
    ) -> DispatchError:
        """Report a failure of a required step before the request was sent."""
        parsed = parse_rest_error(error, lang)
        ctx.log_error(
            "Request failed",
            error,
            {
                "service_name": self.service_name,
                "action_name": self.action_name,
                "debug_headers": sanitize_debug_headers(debug_headers),
            },
        )
        gateway_error = GatewayError(**parsed.model_dump(), request_id=invocation.request_id)
        return DispatchError(gateway_error, debug_headers)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
