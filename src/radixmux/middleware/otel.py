"""OpenTelemetry tracing and metrics middleware.

Creates HTTP server spans and metrics with semantic conventions for each request.
The matched route pattern (e.g. ``/user/{id}``) is used as ``http.route`` so
spans and metrics stay low-cardinality.

Install with: uv add "radixmux[otel]"
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, cast

if TYPE_CHECKING:
    from collections.abc import Callable

    from radixmux._asgi.types import (
        ASGIHandler,
        ASGIHTTPHandler,
        ASGIWebsocketHandler,
        HTTPReceive,
        HTTPScope,
        HTTPSend,
        HTTPSendEvent,
        WebsocketReceive,
        WebsocketScope,
        WebsocketSend,
    )

try:
    from opentelemetry import metrics, trace
    from opentelemetry.propagate import extract
    from opentelemetry.trace import (
        SpanKind,
        StatusCode,
        TracerProvider,
    )
except ImportError as e:
    msg = (
        "OpenTelemetry middleware requires the 'otel' extra. "
        "Install with: uv add 'radixmux[otel]'"
    )
    raise ImportError(msg) from e

from radixmux.tree import http_route, path_params

_DURATION_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.075,
    0.1,
    0.25,
    0.5,
    0.75,
    1.0,
    2.5,
    5.0,
    7.5,
    10.0,
)


def _headers(scope: HTTPScope) -> dict[str, str]:
    return {
        k.decode("latin-1").lower(): v.decode("latin-1") for k, v in scope["headers"]
    }


def otel(
    *,
    tracer_provider: TracerProvider | None = None,
    meter_provider: metrics.MeterProvider | None = None,
) -> Callable[[ASGIHandler], ASGIHandler]:
    """Create OpenTelemetry tracing and metrics middleware.

    Creates server spans and metrics with HTTP semantic conventions for each
    HTTP request. Websocket requests pass through without instrumentation.

    Extracts trace context from incoming request headers (e.g. ``traceparent``)
    for distributed tracing. Only depends on ``opentelemetry-api``; users bring
    their own SDK and exporters.

    Metrics emitted:
        - ``http.server.request.duration`` (histogram, seconds)
        - ``http.server.active_requests`` (up-down counter)

    Args:
        tracer_provider: Optional TracerProvider. If None, uses the global provider.
        meter_provider: Optional MeterProvider. If None, uses the global provider.

    Returns:
        Middleware function that wraps handlers with tracing and metrics.

    Example:
        router.use(otel())
    """
    tracer = trace.get_tracer(
        "radixmux",
        tracer_provider=tracer_provider,
    )
    meter = metrics.get_meter(
        "radixmux",
        meter_provider=meter_provider,
    )
    duration_histogram = meter.create_histogram(
        "http.server.request.duration",
        unit="s",
        description="Duration of HTTP server requests.",
        explicit_bucket_boundaries_advisory=_DURATION_BUCKETS,
    )
    active_requests_counter = meter.create_up_down_counter(
        "http.server.active_requests",
        unit="{request}",
        description="Number of active HTTP server requests.",
    )

    def middleware(handler: ASGIHandler) -> ASGIHandler:
        async def traced_handler(
            scope: HTTPScope | WebsocketScope,
            receive: HTTPReceive | WebsocketReceive,
            send: HTTPSend | WebsocketSend,
        ) -> None:
            if scope["type"] != "http":  # passthrough websocket
                ws_handler = cast("ASGIWebsocketHandler", handler)
                await ws_handler(
                    cast("WebsocketScope", scope),
                    cast("WebsocketReceive", receive),
                    cast("WebsocketSend", send),
                )
                return

            http_handler = cast("ASGIHTTPHandler", handler)
            scope = cast("HTTPScope", scope)
            send = cast("HTTPSend", send)
            headers = _headers(scope)

            # Extract propagated context from request headers
            ctx = extract(headers)

            # Read http.route from ContextVar (set by Router before middleware runs)
            route = http_route.get("")

            # Build span name: "METHOD /route" for matched, placeholder for unmatched
            method = scope["method"]
            span_name = f"{method} {route}" if route else method

            # Span attributes (stable HTTP semantic conventions)
            attributes: dict[str, str | int] = {
                "http.request.method": method,
                "url.path": scope["path"],
                "url.scheme": scope["scheme"],
                "network.protocol.version": scope["http_version"],
            }
            server = scope.get("server")
            if server is not None:
                attributes["server.address"] = server[0]
                if server[1] is not None:
                    attributes["server.port"] = server[1]
            client = scope.get("client")
            if client is not None:
                attributes["client.address"] = client[0]
            if route:
                attributes["http.route"] = route
            if scope["query_string"]:
                attributes["url.query"] = scope["query_string"].decode("latin-1")
            user_agent = headers.get("user-agent")
            if user_agent is not None:
                attributes["user_agent.original"] = user_agent
            # below isn't part of semantic conventions but having path params is useful
            params = path_params.get({})
            for key, value in params.items():
                attributes[f"http.route.param.{key}"] = value

            # Metric attributes (required + conditionally required by semantic conventions)
            active_attrs: dict[str, str | int] = {
                "http.request.method": method,
                "url.scheme": scope["scheme"],
            }
            if route:
                active_attrs["http.route"] = route

            status: int | None = None

            async def recording_send(message: HTTPSendEvent) -> None:
                nonlocal status
                if message["type"] == "http.response.start":
                    status = message["status"]
                await send(message)

            active_requests_counter.add(1, active_attrs)
            start = time.perf_counter()

            with tracer.start_as_current_span(
                span_name,
                context=ctx,
                kind=SpanKind.SERVER,
                attributes=attributes,
                record_exception=True,
                set_status_on_exception=True,
            ) as span:
                try:
                    await http_handler(scope, receive, recording_send)  # ty: ignore[invalid-argument-type]
                finally:
                    duration = time.perf_counter() - start
                    active_requests_counter.add(-1, active_attrs)
                    duration_attrs = dict(active_attrs)
                    if status is not None:
                        span.set_attribute("http.response.status_code", status)
                        duration_attrs["http.response.status_code"] = status
                        if not route:
                            span.update_name(f"{method} {status}")
                        if status >= 500:
                            span.set_status(StatusCode.ERROR)
                    duration_histogram.record(duration, duration_attrs)

        return traced_handler

    return middleware
