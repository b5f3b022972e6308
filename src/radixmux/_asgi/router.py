"""HTTP+Websocket router/multiplexer implementation.

Inspired by go-chi/mux's Mux
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from functools import reduce
from typing import Literal, cast, overload

from radixmux.errors import MethodNotAllowedError, NotFoundError
from radixmux.tree import Method, RouteTree, _qualname, http_route, path_params

from .types import (
    ASGIHandler,
    ASGIHTTPHandler,
    ASGIWebsocketHandler,
    HTTPReceive,
    HTTPScope,
    HTTPSend,
    LifespanReceive,
    LifespanScope,
    LifespanSend,
    LifespanShutdownCompleteEvent,
    LifespanStartupCompleteEvent,
    LifespanStartupFailedEvent,
    WebsocketCloseEvent,
    WebsocketReceive,
    WebsocketScope,
    WebsocketSend,
)

logger = logging.getLogger(__name__)

allowed_methods: ContextVar[frozenset[str]] = ContextVar("allowed_methods")

# --- IMPLEMENTATION -----------------------------------------------------------
type Middleware[T] = Callable[[T], T]
type HTTPMethod = Literal[
    "CONNECT", "DELETE", "GET", "HEAD", "OPTIONS", "PATCH", "POST", "PUT", "TRACE"
]
type WebsocketMethod = Literal["WEBSOCKET"]


@dataclass(slots=True, frozen=True)
class Route:
    """Binding stored in the tree: the handler plus its own middleware."""

    handler: ASGIHandler
    middleware: tuple[Middleware[ASGIHandler], ...] = ()


class Router:
    __slots__ = (
        "_method_not_allowed_handler",
        "_middleware",
        "_not_found_handler",
        "_tree",
    )
    _tree: RouteTree[Route]
    _middleware: tuple[Middleware[ASGIHandler], ...]
    _not_found_handler: ASGIHTTPHandler | None
    _method_not_allowed_handler: ASGIHTTPHandler | None

    def __init__(
        self,
        *,
        not_found_handler: ASGIHTTPHandler | None = None,
        method_not_allowed_handler: ASGIHTTPHandler | None = None,
    ) -> None:
        self._tree = RouteTree()
        self._middleware = ()
        self._not_found_handler = not_found_handler
        self._method_not_allowed_handler = method_not_allowed_handler

    @property
    def tree(self) -> RouteTree[Route]:
        return self._tree

    @overload
    async def __call__(
        self, scope: HTTPScope, receive: HTTPReceive, send: HTTPSend
    ) -> None: ...
    @overload
    async def __call__(
        self, scope: WebsocketScope, receive: WebsocketReceive, send: WebsocketSend
    ) -> None: ...
    @overload
    async def __call__(
        self, scope: LifespanScope, receive: LifespanReceive, send: LifespanSend
    ) -> None: ...
    async def __call__(
        self,
        scope: HTTPScope | WebsocketScope | LifespanScope,
        receive: HTTPReceive | WebsocketReceive | LifespanReceive,
        send: HTTPSend | WebsocketSend | LifespanSend,
    ) -> None:
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)  # ty: ignore[invalid-argument-type]
            return

        is_http = scope["type"] == "http"
        method = scope["method"] if is_http else Method.WEBSOCKET  # ty: ignore[invalid-key]
        path = scope.get("path", "")
        try:
            match = self._tree.resolve(path, method)
        except NotFoundError:
            handler = self._not_found(is_http)
            with _request_context({}, "", frozenset()):
                await handler(scope, receive, send)  # ty: ignore[invalid-argument-type]
            return
        except MethodNotAllowedError as e:
            # a websocket-only path has no http resource
            if is_http and e.allowed_methods <= {Method.WEBSOCKET}:
                handler = self._not_found(is_http)
            else:
                handler = self._method_not_allowed(is_http)
            with _request_context({}, "", e.allowed_methods):
                await handler(scope, receive, send)  # ty: ignore[invalid-argument-type]
            return

        route = match.binding
        middleware = self._middleware + route.middleware
        wrapped = reduce(lambda h, m: m(h), reversed(middleware), route.handler)
        with _request_context(match.params, match.pattern, frozenset()):
            await wrapped(scope, receive, send)  # ty: ignore[invalid-argument-type]  - is correct just want to avoid casting

    def _not_found(self, is_http: bool) -> ASGIHandler:
        if not is_http:
            return close_websocket
        return self._not_found_handler or default_not_found

    def _method_not_allowed(self, is_http: bool) -> ASGIHandler:
        if not is_http:
            return close_websocket
        return self._method_not_allowed_handler or default_method_not_allowed

    async def _handle_lifespan(
        self, receive: LifespanReceive, send: LifespanSend
    ) -> None:
        """Handle ASGI lifespan events."""
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                try:
                    self.finalize()
                    await send(
                        LifespanStartupCompleteEvent(type="lifespan.startup.complete")
                    )
                except Exception as e:  # noqa: BLE001  - ASGI requires reporting any failure
                    logger.exception("router startup failed")
                    await send(
                        LifespanStartupFailedEvent(
                            type="lifespan.startup.failed", message=str(e)
                        )
                    )
                    return
            elif message["type"] == "lifespan.shutdown":
                await send(
                    LifespanShutdownCompleteEvent(type="lifespan.shutdown.complete")
                )
                return

    def finalize(self) -> None:
        """Freeze the routing tree.

        No routes can be added afterwards. Idempotent - safe to call multiple
        times.

        This is called automatically during ASGI lifespan startup, but can be
        called manually before forking workers.
        """
        self._tree.finalize()

    def _register(
        self,
        method: str,
        path: str,
        handler: ASGIHandler,
        middleware: tuple[Middleware[ASGIHandler], ...],
    ) -> None:
        self._tree.register(path, method, Route(handler, middleware))

    def handle(
        self,
        path: str,
        handler: ASGIHandler,
        middleware: tuple[Middleware[ASGIHandler], ...] = (),
    ) -> None:
        """Registers handler in tree at path for any http method or websocket, with optional middleware.

        This can be useful if you have a fully independent ASGI app you want to mount.
        """
        self._register(Method.ANY, path, handler, middleware)

    @overload
    def method(
        self,
        method: HTTPMethod | None,
        path: str,
        handler: ASGIHTTPHandler,
        middleware: tuple[Middleware[ASGIHandler], ...] = (),
    ) -> None: ...
    @overload
    def method(
        self,
        method: WebsocketMethod,
        path: str,
        handler: ASGIWebsocketHandler,
        middleware: tuple[Middleware[ASGIHandler], ...] = (),
    ) -> None: ...
    def method(
        self,
        method: HTTPMethod | WebsocketMethod | None,
        path: str,
        handler: ASGIHandler,
        middleware: tuple[Middleware[ASGIHandler], ...] = (),
    ) -> None:
        """Registers handler in tree at path for method, with optional middleware."""
        self._register(
            Method(method) if method is not None else Method.ANY,
            path,
            handler,
            middleware,
        )

    def connect(
        self,
        path: str,
        handler: ASGIHTTPHandler,
        middleware: tuple[Middleware[ASGIHandler], ...] = (),
    ) -> None:
        """Registers http handler in tree at path for CONNECT, with optional middleware."""
        self._register(Method.CONNECT, path, handler, middleware)

    def delete(
        self,
        path: str,
        handler: ASGIHTTPHandler,
        middleware: tuple[Middleware[ASGIHandler], ...] = (),
    ) -> None:
        """Registers http handler in tree at path for DELETE, with optional middleware."""
        self._register(Method.DELETE, path, handler, middleware)

    def get(
        self,
        path: str,
        handler: ASGIHTTPHandler,
        middleware: tuple[Middleware[ASGIHandler], ...] = (),
    ) -> None:
        """Registers http handler in tree at path for GET, with optional middleware."""
        self._register(Method.GET, path, handler, middleware)

    def head(
        self,
        path: str,
        handler: ASGIHTTPHandler,
        middleware: tuple[Middleware[ASGIHandler], ...] = (),
    ) -> None:
        """Registers http handler in tree at path for HEAD, with optional middleware."""
        self._register(Method.HEAD, path, handler, middleware)

    def options(
        self,
        path: str,
        handler: ASGIHTTPHandler,
        middleware: tuple[Middleware[ASGIHandler], ...] = (),
    ) -> None:
        """Registers http handler in tree at path for OPTIONS, with optional middleware."""
        self._register(Method.OPTIONS, path, handler, middleware)

    def patch(
        self,
        path: str,
        handler: ASGIHTTPHandler,
        middleware: tuple[Middleware[ASGIHandler], ...] = (),
    ) -> None:
        """Registers http handler in tree at path for PATCH, with optional middleware."""
        self._register(Method.PATCH, path, handler, middleware)

    def post(
        self,
        path: str,
        handler: ASGIHTTPHandler,
        middleware: tuple[Middleware[ASGIHandler], ...] = (),
    ) -> None:
        """Registers http handler in tree at path for POST, with optional middleware."""
        self._register(Method.POST, path, handler, middleware)

    def put(
        self,
        path: str,
        handler: ASGIHTTPHandler,
        middleware: tuple[Middleware[ASGIHandler], ...] = (),
    ) -> None:
        """Registers http handler in tree at path for PUT, with optional middleware."""
        self._register(Method.PUT, path, handler, middleware)

    def trace(
        self,
        path: str,
        handler: ASGIHTTPHandler,
        middleware: tuple[Middleware[ASGIHandler], ...] = (),
    ) -> None:
        """Registers http handler in tree at path for TRACE, with optional middleware."""
        self._register(Method.TRACE, path, handler, middleware)

    def websocket(
        self,
        path: str,
        handler: ASGIWebsocketHandler,
        middleware: tuple[Middleware[ASGIHandler], ...] = (),
    ) -> None:
        """Registers websocket handler in tree at path, with optional middleware."""
        self._register(Method.WEBSOCKET, path, handler, middleware)

    def not_found(self, handler: ASGIHTTPHandler) -> None:
        """Registers http handler for paths that can't be found."""
        if self._not_found_handler is not None:
            msg = "not found handler is already set"
            raise ValueError(msg)
        self._not_found_handler = handler

    def method_not_allowed(self, handler: ASGIHTTPHandler) -> None:
        """Registers http handler for paths where the method is unresolved.

        The methods that are registered for the path are available from the
        ``allowed_methods`` context variable.
        """
        if self._method_not_allowed_handler is not None:
            msg = "method not allowed handler is already set"
            raise ValueError(msg)
        self._method_not_allowed_handler = handler

    def use(self, *middleware: Middleware[ASGIHandler]) -> None:
        """Adds router-wide middleware. The first one added is the outermost."""
        self._middleware = self._middleware + middleware

    def mount(self, path: str, router: Router) -> None:
        """Copies the routes of another router in under path.

        The child's router-wide middleware stays with the child's routes and
        runs inside this router's middleware. Routes added to the child after
        mounting are not picked up.
        """
        if not path.startswith("/"):
            msg = "mount path must start with /"
            raise ValueError(msg)
        if path.endswith("/") and path != "/":
            msg = "mount path cannot end in /"
            raise ValueError(msg)
        prefix = "" if path == "/" else path
        for method, pattern, route in router._tree.routes():
            self._tree.register(
                prefix + pattern,
                method,
                Route(route.handler, router._middleware + route.middleware),
            )

    def format_routes(self, *, tree: bool = False) -> str:
        """Human-readable listing of the registered routes.

        Each handler is followed by the middleware that wraps it, outermost
        first:

            GET    /admin               admin_home   [auth > admin_audit]
        """

        def describe(route: Route) -> str:
            label = _qualname(route.handler)
            middleware = self._middleware + route.middleware
            if middleware:
                label += " [" + " > ".join(_qualname(m) for m in middleware) + "]"
            return label

        return self._tree.format_routes(tree=tree, describe=describe)


@contextmanager
def _request_context(
    params: dict[str, str], route: str, allowed: frozenset[str]
) -> Iterator[None]:
    params_token = path_params.set(params)
    route_token = http_route.set(route)
    allowed_token = allowed_methods.set(allowed)
    try:
        yield
    finally:
        allowed_methods.reset(allowed_token)
        http_route.reset(route_token)
        path_params.reset(params_token)


# --- default error handlers ---------------------------------------------------
async def _send_text(
    send: HTTPSend,
    status: int,
    body: str,
    headers: list[tuple[bytes, bytes]] | None = None,
) -> None:
    payload = body.encode("utf-8")
    await send(
        {
            "type": "http.response.start",
            "status": status,
            "headers": [
                (b"content-type", b"text/plain; charset=utf-8"),
                (b"content-length", str(len(payload)).encode("latin-1")),
                *(headers or []),
            ],
        }
    )
    await send({"type": "http.response.body", "body": payload})


async def default_not_found(
    scope: HTTPScope, receive: HTTPReceive, send: HTTPSend
) -> None:
    await _send_text(send, 404, "Not Found")


async def default_method_not_allowed(
    scope: HTTPScope, receive: HTTPReceive, send: HTTPSend
) -> None:
    allow = ", ".join(
        sorted(m for m in allowed_methods.get(frozenset()) if m != Method.WEBSOCKET)
    )
    await _send_text(
        send, 405, "Method Not Allowed", [(b"allow", allow.encode("latin-1"))]
    )


async def close_websocket(
    scope: WebsocketScope, receive: WebsocketReceive, send: WebsocketSend
) -> None:
    """Rejects a websocket with no matching route (the server answers 403)."""
    await send(cast("WebsocketCloseEvent", {"type": "websocket.close", "code": 1000}))
