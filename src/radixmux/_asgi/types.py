"""ASGI 3 type definitions for the parts of the protocol the router touches.

See https://asgi.readthedocs.io/en/latest/specs/www.html
"""

from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Literal, NotRequired, TypedDict


class ASGIVersions(TypedDict):
    spec_version: str
    version: Literal["3.0"]


# --- scopes -------------------------------------------------------------------
class HTTPScope(TypedDict):
    type: Literal["http"]
    asgi: ASGIVersions
    http_version: str
    method: str
    scheme: str
    path: str
    raw_path: NotRequired[bytes]
    query_string: bytes
    root_path: str
    headers: Iterable[tuple[bytes, bytes]]
    client: tuple[str, int] | None
    server: tuple[str, int | None] | None
    state: NotRequired[dict[str, Any]]
    extensions: NotRequired[dict[str, dict[object, object]]]


class WebsocketScope(TypedDict):
    type: Literal["websocket"]
    asgi: ASGIVersions
    http_version: str
    scheme: str
    path: str
    raw_path: NotRequired[bytes]
    query_string: bytes
    root_path: str
    headers: Iterable[tuple[bytes, bytes]]
    client: tuple[str, int] | None
    server: tuple[str, int | None] | None
    subprotocols: Iterable[str]
    state: NotRequired[dict[str, Any]]
    extensions: NotRequired[dict[str, dict[object, object]]]


class LifespanScope(TypedDict):
    type: Literal["lifespan"]
    asgi: ASGIVersions
    state: NotRequired[dict[str, Any]]


# --- http events --------------------------------------------------------------
class HTTPRequestEvent(TypedDict):
    type: Literal["http.request"]
    body: bytes
    more_body: bool


class HTTPDisconnectEvent(TypedDict):
    type: Literal["http.disconnect"]


class HTTPResponseStartEvent(TypedDict):
    type: Literal["http.response.start"]
    status: int
    headers: NotRequired[Iterable[tuple[bytes, bytes]]]
    trailers: NotRequired[bool]


class HTTPResponseBodyEvent(TypedDict):
    type: Literal["http.response.body"]
    body: bytes
    more_body: NotRequired[bool]


type HTTPReceiveEvent = HTTPRequestEvent | HTTPDisconnectEvent
type HTTPSendEvent = HTTPResponseStartEvent | HTTPResponseBodyEvent
type HTTPReceive = Callable[[], Awaitable[HTTPReceiveEvent]]
type HTTPSend = Callable[[HTTPSendEvent], Awaitable[None]]


# --- websocket events ---------------------------------------------------------
class WebsocketConnectEvent(TypedDict):
    type: Literal["websocket.connect"]


class WebsocketReceiveEvent(TypedDict):
    type: Literal["websocket.receive"]
    bytes: NotRequired[bytes | None]
    text: NotRequired[str | None]


class WebsocketDisconnectEvent(TypedDict):
    type: Literal["websocket.disconnect"]
    code: int


class WebsocketAcceptEvent(TypedDict):
    type: Literal["websocket.accept"]
    subprotocol: NotRequired[str | None]
    headers: NotRequired[Iterable[tuple[bytes, bytes]]]


class WebsocketSendEvent(TypedDict):
    type: Literal["websocket.send"]
    bytes: NotRequired[bytes | None]
    text: NotRequired[str | None]


class WebsocketCloseEvent(TypedDict):
    type: Literal["websocket.close"]
    code: int
    reason: NotRequired[str | None]


type WebsocketReceiveMessage = (
    WebsocketConnectEvent | WebsocketReceiveEvent | WebsocketDisconnectEvent
)
type WebsocketSendMessage = (
    WebsocketAcceptEvent | WebsocketSendEvent | WebsocketCloseEvent
)
type WebsocketReceive = Callable[[], Awaitable[WebsocketReceiveMessage]]
type WebsocketSend = Callable[[WebsocketSendMessage], Awaitable[None]]


# --- lifespan events ----------------------------------------------------------
class LifespanStartupEvent(TypedDict):
    type: Literal["lifespan.startup"]


class LifespanShutdownEvent(TypedDict):
    type: Literal["lifespan.shutdown"]


class LifespanStartupCompleteEvent(TypedDict):
    type: Literal["lifespan.startup.complete"]


class LifespanStartupFailedEvent(TypedDict):
    type: Literal["lifespan.startup.failed"]
    message: str


class LifespanShutdownCompleteEvent(TypedDict):
    type: Literal["lifespan.shutdown.complete"]


type LifespanReceiveMessage = LifespanStartupEvent | LifespanShutdownEvent
type LifespanSendMessage = (
    LifespanStartupCompleteEvent
    | LifespanStartupFailedEvent
    | LifespanShutdownCompleteEvent
)
type LifespanReceive = Callable[[], Awaitable[LifespanReceiveMessage]]
type LifespanSend = Callable[[LifespanSendMessage], Awaitable[None]]


# --- handlers -----------------------------------------------------------------
type ASGIHTTPHandler = Callable[[HTTPScope, HTTPReceive, HTTPSend], Awaitable[None]]
type ASGIWebsocketHandler = Callable[
    [WebsocketScope, WebsocketReceive, WebsocketSend], Awaitable[None]
]
type ASGIHandler = ASGIHTTPHandler | ASGIWebsocketHandler
