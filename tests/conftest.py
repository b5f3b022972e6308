from collections.abc import Iterable
from typing import Any, cast

from radixmux._asgi.types import HTTPScope, WebsocketScope


class MockSend:
    """Captures the ASGI messages sent by an application."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    async def __call__(self, message: Any) -> None:
        self.messages.append(dict(message))

    @property
    def status(self) -> int | None:
        for message in self.messages:
            if message["type"] == "http.response.start":
                return message["status"]
        return None

    @property
    def headers(self) -> dict[str, str]:
        for message in self.messages:
            if message["type"] == "http.response.start":
                return {
                    k.decode("latin-1"): v.decode("latin-1")
                    for k, v in message.get("headers", [])
                }
        return {}

    @property
    def body(self) -> bytes:
        return b"".join(
            m.get("body", b"")
            for m in self.messages
            if m["type"] == "http.response.body"
        )


class MockReceive:
    """Replays a fixed list of ASGI messages."""

    def __init__(self, messages: Iterable[dict[str, Any]] = ()) -> None:
        self._messages = list(messages)

    async def __call__(self) -> Any:
        if not self._messages:
            return {"type": "http.disconnect"}
        return self._messages.pop(0)


def mock_scope(
    path: str = "/",
    method: str = "GET",
    headers: dict[str, str] | None = None,
    query_string: bytes = b"",
) -> HTTPScope:
    return cast(
        "HTTPScope",
        {
            "type": "http",
            "asgi": {"version": "3.0", "spec_version": "2.4"},
            "http_version": "1.1",
            "method": method,
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "query_string": query_string,
            "root_path": "",
            "headers": [
                (k.lower().encode("latin-1"), v.encode("latin-1"))
                for k, v in (headers or {}).items()
            ],
            "client": ("127.0.0.1", 50000),
            "server": ("localhost", 8000),
        },
    )


def mock_websocket_scope(path: str = "/") -> WebsocketScope:
    return cast(
        "WebsocketScope",
        {
            "type": "websocket",
            "asgi": {"version": "3.0", "spec_version": "2.4"},
            "http_version": "1.1",
            "scheme": "ws",
            "path": path,
            "query_string": b"",
            "root_path": "",
            "headers": [],
            "client": ("127.0.0.1", 50000),
            "server": ("localhost", 8000),
            "subprotocols": [],
        },
    )
