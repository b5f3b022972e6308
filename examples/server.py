# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "radixmux",
#     "granian[uvloop]>=2.6.0,<3.0.0",
# ]
#
# [tool.uv.sources]
# radixmux = { path = "../", editable = true }
# ///
"""ASGI server demo.

Fully functional web server using Granian + radixmux Router.
"""

import asyncio
import json
import logging
import sqlite3
from json.decoder import JSONDecodeError
from typing import Any

from granian.constants import Interfaces
from granian.server.embed import Server

from radixmux import Router, allowed_methods, path_params
from radixmux._asgi.types import ASGIHTTPHandler, HTTPReceive, HTTPScope, HTTPSend

ADDRESS = "127.0.0.1"
PORT = 8000

_db = sqlite3.connect(":memory:")
_db.cursor().executescript("""
CREATE TABLE IF NOT EXISTS user (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS file (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    path TEXT NOT NULL UNIQUE,
    content TEXT NOT NULL
);
""")


async def main() -> None:
    logging.basicConfig(level=logging.INFO)

    router = Router()
    router.not_found(not_found)
    router.method_not_allowed(method_not_allowed)
    router.get("/", home)
    router.mount("/user", user_router(_db))
    router.mount("/files", file_router(_db))
    print(router.format_routes(tree=True))

    server = Server(
        router,
        address=ADDRESS,
        port=PORT,
        interface=Interfaces.ASGI,
        log_access=True,
    )
    try:
        await server.serve()
    except asyncio.CancelledError:
        pass


async def respond(
    send: HTTPSend, status: int, body: str, content_type: str = "text/plain"
) -> None:
    payload = body.encode()
    await send(
        {
            "type": "http.response.start",
            "status": status,
            "headers": [
                (b"content-type", content_type.encode()),
                (b"content-length", str(len(payload)).encode()),
            ],
        }
    )
    await send({"type": "http.response.body", "body": payload})


async def respond_json(send: HTTPSend, status: int, data: Any) -> None:
    await respond(send, status, json.dumps(data), "application/json")


async def read_body(receive: HTTPReceive) -> bytes:
    body = b""
    while True:
        event = await receive()
        if event["type"] == "http.disconnect":
            return body
        body += event.get("body", b"")
        if not event.get("more_body", False):
            return body


async def not_found(s: HTTPScope, r: HTTPReceive, send: HTTPSend) -> None:
    await respond(send, 404, "Not found")


async def method_not_allowed(s: HTTPScope, r: HTTPReceive, send: HTTPSend) -> None:
    allowed = ", ".join(sorted(allowed_methods.get()))
    await respond(send, 405, f"Method not allowed, try one of: {allowed}")


async def home(s: HTTPScope, r: HTTPReceive, send: HTTPSend) -> None:
    await respond(send, 200, "Welcome home")


def user_router(db: sqlite3.Connection) -> Router:
    router = Router()
    router.get("/", get_users(db))
    router.get("/{id}", get_user(db))
    router.get("/me", get_me())
    router.post("/", create_user(db))
    router.patch("/{id}", update_user(db))
    return router


# closure over handler to inject dependencies
def get_users(db: sqlite3.Connection) -> ASGIHTTPHandler:
    async def handler(s: HTTPScope, r: HTTPReceive, send: HTTPSend) -> None:
        cur = db.cursor()
        cur.execute("SELECT * FROM user")
        result = cur.fetchall()
        await respond_json(send, 200, [{"id": row[0], "name": row[1]} for row in result])

    return handler


def get_user(db: sqlite3.Connection) -> ASGIHTTPHandler:
    async def handler(s: HTTPScope, r: HTTPReceive, send: HTTPSend) -> None:
        cur = db.cursor()
        user_id = path_params.get()["id"]
        try:
            user_id = int(user_id)
        except ValueError:
            await respond(send, 404, "Not found")
            return
        cur.execute("SELECT * FROM user WHERE id = ?", (user_id,))
        result = cur.fetchone()
        if result is None:
            await respond(send, 404, "Not found")
            return
        await respond_json(send, 200, {"id": result[0], "name": result[1]})

    return handler


# static segment wins over /user/{id}
def get_me() -> ASGIHTTPHandler:
    async def handler(s: HTTPScope, r: HTTPReceive, send: HTTPSend) -> None:
        await respond_json(send, 200, {"id": None, "name": "anonymous"})

    return handler


def create_user(db: sqlite3.Connection) -> ASGIHTTPHandler:
    async def handler(s: HTTPScope, r: HTTPReceive, send: HTTPSend) -> None:
        cur = db.cursor()
        body = await read_body(r)
        try:
            payload = json.loads(body)
        except JSONDecodeError:
            await respond(send, 422, "Invalid json")
            return
        try:
            name = payload["name"]
        except KeyError:
            await respond(send, 422, "Missing name")
            return
        cur.execute("INSERT INTO user (name) VALUES (?) RETURNING *", (name,))
        result = cur.fetchone()
        await respond_json(send, 201, {"id": result[0], "name": result[1]})

    return handler


def update_user(db: sqlite3.Connection) -> ASGIHTTPHandler:
    async def handler(s: HTTPScope, r: HTTPReceive, send: HTTPSend) -> None:
        cur = db.cursor()
        user_id = path_params.get()["id"]
        body = await read_body(r)
        try:
            payload = json.loads(body)
        except JSONDecodeError:
            await respond(send, 422, "Invalid json")
            return
        try:
            name = payload["name"]
        except KeyError:
            await respond(send, 422, "Missing name")
            return
        cur.execute(
            "UPDATE user SET name = ? WHERE id = ? RETURNING *", (name, user_id)
        )
        result = cur.fetchone()
        if result is None:
            await respond(send, 404, "Not found")
            return
        await respond_json(send, 200, {"id": result[0], "name": result[1]})

    return handler


def file_router(db: sqlite3.Connection) -> Router:
    router = Router()
    router.get("/{*path}", get_file(db))
    router.put("/{*path}", put_file(db))
    return router


def get_file(db: sqlite3.Connection) -> ASGIHTTPHandler:
    async def handler(s: HTTPScope, r: HTTPReceive, send: HTTPSend) -> None:
        cur = db.cursor()
        path = path_params.get()["path"]
        cur.execute("SELECT content FROM file WHERE path = ?", (path,))
        result = cur.fetchone()
        if result is None:
            await respond(send, 404, "Not found")
            return
        await respond(send, 200, result[0])

    return handler


def put_file(db: sqlite3.Connection) -> ASGIHTTPHandler:
    async def handler(s: HTTPScope, r: HTTPReceive, send: HTTPSend) -> None:
        cur = db.cursor()
        path = path_params.get()["path"]
        content = (await read_body(r)).decode()
        cur.execute(
            "INSERT INTO file (path, content) VALUES (?, ?) "
            "ON CONFLICT (path) DO UPDATE SET content = excluded.content",
            (path, content),
        )
        await respond(send, 204, "")

    return handler


if __name__ == "__main__":
    asyncio.run(main())
