"""Zero dependency radix tree (segment trie) for path routing.

Patterns are split on "/" and every segment becomes one edge. Each node has
static children keyed by literal text, at most one parameter child and at most
one wildcard child. Nodes live in a flat arena and refer to each other by
index, so the finished tree is a plain table that can be shared between
concurrent requests without locking.

Lookup priority at every node is: static > parameter > wildcard, with
backtracking when a deeper subtree fails to match.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum, StrEnum
from typing import Never

from radixmux.errors import (
    ConflictingParameterNameError,
    DuplicateRouteError,
    InvalidPatternError,
    MethodNotAllowedError,
    NotFoundError,
    RouterFinalizedError,
)

logger = logging.getLogger(__name__)

path_params: ContextVar[dict[str, str]] = ContextVar("path_params")
http_route: ContextVar[str] = ContextVar("http_route")

ROOT = 0
ANY_METHOD = "*"


class Method(StrEnum):
    """Method keys understood by the router.

    Methods from the following RFCs are all observed:

        * RFC 9110: HTTP Semantics, obsoletes 7231, which obsoleted 2616
        * RFC 5789: PATCH Method for HTTP

    ANY matches every method that has no binding of its own.
    WEBSOCKET matches a websocket connection.
    """

    CONNECT = "CONNECT"  # Establish a connection to the server.
    DELETE = "DELETE"  # Remove the target.
    GET = "GET"  # Retrieve the target.
    HEAD = "HEAD"  # Same as GET, but only retrieve status line and header section.
    OPTIONS = "OPTIONS"  # Describe the communication options for the target.
    PATCH = "PATCH"  # Apply partial modifications to a target.
    POST = "POST"  # Perform target-specific processing with the request payload.
    PUT = "PUT"  # Replace the target with the request payload.
    TRACE = "TRACE"  # Perform a message loop-back test along the path to the target.

    ANY = ANY_METHOD  # Any method.
    WEBSOCKET = "WEBSOCKET"  # Websocket connection.


class FrozenDict[K, V](dict[K, V]):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._hash: int | None = None

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self.items()))
        return self._hash

    def _immutable(self, *args, **kwargs) -> Never:
        msg = "FrozenDict is immutable"
        raise TypeError(msg)

    __setitem__ = __delitem__ = clear = pop = popitem = setdefault = update = _immutable
    __ior__ = _immutable


# --- patterns -----------------------------------------------------------------
class SegmentKind(Enum):
    STATIC = "static"
    PARAM = "param"
    WILDCARD = "wildcard"


@dataclass(slots=True, frozen=True)
class Segment:
    kind: SegmentKind
    value: str  # literal text for static segments, parameter name otherwise

    def __str__(self) -> str:
        if self.kind is SegmentKind.PARAM:
            return "{" + self.value + "}"
        if self.kind is SegmentKind.WILDCARD:
            return "{*" + self.value + "}"
        return self.value


def parse_pattern(pattern: str) -> tuple[Segment, ...]:
    """Split a route pattern into segments.

        "/users"             -> (users,)
        "/users/{id}"        -> (users, {id})
        "/files/{*path}"     -> (files, {*path})
        "/files/{path...}"   -> (files, {*path})
        "/users/"            -> (users, "")   trailing slash is an empty segment
    """
    if not pattern.startswith("/"):
        raise InvalidPatternError(pattern, "must start with '/'")
    parts = pattern[1:].split("/")
    last = len(parts) - 1
    seen: set[str] = set()
    segments: list[Segment] = []
    for i, part in enumerate(parts):
        if part.startswith("{") and part.endswith("}"):
            inner = part[1:-1]
            if inner.startswith("*"):
                kind, name = SegmentKind.WILDCARD, inner[1:]
            elif inner.endswith("..."):
                kind, name = SegmentKind.WILDCARD, inner[:-3]
            else:
                kind, name = SegmentKind.PARAM, inner
            if not name.isidentifier():
                raise InvalidPatternError(pattern, f"invalid parameter name {name!r}")
            if name in seen:
                raise InvalidPatternError(pattern, f"duplicate parameter {name!r}")
            if kind is SegmentKind.WILDCARD and i != last:
                raise InvalidPatternError(pattern, "wildcard must be the last segment")
            seen.add(name)
            segments.append(Segment(kind, name))
        elif "{" in part or "}" in part:
            raise InvalidPatternError(pattern, f"unbalanced braces in {part!r}")
        else:
            segments.append(Segment(SegmentKind.STATIC, part))
    return tuple(segments)


def format_pattern(segments: Sequence[Segment]) -> str:
    return "/" + "/".join(str(seg) for seg in segments)


# --- tree ---------------------------------------------------------------------
@dataclass(slots=True)
class RouteNode[T]:
    """Segment trie node.

    ``children`` maps literal segment text to a node index. ``handlers`` is
    empty for nodes that only exist to share a prefix.
    """

    segment: str = ""
    param_name: str | None = None
    children: dict[str, int] = field(default_factory=dict)
    param_child: int | None = None
    wildcard_child: int | None = None
    handlers: dict[str, T] = field(default_factory=dict)
    pattern: str | None = None


@dataclass(slots=True, frozen=True)
class MatchResult[T]:
    binding: T
    params: dict[str, str]  # in path order
    pattern: str  # canonical route pattern, e.g. "/user/{id}"
    method: str  # method key that matched, ANY_METHOD for catch-all bindings


type _Frame = tuple[int, int, tuple[tuple[str, str], ...]]


class RouteTree[T]:
    """Radix tree index of route patterns.

    Built once with ``register``, frozen with ``finalize`` and then queried
    with ``resolve``. Bindings are opaque to the tree.
    """

    __slots__ = ("_finalized", "_nodes", "_routes")

    def __init__(self) -> None:
        self._nodes: list[RouteNode[T]] = [RouteNode()]
        self._routes: list[tuple[str, str, T]] = []
        self._finalized = False

    def __len__(self) -> int:
        return len(self._routes)

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    def register(self, pattern: str, method: str, binding: T) -> None:
        """Adds binding for method at pattern, extending the tree as needed."""
        if self._finalized:
            raise RouterFinalizedError
        method = method.upper()
        segments = parse_pattern(pattern)
        canonical = format_pattern(segments)

        index = ROOT
        for seg in segments:
            node = self._nodes[index]
            if seg.kind is SegmentKind.STATIC:
                child = node.children.get(seg.value)
                if child is None:
                    child = self._add_node(seg.value)
                    node.children[seg.value] = child
            elif seg.kind is SegmentKind.PARAM:
                child = node.param_child
                if child is None:
                    child = self._add_node(str(seg), seg.value)
                    node.param_child = child
                else:
                    self._check_name(pattern, child, seg.value)
            else:
                child = node.wildcard_child
                if child is None:
                    child = self._add_node(str(seg), seg.value)
                    node.wildcard_child = child
                else:
                    self._check_name(pattern, child, seg.value)
            index = child

        node = self._nodes[index]
        if method in node.handlers:
            raise DuplicateRouteError(canonical, method)
        node.handlers[method] = binding
        node.pattern = canonical
        self._routes.append((method, canonical, binding))
        logger.debug("route registered: %s %s", method, canonical)

    def _add_node(self, segment: str, param_name: str | None = None) -> int:
        self._nodes.append(RouteNode(segment=segment, param_name=param_name))
        return len(self._nodes) - 1

    def _check_name(self, pattern: str, index: int, name: str) -> None:
        existing = self._nodes[index].param_name
        if existing != name:
            raise ConflictingParameterNameError(pattern, existing or "", name)

    def finalize(self) -> None:
        """Freezes the tree. Idempotent."""
        if self._finalized:
            return
        for node in self._nodes:
            node.children = FrozenDict(node.children)
            node.handlers = FrozenDict(node.handlers)
        self._finalized = True
        logger.info(
            "route tree finalized: %d routes, %d nodes",
            len(self._routes),
            len(self._nodes),
        )

    def resolve(self, path: str, method: str) -> MatchResult[T]:
        """Finds the binding for method at path.

        Walks the tree depth first with an explicit stack. Candidates are pushed
        lowest priority first so the static child is always explored before the
        parameter child, and the parameter child before the wildcard child.

        The first node with handlers that matches the whole path decides the
        outcome: if it has no binding for method (or ``*``) MethodNotAllowedError
        is raised with that node's methods. Only nodes without handlers and
        subtrees that fail to consume the path are backtracked over.
        """
        method = method.upper()
        if not path.startswith("/"):
            raise NotFoundError(path)
        segments = path[1:].split("/")
        depth = len(segments)
        nodes = self._nodes

        stack: list[_Frame] = [(ROOT, 0, ())]
        while stack:
            index, pos, captured = stack.pop()
            node = nodes[index]

            if pos == depth:
                handlers = node.handlers
                if not handlers:
                    continue
                key = method if method in handlers else ANY_METHOD
                if key in handlers:
                    return MatchResult(
                        binding=handlers[key],
                        params=dict(captured),
                        pattern=node.pattern or "",
                        method=key,
                    )
                raise MethodNotAllowedError(path, method, handlers)

            seg = segments[pos]
            if node.wildcard_child is not None:
                rest = "/".join(segments[pos:])
                if rest:
                    name = nodes[node.wildcard_child].param_name or ""
                    stack.append((node.wildcard_child, depth, (*captured, (name, rest))))
            if node.param_child is not None and seg:
                name = nodes[node.param_child].param_name or ""
                stack.append((node.param_child, pos + 1, (*captured, (name, seg))))
            child = node.children.get(seg)
            if child is not None:
                stack.append((child, pos + 1, captured))

        raise NotFoundError(path)

    def routes(self) -> list[tuple[str, str, T]]:
        """Registered (method, pattern, binding) triples in registration order."""
        return list(self._routes)

    def format_routes(
        self,
        *,
        tree: bool = False,
        describe: Callable[[T], str] | None = None,
    ) -> str:
        """Format registered routes as a human-readable string.

        By default produces a column-aligned flat route list:

            *      /                     home_handler
            GET    /admin                admin_home_handler
            POST   /admin/user/{id}      admin_user_rename_handler
            GET    /static/{*path}       static_handler

        With ``tree=True``, produces a visual tree instead:

            /
            ├── [*] home_handler
            ├── admin
            │   ├── [GET] admin_home_handler
            │   └── user
            │       └── {id}
            │           └── [POST] admin_user_rename_handler
            └── static
                └── {*path}
                    └── [GET] static_handler

        ``describe`` renders a binding, defaulting to its ``__qualname__``.
        """
        describe = describe or _qualname
        if tree:
            lines = ["/"]
            self._render_tree(ROOT, "", describe, lines)
            return "\n".join(lines)
        return self._format_route_list(describe)

    def _format_route_list(self, describe: Callable[[T], str]) -> str:
        routes = sorted(self._routes, key=lambda r: (r[1], r[0]))
        if not routes:
            return ""
        method_w = max(len(r[0]) for r in routes)
        path_w = max(len(r[1]) for r in routes)
        return "\n".join(
            f"{method:<{method_w}}   {path:<{path_w}}   {describe(binding)}".rstrip()
            for method, path, binding in routes
        )

    def _render_tree(
        self,
        index: int,
        prefix: str,
        describe: Callable[[T], str],
        lines: list[str],
    ) -> None:
        node = self._nodes[index]
        items: list[tuple[str, int | None]] = []

        # root "/" handlers hang off the "" child, show them on the root itself
        folded = None
        if index == ROOT and "" in node.children:
            empty = self._nodes[node.children[""]]
            if (
                not empty.children
                and empty.param_child is None
                and empty.wildcard_child is None
            ):
                folded = empty
        for holder in (node, folded):
            if holder is None:
                continue
            for method, binding in sorted(holder.handlers.items()):
                items.append((f"[{method}] {describe(binding)}", None))

        for seg, child in sorted(node.children.items()):
            if folded is not None and seg == "":
                continue
            items.append((seg or "/", child))
        if node.param_child is not None:
            items.append((self._nodes[node.param_child].segment, node.param_child))
        if node.wildcard_child is not None:
            items.append(
                (self._nodes[node.wildcard_child].segment, node.wildcard_child)
            )

        for i, (label, child) in enumerate(items):
            is_last = i == len(items) - 1
            connector = "└── " if is_last else "├── "
            lines.append(f"{prefix}{connector}{label}")
            if child is not None:
                extension = "    " if is_last else "│   "
                self._render_tree(child, prefix + extension, describe, lines)


def _qualname(obj: object) -> str:
    """Extract __qualname__ from a callable, falling back to repr."""
    return str(obj.__qualname__) if hasattr(obj, "__qualname__") else repr(obj)
