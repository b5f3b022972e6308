import logging
from collections.abc import Callable

import pytest

from radixmux.errors import (
    ConflictingParameterNameError,
    DuplicateRouteError,
    InvalidPatternError,
    MethodNotAllowedError,
    NotFoundError,
    RouterFinalizedError,
)
from radixmux.tree import (
    ANY_METHOD,
    FrozenDict,
    RouteTree,
    Segment,
    SegmentKind,
    format_pattern,
    parse_pattern,
)

STATIC = SegmentKind.STATIC
PARAM = SegmentKind.PARAM
WILDCARD = SegmentKind.WILDCARD


# --- patterns -----------------------------------------------------------------
@pytest.mark.parametrize(
    "pattern, expected",
    [
        ("/", (Segment(STATIC, ""),)),
        ("/users", (Segment(STATIC, "users"),)),
        ("/users/", (Segment(STATIC, "users"), Segment(STATIC, ""))),
        ("/users/{id}", (Segment(STATIC, "users"), Segment(PARAM, "id"))),
        (
            "/users/{user_id}/posts",
            (
                Segment(STATIC, "users"),
                Segment(PARAM, "user_id"),
                Segment(STATIC, "posts"),
            ),
        ),
        ("/files/{*path}", (Segment(STATIC, "files"), Segment(WILDCARD, "path"))),
        ("/files/{path...}", (Segment(STATIC, "files"), Segment(WILDCARD, "path"))),
    ],
)
def test_parse_pattern(pattern: str, expected: tuple[Segment, ...]) -> None:
    assert parse_pattern(pattern) == expected


def test_format_pattern_canonicalizes_wildcards() -> None:
    assert format_pattern(parse_pattern("/files/{path...}")) == "/files/{*path}"
    assert format_pattern(parse_pattern("/a/{b}/c/")) == "/a/{b}/c/"


@pytest.mark.parametrize(
    "pattern, reason",
    [
        ("users", "must start with '/'"),
        ("", "must start with '/'"),
        ("/users/{}", "invalid parameter name ''"),
        ("/users/{1st}", "invalid parameter name '1st'"),
        ("/users/{*}", "invalid parameter name ''"),
        ("/a/{id}/b/{id}", "duplicate parameter 'id'"),
        ("/files/{*path}/raw", "wildcard must be the last segment"),
        ("/files/{path...}/raw", "wildcard must be the last segment"),
        ("/item-{id}", "unbalanced braces in 'item-{id}'"),
        ("/users/{id", "unbalanced braces in '{id'"),
    ],
)
def test_parse_pattern_invalid(pattern: str, reason: str) -> None:
    with pytest.raises(InvalidPatternError) as exc_info:
        parse_pattern(pattern)
    assert exc_info.value.reason == reason
    assert exc_info.value.pattern == pattern


# --- registration -------------------------------------------------------------
def test_register_shares_prefixes() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/users/{id}", "GET", "get_user")
    tree.register("/users/{id}/posts", "GET", "get_posts")
    tree.register("/users/{id}", "DELETE", "delete_user")
    # root, users, {id}, posts
    assert tree.node_count == 4
    assert len(tree) == 3


def test_register_duplicate_raises() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/users/{id}", "GET", "a")
    with pytest.raises(DuplicateRouteError, match=r"GET /users/\{id\}"):
        tree.register("/users/{id}", "GET", "b")


def test_register_duplicate_is_case_insensitive_on_method() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/users", "get", "a")
    with pytest.raises(DuplicateRouteError):
        tree.register("/users", "GET", "b")


def test_register_duplicate_across_wildcard_spellings() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/files/{*path}", "GET", "a")
    with pytest.raises(DuplicateRouteError) as exc_info:
        tree.register("/files/{path...}", "GET", "b")
    assert exc_info.value.pattern == "/files/{*path}"


def test_register_same_pattern_other_method() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/users/{id}", "GET", "a")
    tree.register("/users/{id}", "PUT", "b")
    assert tree.resolve("/users/1", "PUT").binding == "b"


def test_register_conflicting_parameter_name_raises() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/users/{id}", "GET", "a")
    with pytest.raises(ConflictingParameterNameError) as exc_info:
        tree.register("/users/{name}/posts", "GET", "b")
    assert exc_info.value.existing == "id"
    assert exc_info.value.requested == "name"


def test_register_conflicting_wildcard_name_raises() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/static/{*path}", "GET", "a")
    with pytest.raises(ConflictingParameterNameError):
        tree.register("/static/{*file}", "HEAD", "b")


def test_registration_errors_are_value_errors() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/a", "GET", "a")
    with pytest.raises(ValueError, match="route already registered"):
        tree.register("/a", "GET", "a")


# --- resolution ---------------------------------------------------------------
"""
routes:
*       /                         home
GET     /admin                    admin_home
GET     /admin/                   admin_index
POST    /admin/user/{id}/rename   admin_user_rename
GET     /admin/user/{id}/tx/{tx}  admin_user_tx
GET     /admin/user/new/tx/{tx}   admin_new_user_tx
GET     /items/new                new_item_form
GET     /items/{id}               get_item
DELETE  /items/{id}               delete_item
POST    /items/new                create_item_draft
GET     /static/{*path}           static
GET     /static/robots.txt        robots
"""
home = lambda: "home"  # noqa: E731
admin_home = lambda: "admin_home"  # noqa: E731
admin_index = lambda: "admin_index"  # noqa: E731
admin_user_rename = lambda: "admin_user_rename"  # noqa: E731
admin_user_tx = lambda: "admin_user_tx"  # noqa: E731
admin_new_user_tx = lambda: "admin_new_user_tx"  # noqa: E731
new_item_form = lambda: "new_item_form"  # noqa: E731
get_item = lambda: "get_item"  # noqa: E731
delete_item = lambda: "delete_item"  # noqa: E731
create_item_draft = lambda: "create_item_draft"  # noqa: E731
static = lambda: "static"  # noqa: E731
robots = lambda: "robots"  # noqa: E731


@pytest.fixture(scope="module")
def tree() -> RouteTree[Callable[[], str]]:
    t: RouteTree[Callable[[], str]] = RouteTree()
    t.register("/", ANY_METHOD, home)
    t.register("/admin", "GET", admin_home)
    t.register("/admin/", "GET", admin_index)
    t.register("/admin/user/{id}/rename", "POST", admin_user_rename)
    t.register("/admin/user/{id}/tx/{tx}", "GET", admin_user_tx)
    t.register("/admin/user/new/tx/{tx}", "GET", admin_new_user_tx)
    t.register("/items/new", "GET", new_item_form)
    t.register("/items/{id}", "GET", get_item)
    t.register("/items/{id}", "DELETE", delete_item)
    t.register("/items/new", "POST", create_item_draft)
    t.register("/static/{*path}", "GET", static)
    t.register("/static/robots.txt", "GET", robots)
    t.finalize()
    return t


@pytest.mark.parametrize(
    "path, method, expected_handler, expected_params, expected_pattern",
    [
        # any method
        ("/", "PATCH", home, {}, "/"),
        ("/", "GET", home, {}, "/"),
        # simple, with method
        ("/admin", "GET", admin_home, {}, "/admin"),
        # trailing slash is a different route
        ("/admin/", "GET", admin_index, {}, "/admin/"),
        # methods are case insensitive
        ("/admin", "get", admin_home, {}, "/admin"),
        # param
        (
            "/admin/user/42/rename",
            "POST",
            admin_user_rename,
            {"id": "42"},
            "/admin/user/{id}/rename",
        ),
        # multiple params
        (
            "/admin/user/1/tx/2",
            "GET",
            admin_user_tx,
            {"id": "1", "tx": "2"},
            "/admin/user/{id}/tx/{tx}",
        ),
        # static preferred
        (
            "/admin/user/new/tx/9",
            "GET",
            admin_new_user_tx,
            {"tx": "9"},
            "/admin/user/new/tx/{tx}",
        ),
        # backtracks from the static "new" branch to the parameter branch
        (
            "/admin/user/new/rename",
            "POST",
            admin_user_rename,
            {"id": "new"},
            "/admin/user/{id}/rename",
        ),
        ("/items/new", "GET", new_item_form, {}, "/items/new"),
        ("/items/123", "GET", get_item, {"id": "123"}, "/items/{id}"),
        # wildcard
        (
            "/static/lib/datastar.min.js",
            "GET",
            static,
            {"path": "lib/datastar.min.js"},
            "/static/{*path}",
        ),
        ("/static/robots.txt", "GET", robots, {}, "/static/robots.txt"),
        ("/static/a/", "GET", static, {"path": "a/"}, "/static/{*path}"),
    ],
)
def test_resolve(
    tree: RouteTree[Callable[[], str]],
    path: str,
    method: str,
    expected_handler: Callable[[], str],
    expected_params: dict[str, str],
    expected_pattern: str,
) -> None:
    match = tree.resolve(path, method)
    assert match.binding is expected_handler
    assert match.params == expected_params
    assert match.pattern == expected_pattern


@pytest.mark.parametrize(
    "path",
    [
        "/nope",
        "/admin/user",
        "/admin/user/1",
        "/admin/user/1/rename/extra",
        "/admin//",
        # parameters never capture an empty segment
        "/items/",
        "/admin/user//rename",
        # wildcards never capture an empty remainder
        "/static",
        "/static/",
        # not a path
        "",
        "admin",
    ],
)
def test_resolve_not_found(tree: RouteTree[Callable[[], str]], path: str) -> None:
    with pytest.raises(NotFoundError) as exc_info:
        tree.resolve(path, "GET")
    assert exc_info.value.path == path


@pytest.mark.parametrize(
    "path, method, allowed",
    [
        ("/admin", "DELETE", {"GET"}),
        ("/admin/user/1/rename", "GET", {"POST"}),
        # only the methods of the static node, not of /items/{id}
        ("/items/new", "PUT", {"GET", "POST"}),
        ("/items/new", "DELETE", {"GET", "POST"}),
        ("/items/5", "POST", {"GET", "DELETE"}),
        ("/static/robots.txt", "POST", {"GET"}),
    ],
)
def test_resolve_method_not_allowed(
    tree: RouteTree[Callable[[], str]], path: str, method: str, allowed: set[str]
) -> None:
    with pytest.raises(MethodNotAllowedError) as exc_info:
        tree.resolve(path, method)
    assert exc_info.value.allowed_methods == frozenset(allowed)
    assert exc_info.value.method == method


def test_not_found_and_method_not_allowed_are_distinct() -> None:
    assert not issubclass(MethodNotAllowedError, NotFoundError)
    assert not issubclass(NotFoundError, MethodNotAllowedError)
    assert issubclass(NotFoundError, LookupError)


def test_resolve_exact_method_wins_over_any() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/x", "*", "any")
    tree.register("/x", "POST", "post")
    match = tree.resolve("/x", "POST")
    assert match.binding == "post"
    assert match.method == "POST"
    match = tree.resolve("/x", "GET")
    assert match.binding == "any"
    assert match.method == ANY_METHOD


@pytest.mark.parametrize("reverse", [False, True])
def test_resolve_is_registration_order_independent(reverse: bool) -> None:
    routes = [("/a/{x}", "param"), ("/a/static", "static")]
    if reverse:
        routes.reverse()
    tree: RouteTree[str] = RouteTree()
    for pattern, binding in routes:
        tree.register(pattern, "GET", binding)

    assert tree.resolve("/a/static", "GET").binding == "static"
    match = tree.resolve("/a/123", "GET")
    assert match.binding == "param"
    assert match.params == {"x": "123"}


def test_resolve_static_over_param() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/items/{id}", "GET", "item")
    tree.register("/items/new", "GET", "new")
    assert tree.resolve("/items/new", "GET").binding == "new"


def test_resolve_static_node_without_method_does_not_fall_back_to_param() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/items/new", "GET", "new_item_form")
    tree.register("/items/{id}", "DELETE", "delete_item")

    with pytest.raises(MethodNotAllowedError) as exc_info:
        tree.resolve("/items/new", "DELETE")
    assert exc_info.value.allowed_methods == frozenset({"GET"})
    # the parameter route still serves every other id
    match = tree.resolve("/items/42", "DELETE")
    assert match.binding == "delete_item"
    assert match.params == {"id": "42"}


def test_resolve_any_method_node_is_never_method_not_allowed() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/items/new", ANY_METHOD, "any")
    tree.register("/items/{id}", "DELETE", "delete_item")
    assert tree.resolve("/items/new", "DELETE").binding == "any"


def test_resolve_wildcard_consumes_remaining_segments() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/files/{*path}", "GET", "files")
    match = tree.resolve("/files/a/b/c", "GET")
    assert match.binding == "files"
    assert match.params == {"path": "a/b/c"}


def test_resolve_param_over_wildcard_with_backtracking() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/f/{*rest}", "GET", "wildcard")
    tree.register("/f/{name}/end", "GET", "param")
    tree.register("/f/{name}", "GET", "single")

    assert tree.resolve("/f/x/end", "GET").binding == "param"
    assert tree.resolve("/f/x", "GET").binding == "single"
    # the parameter subtree has no "/f/{name}/other", fall back to the wildcard
    match = tree.resolve("/f/x/other", "GET")
    assert match.binding == "wildcard"
    assert match.params == {"rest": "x/other"}


def test_resolve_backtracking_discards_params_of_failed_branch() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/{a}/{b}/c", "GET", "deep")
    tree.register("/{a}/x/d", "GET", "shallow")
    match = tree.resolve("/1/x/c", "GET")
    assert match.binding == "deep"
    assert match.params == {"a": "1", "b": "x"}


def test_resolve_params_in_path_order() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/{org}/{repo}/blob/{*path}", "GET", "blob")
    match = tree.resolve("/octo/cat/blob/main/README.md", "GET")
    assert list(match.params.items()) == [
        ("org", "octo"),
        ("repo", "cat"),
        ("path", "main/README.md"),
    ]


def test_resolve_before_finalize() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/a", "GET", "a")
    assert tree.resolve("/a", "GET").binding == "a"


def test_resolve_empty_tree() -> None:
    tree: RouteTree[str] = RouteTree()
    with pytest.raises(NotFoundError):
        tree.resolve("/", "GET")


# --- finalize -----------------------------------------------------------------
def test_finalize_freezes_tree() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/a", "GET", "a")
    tree.finalize()
    assert tree.finalized

    with pytest.raises(RouterFinalizedError):
        tree.register("/b", "GET", "b")
    with pytest.raises(RuntimeError):
        tree.register("/b", "GET", "b")


def test_finalize_makes_maps_immutable() -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/a", "GET", "a")
    tree.finalize()
    node = tree._nodes[0]
    assert isinstance(node.children, FrozenDict)
    with pytest.raises(TypeError, match="FrozenDict is immutable"):
        node.children["b"] = 1


def test_finalize_is_idempotent(caplog: pytest.LogCaptureFixture) -> None:
    tree: RouteTree[str] = RouteTree()
    tree.register("/a", "GET", "a")
    with caplog.at_level(logging.INFO, logger="radixmux.tree"):
        tree.finalize()
        tree.finalize()
    messages = [r.getMessage() for r in caplog.records]
    assert messages == ["route tree finalized: 1 routes, 2 nodes"]


def test_register_logs_at_debug(caplog: pytest.LogCaptureFixture) -> None:
    tree: RouteTree[str] = RouteTree()
    with caplog.at_level(logging.DEBUG, logger="radixmux.tree"):
        tree.register("/files/{path...}", "get", "a")
    assert "route registered: GET /files/{*path}" in caplog.text


def test_frozen_dict() -> None:
    d = FrozenDict({"a": 1})
    assert hash(d) == hash(FrozenDict({"a": 1}))
    for op in (d.clear, d.popitem):
        with pytest.raises(TypeError):
            op()
    with pytest.raises(TypeError):
        d.update({"b": 2})
    with pytest.raises(TypeError):
        del d["a"]
    assert d == {"a": 1}


# --- introspection ------------------------------------------------------------
def home_handler() -> None: ...


def admin_home_handler() -> None: ...


def rename_handler() -> None: ...


def static_handler() -> None: ...


def _listing_tree() -> RouteTree[Callable[[], None]]:
    t: RouteTree[Callable[[], None]] = RouteTree()
    t.register("/static/{*path}", "GET", static_handler)
    t.register("/admin/user/{id}", "POST", rename_handler)
    t.register("/", "*", home_handler)
    t.register("/admin", "GET", admin_home_handler)
    return t


def test_routes_in_registration_order() -> None:
    t = _listing_tree()
    assert [(m, p) for m, p, _ in t.routes()] == [
        ("GET", "/static/{*path}"),
        ("POST", "/admin/user/{id}"),
        ("*", "/"),
        ("GET", "/admin"),
    ]


def test_format_routes() -> None:
    expected = "\n".join(
        [
            "*      /                  home_handler",
            "GET    /admin             admin_home_handler",
            "POST   /admin/user/{id}   rename_handler",
            "GET    /static/{*path}    static_handler",
        ]
    )
    assert _listing_tree().format_routes() == expected


def test_format_routes_tree() -> None:
    expected = "\n".join(
        [
            "/",
            "├── [*] home_handler",
            "├── admin",
            "│   ├── [GET] admin_home_handler",
            "│   └── user",
            "│       └── {id}",
            "│           └── [POST] rename_handler",
            "└── static",
            "    └── {*path}",
            "        └── [GET] static_handler",
        ]
    )
    assert _listing_tree().format_routes(tree=True) == expected


def test_format_routes_empty() -> None:
    assert RouteTree().format_routes() == ""
    assert RouteTree().format_routes(tree=True) == "/"


def test_format_routes_custom_describe() -> None:
    t: RouteTree[str] = RouteTree()
    t.register("/a", "GET", "alpha")
    assert t.format_routes(describe=str.upper) == "GET   /a   ALPHA"
