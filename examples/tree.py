# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "radixmux",
# ]
#
# [tool.uv.sources]
# radixmux = { path = "../", editable = true }
# ///
"""Route tree demo.

Builds a tree of plain string bindings, prints it, and times a few lookups
including the ones that need backtracking.
"""

import sys
import time

from radixmux import MethodNotAllowedError, NotFoundError, RouteTree

routes = [
    ("GET", "/", "home"),
    ("*", "/health", "health"),
    ("GET", "/admin", "admin home"),
    ("GET", "/admin/user/{id}", "admin user view"),
    ("POST", "/admin/user/{id}/rename", "admin user rename"),
    ("GET", "/admin/user/{id}/transaction/{tx}", "admin user transaction view"),
    ("GET", "/admin/user/new", "admin user form"),
    ("GET", "/static/{*path}", "static files"),
    ("GET", "/static/favicon.ico", "favicon"),
    ("GET", "/{org}/{repo}/blob/{*path}", "repo blob"),
    ("GET", "/{org}/settings", "org settings"),
]


def main() -> None:
    tree: RouteTree[str] = RouteTree()
    for method, pattern, binding in routes:
        tree.register(pattern, method, binding)
    tree.finalize()

    print(tree.format_routes())
    print()
    print(tree.format_routes(tree=True))
    print()

    lookups = [
        ("GET", "/"),
        ("DELETE", "/health"),
        ("GET", "/admin/user/new"),  # static beats {id}
        ("GET", "/admin/user/42"),
        ("GET", "/admin/user/42/transaction/7"),
        ("GET", "/static/favicon.ico"),  # static beats {*path}
        ("GET", "/static/css/site.css"),
        ("GET", "/acme/settings"),
        ("GET", "/acme/widgets/blob/main/README.md"),
        ("GET", "/admin/"),  # trailing slash is a different path
        ("DELETE", "/admin/user/42"),
    ]
    for method, path in lookups:
        start = time.perf_counter()
        try:
            match = tree.resolve(path, method)
        except NotFoundError:
            outcome = "404"
        except MethodNotAllowedError as e:
            outcome = f"405 allow={','.join(sorted(e.allowed_methods))}"
        else:
            outcome = f"{match.binding} {dict(match.params)}"
        end = time.perf_counter()
        print(
            f"{method:<7} {path:<40} {outcome:<60} {end - start:.2E}s",
            file=sys.stderr,
        )


if __name__ == "__main__":
    main()
