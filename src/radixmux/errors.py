"""Errors raised while building and querying the routing tree.

Registration errors surface while the application is being assembled and are
meant to abort startup. Resolution errors are per request and are translated
into 404/405 responses by the dispatch layer.
"""

from collections.abc import Iterable


class RouterError(Exception):
    """Base class for all routing errors."""


# --- registration (build time) ------------------------------------------------
class RouteRegistrationError(RouterError, ValueError):
    """A route could not be added to the tree."""


class InvalidPatternError(RouteRegistrationError):
    def __init__(self, pattern: str, reason: str) -> None:
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"invalid route pattern {pattern!r}: {reason}")


class DuplicateRouteError(RouteRegistrationError):
    def __init__(self, pattern: str, method: str) -> None:
        self.pattern = pattern
        self.method = method
        super().__init__(f"route already registered: {method} {pattern}")


class ConflictingParameterNameError(RouteRegistrationError):
    """Two patterns name the parameter at the same tree position differently.

    Only one parameter name (and one wildcard name) is supported per branch, so
    ``/user/{id}`` and ``/user/{name}/posts`` cannot coexist.
    """

    def __init__(self, pattern: str, existing: str, requested: str) -> None:
        self.pattern = pattern
        self.existing = existing
        self.requested = requested
        super().__init__(
            f"conflicting parameter name in {pattern!r}: "
            f"{requested!r} clashes with existing {existing!r}"
        )


class RouterFinalizedError(RouteRegistrationError, RuntimeError):
    def __init__(self) -> None:
        super().__init__("cannot register routes after the tree is finalized")


# --- resolution (request time) ------------------------------------------------
class ResolutionError(RouterError, LookupError):
    """No handler could be resolved for a request."""


class NotFoundError(ResolutionError):
    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"no route matches {path!r}")


class MethodNotAllowedError(ResolutionError):
    """The path matched but no handler is bound for the method.

    ``allowed_methods`` holds every method registered on the matching node,
    suitable for an ``Allow`` response header.
    """

    def __init__(self, path: str, method: str, allowed_methods: Iterable[str]) -> None:
        self.path = path
        self.method = method
        self.allowed_methods = frozenset(allowed_methods)
        allow = ", ".join(sorted(self.allowed_methods))
        super().__init__(f"method {method} not allowed for {path!r}, allowed: {allow}")
