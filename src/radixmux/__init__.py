from importlib.metadata import version

from ._asgi.router import Router, allowed_methods
from .errors import (
    ConflictingParameterNameError,
    DuplicateRouteError,
    InvalidPatternError,
    MethodNotAllowedError,
    NotFoundError,
    RouterError,
    RouterFinalizedError,
)
from .tree import MatchResult, Method, RouteTree, http_route, path_params

__all__ = [
    "ConflictingParameterNameError",
    "DuplicateRouteError",
    "InvalidPatternError",
    "MatchResult",
    "Method",
    "MethodNotAllowedError",
    "NotFoundError",
    "RouteTree",
    "Router",
    "RouterError",
    "RouterFinalizedError",
    "__version__",
    "allowed_methods",
    "http_route",
    "path_params",
]

__version__ = version("radixmux")
