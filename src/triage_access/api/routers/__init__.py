"""REST API routers."""

from .health import health_router
from .keys import keys_router
from .usage import usage_router

__all__ = [
    "health_router",
    "keys_router",
    "usage_router",
]
