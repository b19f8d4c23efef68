"""REST API application factory."""

from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from triage_access import __version__
from triage_access.api.errors import setup_error_handlers
from triage_access.api.middleware import RequestIDMiddleware
from triage_access.api.routers import health_router, keys_router, usage_router

if TYPE_CHECKING:
    from triage_access.auth.coordinator import AccessCoordinator
    from triage_access.store import AccessStore


def create_app(
    coordinator: "AccessCoordinator",
    store: "AccessStore | None" = None,
    title: str = "RapidTriage Access",
    prefix: str = "/api/v1",
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create FastAPI application with key management, usage and health routes.

    Protected routes of the host service use
    ``triage_access.api.dependencies.require_access``.

    Args:
        coordinator: Access coordinator every route delegates to
        store: Backing store, used by the health check
        title: OpenAPI title
        prefix: Route prefix
        cors_origins: Enables CORS for these origins when given

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(title=title, version=__version__)

    # Store dependencies in app state
    app.state.coordinator = coordinator
    app.state.store = store

    # First added is outermost
    app.add_middleware(RequestIDMiddleware)
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=[
                "X-Request-ID",
                "X-RateLimit-Limit",
                "X-RateLimit-Remaining",
                "X-RateLimit-Reset",
                "Retry-After",
            ],
        )

    setup_error_handlers(app)

    app.include_router(health_router, prefix=prefix)
    app.include_router(keys_router, prefix=prefix)
    app.include_router(usage_router, prefix=prefix)

    return app
