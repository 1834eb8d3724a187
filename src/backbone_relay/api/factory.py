"""FastAPI application factory with role-based route mounting."""

import os
from typing import Literal

from fastapi import FastAPI, Request, Response

from backbone_relay.domain.outbound import OutboundDispatcher
from backbone_relay.domain.relay import RelayOrchestrator
from backbone_relay.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)

from .routers import public, worker
from .routes import tasks_outbound, webhooks_twilio

AppRole = Literal["public", "worker"]


def create_app(
    role: AppRole | None = None,
    *,
    relay: RelayOrchestrator | None = None,
    dispatcher: OutboundDispatcher | None = None,
) -> FastAPI:
    """Create FastAPI app with routes based on APP_ROLE.

    Args:
        role: Explicit role override. If None, reads from APP_ROLE env var.
              Defaults to "public" if env var is not set.
        relay: Orchestrator to use instead of the production one (tests).
        dispatcher: Outbound dispatcher to use instead of the production one.

    Returns:
        Configured FastAPI application.
    """
    if role is None:
        role = os.environ.get("APP_ROLE", "public")  # type: ignore[assignment]

    app = FastAPI(
        title="Backbone Relay",
        docs_url=None,
        redoc_url=None,
    )
    app.state.relay = relay
    app.state.dispatcher = dispatcher
    app.state.config = None
    app.state.settings = None

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    # Carrier webhook is public
    app.include_router(public.router)
    app.include_router(webhooks_twilio.router)

    # Dispatch tasks only on the worker
    if role == "worker":
        app.include_router(worker.router)
        app.include_router(tasks_outbound.router)

    return app
