"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pulse_checkin.api.admin import router as admin_router
from pulse_checkin.api.health import router as health_router
from pulse_checkin.config import settings
from pulse_checkin.db.database import init_db
from pulse_checkin.exceptions import (
    CheckinConfigurationError,
    NotFoundError,
    QuestionRoleError,
    ValidationError,
)

if TYPE_CHECKING:
    from pulse_checkin.slack.bot import BotRuntime

logger = logging.getLogger(__name__)


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handler


def create_app(runtime: "BotRuntime | None" = None) -> FastAPI:
    """Build the API app.

    With a bot runtime the app also receives Slack events on ``/slack/events``
    and runs the scheduler for the lifetime of the server.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db()
        if runtime is not None:
            runtime.scheduler.start()
        yield
        if runtime is not None:
            await runtime.scheduler.stop()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Weekly pulse check-ins over Slack",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(QuestionRoleError, _error_handler(400))
    app.add_exception_handler(ValidationError, _error_handler(400))
    app.add_exception_handler(NotFoundError, _error_handler(404))
    app.add_exception_handler(CheckinConfigurationError, _error_handler(409))

    app.include_router(health_router)
    app.include_router(admin_router)

    app.state.engine = runtime.engine if runtime else None
    app.state.scheduler = runtime.scheduler if runtime else None

    if runtime is not None:
        from slack_bolt.adapter.starlette.async_handler import AsyncSlackRequestHandler

        handler = AsyncSlackRequestHandler(runtime.app)

        @app.post("/slack/events")
        async def slack_events(request: Request):
            """Handle Slack events via HTTP."""
            return await handler.handle(request)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with basic application info."""
        return {"name": settings.APP_NAME, "version": "0.1.0", "docs": "/docs"}

    return app


app = create_app()
