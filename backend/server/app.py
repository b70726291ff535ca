"""
FastAPI app factory.

Responsibilities:
- Create and configure the FastAPI app
- Own the peer session for the lifetime of the process (lifespan)
- Register routes

Application shutdown is the host-teardown trigger for the session.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI

from config import AppConfig
from media.synthetic import synthetic_collaborators
from observability.logger import configure, log_event
from server.routes import register_routes
from session.cancellation import ShutdownReason
from session.controller import ClosedCallback, SessionController
from session.intent import intent_from_config


ControllerFactory = Callable[[AppConfig, ClosedCallback], SessionController]


def build_controller(config: AppConfig, on_closed: ClosedCallback) -> SessionController:
    """Default session wiring: intent from env, synthetic media."""
    return SessionController(
        config=config,
        intent=intent_from_config(config),
        media=synthetic_collaborators(config),
        on_closed=on_closed,
    )


def create_app(
    config: AppConfig | None = None,
    controller_factory: ControllerFactory | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with a fixed configuration and a fake controller
    - ASGI server compatibility
    """
    config = config or AppConfig.load_from_env()
    factory = controller_factory or build_controller
    configure(json_logs=config.enable_json_logs)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        notices: list[str] = []
        controller = factory(config, notices.append)
        task = asyncio.create_task(controller.run(), name="peer-session")

        app.state.controller = controller
        app.state.notices = notices

        log_event({
            "event_type": "SERVICE_STARTED",
            "env": config.env,
            "peer_role": config.peer_role,
            "session_port": config.session_port,
        })

        try:
            yield
        finally:
            controller.close(ShutdownReason.HOST_TEARDOWN)
            try:
                await task
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "SESSION_TASK_FAILED",
                    "exception": type(exc).__name__,
                    "message": str(exc),
                })
            log_event({
                "event_type": "SERVICE_STOPPED",
                "notices": list(notices),
            })

    app = FastAPI(title="Peer Session API", lifespan=lifespan)
    app.state.config = config

    register_routes(app)

    return app
