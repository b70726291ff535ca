"""
Route registration for the peer session API.

Responsibilities:
- Define HTTP endpoints
- Pull the session controller from app.state
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request

from session.cancellation import ShutdownReason


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/session")
    async def session_status(request: Request) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        controller = request.app.state.controller
        return {
            **controller.snapshot(),
            "notices": list(request.app.state.notices),
        }

    @app.post("/session/close")
    async def close_session(request: Request) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        controller = request.app.state.controller
        accepted = controller.close(ShutdownReason.CLOSED_BY_CALLER)
        return {
            "session_id": controller.session_id,
            "accepted": accepted,
        }
