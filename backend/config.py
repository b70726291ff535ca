"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No session logic
- No wire constants (see spec.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from spec import (
    AUDIO_CHUNK_SIZE,
    CHANNEL_CAPACITY,
    CONNECT_TIMEOUT_S,
    DEFAULT_BIND_HOST,
    DEFAULT_CAMERA_ROTATION_DEGREES,
    IO_WORKERS,
    SESSION_PORT,
    SHUTDOWN_DRAIN_TIMEOUT_S,
)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the server and the session controller.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Session intent
    # ------------------------------------------------------------------

    peer_role: str | None  # "server" | "client" | None
    peer_name: str | None
    peer_address: str | None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    session_port: int
    bind_host: str
    connect_timeout_s: float
    io_workers: int

    # ------------------------------------------------------------------
    # Media / pipeline
    # ------------------------------------------------------------------

    audio_chunk_size: int
    channel_capacity: int
    shutdown_drain_timeout_s: float
    camera_rotation_degrees: int

    # ------------------------------------------------------------------
    # Hosting / observability
    # ------------------------------------------------------------------

    http_host: str
    http_port: int
    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @staticmethod
    def defaults() -> AppConfig:
        """Configuration with every value at its built-in default (no env access)."""
        return AppConfig(
            env="dev",
            log_level="INFO",
            peer_role=None,
            peer_name=None,
            peer_address=None,
            session_port=SESSION_PORT,
            bind_host=DEFAULT_BIND_HOST,
            connect_timeout_s=CONNECT_TIMEOUT_S,
            io_workers=IO_WORKERS,
            audio_chunk_size=AUDIO_CHUNK_SIZE,
            channel_capacity=CHANNEL_CAPACITY,
            shutdown_drain_timeout_s=SHUTDOWN_DRAIN_TIMEOUT_S,
            camera_rotation_degrees=DEFAULT_CAMERA_ROTATION_DEGREES,
            http_host="127.0.0.1",
            http_port=8000,
            enable_json_logs=True,
        )

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        role = os.environ.get("PEER_ROLE")
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            peer_role=role.strip().lower() if role else None,
            peer_name=os.environ.get("PEER_NAME"),
            peer_address=os.environ.get("PEER_ADDRESS"),

            session_port=int(os.environ.get("SESSION_PORT", SESSION_PORT)),
            bind_host=os.environ.get("BIND_HOST", DEFAULT_BIND_HOST),
            connect_timeout_s=float(os.environ.get("CONNECT_TIMEOUT_S", CONNECT_TIMEOUT_S)),
            io_workers=int(os.environ.get("IO_WORKERS", IO_WORKERS)),

            audio_chunk_size=int(os.environ.get("AUDIO_CHUNK_SIZE", AUDIO_CHUNK_SIZE)),
            channel_capacity=int(os.environ.get("CHANNEL_CAPACITY", CHANNEL_CAPACITY)),
            shutdown_drain_timeout_s=float(
                os.environ.get("SHUTDOWN_DRAIN_TIMEOUT_S", SHUTDOWN_DRAIN_TIMEOUT_S)
            ),
            camera_rotation_degrees=int(
                os.environ.get("CAMERA_ROTATION_DEGREES", DEFAULT_CAMERA_ROTATION_DEGREES)
            ),

            http_host=os.environ.get("HTTP_HOST", "127.0.0.1"),
            http_port=int(os.environ.get("HTTP_PORT", "8000")),
            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
        )
