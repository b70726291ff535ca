"""
Process entry point.

Runs the peer session service under uvicorn:
- loads .env (PEER_ROLE, PEER_NAME, PEER_ADDRESS, ...)
- builds the app for that configuration
- serves the status API on HTTP_HOST:HTTP_PORT

The peer session itself listens / dials on SESSION_PORT.
"""

from __future__ import annotations

import uvicorn
from dotenv import load_dotenv

from config import AppConfig
from server.app import create_app


def main() -> None:
    load_dotenv()
    config = AppConfig.load_from_env()

    uvicorn.run(
        create_app(config),
        host=config.http_host,
        port=config.http_port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
