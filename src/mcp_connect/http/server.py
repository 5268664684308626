"""In-process uvicorn runner for the OAuth endpoints."""

from __future__ import annotations

import asyncio
import logging

import uvicorn

from mcp_connect.auth.client.oauth_client import OAuth2Client
from mcp_connect.config import AppSettings
from mcp_connect.http.app import create_app
from mcp_connect.storage.backends import JsonFileRecordBackend
from mcp_connect.storage.status_store import StatusStore

logger = logging.getLogger(__name__)


class OAuthHttpServer:
    """Serves the check and callback endpoints for one OAuth2Client."""

    def __init__(self, client: OAuth2Client, settings: AppSettings) -> None:
        self.host = settings.host
        self.port = settings.port
        self.log_level = settings.log_level

        self._app = create_app(client)
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the HTTP server in a background task."""
        config = uvicorn.Config(
            app=self._app, host=self.host, port=self.port, log_level=self.log_level
        )
        self._server = uvicorn.Server(config)

        self._task = asyncio.create_task(self._server.serve())
        logger.info(f"OAuth endpoints listening on {self.host}:{self.port}")

    async def serve(self) -> None:
        """Run the HTTP server until it is stopped."""
        await self.start()
        await self._task

    async def stop(self) -> None:
        """Stop the HTTP server."""
        if self._server:
            self._server.should_exit = True
        if self._task:
            await self._task
            self._task = None


def main() -> None:
    settings = AppSettings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if settings.public_base_url is None:
        logger.warning(
            "No public URL configured; OAuth checks will fail until "
            "MCP_CONNECT_PUBLIC_URL is set"
        )

    store = StatusStore(JsonFileRecordBackend(settings.data_dir))
    client = OAuth2Client(settings, store)
    server = OAuthHttpServer(client, settings)

    asyncio.run(server.serve())


if __name__ == "__main__":
    main()
