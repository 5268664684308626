"""Starlette application exposing the OAuth check and callback endpoints."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from mcp_connect.auth.client.models.flow import AuthorizationResponse
from mcp_connect.auth.client.oauth_client import OAuth2Client
from mcp_connect.config import CALLBACK_PATH, CHECK_PATH

logger = logging.getLogger(__name__)


def create_app(client: OAuth2Client) -> Starlette:
    """Build the application serving ``client``'s connection flow."""

    async def check_endpoint(request: Request) -> Response:
        server_id = request.path_params["server_id"]
        result = await client.check(server_id)
        return JSONResponse(result.to_dict(), status_code=result.status_code)

    async def callback_endpoint(request: Request) -> Response:
        server_id = request.path_params["server_id"]
        response = AuthorizationResponse.from_query(request.query_params)

        try:
            location = await client.callback(server_id, response)
        except Exception as e:
            # Callbacks always land back on the application page
            logger.error(f"Unexpected error handling callback for {server_id}: {e}")
            location = "/?oauth_error=callback_failed"

        return RedirectResponse(location, status_code=302)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        try:
            yield
        finally:
            await client.close()

    return Starlette(
        routes=[
            Route(f"{CHECK_PATH}/{{server_id}}", check_endpoint, methods=["GET"]),
            Route(f"{CALLBACK_PATH}/{{server_id}}", callback_endpoint, methods=["GET"]),
        ],
        lifespan=lifespan,
    )
