"""Application settings.

Settings are resolved once at process start with ``AppSettings.from_env`` and
passed to the components that need them.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from mcp_connect.auth.client.models.errors import MisconfigurationError

CALLBACK_PATH = "/api/oauth/callback"
CHECK_PATH = "/api/oauth/check"

ENV_PREFIX = "MCP_CONNECT_"


@dataclass(frozen=True)
class AppSettings:
    """Process-wide configuration.

    ``public_base_url`` is None when it is not configured in production;
    anything that needs a redirect URI then fails with MisconfigurationError.
    """

    public_base_url: str | None = None
    environment: str = "production"
    scope: str | None = "read write"
    client_name: str = "MCP Connect"
    http_timeout: float = 30.0
    data_dir: Path = field(
        default_factory=lambda: Path.home() / ".mcp_connect" / "servers"
    )
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, *, dotenv: bool = True
    ) -> AppSettings:
        """Build settings from environment variables (and a .env file)."""
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ

        def get(name: str, default: str | None = None) -> str | None:
            return environ.get(ENV_PREFIX + name, default)

        environment = (get("ENV") or "production").strip().lower()
        port = int(get("PORT") or 8000)

        public_base_url = (get("PUBLIC_URL") or "").strip().rstrip("/") or None
        if public_base_url is None and environment == "development":
            public_base_url = f"http://localhost:{port}"

        scope = get("SCOPE")
        data_dir = get("DATA_DIR")

        return cls(
            public_base_url=public_base_url,
            environment=environment,
            scope="read write" if scope is None else (scope.strip() or None),
            client_name=get("CLIENT_NAME") or "MCP Connect",
            http_timeout=float(get("HTTP_TIMEOUT") or 30.0),
            data_dir=(
                Path(data_dir).expanduser()
                if data_dir
                else Path.home() / ".mcp_connect" / "servers"
            ),
            host=get("HOST") or "127.0.0.1",
            port=port,
            log_level=(get("LOG_LEVEL") or "info").lower(),
        )

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def require_public_base_url(self) -> str:
        """Return the public base URL or fail fast.

        Raises:
            MisconfigurationError: If no public base URL is configured
        """
        if not self.public_base_url:
            raise MisconfigurationError(
                f"{ENV_PREFIX}PUBLIC_URL environment variable is required in "
                "production. Set it to your application's public URL "
                "(e.g., https://myapp.com)"
            )
        return self.public_base_url

    def redirect_uri_for(self, server_id: str) -> str:
        """Deterministic OAuth redirect URI for a resource server."""
        return f"{self.require_public_base_url()}{CALLBACK_PATH}/{server_id}"
