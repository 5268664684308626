from pathlib import Path

import pytest

from mcp_connect.auth.client.models.errors import MisconfigurationError
from mcp_connect.config import AppSettings


class TestFromEnv:
    def test_defaults(self):
        # Act
        settings = AppSettings.from_env({})

        # Assert
        assert settings.public_base_url is None
        assert settings.environment == "production"
        assert settings.scope == "read write"
        assert settings.client_name == "MCP Connect"
        assert settings.port == 8000

    def test_public_url_trailing_slash_is_stripped(self):
        # Act
        settings = AppSettings.from_env(
            {"MCP_CONNECT_PUBLIC_URL": "https://app.example.com/"}
        )

        # Assert
        assert settings.public_base_url == "https://app.example.com"
        assert (
            settings.redirect_uri_for("srv-1")
            == "https://app.example.com/api/oauth/callback/srv-1"
        )

    def test_development_falls_back_to_localhost(self):
        # Act
        settings = AppSettings.from_env(
            {"MCP_CONNECT_ENV": "development", "MCP_CONNECT_PORT": "3000"}
        )

        # Assert
        assert settings.is_development
        assert settings.public_base_url == "http://localhost:3000"

    def test_empty_scope_disables_scope(self):
        settings = AppSettings.from_env({"MCP_CONNECT_SCOPE": ""})

        assert settings.scope is None

    def test_overrides(self):
        # Act
        settings = AppSettings.from_env(
            {
                "MCP_CONNECT_CLIENT_NAME": "Acme",
                "MCP_CONNECT_HTTP_TIMEOUT": "5",
                "MCP_CONNECT_DATA_DIR": "/tmp/mcp-records",
                "MCP_CONNECT_LOG_LEVEL": "DEBUG",
            }
        )

        # Assert
        assert settings.client_name == "Acme"
        assert settings.http_timeout == 5.0
        assert settings.data_dir == Path("/tmp/mcp-records")
        assert settings.log_level == "debug"


class TestRedirectURI:
    def test_production_without_public_url_fails_fast(self):
        settings = AppSettings()

        with pytest.raises(MisconfigurationError, match="MCP_CONNECT_PUBLIC_URL"):
            settings.redirect_uri_for("srv-1")
