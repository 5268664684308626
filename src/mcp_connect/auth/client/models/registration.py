"""Client registration models for OAuth 2.0 Dynamic Client Registration.

Contains models for client metadata (RFC 7591) and the registered client
information persisted alongside each resource server.
"""

from __future__ import annotations

import time
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

LOOPBACK_HOSTS = ("localhost", "127.0.0.1", "::1")


def _is_secure_or_loopback(uri: str) -> bool:
    parsed = urlparse(uri)
    if parsed.scheme == "https":
        return True
    return parsed.scheme == "http" and parsed.hostname in LOOPBACK_HOSTS


class ClientMetadata(BaseModel):
    """OAuth 2.0 Client Metadata for dynamic registration (RFC 7591)."""

    client_name: str
    redirect_uris: list[str] = Field(min_length=1)

    client_uri: str | None = None
    scope: str | None = None

    # Public client: PKCE replaces the secret
    token_endpoint_auth_method: str = "none"
    grant_types: list[str] = Field(
        default=["authorization_code", "refresh_token"]
    )
    response_types: list[str] = Field(default=["code"])

    @field_validator("redirect_uris")
    @classmethod
    def validate_redirect_uris(cls, v: list[str]) -> list[str]:
        """Validate redirect URIs meet OAuth 2.1 security requirements."""
        for uri in v:
            if not _is_secure_or_loopback(uri):
                raise ValueError(f"Redirect URI must use HTTPS or localhost: {uri}")
        return v

    @field_validator("client_uri")
    @classmethod
    def validate_client_uri(cls, v: str | None) -> str | None:
        if v is not None and not _is_secure_or_loopback(v):
            raise ValueError(f"URI must use HTTPS or localhost: {v}")
        return v


class ClientInformation(BaseModel):
    """Registered OAuth client as returned by the registration endpoint.

    Stored opaquely on the resource server record. Fields the authorization
    server adds beyond these are kept as extras.
    """

    model_config = ConfigDict(extra="allow")

    client_id: str
    client_secret: str | None = None  # None for public clients
    token_endpoint_auth_method: str | None = None
    redirect_uris: list[str] | None = None
    client_name: str | None = None
    scope: str | None = None
    registration_access_token: str | None = None
    registration_client_uri: str | None = None
    client_id_issued_at: int | None = None
    client_secret_expires_at: int | None = None

    def auth_method(self) -> str:
        """Token endpoint authentication method for this client."""
        if self.token_endpoint_auth_method:
            return self.token_endpoint_auth_method
        return "client_secret_post" if self.client_secret else "none"

    def is_expired(self) -> bool:
        """Check if the client secret has expired (0 means never)."""
        if not self.client_secret_expires_at:
            return False
        return time.time() >= self.client_secret_expires_at
