"""Discovery-related models for OAuth 2.1 server metadata.

Contains models for Protected Resource Metadata (RFC 9728),
Authorization Server Metadata (RFC 8414) and the result of probing a
resource server for an authorization requirement.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProtectedResourceMetadata(BaseModel):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728).

    Metadata returned by MCP servers to indicate their authorization servers
    and resource configuration. An empty ``authorization_servers`` list is
    accepted here and rejected by discovery with a dedicated error.
    """

    model_config = ConfigDict(extra="allow")

    resource: str | None = None
    authorization_servers: list[str] = Field(default_factory=list)

    # Optional fields from RFC 9728
    bearer_methods_supported: list[str] | None = None
    scopes_supported: list[str] | None = None
    resource_documentation: str | None = None


class AuthorizationServerMetadata(BaseModel):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414).

    Metadata returned by authorization servers describing their endpoints
    and supported capabilities.
    """

    model_config = ConfigDict(extra="allow")

    issuer: str | None = None

    # Required for authorization code flow (our use case)
    authorization_endpoint: str
    token_endpoint: str

    response_types_supported: list[str] = Field(default=["code"])

    # PKCE support (required for OAuth 2.1)
    code_challenge_methods_supported: list[str] = Field(default=["S256"])

    # Dynamic registration (RFC 7591)
    registration_endpoint: str | None = None

    revocation_endpoint: str | None = None
    scopes_supported: list[str] | None = None
    grant_types_supported: list[str] = Field(default=["authorization_code"])
    token_endpoint_auth_methods_supported: list[str] | None = None

    @field_validator("code_challenge_methods_supported")
    @classmethod
    def validate_pkce_support(cls, v: list[str]) -> list[str]:
        if "S256" not in v:
            raise ValueError("Authorization server must support S256 PKCE method")
        return v


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of probing a resource server without credentials.

    ``error`` is only set when the probe itself failed at the transport level;
    in that case ``requires_auth`` is False and the result is advisory.
    """

    requires_auth: bool
    resource_metadata_url: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class DiscoveryResult:
    """Complete discovery results for an MCP server.

    Immutable result containing all metadata needed for OAuth flow.
    Combines Protected Resource Metadata and Authorization Server Metadata.
    """

    server_url: str
    authorization_server_metadata: AuthorizationServerMetadata
    auth_server_url: str
    protected_resource_metadata: ProtectedResourceMetadata | None = None

    def get_resource_url(self) -> str:
        """Get the resource URL for RFC 8707 resource parameter.

        Uses Protected Resource Metadata resource if it is a parent of the
        server URL, otherwise derives the canonical URL from server_url.
        """
        parsed = urlparse(self.server_url)
        canonical = f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"
        if parsed.path and parsed.path != "/":
            canonical += parsed.path.rstrip("/")

        prm = self.protected_resource_metadata
        if prm is not None and prm.resource:
            prm_resource = prm.resource.rstrip("/")
            if canonical.startswith(prm_resource):
                return prm_resource

        return canonical
