"""OAuth 2.1 server discovery primitive.

Implements RFC 9728 (Protected Resource Metadata) and RFC 8414
(Authorization Server Metadata) discovery to find OAuth endpoints and capabilities
for MCP servers.
"""

from __future__ import annotations

import logging
from urllib.parse import urljoin, urlparse

import httpx
from pydantic import ValidationError

from mcp_connect.auth.client.models.discovery import (
    AuthorizationServerMetadata,
    DiscoveryResult,
    ProtectedResourceMetadata,
)
from mcp_connect.auth.client.models.errors import (
    AuthorizationServerMetadataError,
    NoAuthorizationServerError,
)

logger = logging.getLogger(__name__)


class OAuth2Discovery:
    """Handles OAuth 2.1 server discovery for MCP authentication.

    Implements the two-step discovery process:
    1. Protected Resource Metadata (RFC 9728) - find authorization servers
    2. Authorization Server Metadata (RFC 8414) - find OAuth endpoints

    Only the first advertised authorization server is used; other
    candidates are not tried when it fails.
    """

    def __init__(
        self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None
    ):
        """Initialize OAuth discovery.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Optional shared HTTP client
        """
        self.timeout = timeout
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def discover(
        self, server_url: str, resource_metadata_url: str | None = None
    ) -> DiscoveryResult:
        """Discover OAuth configuration for an MCP server.

        Args:
            server_url: MCP server URL to discover OAuth config for
            resource_metadata_url: Metadata location hinted by a 401 challenge

        Returns:
            Complete discovery results

        Raises:
            NoAuthorizationServerError: If no authorization server is advertised
            AuthorizationServerMetadataError: If its metadata is unavailable
        """
        prm = await self.discover_protected_resource_metadata(
            server_url, resource_metadata_url
        )

        auth_server_url = prm.authorization_servers[0]
        if len(prm.authorization_servers) > 1:
            logger.debug(
                f"{server_url} advertises {len(prm.authorization_servers)} "
                f"authorization servers, using {auth_server_url}"
            )
        asm = await self.discover_authorization_server_metadata(auth_server_url)

        return DiscoveryResult(
            server_url=server_url,
            protected_resource_metadata=prm,
            authorization_server_metadata=asm,
            auth_server_url=auth_server_url,
        )

    async def discover_protected_resource_metadata(
        self, server_url: str, resource_metadata_url: str | None = None
    ) -> ProtectedResourceMetadata:
        """Find the protected resource metadata and check it names an issuer.

        The hinted URL is tried first, then the well-known locations.

        Raises:
            NoAuthorizationServerError: If no usable document names an
                authorization server
        """
        urls = self._build_protected_resource_urls(server_url)
        if resource_metadata_url:
            urls = [resource_metadata_url] + [
                u for u in urls if u != resource_metadata_url
            ]

        for url in urls:
            metadata = await self._fetch_protected_resource_metadata(url)
            if metadata is None:
                continue

            if not metadata.authorization_servers:
                raise NoAuthorizationServerError(
                    "Could not find authorization server in resource metadata"
                )

            logger.debug(
                f"Discovered protected resource metadata at {url}: "
                f"{len(metadata.authorization_servers)} auth servers"
            )
            return metadata

        raise NoAuthorizationServerError(
            "Could not find authorization server: no protected resource "
            f"metadata found. Tried URLs: {urls}"
        )

    async def discover_authorization_server_metadata(
        self, auth_server_url: str
    ) -> AuthorizationServerMetadata:
        """Discover authorization server metadata.

        RFC 8414: Authorization server metadata should be available at
        /.well-known/oauth-authorization-server (with path-aware discovery)

        Args:
            auth_server_url: Authorization server URL

        Returns:
            Authorization server metadata

        Raises:
            AuthorizationServerMetadataError: If discovery fails
        """
        discovery_urls = self._build_discovery_urls(auth_server_url)

        for url in discovery_urls:
            try:
                logger.debug(f"Trying authorization server metadata discovery: {url}")
                response = await self._http_client.get(
                    url, headers={"Accept": "application/json"}
                )

                if response.status_code == 200:
                    metadata = AuthorizationServerMetadata.model_validate_json(
                        response.text
                    )
                    logger.debug(
                        f"Successfully discovered authorization server metadata from: "
                        f"{url}"
                    )
                    return metadata
                elif response.status_code >= 500:
                    # Server error - don't try other URLs
                    break

            except ValidationError:
                # Invalid or incomplete metadata - try next URL
                continue
            except (httpx.RequestError, httpx.InvalidURL):
                # Network error or unusable URL - try next URL
                continue

        raise AuthorizationServerMetadataError(
            "Could not discover authorization server metadata for "
            f"{auth_server_url}. Tried URLs: {discovery_urls}"
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()

    async def _fetch_protected_resource_metadata(
        self, metadata_url: str
    ) -> ProtectedResourceMetadata | None:
        """Fetch and parse protected resource metadata.

        Returns:
            Parsed metadata, or None if the document is absent or malformed
        """
        try:
            logger.debug(f"Fetching protected resource metadata from: {metadata_url}")
            response = await self._http_client.get(
                metadata_url, headers={"Accept": "application/json"}
            )
        except (httpx.RequestError, httpx.InvalidURL) as e:
            logger.debug(f"Protected resource metadata fetch failed: {e}")
            return None

        if response.status_code != 200:
            return None

        try:
            return ProtectedResourceMetadata.model_validate_json(response.text)
        except ValidationError as e:
            logger.warning(f"Invalid protected resource metadata from {metadata_url}: {e}")
            return None

    def _build_protected_resource_urls(self, server_url: str) -> list[str]:
        """Build ordered list of protected resource metadata URLs.

        RFC 9728 Section 3.1: path-aware location first, then the root.

        Raises:
            NoAuthorizationServerError: If the server URL cannot be parsed
        """
        try:
            parsed = urlparse(server_url)
        except ValueError as e:
            raise NoAuthorizationServerError(
                f"Could not find authorization server: invalid server URL {server_url}"
            ) from e
        base_url = f"{parsed.scheme}://{parsed.netloc}"
        urls = []

        if parsed.path and parsed.path != "/":
            path_aware = (
                f"/.well-known/oauth-protected-resource{parsed.path.rstrip('/')}"
            )
            urls.append(urljoin(base_url, path_aware))

        urls.append(urljoin(base_url, "/.well-known/oauth-protected-resource"))

        return urls

    def _build_discovery_urls(self, auth_server_url: str) -> list[str]:
        """Build ordered list of discovery URLs to try.

        RFC 8414 Section 3: Path-aware discovery should be tried first,
        then fallback to root discovery.

        Args:
            auth_server_url: Authorization server URL

        Returns:
            Ordered list of URLs to try for discovery

        Raises:
            AuthorizationServerMetadataError: If the URL cannot be parsed
        """
        try:
            parsed = urlparse(auth_server_url)
        except ValueError as e:
            raise AuthorizationServerMetadataError(
                "Could not discover authorization server metadata: invalid "
                f"authorization server URL {auth_server_url}"
            ) from e
        base_url = f"{parsed.scheme}://{parsed.netloc}"
        urls = []

        # RFC 8414: Path-aware OAuth discovery
        if parsed.path and parsed.path != "/":
            oauth_path = (
                f"/.well-known/oauth-authorization-server{parsed.path.rstrip('/')}"
            )
            urls.append(urljoin(base_url, oauth_path))

        # OAuth root fallback
        urls.append(urljoin(base_url, "/.well-known/oauth-authorization-server"))

        # OIDC discovery fallback (many servers support this)
        if parsed.path and parsed.path != "/":
            oidc_path = f"/.well-known/openid-configuration{parsed.path.rstrip('/')}"
            urls.append(urljoin(base_url, oidc_path))

        urls.append(urljoin(base_url, "/.well-known/openid-configuration"))

        return urls
