"""OAuth 2.1 dynamic client registration service.

Implements RFC 7591 (OAuth 2.0 Dynamic Client Registration Protocol)
to automatically register MCP clients with authorization servers, and
the registrar that reuses a persisted registration when one exists.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from mcp_connect.auth.client.models.discovery import DiscoveryResult
from mcp_connect.auth.client.models.errors import (
    ManualRegistrationRequiredError,
    RegistrationError,
)
from mcp_connect.auth.client.models.records import ResourceServerRecord
from mcp_connect.auth.client.models.registration import (
    ClientInformation,
    ClientMetadata,
)
from mcp_connect.config import AppSettings
from mcp_connect.storage.status_store import StatusStore

logger = logging.getLogger(__name__)


class OAuth2Registration:
    """Handles OAuth 2.1 dynamic client registration for MCP authentication.

    Implements RFC 7591 to automatically register clients with authorization
    servers, eliminating the need for manual client configuration.
    """

    def __init__(
        self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None
    ):
        """Initialize OAuth registration.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Optional shared HTTP client
        """
        self.timeout = timeout
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def register_client(
        self,
        registration_endpoint: str,
        client_metadata: ClientMetadata,
    ) -> ClientInformation:
        """Register a new OAuth client with the authorization server.

        Args:
            registration_endpoint: Client registration endpoint URL
            client_metadata: Client metadata to register

        Returns:
            Registered client information

        Raises:
            RegistrationError: If registration fails
        """
        logger.debug(f"Registering client at {registration_endpoint}")

        try:
            headers = {
                "Content-Type": "application/json",
                "Accept": "application/json",
            }

            response = await self._http_client.post(
                registration_endpoint,
                json=client_metadata.model_dump(exclude_none=True, mode="json"),
                headers=headers,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise RegistrationError(f"HTTP error during registration: {e}") from e

        # RFC 7591 says 201, many servers answer 200
        if response.status_code in (200, 201):
            return self._handle_successful_registration(
                response, registration_endpoint, client_metadata
            )
        self._handle_registration_error(response)

    def _handle_successful_registration(
        self,
        response: httpx.Response,
        registration_endpoint: str,
        original_metadata: ClientMetadata,
    ) -> ClientInformation:
        """Handle successful registration response.

        Raises:
            RegistrationError: If response parsing fails
        """
        try:
            response_data = response.json()
        except ValueError as e:
            raise RegistrationError(f"Invalid registration response format: {e}") from e

        if not isinstance(response_data, dict) or "client_id" not in response_data:
            raise RegistrationError("Registration response missing required client_id")

        # Fall back to what we asked for when the server echoes nothing back
        defaults = original_metadata.model_dump(exclude_none=True, mode="json")
        try:
            client_info = ClientInformation.model_validate({**defaults, **response_data})
        except ValidationError as e:
            raise RegistrationError(f"Invalid registration response format: {e}") from e

        logger.info(
            f"Successfully registered client {client_info.client_id} "
            f"at {registration_endpoint}"
        )
        return client_info

    def _handle_registration_error(self, response: httpx.Response) -> None:
        """Handle registration error response.

        Raises:
            RegistrationError: Always raises with appropriate error message
        """
        try:
            error_data = response.json()
            error_code = error_data.get("error", "unknown_error")
            error_description = error_data.get(
                "error_description", "No description provided"
            )
        except (ValueError, AttributeError):
            # Fallback for non-JSON error responses
            raise RegistrationError(
                f"Registration failed with HTTP {response.status_code}: {response.text}"
            )

        logger.error(
            f"Client registration failed with {response.status_code}: "
            f"{error_code} - {error_description}"
        )

        # Map common OAuth error codes to more specific messages
        if error_code == "invalid_client_metadata":
            raise RegistrationError(f"Invalid client metadata: {error_description}")
        elif error_code == "invalid_redirect_uri":
            raise RegistrationError(f"Invalid redirect URI: {error_description}")
        elif response.status_code == 401:
            raise RegistrationError(
                "Registration endpoint requires authentication "
                "(initial access token)"
            )
        elif response.status_code == 403:
            raise RegistrationError(
                "Registration forbidden - check authorization server policy"
            )
        else:
            raise RegistrationError(
                f"Registration failed ({response.status_code}): {error_code} - "
                f"{error_description}"
            )

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()


class ClientRegistrar:
    """Returns the stored client for a server, registering one if needed."""

    def __init__(
        self,
        store: StatusStore,
        registration: OAuth2Registration,
        settings: AppSettings,
    ):
        self._store = store
        self._registration = registration
        self._settings = settings

    def build_client_metadata(self, record: ResourceServerRecord) -> ClientMetadata:
        return ClientMetadata(
            client_name=f"{self._settings.client_name} - {record.name}",
            client_uri=self._settings.require_public_base_url(),
            redirect_uris=[self._settings.redirect_uri_for(record.id)],
            scope=self._settings.scope,
        )

    async def ensure_client(
        self, record: ResourceServerRecord, discovery: DiscoveryResult
    ) -> ClientInformation:
        """Return persisted client info, or register and persist a new client.

        A stored client whose secret has expired is registered again when
        the authorization server supports dynamic registration.

        Raises:
            ManualRegistrationRequiredError: If the authorization server has
                no registration endpoint and no client is stored
            RegistrationError: If dynamic registration fails
        """
        registration_endpoint = (
            discovery.authorization_server_metadata.registration_endpoint
        )

        stored = record.client_info
        if stored is not None:
            if not stored.is_expired() or not registration_endpoint:
                logger.debug(f"Using stored client registration for {record.id}")
                return stored
            logger.info(
                f"Client secret for {record.id} expired, registering a new client"
            )

        if not registration_endpoint:
            raise ManualRegistrationRequiredError(
                "Server does not support dynamic client registration"
            )

        try:
            client_metadata = self.build_client_metadata(record)
        except ValidationError as e:
            raise RegistrationError(f"Invalid client metadata: {e}") from e

        client_info = await self._registration.register_client(
            registration_endpoint, client_metadata
        )
        await self._store.save_client_info(record.id, client_info)
        return client_info
