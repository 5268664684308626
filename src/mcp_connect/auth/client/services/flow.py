"""OAuth 2.1 authorization flow orchestration service.

Builds PKCE-protected authorization URLs, persists the verifier for the
callback, and validates the parameters the provider redirects back with.
"""

from __future__ import annotations

import logging

from mcp_connect.auth.client.models.discovery import DiscoveryResult
from mcp_connect.auth.client.models.errors import (
    AuthorizationCallbackError,
    AuthorizationError,
)
from mcp_connect.auth.client.models.flow import (
    AuthorizationRequest,
    AuthorizationResponse,
)
from mcp_connect.auth.client.models.registration import ClientInformation
from mcp_connect.auth.client.models.security import PKCEParameters
from mcp_connect.auth.client.primitives.pkce import PKCEManager
from mcp_connect.auth.client.services.security import generate_state, validate_state
from mcp_connect.config import AppSettings
from mcp_connect.storage.status_store import StatusStore

logger = logging.getLogger(__name__)


class OAuth2FlowManager:
    """Orchestrates OAuth 2.1 authorization code flows for MCP authentication.

    Handles:
    - PKCE parameter generation
    - State parameter security (CSRF protection)
    - Authorization URL construction
    - Callback parameter validation
    - Resource parameter handling (RFC 8707)
    """

    def __init__(self):
        """Initialize the OAuth flow manager."""
        self._pkce_manager = PKCEManager()

    def start_authorization_flow(
        self,
        discovery_result: DiscoveryResult,
        client_info: ClientInformation,
        redirect_uri: str,
        scope: str | None = None,
    ) -> tuple[str, PKCEParameters, str]:
        """Start an OAuth 2.1 authorization flow.

        Args:
            discovery_result: OAuth server discovery results
            client_info: Registered client
            redirect_uri: URI to redirect to after authorization
            scope: Optional scope to request

        Returns:
            Tuple of (authorization_url, pkce_parameters, state)

        Raises:
            AuthorizationError: If flow setup fails
        """
        try:
            pkce_params = self._pkce_manager.generate_parameters()
            state = generate_state()

            resource_url = discovery_result.get_resource_url()

            logger.debug(
                f"Starting authorization flow for client "
                f"{client_info.client_id} with resource {resource_url}"
            )

            auth_request = AuthorizationRequest(
                authorization_endpoint=(
                    discovery_result.authorization_server_metadata.authorization_endpoint
                ),
                client_id=client_info.client_id,
                redirect_uri=redirect_uri,
                code_challenge=pkce_params.code_challenge,
                code_challenge_method=pkce_params.code_challenge_method,
                state=state,
                resource=resource_url,
                scope=scope,
            )

            authorization_url = auth_request.build_authorization_url()

            logger.info(
                f"Generated authorization URL for client {client_info.client_id}"
            )

            return authorization_url, pkce_params, state

        except Exception as e:
            raise AuthorizationError(f"Failed to start authorization flow: {e}") from e

    def validate_callback(
        self, response: AuthorizationResponse, expected_state: str | None
    ) -> str:
        """Check callback parameters before any network call.

        Args:
            response: Parameters the provider redirected back with
            expected_state: State stored at initiation, if any

        Returns:
            The authorization code

        Raises:
            AuthorizationCallbackError: If the provider reported an error or
                no code was delivered
            StateValidationError: If the state parameter doesn't match
        """
        if response.is_error():
            logger.warning(
                f"Authorization callback contained error: {response.error} - "
                f"{response.error_description}"
            )
            raise AuthorizationCallbackError(response.error_message())

        if response.code is None:
            raise AuthorizationCallbackError("missing_code")

        if expected_state is not None:
            validate_state(expected_state, response.state)

        return response.code


class AuthorizationInitiator:
    """Builds the authorization URL for a server and persists its verifier."""

    def __init__(
        self,
        store: StatusStore,
        settings: AppSettings,
        flow_manager: OAuth2FlowManager | None = None,
    ):
        self._store = store
        self._settings = settings
        self._flow_manager = flow_manager or OAuth2FlowManager()

    async def initiate(
        self,
        server_id: str,
        discovery_result: DiscoveryResult,
        client_info: ClientInformation,
    ) -> str:
        """Generate and persist a fresh PKCE pair, return the URL to visit.

        Raises:
            MisconfigurationError: If no public base URL is configured
            AuthorizationError: If the URL cannot be built
        """
        redirect_uri = self._settings.redirect_uri_for(server_id)

        authorization_url, pkce_params, state = (
            self._flow_manager.start_authorization_flow(
                discovery_result, client_info, redirect_uri, self._settings.scope
            )
        )

        await self._store.begin_authorization(
            server_id,
            code_verifier=pkce_params.code_verifier,
            state=state,
            authorization_server=discovery_result.auth_server_url,
        )
        return authorization_url

