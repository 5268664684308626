"""OAuth 2.1 token exchange and management service.

Implements RFC 6749 token endpoint interactions with PKCE (RFC 7636)
and Resource Indicators (RFC 8707), and the exchanger that moves a
resource server record to CONNECTED once tokens arrive.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from mcp_connect.auth.client.models.discovery import DiscoveryResult
from mcp_connect.auth.client.models.errors import (
    MissingVerifierError,
    OAuth2Error,
    TokenError,
    TokenExchangeError,
    TokenRefreshError,
    TransportError,
)
from mcp_connect.auth.client.models.records import ResourceServerRecord
from mcp_connect.auth.client.models.tokens import (
    ClientAuthentication,
    RefreshTokenRequest,
    TokenRequest,
    TokenResponse,
)
from mcp_connect.auth.client.primitives.discovery import OAuth2Discovery
from mcp_connect.config import AppSettings
from mcp_connect.storage.status_store import StatusStore

logger = logging.getLogger(__name__)

FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


class OAuth2TokenManager:
    """Manages OAuth 2.1 token exchange and refresh operations.

    Handles the token endpoint interactions including:
    - Authorization code to access token exchange (RFC 6749 Section 4.1.3)
    - Access token refresh (RFC 6749 Section 6)
    - Client authentication (none, client_secret_post, client_secret_basic)

    Uses application/x-www-form-urlencoded encoding as required by OAuth 2.1.
    """

    def __init__(
        self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None
    ):
        """Initialize OAuth token manager.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Optional shared HTTP client
        """
        self.timeout = timeout
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def exchange_code_for_token(
        self, token_request: TokenRequest
    ) -> TokenResponse:
        """Exchange authorization code for access token.

        Args:
            token_request: Token exchange request parameters

        Returns:
            TokenResponse: Token response (success or error)

        Raises:
            TransportError: If the token endpoint cannot be reached
            TokenError: If the response cannot be parsed
        """
        logger.debug(f"Exchanging authorization code at {token_request.token_endpoint}")

        form_data = token_request.to_form_data()
        basic_auth = token_request.client.apply(form_data)

        logger.debug(
            f"Token request: grant_type={form_data['grant_type']}, "
            f"client_id={form_data['client_id']}, "
            f"auth_method={token_request.client.method}, "
            f"resource={form_data.get('resource', 'none')}"
        )

        try:
            response = await self._http_client.post(
                token_request.token_endpoint,
                data=form_data,
                headers=FORM_HEADERS,
                auth=basic_auth,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(f"HTTP error during token exchange: {e}") from e

        return self._parse_token_response(response)

    async def refresh_access_token(
        self, refresh_request: RefreshTokenRequest
    ) -> TokenResponse:
        """Refresh an access token using a refresh token.

        Raises:
            TransportError: If the token endpoint cannot be reached
            TokenError: If the response cannot be parsed
        """
        logger.debug(f"Refreshing access token at {refresh_request.token_endpoint}")

        form_data = refresh_request.to_form_data()
        basic_auth = refresh_request.client.apply(form_data)

        try:
            response = await self._http_client.post(
                refresh_request.token_endpoint,
                data=form_data,
                headers=FORM_HEADERS,
                auth=basic_auth,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(f"HTTP error during token refresh: {e}") from e

        return self._parse_token_response(response)

    def _parse_token_response(self, response: httpx.Response) -> TokenResponse:
        """Parse token endpoint response into TokenResponse.

        Handles both successful responses (200) and error responses (400+)
        according to RFC 6749 Section 5.

        Raises:
            TokenError: If response cannot be parsed
        """
        try:
            response_data = response.json()
        except ValueError as e:
            if response.status_code != 200:
                raise TokenError(
                    f"Token endpoint returned HTTP {response.status_code}: "
                    f"{response.text}"
                ) from e
            raise TokenError(f"Invalid token response format: {e}") from e

        if not isinstance(response_data, dict):
            raise TokenError("Invalid token response format: expected a JSON object")

        if response.status_code == 200:
            if "access_token" not in response_data:
                raise TokenError("Token response missing required access_token")
        else:
            response_data.setdefault("error", f"http_{response.status_code}")
            logger.warning(
                f"Token request failed with {response.status_code}: "
                f"{response_data.get('error')} - "
                f"{response_data.get('error_description', 'No description provided')}"
            )

        try:
            return TokenResponse.model_validate(response_data)
        except ValidationError as e:
            raise TokenError(f"Invalid token response format: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()


class TokenExchanger:
    """Turns an authorization code or refresh token into stored tokens."""

    def __init__(
        self,
        store: StatusStore,
        discovery: OAuth2Discovery,
        token_manager: OAuth2TokenManager,
        settings: AppSettings,
    ):
        self._store = store
        self._discovery = discovery
        self._token_manager = token_manager
        self._settings = settings

    async def exchange(self, server_id: str, code: str) -> ResourceServerRecord:
        """Exchange an authorization code and move the server to CONNECTED.

        Any failure of a pending attempt leaves the server REQUIRED with its
        verifier cleared before the error propagates. Without a pending
        attempt the record is left untouched.

        Raises:
            MissingVerifierError: If no verifier is stored for the server
            MisconfigurationError: If no public base URL is configured
            TokenExchangeError: If the token endpoint rejects the code
            OAuth2Error: For discovery, transport or parsing failures
        """
        record = await self._store.require(server_id)
        if not record.code_verifier:
            raise MissingVerifierError("No code verifier stored")

        try:
            redirect_uri = self._settings.redirect_uri_for(server_id)

            client_info = record.client_info
            if client_info is None:
                raise TokenExchangeError(
                    f"No registered client stored for server {server_id}"
                )

            discovery = await self._resolve_discovery(record)

            token_request = TokenRequest(
                token_endpoint=discovery.authorization_server_metadata.token_endpoint,
                code=code,
                redirect_uri=redirect_uri,
                client=ClientAuthentication(
                    client_id=client_info.client_id,
                    client_secret=client_info.client_secret,
                    method=client_info.auth_method(),
                ),
                code_verifier=record.code_verifier,
                resource=discovery.get_resource_url(),
            )

            response = await self._token_manager.exchange_code_for_token(token_request)
            if not response.is_success():
                raise TokenExchangeError(response.error_message())

            updated = await self._store.complete_authorization(
                server_id, response.to_token_bundle()
            )
        except OAuth2Error as e:
            logger.error(f"Token exchange for server {server_id} failed: {e}")
            await self._store.fail_authorization(server_id, str(e))
            raise
        except Exception as e:
            # The verifier is single-use whatever went wrong
            logger.exception(f"Unexpected error exchanging code for server {server_id}")
            await self._store.fail_authorization(
                server_id, f"Token exchange failed: {e.__class__.__name__}"
            )
            raise

        logger.info(f"Token exchange for server {server_id} succeeded")
        return updated

    async def refresh(self, server_id: str) -> ResourceServerRecord:
        """Refresh an expired bundle and move the server back to CONNECTED.

        On failure the server drops its tokens and returns to REQUIRED.

        Raises:
            TokenRefreshError: If the server cannot be refreshed
            OAuth2Error: For discovery, transport or parsing failures
        """
        record = await self._store.require(server_id)

        try:
            tokens = record.auth_tokens
            if tokens is None or not tokens.can_refresh():
                raise TokenRefreshError("No refresh token stored")

            client_info = record.client_info
            if client_info is None:
                raise TokenRefreshError(
                    f"No registered client stored for server {server_id}"
                )

            discovery = await self._resolve_discovery(record)

            refresh_request = RefreshTokenRequest(
                token_endpoint=discovery.authorization_server_metadata.token_endpoint,
                refresh_token=tokens.refresh_token,
                client=ClientAuthentication(
                    client_id=client_info.client_id,
                    client_secret=client_info.client_secret,
                    method=client_info.auth_method(),
                ),
                resource=discovery.get_resource_url(),
            )

            response = await self._token_manager.refresh_access_token(refresh_request)
            if not response.is_success():
                raise TokenRefreshError(response.error_message())

            updated = await self._store.complete_authorization(
                server_id, response.to_token_bundle(previous=tokens)
            )
        except OAuth2Error as e:
            logger.warning(f"Token refresh for server {server_id} failed: {e}")
            await self._store.fail_authorization(server_id, str(e))
            raise

        logger.info(f"Refreshed tokens for server {server_id}")
        return updated

    async def _resolve_discovery(self, record: ResourceServerRecord) -> DiscoveryResult:
        # The authorization server chosen at initiation is reused when known
        if record.authorization_server:
            asm = await self._discovery.discover_authorization_server_metadata(
                record.authorization_server
            )
            return DiscoveryResult(
                server_url=record.url,
                authorization_server_metadata=asm,
                auth_server_url=record.authorization_server,
            )
        return await self._discovery.discover(record.url)
