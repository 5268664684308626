"""OAuth 2.1 connection flow orchestration for MCP resource servers.

Coordinates detection, discovery, registration, authorization and token
exchange, and maps step failures to the results the HTTP endpoints return.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import quote

import httpx

from mcp_connect.auth.client.models.errors import (
    AuthorizationCallbackError,
    AuthorizationInProgressError,
    MisconfigurationError,
    OAuth2Error,
    ServerNotFoundError,
)
from mcp_connect.auth.client.models.flow import AuthorizationResponse
from mcp_connect.auth.client.models.records import OAuthStatus, ResourceServerRecord
from mcp_connect.auth.client.primitives.detection import RequirementDetector
from mcp_connect.auth.client.primitives.discovery import OAuth2Discovery
from mcp_connect.auth.client.services.flow import (
    AuthorizationInitiator,
    OAuth2FlowManager,
)
from mcp_connect.auth.client.services.registration import (
    ClientRegistrar,
    OAuth2Registration,
)
from mcp_connect.auth.client.services.tokens import OAuth2TokenManager, TokenExchanger
from mcp_connect.config import AppSettings
from mcp_connect.storage.status_store import StatusStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckResult:
    """Outcome of checking a server's OAuth state."""

    server_id: str
    oauth_status: OAuthStatus
    requires_auth: bool = False
    connected: bool = False
    authorization_url: str | None = None
    error: str | None = None
    status_code: int = 200

    def to_dict(self) -> dict:
        body = {
            "serverId": self.server_id,
            "requiresAuth": self.requires_auth,
            "connected": self.connected,
            "oauthStatus": self.oauth_status.value,
        }
        if self.authorization_url is not None:
            body["authorizationUrl"] = self.authorization_url
        if self.error is not None:
            body["error"] = self.error
        return body


def success_redirect(server_name: str) -> str:
    return f"/?oauth_success=true&server={quote(server_name, safe='')}"


def error_redirect(reason: str) -> str:
    return f"/?oauth_error={quote(reason, safe='')}"


class OAuth2Client:
    """OAuth 2.1 client for the MCP servers a user has configured.

    All components share one ``httpx.AsyncClient``. Pass ``http_client`` to
    route traffic through a custom transport; the client is then owned by
    the caller and not closed by ``close()``.
    """

    def __init__(
        self,
        settings: AppSettings,
        store: StatusStore,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize OAuth client.

        Args:
            settings: Resolved application settings
            store: Persistent per-server OAuth state
            http_client: Optional shared HTTP client
        """
        self.settings = settings
        self.store = store

        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=settings.http_timeout
        )

        # Initialize service components
        timeout = settings.http_timeout
        self.detector = RequirementDetector(timeout, http_client=self._http_client)
        self.discovery = OAuth2Discovery(timeout, http_client=self._http_client)
        self.registration = OAuth2Registration(timeout, http_client=self._http_client)
        self.token_manager = OAuth2TokenManager(timeout, http_client=self._http_client)
        self.flow_manager = OAuth2FlowManager()

        self.registrar = ClientRegistrar(store, self.registration, settings)
        self.initiator = AuthorizationInitiator(store, settings, self.flow_manager)
        self.exchanger = TokenExchanger(
            store, self.discovery, self.token_manager, settings
        )

    async def check(self, server_id: str) -> CheckResult:
        """Report whether a server needs OAuth and start authorization if so.

        Never raises for step failures; they are reported in ``error`` with
        the server left REQUIRED.
        """
        record = await self.store.get(server_id)
        if record is None:
            return CheckResult(
                server_id=server_id,
                oauth_status=OAuthStatus.NOT_REQUIRED,
                error="HTTP server not found",
                status_code=404,
            )

        if record.oauth_status == OAuthStatus.CONNECTED:
            if record.auth_tokens is not None and not record.auth_tokens.is_expired():
                return self._connected(record)
            record = await self.store.mark_expired(server_id)

        if (
            record.oauth_status == OAuthStatus.EXPIRED
            and record.auth_tokens is not None
            and record.auth_tokens.can_refresh()
        ):
            try:
                return self._connected(await self.exchanger.refresh(server_id))
            except OAuth2Error as e:
                logger.info(f"Refresh for server {server_id} failed, re-authorizing: {e}")

        try:
            # Fail fast before any network call
            self.settings.redirect_uri_for(server_id)
        except MisconfigurationError as e:
            logger.error(f"Cannot check server {server_id}: {e}")
            return CheckResult(
                server_id=server_id,
                oauth_status=record.oauth_status,
                requires_auth=record.requires_auth,
                error=str(e),
                status_code=500,
            )

        detection = await self.detector.detect(record.url)
        if not detection.requires_auth:
            await self.store.record_detection(server_id, False)
            return CheckResult(
                server_id=server_id, oauth_status=OAuthStatus.NOT_REQUIRED
            )

        record = await self.store.record_detection(server_id, True)

        try:
            async with self.store.claim(server_id):
                authorization_url = await self.start_authorization(
                    record, detection.resource_metadata_url
                )
        except AuthorizationInProgressError as e:
            return CheckResult(
                server_id=server_id,
                oauth_status=OAuthStatus.REQUIRED,
                requires_auth=True,
                error=str(e),
                status_code=409,
            )
        except OAuth2Error as e:
            logger.error(f"Authorization setup for server {server_id} failed: {e}")
            await self.store.fail_authorization(server_id, str(e))
            return CheckResult(
                server_id=server_id,
                oauth_status=OAuthStatus.REQUIRED,
                requires_auth=True,
                error=str(e),
            )

        return CheckResult(
            server_id=server_id,
            oauth_status=OAuthStatus.REQUIRED,
            requires_auth=True,
            authorization_url=authorization_url,
        )

    async def start_authorization(
        self, record: ResourceServerRecord, resource_metadata_url: str | None = None
    ) -> str:
        """Discover, register and build the authorization URL for a server.

        Callers hold the server's claim.

        Raises:
            OAuth2Error: If any step fails
        """
        logger.debug(f"Starting authorization for server {record.id}")
        self.settings.redirect_uri_for(record.id)

        discovery = await self.discovery.discover(record.url, resource_metadata_url)
        client_info = await self.registrar.ensure_client(record, discovery)
        authorization_url = await self.initiator.initiate(
            record.id, discovery, client_info
        )
        logger.info(f"Authorization URL ready for server {record.id}")
        return authorization_url

    async def callback(self, server_id: str, response: AuthorizationResponse) -> str:
        """Complete authorization from the provider's redirect.

        Returns:
            Relative URL to redirect the browser to; never raises for flow
            failures
        """
        record = await self.store.get(server_id)
        if record is None:
            return error_redirect("server_not_found")

        try:
            code = self.flow_manager.validate_callback(response, record.oauth_state)
        except AuthorizationCallbackError as e:
            # Only a pending attempt is failed; stray callbacks leave the record alone
            if record.code_verifier is not None:
                await self.store.fail_authorization(server_id, str(e))
            return error_redirect(str(e))

        try:
            async with self.store.claim(server_id):
                await self.exchanger.exchange(server_id, code)
        except AuthorizationInProgressError:
            return error_redirect("authorization_in_progress")
        except ServerNotFoundError:
            return error_redirect("server_not_found")
        except OAuth2Error as e:
            return error_redirect(str(e))

        return success_redirect(record.name)

    def _connected(self, record: ResourceServerRecord) -> CheckResult:
        return CheckResult(
            server_id=record.id,
            oauth_status=OAuthStatus.CONNECTED,
            requires_auth=True,
            connected=True,
        )

    async def close(self) -> None:
        """Close all service connections."""
        if self._owns_http_client:
            await self._http_client.aclose()
