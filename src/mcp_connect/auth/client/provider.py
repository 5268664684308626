"""Credential access for the MCP transport.

The transport asks a CredentialProvider for credentials before connecting
to a resource server. It gets ``Ready`` credentials or an
``AuthorizationRequired`` result and never follows a redirect itself.
"""

from __future__ import annotations

import logging

from mcp_connect.auth.client.models.credentials import (
    AuthorizationRequired,
    CredentialResult,
    Ready,
)
from mcp_connect.auth.client.models.errors import (
    AuthorizationInProgressError,
    MissingVerifierError,
    OAuth2Error,
)
from mcp_connect.auth.client.models.records import OAuthStatus
from mcp_connect.auth.client.models.registration import ClientInformation
from mcp_connect.auth.client.models.tokens import TokenBundle
from mcp_connect.auth.client.oauth_client import OAuth2Client

logger = logging.getLogger(__name__)


class CredentialProvider:
    """Per-server credential source backed by the StatusStore."""

    def __init__(self, server_id: str, client: OAuth2Client):
        self.server_id = server_id
        self._client = client
        self._store = client.store

    async def resolve(self) -> CredentialResult:
        """Return usable credentials or say why authorization is needed.

        Expired tokens are refreshed when a refresh token is stored. Without
        a usable session a new authorization attempt is started, unless one
        is already waiting for its callback.
        """
        record = await self._store.require(self.server_id)

        if record.oauth_status in (OAuthStatus.UNKNOWN, OAuthStatus.NOT_REQUIRED):
            return Ready(client_info=record.client_info)

        tokens = await self.tokens()
        if tokens is not None:
            return Ready(tokens=tokens, client_info=record.client_info)

        record = await self._store.require(self.server_id)
        if (
            record.oauth_status == OAuthStatus.EXPIRED
            and record.auth_tokens is not None
            and record.auth_tokens.can_refresh()
            and record.client_info is not None
        ):
            try:
                record = await self._client.exchanger.refresh(self.server_id)
                return Ready(tokens=record.auth_tokens, client_info=record.client_info)
            except OAuth2Error as e:
                logger.info(f"Could not refresh tokens for {self.server_id}: {e}")
                record = await self._store.require(self.server_id)

        if record.code_verifier:
            return AuthorizationRequired(
                error="authorization already in progress, waiting for callback"
            )

        try:
            async with self._store.claim(self.server_id):
                authorization_url = await self._client.start_authorization(record)
        except AuthorizationInProgressError as e:
            return AuthorizationRequired(error=str(e))
        except OAuth2Error as e:
            logger.error(f"Could not start authorization for {self.server_id}: {e}")
            await self._store.fail_authorization(self.server_id, str(e))
            return AuthorizationRequired(error=str(e))

        return AuthorizationRequired(authorization_url=authorization_url)

    async def client_information(self) -> ClientInformation | None:
        record = await self._store.require(self.server_id)
        return record.client_info

    async def tokens(self) -> TokenBundle | None:
        """Return valid tokens, moving CONNECTED to EXPIRED when they lapsed."""
        record = await self._store.require(self.server_id)
        if record.auth_tokens is None:
            return None

        if record.auth_tokens.is_expired():
            if record.oauth_status == OAuthStatus.CONNECTED:
                await self._store.mark_expired(self.server_id)
            return None

        if record.oauth_status != OAuthStatus.CONNECTED:
            return None
        return record.auth_tokens

    async def code_verifier(self) -> str:
        """Return the verifier of the pending authorization attempt.

        Raises:
            MissingVerifierError: If no attempt is pending
        """
        record = await self._store.require(self.server_id)
        if not record.code_verifier:
            raise MissingVerifierError(
                f"No code verifier stored for server {self.server_id}"
            )
        return record.code_verifier
