"""Typed access to per-server OAuth state.

The StatusStore is the only shared mutable resource of the connection flow.
Every mutation is a read-modify-write under a per-server lock, and
``claim`` enforces at most one in-flight authorization attempt per server.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp_connect.auth.client.models.errors import (
    AuthorizationInProgressError,
    InvalidTransitionError,
    ServerNotFoundError,
)
from mcp_connect.auth.client.models.records import (
    AwaitingCallback,
    Connected,
    Failed,
    NotStarted,
    OAuthStatus,
    ResourceServerRecord,
    can_transition,
)
from mcp_connect.auth.client.models.registration import ClientInformation
from mcp_connect.auth.client.models.tokens import TokenBundle
from mcp_connect.storage.backends import RecordBackend

logger = logging.getLogger(__name__)


class StatusStore:
    """Reads and writes ResourceServerRecords through a RecordBackend."""

    def __init__(self, backend: RecordBackend) -> None:
        self._backend = backend
        self._locks: dict[str, asyncio.Lock] = {}
        self._in_flight: set[str] = set()

    def _lock_for(self, server_id: str) -> asyncio.Lock:
        if server_id not in self._locks:
            self._locks[server_id] = asyncio.Lock()
        return self._locks[server_id]

    async def register(
        self,
        server_id: str,
        name: str,
        url: str,
        client_info: ClientInformation | None = None,
    ) -> ResourceServerRecord:
        """Create the record for a newly configured server (status UNKNOWN).

        ``client_info`` pre-provisions a client for authorization servers
        without dynamic registration.
        """
        async with self._lock_for(server_id):
            if await self._backend.exists(server_id):
                raise ValueError(f"Server {server_id} already registered")
            record = ResourceServerRecord(
                id=server_id, name=name, url=url, client_info=client_info
            )
            await self._backend.write(server_id, record.to_document())

        logger.info(f"Registered resource server {server_id} ({url})")
        return record

    async def get(self, server_id: str) -> ResourceServerRecord | None:
        document = await self._backend.read(server_id)
        if document is None:
            return None
        return ResourceServerRecord.from_document(document)

    async def require(self, server_id: str) -> ResourceServerRecord:
        record = await self.get(server_id)
        if record is None:
            raise ServerNotFoundError(f"Server {server_id} not found")
        return record

    async def exists(self, server_id: str) -> bool:
        return await self._backend.exists(server_id)

    @asynccontextmanager
    async def claim(self, server_id: str) -> AsyncIterator[None]:
        """Hold the single authorization slot for a server.

        Raises:
            AuthorizationInProgressError: If another attempt holds the slot
        """
        if server_id in self._in_flight:
            raise AuthorizationInProgressError(
                f"An authorization attempt for server {server_id} is already "
                "in progress"
            )
        self._in_flight.add(server_id)
        try:
            yield
        finally:
            self._in_flight.discard(server_id)

    async def record_detection(
        self, server_id: str, requires_auth: bool
    ) -> ResourceServerRecord:
        """Store a detection result; re-detection may overwrite any status.

        A server found not to need OAuth drops its verifier and tokens.
        """
        async with self._lock_for(server_id):
            record = await self.require(server_id)
            if requires_auth:
                updated = record.model_copy(
                    update={"oauth_status": OAuthStatus.REQUIRED, "requires_auth": True}
                )
            else:
                updated = record.with_session(
                    NotStarted(), OAuthStatus.NOT_REQUIRED
                ).model_copy(update={"requires_auth": False})
            return await self._save(record, updated)

    async def save_client_info(
        self, server_id: str, client_info: ClientInformation
    ) -> ResourceServerRecord:
        async with self._lock_for(server_id):
            record = await self.require(server_id)
            updated = record.model_copy(update={"client_info": client_info})
            return await self._save(record, updated)

    async def begin_authorization(
        self,
        server_id: str,
        code_verifier: str,
        state: str | None,
        authorization_server: str,
    ) -> ResourceServerRecord:
        """Persist the verifier of a freshly generated authorization URL."""
        async with self._lock_for(server_id):
            record = await self.require(server_id)
            self._check_transition(record, OAuthStatus.REQUIRED)

            updated = record.with_session(
                AwaitingCallback(code_verifier=code_verifier, state=state),
                OAuthStatus.REQUIRED,
            ).model_copy(update={"authorization_server": authorization_server})
            return await self._save(record, updated)

    async def complete_authorization(
        self, server_id: str, tokens: TokenBundle
    ) -> ResourceServerRecord:
        """Store new tokens and move to CONNECTED, clearing the verifier."""
        if tokens.is_expired(buffer_seconds=0):
            raise InvalidTransitionError(
                f"Refusing to mark server {server_id} CONNECTED with expired tokens"
            )

        async with self._lock_for(server_id):
            record = await self.require(server_id)
            self._check_transition(record, OAuthStatus.CONNECTED)

            updated = record.with_session(Connected(tokens=tokens), OAuthStatus.CONNECTED)
            updated = updated.model_copy(update={"requires_auth": True})
            return await self._save(record, updated)

    async def fail_authorization(
        self, server_id: str, reason: str
    ) -> ResourceServerRecord:
        """Record a failed attempt: REQUIRED, verifier and tokens cleared.

        A server detected as NOT_REQUIRED keeps that status; only its
        leftover protocol state is cleared.
        """
        async with self._lock_for(server_id):
            record = await self.require(server_id)
            status = (
                None
                if record.oauth_status == OAuthStatus.NOT_REQUIRED
                else OAuthStatus.REQUIRED
            )
            updated = record.with_session(Failed(reason=reason), status)
            return await self._save(record, updated)

    async def mark_expired(self, server_id: str) -> ResourceServerRecord:
        """Lazily move CONNECTED to EXPIRED when expired tokens are read."""
        async with self._lock_for(server_id):
            record = await self.require(server_id)
            if record.oauth_status == OAuthStatus.EXPIRED:
                return record
            self._check_transition(record, OAuthStatus.EXPIRED)

            updated = record.model_copy(update={"oauth_status": OAuthStatus.EXPIRED})
            return await self._save(record, updated)

    def _check_transition(
        self, record: ResourceServerRecord, target: OAuthStatus
    ) -> None:
        if not can_transition(record.oauth_status, target):
            raise InvalidTransitionError(
                f"Server {record.id} cannot move from {record.oauth_status.value} "
                f"to {target.value}"
            )

    async def _save(
        self, previous: ResourceServerRecord, updated: ResourceServerRecord
    ) -> ResourceServerRecord:
        old_document = previous.to_document()
        new_document = updated.to_document()
        changes = {
            key: value
            for key, value in new_document.items()
            if old_document.get(key) != value
        }

        if changes:
            await self._backend.update(updated.id, changes)
            if "oauthStatus" in changes:
                logger.info(
                    f"Server {updated.id} OAuth status: "
                    f"{previous.oauth_status.value} -> {updated.oauth_status.value}"
                )
        return updated
