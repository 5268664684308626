"""Tests for the StatusStore state machine and claim handling."""

import asyncio
import time

import pytest

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
)
from mcp_connect.auth.client.models.registration import ClientInformation
from mcp_connect.auth.client.models.tokens import TokenBundle
from mcp_connect.storage.backends import MemoryRecordBackend
from mcp_connect.storage.status_store import StatusStore


def fresh_tokens() -> TokenBundle:
    return TokenBundle(
        access_token="access", refresh_token="refresh", expires_at=time.time() + 3600
    )


class TestRegistration:
    async def test_new_server_starts_unknown(self, store):
        # Act
        record = await store.register("srv-1", "Example", "https://mcp.example.com")

        # Assert
        assert record.oauth_status == OAuthStatus.UNKNOWN
        assert isinstance(record.session, NotStarted)
        assert await store.exists("srv-1")

    async def test_duplicate_registration_is_rejected(self, registered_store):
        with pytest.raises(ValueError):
            await registered_store.register("srv-1", "Again", "https://x.example.com")

    async def test_require_unknown_server(self, store):
        with pytest.raises(ServerNotFoundError):
            await store.require("missing")

    async def test_get_unknown_server(self, store):
        assert await store.get("missing") is None


class TestTransitions:
    async def test_detection_sets_status(self, registered_store):
        # Act
        record = await registered_store.record_detection("srv-1", True)

        # Assert
        assert record.oauth_status == OAuthStatus.REQUIRED
        assert record.requires_auth is True

    async def test_begin_then_complete(self, registered_store):
        # Arrange
        await registered_store.record_detection("srv-1", True)

        # Act
        awaiting = await registered_store.begin_authorization(
            "srv-1", "v" * 64, "state-1", "https://auth.example.com"
        )
        connected = await registered_store.complete_authorization(
            "srv-1", fresh_tokens()
        )

        # Assert
        assert isinstance(awaiting.session, AwaitingCallback)
        assert awaiting.session.state == "state-1"
        assert connected.oauth_status == OAuthStatus.CONNECTED
        assert isinstance(connected.session, Connected)
        assert connected.code_verifier is None
        assert connected.authorization_server == "https://auth.example.com"

    async def test_not_required_cannot_begin_authorization(self, registered_store):
        # Arrange
        await registered_store.record_detection("srv-1", False)

        # Act & Assert
        with pytest.raises(InvalidTransitionError):
            await registered_store.begin_authorization(
                "srv-1", "v" * 64, None, "https://auth.example.com"
            )

    async def test_unknown_cannot_jump_to_connected(self, registered_store):
        with pytest.raises(InvalidTransitionError):
            await registered_store.complete_authorization("srv-1", fresh_tokens())

    async def test_expired_tokens_are_never_connected(self, registered_store):
        # Arrange
        await registered_store.record_detection("srv-1", True)
        stale = TokenBundle(access_token="a", expires_at=time.time() - 1)

        # Act & Assert
        with pytest.raises(InvalidTransitionError):
            await registered_store.complete_authorization("srv-1", stale)

    async def test_failure_clears_verifier_and_tokens(self, registered_store):
        # Arrange
        await registered_store.record_detection("srv-1", True)
        await registered_store.begin_authorization(
            "srv-1", "v" * 64, "s", "https://auth.example.com"
        )

        # Act
        record = await registered_store.fail_authorization("srv-1", "denied")

        # Assert
        assert record.oauth_status == OAuthStatus.REQUIRED
        assert record.code_verifier is None
        assert record.oauth_state is None
        assert record.auth_tokens is None
        assert record.session == Failed(reason="denied")

    async def test_failure_keeps_not_required(self, registered_store):
        # Arrange
        await registered_store.record_detection("srv-1", False)

        # Act
        record = await registered_store.fail_authorization("srv-1", "stray callback")

        # Assert
        assert record.oauth_status == OAuthStatus.NOT_REQUIRED

    async def test_redetection_without_auth_clears_protocol_state(
        self, registered_store
    ):
        # Arrange
        await registered_store.record_detection("srv-1", True)
        await registered_store.begin_authorization(
            "srv-1", "v" * 64, None, "https://auth.example.com"
        )
        await registered_store.complete_authorization("srv-1", fresh_tokens())
        await registered_store.record_detection("srv-1", True)
        await registered_store.begin_authorization(
            "srv-1", "w" * 64, "s", "https://auth.example.com"
        )

        # Act
        record = await registered_store.record_detection("srv-1", False)

        # Assert
        assert record.oauth_status == OAuthStatus.NOT_REQUIRED
        assert record.requires_auth is False
        assert record.code_verifier is None
        assert record.oauth_state is None
        assert record.auth_tokens is None
        assert (await registered_store.require("srv-1")).session == NotStarted()

    async def test_redetection_drops_tokens_of_connected_server(
        self, registered_store
    ):
        # Arrange
        await registered_store.record_detection("srv-1", True)
        await registered_store.begin_authorization(
            "srv-1", "v" * 64, None, "https://auth.example.com"
        )
        await registered_store.complete_authorization("srv-1", fresh_tokens())

        # Act
        record = await registered_store.record_detection("srv-1", False)

        # Assert
        assert record.oauth_status == OAuthStatus.NOT_REQUIRED
        assert record.auth_tokens is None

    async def test_mark_expired(self, registered_store):
        # Arrange
        await registered_store.record_detection("srv-1", True)
        await registered_store.begin_authorization(
            "srv-1", "v" * 64, None, "https://auth.example.com"
        )
        await registered_store.complete_authorization("srv-1", fresh_tokens())

        # Act
        record = await registered_store.mark_expired("srv-1")

        # Assert
        assert record.oauth_status == OAuthStatus.EXPIRED
        assert record.auth_tokens is not None

    async def test_abandoned_flow_leaves_stale_verifier(self, registered_store):
        # Arrange
        await registered_store.record_detection("srv-1", True)
        await registered_store.begin_authorization(
            "srv-1", "v" * 64, "s", "https://auth.example.com"
        )

        # Act
        record = await registered_store.require("srv-1")

        # Assert
        assert record.oauth_status == OAuthStatus.REQUIRED
        assert record.code_verifier == "v" * 64


class TestClaim:
    async def test_second_claim_conflicts(self, registered_store):
        # Arrange
        async with registered_store.claim("srv-1"):
            # Act & Assert
            with pytest.raises(AuthorizationInProgressError):
                async with registered_store.claim("srv-1"):
                    pass

    async def test_claim_is_released_after_error(self, registered_store):
        # Arrange
        with pytest.raises(RuntimeError):
            async with registered_store.claim("srv-1"):
                raise RuntimeError("boom")

        # Act & Assert
        async with registered_store.claim("srv-1"):
            pass

    async def test_claims_are_per_server(self, registered_store):
        async with registered_store.claim("srv-1"):
            async with registered_store.claim("srv-2"):
                pass

    async def test_concurrent_updates_are_serialized(self, registered_store):
        # Act
        await asyncio.gather(
            registered_store.record_detection("srv-1", True),
            registered_store.save_client_info(
                "srv-1",
                ClientInformation(client_id="c"),
            ),
        )

        # Assert
        record = await registered_store.require("srv-1")
        assert record.oauth_status == OAuthStatus.REQUIRED
        assert record.client_info.client_id == "c"


class TestDocuments:
    async def test_document_uses_camel_case_aliases(self):
        # Arrange
        backend = MemoryRecordBackend()
        store = StatusStore(backend)
        await store.register("srv-1", "Example", "https://mcp.example.com")
        await store.record_detection("srv-1", True)
        await store.begin_authorization(
            "srv-1", "v" * 64, "s", "https://auth.example.com"
        )

        # Act
        document = await backend.read("srv-1")

        # Assert
        assert document["oauthStatus"] == "REQUIRED"
        assert document["requiresAuth"] is True
        assert document["codeVerifier"] == "v" * 64
        assert document["authorizationServer"] == "https://auth.example.com"
        assert ResourceServerRecord.from_document(document).oauth_state == "s"

    def test_connected_record_requires_tokens(self):
        with pytest.raises(ValueError):
            ResourceServerRecord(
                id="x", name="x", url="https://x", oauth_status=OAuthStatus.CONNECTED
            )
