"""Persisted per-server OAuth state.

A ResourceServerRecord is stored for every remote MCP HTTP server. Its
camelCase field aliases are the on-disk contract read by other tooling.
The protocol-level state lives in a tagged session variant; every mutation
goes through ``with_session`` so a variant only ever populates the fields
it owns.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from mcp_connect.auth.client.models.registration import ClientInformation
from mcp_connect.auth.client.models.tokens import TokenBundle


class OAuthStatus(str, Enum):
    UNKNOWN = "UNKNOWN"
    NOT_REQUIRED = "NOT_REQUIRED"
    REQUIRED = "REQUIRED"
    CONNECTED = "CONNECTED"
    EXPIRED = "EXPIRED"


# Allowed status changes outside of (re-)detection
TRANSITIONS: dict[OAuthStatus, frozenset[OAuthStatus]] = {
    OAuthStatus.UNKNOWN: frozenset({OAuthStatus.NOT_REQUIRED, OAuthStatus.REQUIRED}),
    OAuthStatus.NOT_REQUIRED: frozenset(),
    OAuthStatus.REQUIRED: frozenset({OAuthStatus.CONNECTED, OAuthStatus.REQUIRED}),
    OAuthStatus.CONNECTED: frozenset({OAuthStatus.EXPIRED, OAuthStatus.REQUIRED}),
    OAuthStatus.EXPIRED: frozenset({OAuthStatus.CONNECTED, OAuthStatus.REQUIRED}),
}


def can_transition(current: OAuthStatus, target: OAuthStatus) -> bool:
    return target in TRANSITIONS[current]


class NotStarted(BaseModel):
    kind: Literal["not_started"] = "not_started"


class AwaitingCallback(BaseModel):
    kind: Literal["awaiting_callback"] = "awaiting_callback"
    code_verifier: str
    state: str | None = None


class Connected(BaseModel):
    kind: Literal["connected"] = "connected"
    tokens: TokenBundle


class Failed(BaseModel):
    kind: Literal["failed"] = "failed"
    reason: str


OAuthSession = Annotated[
    Union[NotStarted, AwaitingCallback, Connected, Failed],
    Field(discriminator="kind"),
]


class ResourceServerRecord(BaseModel):
    """OAuth state for one remote MCP HTTP server."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    url: str
    oauth_status: OAuthStatus = Field(default=OAuthStatus.UNKNOWN, alias="oauthStatus")
    requires_auth: bool = Field(default=False, alias="requiresAuth")
    client_info: ClientInformation | None = Field(default=None, alias="clientInfo")
    auth_tokens: TokenBundle | None = Field(default=None, alias="authTokens")
    code_verifier: str | None = Field(default=None, alias="codeVerifier")
    oauth_state: str | None = Field(default=None, alias="oauthState")
    authorization_server: str | None = Field(default=None, alias="authorizationServer")
    last_error: str | None = Field(default=None, alias="lastError")

    @model_validator(mode="after")
    def check_connected_fields(self) -> ResourceServerRecord:
        if self.oauth_status == OAuthStatus.CONNECTED:
            if self.auth_tokens is None:
                raise ValueError("CONNECTED record must carry authTokens")
            if self.code_verifier is not None:
                raise ValueError("CONNECTED record must not carry a codeVerifier")
        return self

    @property
    def session(self) -> OAuthSession:
        if self.code_verifier is not None:
            return AwaitingCallback(code_verifier=self.code_verifier, state=self.oauth_state)
        if self.last_error is not None:
            return Failed(reason=self.last_error)
        if self.auth_tokens is not None and self.oauth_status in (
            OAuthStatus.CONNECTED,
            OAuthStatus.EXPIRED,
        ):
            return Connected(tokens=self.auth_tokens)
        return NotStarted()

    def with_session(
        self,
        session: OAuthSession,
        status: OAuthStatus | None = None,
    ) -> ResourceServerRecord:
        """Return a copy whose protocol fields are exactly those of ``session``."""
        changes: dict = {
            "code_verifier": None,
            "oauth_state": None,
            "last_error": None,
        }
        if isinstance(session, AwaitingCallback):
            changes["code_verifier"] = session.code_verifier
            changes["oauth_state"] = session.state
            changes["auth_tokens"] = None
        elif isinstance(session, Connected):
            changes["auth_tokens"] = session.tokens
        elif isinstance(session, Failed):
            changes["last_error"] = session.reason
            changes["auth_tokens"] = None
        else:
            changes["auth_tokens"] = None
        if status is not None:
            changes["oauth_status"] = status
        # Rebuild through validation so the CONNECTED invariants are enforced
        data = self.model_dump()
        data.update(changes)
        return ResourceServerRecord.model_validate(data)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, document: dict) -> ResourceServerRecord:
        return cls.model_validate(document)
