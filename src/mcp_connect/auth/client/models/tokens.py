"""Token models for OAuth 2.1.

Contains token endpoint requests, token endpoint responses, and the token
bundle persisted on a resource server record.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict

# Tokens are treated as expired this many seconds early
EXPIRY_BUFFER_SECONDS = 60.0


class TokenBundle(BaseModel):
    """Tokens stored for a resource server.

    ``expires_at`` is an absolute epoch timestamp in seconds. A bundle
    without it never expires from our point of view.
    """

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: str = "Bearer"
    refresh_token: str | None = None
    expires_at: float | None = None
    scope: str | None = None

    def is_expired(
        self, buffer_seconds: float = EXPIRY_BUFFER_SECONDS, now: float | None = None
    ) -> bool:
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return current > self.expires_at - buffer_seconds

    def can_refresh(self) -> bool:
        return bool(self.refresh_token)

    def authorization_header(self) -> str:
        # RFC 6750 scheme is case-insensitive but some servers reject "bearer"
        scheme = "Bearer" if self.token_type.lower() == "bearer" else self.token_type
        return f"{scheme} {self.access_token}"


@dataclass(frozen=True)
class ClientAuthentication:
    """How the client authenticates at the token endpoint.

    ``none`` sends only client_id, ``client_secret_post`` adds the secret to
    the form body, ``client_secret_basic`` uses HTTP Basic.
    """

    client_id: str
    client_secret: str | None = None
    method: str = "none"

    def apply(self, form_data: dict[str, str]) -> tuple[str, str] | None:
        """Add body credentials to form data, return Basic credentials if any."""
        form_data["client_id"] = self.client_id
        if self.client_secret and self.method == "client_secret_post":
            form_data["client_secret"] = self.client_secret
        if self.client_secret and self.method == "client_secret_basic":
            return (self.client_id, self.client_secret)
        return None


@dataclass(frozen=True)
class TokenRequest:
    """OAuth 2.1 token exchange request parameters (RFC 6749 Section 4.1.3).

    Includes PKCE code_verifier (RFC 7636) and resource parameter (RFC 8707).
    """

    token_endpoint: str
    code: str
    redirect_uri: str
    client: ClientAuthentication
    code_verifier: str

    grant_type: str = "authorization_code"
    resource: str | None = None

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for application/x-www-form-urlencoded request.

        Token requests must use form encoding, not JSON (RFC 6749 Section 4.1.3).
        """
        data = {
            "grant_type": self.grant_type,
            "code": self.code,
            "redirect_uri": self.redirect_uri,
            "code_verifier": self.code_verifier,
        }

        if self.resource:
            data["resource"] = self.resource

        return data


@dataclass(frozen=True)
class RefreshTokenRequest:
    """OAuth 2.1 refresh token request parameters (RFC 6749 Section 6)."""

    token_endpoint: str
    refresh_token: str
    client: ClientAuthentication

    grant_type: str = "refresh_token"
    resource: str | None = None
    scope: str | None = None

    def to_form_data(self) -> dict[str, str]:
        data = {
            "grant_type": self.grant_type,
            "refresh_token": self.refresh_token,
        }

        if self.resource:
            data["resource"] = self.resource
        if self.scope:
            data["scope"] = self.scope

        return data


class TokenResponse(BaseModel):
    """OAuth 2.1 token response (RFC 6749 Section 5).

    Represents the response from a token endpoint, including both
    successful responses (Section 5.1) and error responses (Section 5.2).
    """

    model_config = ConfigDict(extra="allow")

    # Success response fields (RFC 6749 Section 5.1)
    access_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None

    # Error response fields (RFC 6749 Section 5.2)
    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.access_token is not None

    def is_error(self) -> bool:
        return self.error is not None

    def error_message(self) -> str:
        if self.error_description:
            return f"{self.error}: {self.error_description}"
        return self.error or "unknown_error"

    def calculate_expires_at(self, now: float | None = None) -> float | None:
        if self.expires_in is None:
            return None
        return (time.time() if now is None else now) + self.expires_in

    def to_token_bundle(self, previous: TokenBundle | None = None) -> TokenBundle:
        """Convert a successful response into the bundle we persist.

        A refresh response that omits refresh_token keeps the previous one.

        Raises:
            ValueError: If response is not successful
        """
        if not self.is_success():
            raise ValueError("Cannot convert error response to TokenBundle")

        refresh_token = self.refresh_token
        if refresh_token is None and previous is not None:
            refresh_token = previous.refresh_token

        return TokenBundle(
            access_token=self.access_token,
            token_type=self.token_type,
            refresh_token=refresh_token,
            expires_at=self.calculate_expires_at(),
            scope=self.scope,
        )
