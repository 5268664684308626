"""Exception hierarchy for OAuth 2.1 connection errors.

Provides specific exception types for each step of the connection flow so the
flow boundary can map failures to user-facing messages and safe states.
"""

from __future__ import annotations


class OAuth2Error(Exception):
    """Base exception for all OAuth 2.1 related errors."""

    pass


class MisconfigurationError(OAuth2Error):
    """Raised when the application cannot form a valid redirect URI.

    Fatal: never retried, halts the flow before any network call.
    """

    pass


class ServerNotFoundError(OAuth2Error):
    """Raised when no resource server record exists for an id."""

    pass


class InvalidTransitionError(OAuth2Error):
    """Raised when a status change is not allowed by the state machine."""

    pass


class AuthorizationInProgressError(OAuth2Error):
    """Raised when another authorization attempt holds the server's claim."""

    pass


class TransportError(OAuth2Error):
    """Raised when talking to a resource or authorization server fails."""

    pass


class DiscoveryError(OAuth2Error):
    """Raised when OAuth server discovery fails."""

    pass


class ProtectedResourceMetadataError(DiscoveryError):
    """Raised when Protected Resource Metadata discovery fails."""

    pass


class NoAuthorizationServerError(ProtectedResourceMetadataError):
    """Raised when protected resource metadata names no authorization server."""

    pass


class AuthorizationServerMetadataError(DiscoveryError):
    """Raised when Authorization Server Metadata discovery fails."""

    pass


class RegistrationError(OAuth2Error):
    """Raised when dynamic client registration fails."""

    pass


class ManualRegistrationRequiredError(RegistrationError):
    """Raised when there is no registration endpoint and no stored client."""

    pass


class TokenError(OAuth2Error):
    """Raised when token operations fail."""

    pass


class TokenExchangeError(TokenError):
    """Raised when authorization code to token exchange fails."""

    pass


class TokenRefreshError(TokenError):
    """Raised when token refresh fails."""

    pass


class MissingVerifierError(TokenError):
    """Raised when a callback arrives with no stored code verifier."""

    pass


class AuthorizationError(OAuth2Error):
    """Raised when user authorization fails."""

    pass


class PKCEError(OAuth2Error):
    """Raised when PKCE parameter generation fails."""

    pass


class AuthorizationCallbackError(OAuth2Error):
    """Raised when callback parameters report an error or lack a code.

    This indicates the authorization server (or the user) ended the flow,
    not that our token exchange failed.
    """

    pass


class StateValidationError(AuthorizationCallbackError):
    """Raised when OAuth state parameter validation fails.

    This indicates either a missing state parameter or a state mismatch,
    which could indicate a CSRF attack or authorization server issue.
    """

    pass
