"""Credential lookup results handed to the MCP transport.

The transport receives either ``Ready`` credentials or an
``AuthorizationRequired`` signal; it never has to parse a URL out of an
exception.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from mcp_connect.auth.client.models.registration import ClientInformation
from mcp_connect.auth.client.models.tokens import TokenBundle


@dataclass(frozen=True)
class Ready:
    """Transport may proceed; ``tokens`` is None for servers without OAuth."""

    tokens: TokenBundle | None = None
    client_info: ClientInformation | None = None

    def headers(self) -> dict[str, str]:
        if self.tokens is None:
            return {}
        return {"Authorization": self.tokens.authorization_header()}


@dataclass(frozen=True)
class AuthorizationRequired:
    """No usable session; the user has to visit ``authorization_url``.

    ``authorization_url`` is None when no URL could be produced, for example
    because a callback is already awaited or discovery failed; ``error`` then
    says why.
    """

    authorization_url: str | None = None
    error: str | None = None


CredentialResult = Union[Ready, AuthorizationRequired]
