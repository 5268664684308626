"""OAuth requirement detection primitive.

Probes an MCP server without credentials and interprets a 401 challenge
(RFC 6750 Section 3, RFC 9728 Section 5.1) to decide whether the server
requires OAuth and where its resource metadata lives.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urlparse

import httpx

from mcp_connect.auth.client.models.discovery import DetectionResult

logger = logging.getLogger(__name__)

BEARER_SCHEME = re.compile(r"(?:^|,)\s*bearer(?:\s|$|,)", re.IGNORECASE)


def extract_auth_param(www_auth_header: str, name: str) -> str | None:
    """Extract a parameter from a WWW-Authenticate header.

    Matches both quoted (name="value") and unquoted (name=value) forms.
    """
    pattern = rf'(?:^|[\s,]){re.escape(name)}=(?:"([^"]+)"|([^\s,]+))'
    match = re.search(pattern, www_auth_header, re.IGNORECASE)

    if match:
        # Return quoted value if present, otherwise unquoted value
        return match.group(1) or match.group(2)

    return None


class RequirementDetector:
    """Decides whether an MCP server requires OAuth.

    Detection is advisory: a transport failure is reported as "no auth
    required" with an error, and the real connection attempt surfaces the
    underlying problem later.
    """

    def __init__(
        self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None
    ):
        """Initialize requirement detection.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Optional shared HTTP client
        """
        self.timeout = timeout
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def detect(self, server_url: str) -> DetectionResult:
        """Issue one unauthenticated probe and classify the response.

        Args:
            server_url: MCP server URL

        Returns:
            Detection result; never raises for network failures
        """
        try:
            logger.debug(f"Probing {server_url} for OAuth requirement")
            response = await self._http_client.get(
                server_url, headers={"Accept": "application/json"}
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            reason = str(e) or e.__class__.__name__
            logger.warning(f"OAuth detection probe to {server_url} failed: {reason}")
            return DetectionResult(requires_auth=False, error=reason)

        if response.status_code != 401:
            return DetectionResult(requires_auth=False)

        www_auth_header = response.headers.get("WWW-Authenticate")
        if not www_auth_header or not BEARER_SCHEME.search(www_auth_header):
            # 401 without Bearer challenge - still requires auth but unknown type
            logger.debug(f"{server_url} returned 401 without a Bearer challenge")
            return DetectionResult(requires_auth=True)

        return DetectionResult(
            requires_auth=True,
            resource_metadata_url=self._extract_metadata_hint(www_auth_header),
        )

    def _extract_metadata_hint(self, www_auth_header: str) -> str | None:
        """Find the resource metadata location in a Bearer challenge.

        Falls back to the realm parameter when it is an absolute URL.
        """
        resource_metadata = extract_auth_param(www_auth_header, "resource_metadata")
        if resource_metadata:
            return resource_metadata

        realm = extract_auth_param(www_auth_header, "realm")
        if realm:
            try:
                scheme = urlparse(realm).scheme
            except ValueError:
                return None
            if scheme in ("http", "https"):
                return realm

        return None

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()
