import httpx
import pytest

from mcp_connect.auth.client.models.discovery import (
    AuthorizationServerMetadata,
    DiscoveryResult,
    ProtectedResourceMetadata,
)
from mcp_connect.auth.client.oauth_client import OAuth2Client
from mcp_connect.config import AppSettings
from mcp_connect.storage.backends import MemoryRecordBackend
from mcp_connect.storage.status_store import StatusStore


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(public_base_url="https://app.example.com")


@pytest.fixture
def store() -> StatusStore:
    return StatusStore(MemoryRecordBackend())


@pytest.fixture
async def registered_store(store: StatusStore) -> StatusStore:
    await store.register("srv-1", "Example MCP", "https://mcp.example.com/mcp")
    return store


@pytest.fixture
def discovery_result() -> DiscoveryResult:
    return DiscoveryResult(
        server_url="https://mcp.example.com/mcp",
        protected_resource_metadata=ProtectedResourceMetadata(
            authorization_servers=["https://auth.example.com"]
        ),
        authorization_server_metadata=AuthorizationServerMetadata(
            issuer="https://auth.example.com",
            authorization_endpoint="https://auth.example.com/authorize",
            token_endpoint="https://auth.example.com/token",
            registration_endpoint="https://auth.example.com/register",
        ),
        auth_server_url="https://auth.example.com",
    )


class FakeOAuthServers:
    """Resource server and authorization server served through MockTransport."""

    def __init__(self):
        self.resource_status = 401
        self.www_authenticate: str | None = (
            'Bearer resource_metadata="https://mcp.example.com/.well-known/oauth-protected-resource"'
        )
        self.authorization_servers = ["https://auth.example.com"]
        self.token_endpoint = "https://auth.example.com/token"
        self.token_status = 200
        self.token_body = {
            "access_token": "access-xyz",
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "refresh-abc",
            "scope": "read write",
        }
        self.registrations = 0
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url == "https://mcp.example.com/mcp":
            headers = {}
            if self.resource_status == 401 and self.www_authenticate:
                headers["WWW-Authenticate"] = self.www_authenticate
            return httpx.Response(self.resource_status, headers=headers)

        if url.startswith("https://mcp.example.com/.well-known/oauth-protected-resource"):
            return httpx.Response(
                200,
                json={
                    "resource": "https://mcp.example.com/mcp",
                    "authorization_servers": self.authorization_servers,
                },
            )

        if url == "https://auth.example.com/.well-known/oauth-authorization-server":
            return httpx.Response(
                200,
                json={
                    "issuer": "https://auth.example.com",
                    "authorization_endpoint": "https://auth.example.com/authorize",
                    "token_endpoint": self.token_endpoint,
                    "registration_endpoint": "https://auth.example.com/register",
                    "code_challenge_methods_supported": ["S256"],
                },
            )

        if url == "https://auth.example.com/register":
            self.registrations += 1
            return httpx.Response(
                201,
                json={
                    "client_id": f"client-{self.registrations}",
                    "token_endpoint_auth_method": "none",
                },
            )

        if url == "https://auth.example.com/token":
            return httpx.Response(self.token_status, json=self.token_body)

        return httpx.Response(404)

    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == "https://auth.example.com/token"]


@pytest.fixture
def oauth_servers() -> FakeOAuthServers:
    return FakeOAuthServers()


@pytest.fixture
async def oauth_client(oauth_servers, registered_store, settings):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(oauth_servers.handler))
    client = OAuth2Client(settings, registered_store, http_client=http_client)
    yield client
    await client.close()
    await http_client.aclose()
