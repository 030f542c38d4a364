"""
Shared fixtures: a controllable clock, test settings and a fake Descope backend.
"""

from typing import Any, Optional
from urllib.parse import parse_qs, urlsplit

import pytest

from descope_store_mcp.auth.descope import DescopeSession, Provider
from descope_store_mcp.auth.server import AuthorizationServer
from descope_store_mcp.auth.storage import ClientRegistry, MemoryStore, TokenStore
from descope_store_mcp.config import ServerConfig
from descope_store_mcp.exceptions import UpstreamError

SERVER_URL = "http://testserver"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeIdentityProvider:
    """In-memory stand-in for DescopeClient."""

    LOGIN_BASE = "https://descope.example/oauth"

    def __init__(self):
        self.started: list[tuple[Provider, str]] = []
        self.codes: dict[str, DescopeSession] = {
            "descope-code": DescopeSession(
                session_jwt="session-jwt-1",
                refresh_jwt="refresh-jwt-1",
                user={"email": "ada@example.com", "name": "Ada"},
            )
        }
        self.sessions: dict[str, dict[str, Any]] = {
            "session-jwt-1": {"sub": "U123", "email": "ada@example.com", "iss": "P2test"}
        }
        self.unavailable = False
        self.closed = False

    async def start_oauth(self, provider: Provider, redirect_url: str) -> str:
        if self.unavailable:
            raise UpstreamError("Descope request failed: ConnectError")
        self.started.append((provider, redirect_url))
        return f"{self.LOGIN_BASE}/{provider.value}"

    async def exchange_code(self, code: str) -> DescopeSession:
        if self.unavailable:
            raise UpstreamError("Descope request failed: ConnectError")
        if code not in self.codes:
            raise UpstreamError("Descope returned HTTP 400")
        return self.codes[code]

    async def validate_session(self, session_jwt: str) -> Optional[dict[str, Any]]:
        if self.unavailable:
            raise UpstreamError("Descope request failed: ConnectError")
        return self.sessions.get(session_jwt)

    async def aclose(self) -> None:
        self.closed = True

    def last_state(self) -> str:
        """State value embedded in the most recent callback URL."""
        _, redirect_url = self.started[-1]
        return parse_qs(urlsplit(redirect_url).query)["state"][0]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return ServerConfig(
        server_url=SERVER_URL,
        store_url="http://store.test",
        auth_enabled=True,
        descope_project_id="P2test",
        default_provider="google",
        cors_origins=["*"],
    )


@pytest.fixture
def identity():
    return FakeIdentityProvider()


@pytest.fixture
def token_backend():
    return MemoryStore()


@pytest.fixture
def auth_server(settings, identity, clock, token_backend):
    return AuthorizationServer(
        settings,
        identity,
        registry=ClientRegistry(clock=clock),
        tokens=TokenStore(store=token_backend, clock=clock),
    )
