"""
OAuth 2.1 authorization server for the Descope Store MCP server.

Architecture:
- ClientRegistry / TokenStore: in-memory records with lazy expiry
- PKCE: S256 code_verifier validation
- DescopeClient: social login and session JWT validation via Descope
- AuthorizationServer: registration, authorize, callback, token, bearer checks
- OAuthRoutes / BearerAuthMiddleware: Starlette HTTP surface
"""

from __future__ import annotations

from .descope import PROVIDERS, DescopeClient, DescopeSession, Provider
from .middleware import BearerAuthMiddleware
from .models import AccessToken, AuthorizationCode, OAuthClient, OAuthState, RefreshToken, UserContext
from .pkce import compute_code_challenge, verify_code_verifier
from .routes import OAuthRoutes
from .server import LOGIN_CLIENT_ID, AuthorizationServer, CallbackOutcome
from .storage import ClientRegistry, KeyValueStore, MemoryStore, TokenStore

__all__ = [
    "AccessToken",
    "AuthorizationCode",
    "AuthorizationServer",
    "BearerAuthMiddleware",
    "CallbackOutcome",
    "ClientRegistry",
    "DescopeClient",
    "DescopeSession",
    "KeyValueStore",
    "LOGIN_CLIENT_ID",
    "MemoryStore",
    "OAuthClient",
    "OAuthRoutes",
    "OAuthState",
    "PROVIDERS",
    "Provider",
    "RefreshToken",
    "TokenStore",
    "UserContext",
    "compute_code_challenge",
    "create_auth_server",
    "verify_code_verifier",
]


def create_auth_server(settings=None) -> AuthorizationServer:  # type: ignore[no-untyped-def]
    """Build an AuthorizationServer wired to Descope from configuration."""
    from ..config import config as default_config

    settings = settings or default_config
    descope = DescopeClient(
        project_id=settings.descope_project_id,
        base_url=settings.descope_base_url,
        timeout=settings.request_timeout,
        jwks_cache_ttl=settings.jwks_cache_ttl,
    )
    return AuthorizationServer(settings, descope)
