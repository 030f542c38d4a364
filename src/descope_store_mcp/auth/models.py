"""
Data models for the OAuth 2.1 authorization server.

Separated from __init__.py to avoid circular imports between
the main auth module and the storage/server implementations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


@dataclass(frozen=True)
class OAuthClient:
    """Dynamically registered OAuth client (RFC 7591)."""

    client_id: str
    client_name: str
    redirect_uris: tuple[str, ...]
    grant_types: tuple[str, ...]
    response_types: tuple[str, ...]
    scope: str
    token_endpoint_auth_method: str = "client_secret_post"
    client_secret: Optional[str] = None
    created_at: float = 0.0

    @property
    def is_confidential(self) -> bool:
        return self.client_secret is not None

    def to_registration_response(self) -> dict[str, Any]:
        """Client information response for the registration endpoint."""
        body: dict[str, Any] = {
            "client_id": self.client_id,
            "client_name": self.client_name,
            "redirect_uris": list(self.redirect_uris),
            "grant_types": list(self.grant_types),
            "response_types": list(self.response_types),
            "scope": self.scope,
            "token_endpoint_auth_method": self.token_endpoint_auth_method,
            "client_id_issued_at": int(self.created_at),
        }
        if self.client_secret is not None:
            body["client_secret"] = self.client_secret
            body["client_secret_expires_at"] = 0
        return body


@dataclass(frozen=True)
class AuthorizationCode:
    """Single-use grant for one completed front-channel authorization."""

    code: str
    client_id: str
    redirect_uri: str
    scope: str
    code_challenge: str
    code_challenge_method: str = "S256"
    linked_session: Optional[str] = None
    subject: Optional[str] = None
    provider: Optional[str] = None
    created_at: float = 0.0
    expires_at: float = 0.0


@dataclass(frozen=True)
class AccessToken:
    """Bearer credential granting access to the protected MCP endpoints."""

    token: str
    client_id: str
    scope: str
    token_type: str = "Bearer"
    linked_session: Optional[str] = None
    subject: Optional[str] = None
    provider: Optional[str] = None
    created_at: float = 0.0
    expires_at: float = 0.0

    @property
    def scopes(self) -> list[str]:
        return self.scope.split() if self.scope else []


@dataclass(frozen=True)
class RefreshToken:
    """Long-lived credential redeemable for new access tokens (not rotated)."""

    token: str
    client_id: str
    scope: str
    linked_session: Optional[str] = None
    subject: Optional[str] = None
    provider: Optional[str] = None
    created_at: float = 0.0
    expires_at: float = 0.0


@dataclass(frozen=True)
class OAuthState:
    """Binds an identity-provider redirect back to the login that started it.

    Attributes:
        state: Opaque value carried through the provider round trip
        provider: Social provider the login was started with
        auth_code: Pending authorization code (authorization endpoint flow only)
        redirect_uri: Client redirect URI of the pending code
    """

    state: str
    provider: str
    auth_code: Optional[str] = None
    redirect_uri: Optional[str] = None
    created_at: float = 0.0
    expires_at: float = 0.0


@dataclass
class UserContext:
    """User context extracted from an authenticated request.

    Attributes:
        user_id: Identity-provider subject, or the client id for machine tokens
        client_id: OAuth client the token was issued to
        email: User email address (from the session 'email' claim)
        scopes: OAuth scopes granted to this token
        provider: Social provider used to log in, if any
        token_expires_at: Access token expiration timestamp
        metadata: Additional session claims
    """

    user_id: str
    client_id: str
    email: Optional[str] = None
    scopes: list[str] = field(default_factory=list)
    provider: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)
