#!/usr/bin/env python3
# MIT License
#
# Copyright (c) 2025 Descope Store MCP Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
OAuth 2.1 authorization server.

Implements the protocol operations behind the HTTP routes:
- Authorization Server Metadata (RFC 8414) and Protected Resource Metadata (RFC 9728)
- Dynamic Client Registration (RFC 7591)
- Authorization code flow with PKCE, delegated to Descope social login
- Token endpoint: authorization_code, client_credentials and refresh_token grants
- Bearer token authentication for protected requests

All token-store mutations happen in synchronous code. The only awaits are
calls to the identity provider, which never sit between reading a record
and deleting it.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from ..config import ServerConfig
from ..exceptions import (
    INVALID_CLIENT,
    INVALID_GRANT,
    INVALID_REQUEST,
    INVALID_TOKEN,
    SERVER_ERROR,
    UNSUPPORTED_GRANT_TYPE,
    OAuthError,
    OAuthRedirectError,
    RecordExpired,
    RecordNotFound,
    UpstreamError,
    append_query,
)
from ..security import CredentialSanitizer
from .descope import DescopeSession, Provider
from .models import AccessToken, AuthorizationCode, OAuthClient, OAuthState, RefreshToken, UserContext
from .pkce import SUPPORTED_METHODS, verify_code_verifier
from .storage import ClientRegistry, TokenStore

logger = logging.getLogger(__name__)

ACCESS_TOKEN_PREFIX = "mcp_at_"
REFRESH_TOKEN_PREFIX = "mcp_rt_"

# Client that owns tokens minted by the standalone social login page
LOGIN_CLIENT_ID = "descope-login"

GRANT_TYPES = ("authorization_code", "client_credentials", "refresh_token")
AUTH_METHODS = ("client_secret_post", "none")


class IdentityProvider(Protocol):
    """Upstream login service the authorization endpoint delegates to."""

    async def start_oauth(self, provider: Provider, redirect_url: str) -> str: ...

    async def exchange_code(self, code: str) -> DescopeSession: ...

    async def validate_session(self, session_jwt: str) -> Optional[dict[str, Any]]: ...


@dataclass(frozen=True)
class CallbackOutcome:
    """Result of an identity-provider callback.

    Exactly one of ``redirect_url`` (authorization code flow) or
    ``access_token`` (standalone social login) is set.
    """

    provider: str
    redirect_url: Optional[str] = None
    access_token: Optional[AccessToken] = None
    user: dict[str, Any] = field(default_factory=dict)


def get_protected_resource_metadata(server_url: str, issuer_url: str, scopes: list[str]) -> dict[str, Any]:
    """Generate Protected Resource Metadata per RFC9728.

    Served at /.well-known/oauth-protected-resource so MCP clients can
    discover the authorization server.
    """
    return {
        "resource": server_url,
        "authorization_servers": [issuer_url],
        "scopes_supported": scopes,
        "bearer_methods_supported": ["header"],
    }


def _param(params: Mapping[str, Any], name: str) -> Optional[str]:
    value = params.get(name)
    if value is None or value == "":
        return None
    return str(value)


def _as_list(value: Any, default: list[str], name: str) -> list[str]:
    if value is None or value == "" or value == []:
        return list(default)
    if isinstance(value, str):
        return value.split()
    if isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
        return list(value)
    raise OAuthError(INVALID_REQUEST, f"{name} must be a list of strings")


class AuthorizationServer:
    """OAuth 2.1 authorization server backed by in-memory stores.

    Args:
        settings: Server configuration (URLs, scopes, lifetimes)
        identity_provider: Social login backend (normally DescopeClient)
        registry: Client registry (a fresh in-memory one by default)
        tokens: Token store (a fresh in-memory one by default)
    """

    def __init__(
        self,
        settings: ServerConfig,
        identity_provider: IdentityProvider,
        registry: Optional[ClientRegistry] = None,
        tokens: Optional[TokenStore] = None,
    ) -> None:
        self.config = settings
        self.identity = identity_provider
        self.registry = registry if registry is not None else ClientRegistry()
        self.tokens = (
            tokens
            if tokens is not None
            else TokenStore(
                auth_code_ttl=settings.auth_code_ttl,
                access_token_ttl=settings.access_token_ttl,
                refresh_token_ttl=settings.refresh_token_ttl,
                oauth_state_ttl=settings.oauth_state_ttl,
            )
        )

        self.registry.add(
            OAuthClient(
                client_id=LOGIN_CLIENT_ID,
                client_name="Descope social login",
                redirect_uris=(settings.endpoint("/oauth/callback"),),
                grant_types=(),
                response_types=(),
                scope=settings.default_client_scope,
                token_endpoint_auth_method="none",
            )
        )

    # Discovery

    def metadata(self) -> dict[str, Any]:
        """Authorization Server Metadata (RFC 8414)."""
        return {
            "issuer": self.config.server_url,
            "authorization_endpoint": self.config.endpoint("/oauth/authorize"),
            "token_endpoint": self.config.endpoint("/oauth/token"),
            "registration_endpoint": self.config.endpoint("/oauth/register"),
            "scopes_supported": list(self.config.scopes_supported),
            "response_types_supported": ["code"],
            "grant_types_supported": list(GRANT_TYPES),
            "code_challenge_methods_supported": list(SUPPORTED_METHODS),
            "token_endpoint_auth_methods_supported": list(AUTH_METHODS),
        }

    def protected_resource_metadata(self) -> dict[str, Any]:
        return get_protected_resource_metadata(
            self.config.endpoint("/mcp"),
            self.config.server_url,
            list(self.config.scopes_supported),
        )

    def auth_hints(self) -> dict[str, str]:
        """Discovery hints included in 401 bodies."""
        return {
            "authorization_endpoint": self.config.endpoint("/oauth/authorize"),
            "token_endpoint": self.config.endpoint("/oauth/token"),
            "registration_endpoint": self.config.endpoint("/oauth/register"),
            "login_url": self.config.endpoint("/login"),
        }

    def www_authenticate_header(self, error: Optional[str] = None, description: Optional[str] = None) -> str:
        """WWW-Authenticate value pointing clients at the resource metadata (RFC9728)."""
        metadata_url = self.config.endpoint("/.well-known/oauth-protected-resource")
        header = f'Bearer resource_metadata="{metadata_url}"'
        if error:
            header += f', error="{error}"'
        if description:
            header += f', error_description="{description}"'
        return header

    # Dynamic client registration

    def register_client(self, body: Any) -> OAuthClient:
        """Register a client from an RFC 7591 request body.

        Raises:
            OAuthError: invalid_request for malformed metadata,
                invalid_redirect_uri when no redirect URI is acceptable
        """
        if not isinstance(body, Mapping):
            raise OAuthError(INVALID_REQUEST, "Registration request must be a JSON object")

        redirect_uris = _as_list(
            body.get("redirect_uris"), [self.config.endpoint("/oauth/callback")], "redirect_uris"
        )
        grant_types = _as_list(body.get("grant_types"), ["authorization_code"], "grant_types")
        unknown = [grant for grant in grant_types if grant not in GRANT_TYPES]
        if unknown:
            raise OAuthError(INVALID_REQUEST, f"Unsupported grant_types: {', '.join(unknown)}")
        response_types = _as_list(body.get("response_types"), ["code"], "response_types")

        scope = body.get("scope") or self.config.default_client_scope
        client_name = body.get("client_name") or "MCP Client"
        auth_method = body.get("token_endpoint_auth_method") or "client_secret_post"
        if not isinstance(scope, str) or not isinstance(client_name, str):
            raise OAuthError(INVALID_REQUEST, "scope and client_name must be strings")
        if auth_method not in AUTH_METHODS:
            raise OAuthError(
                INVALID_REQUEST, f"token_endpoint_auth_method must be one of {', '.join(AUTH_METHODS)}"
            )

        return self.registry.register(
            client_name=client_name,
            redirect_uris=redirect_uris,
            grant_types=grant_types,
            response_types=response_types,
            scope=scope,
            token_endpoint_auth_method=auth_method,
        )

    # Authorization endpoint

    async def authorize(self, params: Mapping[str, Any]) -> str:
        """Validate an authorization request and start the delegated login.

        Returns:
            Identity-provider login URL to redirect the user-agent to

        Raises:
            OAuthError: request or client invalid (no trusted redirect target yet)
            OAuthRedirectError: failure after the redirect URI was validated
        """
        client_id = _param(params, "client_id")
        redirect_uri = _param(params, "redirect_uri")
        code_challenge = _param(params, "code_challenge")
        if not client_id or not redirect_uri or not code_challenge:
            raise OAuthError(INVALID_REQUEST, "client_id, redirect_uri and code_challenge are required")
        if _param(params, "code_challenge_method") not in SUPPORTED_METHODS:
            raise OAuthError(INVALID_REQUEST, "code_challenge_method must be S256")
        if (_param(params, "response_type") or "code") != "code":
            raise OAuthError(INVALID_REQUEST, "response_type must be code")

        client = self.registry.get(client_id)
        if client is None:
            raise OAuthError(INVALID_CLIENT, "Unknown client_id")
        if redirect_uri not in client.redirect_uris:
            raise OAuthError(INVALID_REQUEST, "redirect_uri is not registered for this client")

        provider_name = _param(params, "provider") or self.config.default_provider
        provider = Provider.parse(provider_name)
        if provider is None:
            raise OAuthRedirectError(redirect_uri, INVALID_REQUEST, f"Unsupported provider: {provider_name}")

        code = self.tokens.put_auth_code(
            AuthorizationCode(
                code=secrets.token_urlsafe(32),
                client_id=client.client_id,
                redirect_uri=redirect_uri,
                scope=_param(params, "scope") or self.config.default_authorize_scope,
                code_challenge=code_challenge,
                code_challenge_method="S256",
                provider=provider.value,
            )
        )
        state = self.tokens.put_oauth_state(
            OAuthState(
                state=secrets.token_urlsafe(16),
                provider=provider.value,
                auth_code=code.code,
                redirect_uri=redirect_uri,
            )
        )

        try:
            login_url = await self.identity.start_oauth(provider, self._callback_url(state.state))
        except UpstreamError as e:
            self.tokens.discard_auth_code(code.code)
            self.tokens.discard_oauth_state(state.state)
            logger.error(f"Could not start {provider.value} login: {CredentialSanitizer.sanitize_error(e)}")
            raise OAuthRedirectError(redirect_uri, SERVER_ERROR, "Identity provider is unavailable") from e

        logger.info(f"Authorization started for client {client.client_id} via {provider.value}")
        return login_url

    async def start_social_login(self, provider_name: str) -> str:
        """Start a standalone login (no OAuth client) for the given provider."""
        provider = Provider.parse(provider_name)
        if provider is None:
            raise OAuthError(INVALID_REQUEST, f"Unsupported provider: {provider_name}")

        state = self.tokens.put_oauth_state(
            OAuthState(state=secrets.token_urlsafe(16), provider=provider.value)
        )
        try:
            return await self.identity.start_oauth(provider, self._callback_url(state.state))
        except UpstreamError as e:
            self.tokens.discard_oauth_state(state.state)
            logger.error(f"Could not start {provider.value} login: {CredentialSanitizer.sanitize_error(e)}")
            raise OAuthError(SERVER_ERROR, "Identity provider is unavailable", status_code=500) from e

    def _callback_url(self, state: str) -> str:
        return append_query(self.config.endpoint("/oauth/callback"), {"state": state})

    # Identity-provider callback

    async def handle_callback(
        self,
        code: Optional[str],
        state: Optional[str],
        provider: Optional[str] = None,
    ) -> CallbackOutcome:
        """Complete a login started by ``authorize`` or ``start_social_login``.

        Raises:
            OAuthError: state missing, unknown, expired or bound to another provider,
                and every later failure of a standalone login
            OAuthRedirectError: later failures of an authorization code flow
        """
        if not state:
            raise OAuthError(INVALID_REQUEST, "Missing state parameter")
        try:
            pending = self.tokens.consume_oauth_state(state)
        except (RecordNotFound, RecordExpired):
            raise OAuthError(INVALID_REQUEST, "Unknown or expired state") from None

        if provider is not None and provider.lower() != pending.provider:
            self._abandon(pending)
            raise OAuthError(INVALID_REQUEST, "Provider does not match the login request")

        if not code:
            raise self._callback_error(pending, INVALID_REQUEST, "Missing code from identity provider")

        try:
            session = await self.identity.exchange_code(code)
            claims = await self.identity.validate_session(session.session_jwt)
        except UpstreamError as e:
            logger.error(f"Identity provider callback failed: {CredentialSanitizer.sanitize_error(e)}")
            raise self._callback_error(pending, SERVER_ERROR, "Identity provider is unavailable") from e

        if claims is None:
            raise self._callback_error(pending, INVALID_GRANT, "Identity provider session is invalid")
        subject = claims.get("sub")

        if pending.auth_code and pending.redirect_uri:
            try:
                self.tokens.attach_session(pending.auth_code, session.session_jwt, subject)
            except (RecordNotFound, RecordExpired):
                raise self._callback_error(
                    pending, INVALID_GRANT, "Authorization request expired"
                ) from None
            logger.info(f"Login via {pending.provider} completed for subject {subject}")
            return CallbackOutcome(
                provider=pending.provider,
                redirect_url=append_query(
                    pending.redirect_uri, {"code": pending.auth_code, "state": "authorized"}
                ),
                user=session.user,
            )

        token = self.tokens.put_access_token(
            AccessToken(
                token=f"{ACCESS_TOKEN_PREFIX}{secrets.token_urlsafe(32)}",
                client_id=LOGIN_CLIENT_ID,
                scope=self.config.default_client_scope,
                linked_session=session.session_jwt,
                subject=subject,
                provider=pending.provider,
            )
        )
        logger.info(f"Social login via {pending.provider} issued a token for subject {subject}")
        return CallbackOutcome(provider=pending.provider, access_token=token, user=session.user)

    def _abandon(self, pending: OAuthState) -> None:
        if pending.auth_code:
            self.tokens.discard_auth_code(pending.auth_code)

    def _callback_error(self, pending: OAuthState, error: str, description: str) -> OAuthError:
        self._abandon(pending)
        if pending.redirect_uri:
            return OAuthRedirectError(pending.redirect_uri, error, description)
        return OAuthError(error, description, status_code=500 if error == SERVER_ERROR else 400)

    # Token endpoint

    def exchange_token(self, params: Mapping[str, Any]) -> dict[str, Any]:
        """Dispatch a token request on its grant_type.

        Returns:
            RFC 6749 token response body

        Raises:
            OAuthError: any grant failure (400, or 401 for invalid_client)
        """
        grant_type = _param(params, "grant_type")
        if grant_type == "authorization_code":
            return self._grant_authorization_code(params)
        if grant_type == "client_credentials":
            return self._grant_client_credentials(params)
        if grant_type == "refresh_token":
            return self._grant_refresh_token(params)
        raise OAuthError(UNSUPPORTED_GRANT_TYPE, f"Grant type '{grant_type}' is not supported")

    def _grant_authorization_code(self, params: Mapping[str, Any]) -> dict[str, Any]:
        code = _param(params, "code")
        if not code:
            raise OAuthError(INVALID_REQUEST, "code is required")

        try:
            record = self.tokens.consume_auth_code(code)
        except RecordExpired:
            raise OAuthError(INVALID_GRANT, "Authorization code has expired") from None
        except RecordNotFound:
            raise OAuthError(INVALID_GRANT, "Invalid or already used authorization code") from None

        for name in ("code_verifier", "client_id", "redirect_uri"):
            if not _param(params, name):
                raise OAuthError(INVALID_REQUEST, f"{name} is required")

        if not verify_code_verifier(
            _param(params, "code_verifier"), record.code_challenge, record.code_challenge_method
        ):
            raise OAuthError(INVALID_GRANT, "PKCE verification failed")
        if _param(params, "client_id") != record.client_id:
            raise OAuthError(INVALID_GRANT, "Code was issued to another client")
        if _param(params, "redirect_uri") != record.redirect_uri:
            raise OAuthError(INVALID_GRANT, "redirect_uri does not match the authorization request")

        return self._issue(
            "authorization_code",
            record.client_id,
            record.scope,
            linked_session=record.linked_session,
            subject=record.subject,
            provider=record.provider,
            with_refresh=True,
        )

    def _grant_client_credentials(self, params: Mapping[str, Any]) -> dict[str, Any]:
        client_id = _param(params, "client_id")
        client_secret = _param(params, "client_secret")
        client = self.registry.get(client_id) if client_id else None

        if (
            client is None
            or client.client_secret is None
            or client_secret is None
            or not hmac.compare_digest(client.client_secret.encode(), client_secret.encode())
        ):
            logger.warning(f"client_credentials grant rejected for client {client_id}")
            raise OAuthError(INVALID_CLIENT, "Invalid client credentials", status_code=401)

        return self._issue("client_credentials", client.client_id, self.config.client_credentials_scope)

    def _grant_refresh_token(self, params: Mapping[str, Any]) -> dict[str, Any]:
        token = _param(params, "refresh_token")
        if not token:
            raise OAuthError(INVALID_REQUEST, "refresh_token is required")

        try:
            record = self.tokens.get_refresh_token(token)
        except (RecordNotFound, RecordExpired):
            raise OAuthError(INVALID_GRANT, "Invalid or expired refresh token") from None

        client_id = _param(params, "client_id")
        if client_id is not None and client_id != record.client_id:
            raise OAuthError(INVALID_GRANT, "Refresh token was issued to another client")

        return self._issue(
            "refresh_token",
            record.client_id,
            record.scope,
            linked_session=record.linked_session,
            subject=record.subject,
            provider=record.provider,
        )

    def _issue(
        self,
        grant_type: str,
        client_id: str,
        scope: str,
        linked_session: Optional[str] = None,
        subject: Optional[str] = None,
        provider: Optional[str] = None,
        with_refresh: bool = False,
    ) -> dict[str, Any]:
        access = self.tokens.put_access_token(
            AccessToken(
                token=f"{ACCESS_TOKEN_PREFIX}{secrets.token_urlsafe(32)}",
                client_id=client_id,
                scope=scope,
                linked_session=linked_session,
                subject=subject,
                provider=provider,
            )
        )
        body: dict[str, Any] = {
            "access_token": access.token,
            "token_type": access.token_type,
            "expires_in": self.tokens.access_token_ttl,
            "scope": access.scope,
        }

        if with_refresh:
            refresh = self.tokens.put_refresh_token(
                RefreshToken(
                    token=f"{REFRESH_TOKEN_PREFIX}{secrets.token_urlsafe(32)}",
                    client_id=client_id,
                    scope=scope,
                    linked_session=linked_session,
                    subject=subject,
                    provider=provider,
                )
            )
            body["refresh_token"] = refresh.token

        logger.info(f"Issued access token to client {client_id} (grant={grant_type})")
        return body

    # Bearer authentication

    async def authenticate(self, authorization: Optional[str]) -> tuple[AccessToken, UserContext]:
        """Resolve an Authorization header to a live access token.

        Tokens linked to a Descope session are re-validated on every call;
        a token whose session is no longer valid is evicted.

        Raises:
            OAuthError: invalid_token (401), or server_error (500) when the
                session cannot be checked
        """
        scheme, _, credentials = (authorization or "").partition(" ")
        credentials = credentials.strip()
        if scheme.lower() != "bearer" or not credentials:
            raise OAuthError(INVALID_TOKEN, "Missing or malformed Bearer token", status_code=401)

        try:
            token = self.tokens.get_access_token(credentials)
        except RecordExpired:
            raise OAuthError(INVALID_TOKEN, "Access token has expired", status_code=401) from None
        except RecordNotFound:
            raise OAuthError(INVALID_TOKEN, "Invalid access token", status_code=401) from None

        claims: dict[str, Any] = {}
        if token.linked_session:
            try:
                session_claims = await self.identity.validate_session(token.linked_session)
            except UpstreamError as e:
                logger.error(f"Session check failed: {CredentialSanitizer.sanitize_error(e)}")
                raise OAuthError(SERVER_ERROR, "Unable to validate session", status_code=500) from e

            if session_claims is None:
                self.tokens.delete_access_token(token.token)
                logger.info(f"Evicted access token of client {token.client_id}: session no longer valid")
                raise OAuthError(INVALID_TOKEN, "Session is no longer valid", status_code=401)
            claims = session_claims

        return token, self._user_context(token, claims)

    @staticmethod
    def _user_context(token: AccessToken, claims: Mapping[str, Any]) -> UserContext:
        return UserContext(
            user_id=token.subject or claims.get("sub") or token.client_id,
            client_id=token.client_id,
            email=claims.get("email"),
            scopes=token.scopes,
            provider=token.provider,
            token_expires_at=datetime.fromtimestamp(token.expires_at, tz=timezone.utc),
            metadata={key: claims[key] for key in ("name", "iss") if key in claims},
        )
