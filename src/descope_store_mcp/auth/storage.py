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
In-memory storage for OAuth clients, authorization codes, tokens and login state.

Nothing here survives a restart. All operations are synchronous: a consume
never awaits between reading a record and deleting it, so on the event loop
an authorization code or state value is redeemed at most once.
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import replace
from typing import Any, Optional, Protocol, TypeVar
from urllib.parse import urlsplit

from ..exceptions import INVALID_REDIRECT_URI, OAuthError, RecordExpired, RecordNotFound
from .models import AccessToken, AuthorizationCode, OAuthClient, OAuthState, RefreshToken

logger = logging.getLogger(__name__)

R = TypeVar("R", AuthorizationCode, AccessToken, RefreshToken, OAuthState)

CLIENT_ID_PREFIX = "mcp_client_"
CLIENT_SECRET_PREFIX = "mcp_sk_"


class KeyValueStore(Protocol):
    """Storage backend interface.

    ``pop`` must remove and return the value in one step so that two callers
    can never both observe the same record.
    """

    def get(self, key: str) -> Optional[Any]: ...

    def put(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> bool: ...

    def pop(self, key: str) -> Optional[Any]: ...


class MemoryStore:
    """Process-local KeyValueStore backed by a dict."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def pop(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


def is_allowed_redirect_uri(uri: Any) -> bool:
    """HTTPS anywhere, plain HTTP only on localhost."""
    if not isinstance(uri, str):
        return False
    try:
        parts = urlsplit(uri)
    except ValueError:
        return False
    if parts.scheme == "https" and parts.netloc:
        return True
    return parts.scheme == "http" and parts.hostname == "localhost"


class ClientRegistry:
    """Dynamically registered OAuth clients."""

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store if store is not None else MemoryStore()
        self._clock = clock

    @staticmethod
    def _key(client_id: str) -> str:
        return f"client:{client_id}"

    def register(
        self,
        client_name: str,
        redirect_uris: Iterable[str],
        grant_types: Iterable[str],
        response_types: Iterable[str],
        scope: str,
        token_endpoint_auth_method: str = "client_secret_post",
    ) -> OAuthClient:
        """Register a client. Open registration: callers are not authenticated.

        Raises:
            OAuthError: invalid_redirect_uri if no URI is HTTPS or localhost HTTP
        """
        valid_uris = tuple(uri for uri in redirect_uris if is_allowed_redirect_uri(uri))
        if not valid_uris:
            raise OAuthError(
                INVALID_REDIRECT_URI, "Redirect URIs must be HTTPS or localhost HTTP"
            )

        grant_types = tuple(grant_types)
        confidential = (
            token_endpoint_auth_method != "none" or "client_credentials" in grant_types
        )

        client = OAuthClient(
            client_id=f"{CLIENT_ID_PREFIX}{secrets.token_urlsafe(16)}",
            client_secret=(
                f"{CLIENT_SECRET_PREFIX}{secrets.token_urlsafe(32)}" if confidential else None
            ),
            client_name=client_name,
            redirect_uris=valid_uris,
            grant_types=grant_types,
            response_types=tuple(response_types),
            scope=scope,
            token_endpoint_auth_method=token_endpoint_auth_method,
            created_at=self._clock(),
        )
        self._store.put(self._key(client.client_id), client)
        logger.info(
            f"Registered OAuth client {client.client_id} ({client_name}), "
            f"confidential={confidential}, redirect_uris={len(valid_uris)}"
        )
        return client

    def add(self, client: OAuthClient) -> None:
        """Install a pre-built client (used for the built-in login client)."""
        self._store.put(self._key(client.client_id), client)

    def get(self, client_id: str) -> Optional[OAuthClient]:
        if not client_id:
            return None
        return self._store.get(self._key(client_id))


class TokenStore:
    """Authorization codes, access/refresh tokens and social-login state.

    Expiry is lazy: expired records are evicted when they are looked up.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], float] = time.time,
        auth_code_ttl: int = 600,
        access_token_ttl: int = 3600,
        refresh_token_ttl: int = 30 * 24 * 3600,
        oauth_state_ttl: int = 600,
    ) -> None:
        self._store = store if store is not None else MemoryStore()
        self._clock = clock
        self.auth_code_ttl = auth_code_ttl
        self.access_token_ttl = access_token_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.oauth_state_ttl = oauth_state_ttl

    def now(self) -> float:
        return self._clock()

    def _stamp(self, record: R, ttl: int) -> R:
        now = self._clock()
        return replace(record, created_at=now, expires_at=now + ttl)

    def _is_expired(self, record: Any) -> bool:
        return record.expires_at <= self._clock()

    def _put(self, key: str, record: R, ttl: int) -> R:
        record = self._stamp(record, ttl)
        self._store.put(key, record)
        return record

    def _consume(self, key: str) -> Any:
        record = self._store.pop(key)
        if record is None:
            raise RecordNotFound(key)
        if self._is_expired(record):
            raise RecordExpired(key)
        return record

    def _lookup(self, key: str) -> Any:
        record = self._store.get(key)
        if record is None:
            raise RecordNotFound(key)
        if self._is_expired(record):
            self._store.delete(key)
            raise RecordExpired(key)
        return record

    # Authorization codes

    def put_auth_code(self, record: AuthorizationCode) -> AuthorizationCode:
        return self._put(f"auth_code:{record.code}", record, self.auth_code_ttl)

    def consume_auth_code(self, code: str) -> AuthorizationCode:
        """Fetch and delete a code.

        Raises:
            RecordNotFound: unknown or already redeemed
            RecordExpired: lifetime elapsed (the record is gone either way)
        """
        return self._consume(f"auth_code:{code}")

    def attach_session(
        self,
        code: str,
        linked_session: str,
        subject: Optional[str] = None,
    ) -> AuthorizationCode:
        """Bind a validated identity-provider session to a pending code."""
        key = f"auth_code:{code}"
        record = self._lookup(key)
        record = replace(record, linked_session=linked_session, subject=subject)
        self._store.put(key, record)
        return record

    def discard_auth_code(self, code: str) -> None:
        self._store.delete(f"auth_code:{code}")

    # Access tokens

    def put_access_token(self, record: AccessToken) -> AccessToken:
        return self._put(f"access_token:{record.token}", record, self.access_token_ttl)

    def get_access_token(self, token: str) -> AccessToken:
        """Look up a token; expired tokens are evicted and reported."""
        return self._lookup(f"access_token:{token}")

    def delete_access_token(self, token: str) -> bool:
        return self._store.delete(f"access_token:{token}")

    # Refresh tokens

    def put_refresh_token(self, record: RefreshToken) -> RefreshToken:
        return self._put(f"refresh_token:{record.token}", record, self.refresh_token_ttl)

    def get_refresh_token(self, token: str) -> RefreshToken:
        return self._lookup(f"refresh_token:{token}")

    # Social login state

    def put_oauth_state(self, record: OAuthState) -> OAuthState:
        return self._put(f"oauth_state:{record.state}", record, self.oauth_state_ttl)

    def consume_oauth_state(self, state: str) -> OAuthState:
        return self._consume(f"oauth_state:{state}")

    def discard_oauth_state(self, state: str) -> None:
        self._store.delete(f"oauth_state:{state}")
