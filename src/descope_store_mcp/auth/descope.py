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
Descope identity provider client.

Delegates user login to Descope social OAuth and validates Descope session
JWTs. Used by the authorization server to:
- Start a provider login and obtain the provider redirect URL
- Exchange the code Descope returns for a session JWT
- Re-validate linked sessions on every protected request

Session JWTs are verified locally against the project's JWKS. The key set is
held in a TTL cache so rotated keys are picked up once the cache expires, or
immediately when a token names an unknown key id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx
import jwt
from cachetools import TTLCache  # type: ignore[import-untyped]

from ..exceptions import UpstreamError
from ..security import CredentialSanitizer

logger = logging.getLogger(__name__)


class Provider(str, Enum):
    """Social login providers offered through Descope."""

    GOOGLE = "google"
    GITHUB = "github"
    MICROSOFT = "microsoft"
    APPLE = "apple"
    FACEBOOK = "facebook"
    GITLAB = "gitlab"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional[Provider]:
        if not value:
            return None
        try:
            return cls(value.lower())
        except ValueError:
            return None


@dataclass(frozen=True)
class ProviderInfo:
    """Presentation details for a provider on the login page."""

    label: str
    color: str


PROVIDERS: dict[Provider, ProviderInfo] = {
    Provider.GOOGLE: ProviderInfo("Google", "#4285f4"),
    Provider.GITHUB: ProviderInfo("GitHub", "#333333"),
    Provider.MICROSOFT: ProviderInfo("Microsoft", "#0078d4"),
    Provider.APPLE: ProviderInfo("Apple", "#000000"),
    Provider.FACEBOOK: ProviderInfo("Facebook", "#1877f2"),
    Provider.GITLAB: ProviderInfo("GitLab", "#fc6d26"),
}


@dataclass(frozen=True)
class DescopeSession:
    """Result of exchanging a Descope OAuth code."""

    session_jwt: str
    refresh_jwt: Optional[str] = None
    user: dict[str, Any] = field(default_factory=dict)


class DescopeClient:
    """Async client for the Descope authentication API.

    Args:
        project_id: Descope project id (also the bearer credential for auth APIs)
        base_url: Descope API base URL
        timeout: Timeout in seconds applied to every outbound request
        jwks_cache_ttl: Seconds to keep the fetched JWKS before re-fetching
        http_client: Pre-built httpx client (tests inject a MockTransport here)
    """

    ALGORITHMS = ["RS256", "ES256"]

    def __init__(
        self,
        project_id: str,
        base_url: str = "https://api.descope.com",
        timeout: float = 10.0,
        jwks_cache_ttl: int = 3600,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.project_id = project_id
        self.base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self._jwks_cache: TTLCache = TTLCache(maxsize=1, ttl=jwks_cache_ttl)

        if not project_id:
            logger.warning("DESCOPE_PROJECT_ID is not set; social login will fail")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def start_oauth(self, provider: Provider, redirect_url: str) -> str:
        """Ask Descope for the provider login URL.

        Returns:
            URL to redirect the user-agent to

        Raises:
            UpstreamError: Descope unreachable or returned no URL
        """
        data = await self._request(
            "POST",
            "/v1/auth/oauth/authorize",
            params={"provider": provider.value, "redirectUrl": redirect_url},
            json={},
        )
        url = data.get("url") if isinstance(data, dict) else None
        if not url:
            raise UpstreamError("Descope did not return an authorization URL")
        logger.debug(f"Started {provider.value} login via Descope")
        return str(url)

    async def exchange_code(self, code: str) -> DescopeSession:
        """Exchange the code appended to our callback for a Descope session."""
        data = await self._request("POST", "/v1/auth/oauth/exchange", json={"code": code})
        session_jwt = data.get("sessionJwt") if isinstance(data, dict) else None
        if not session_jwt:
            raise UpstreamError("Descope exchange returned no session token")
        return DescopeSession(
            session_jwt=session_jwt,
            refresh_jwt=data.get("refreshJwt"),
            user=data.get("user") or {},
        )

    async def validate_session(self, session_jwt: str) -> Optional[dict[str, Any]]:
        """Validate a Descope session JWT.

        Validates:
        - Signature against the project JWKS
        - Expiration (exp claim) and presence of a subject
        - Issuer (required) names the configured project

        Returns:
            Decoded claims if valid, None otherwise

        Raises:
            UpstreamError: the JWKS could not be fetched
        """
        if not self.project_id:
            logger.warning("Session validation refused: DESCOPE_PROJECT_ID is not set")
            return None

        try:
            header = jwt.get_unverified_header(session_jwt)
        except jwt.InvalidTokenError as e:
            logger.warning(f"Session validation failed: malformed token ({e})")
            return None

        signing_key = await self._get_signing_key(header.get("kid"))
        if signing_key is None:
            logger.warning("Session validation failed: unknown signing key")
            return None

        try:
            claims: dict[str, Any] = jwt.decode(
                session_jwt,
                signing_key.key,
                algorithms=self.ALGORITHMS,
                options={"verify_aud": False, "require": ["exp", "sub", "iss"]},
            )
        except jwt.ExpiredSignatureError:
            logger.warning("Session validation failed: session expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Session validation failed: {e}")
            return None

        issuer = str(claims["iss"])
        if issuer.rstrip("/").rsplit("/", 1)[-1] != self.project_id:
            logger.warning(f"Session validation failed: unexpected issuer {issuer}")
            return None

        return claims

    async def _get_signing_key(self, kid: Optional[str]) -> Optional[jwt.PyJWK]:
        jwks = await self._get_jwks()
        try:
            return jwks[kid]
        except KeyError:
            pass

        # Unknown kid: keys may have rotated since the cache was filled
        jwks = await self._get_jwks(refresh=True)
        try:
            return jwks[kid]
        except KeyError:
            return None

    async def _get_jwks(self, refresh: bool = False) -> jwt.PyJWKSet:
        if not refresh and "jwks" in self._jwks_cache:
            return self._jwks_cache["jwks"]

        data = await self._request("GET", f"/v2/keys/{self.project_id}", authenticated=False)
        try:
            jwks = jwt.PyJWKSet.from_dict(data)
        except jwt.PyJWKSetError as e:
            raise UpstreamError(f"Descope returned an unusable key set: {e}") from e

        self._jwks_cache["jwks"] = jwks
        return jwks

    async def _request(
        self, method: str, path: str, authenticated: bool = True, **kwargs: Any
    ) -> Any:
        headers = {"Authorization": f"Bearer {self.project_id}"} if authenticated else {}
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                f"Descope {method} {path} failed with HTTP {e.response.status_code}: "
                f"{CredentialSanitizer.sanitize_string(e.response.text[:200])}"
            )
            raise UpstreamError(f"Descope returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Descope {method} {path} failed: {CredentialSanitizer.sanitize_error(e)}")
            raise UpstreamError(f"Descope request failed: {type(e).__name__}") from e
        except ValueError as e:
            logger.error(f"Descope {method} {path} returned invalid JSON")
            raise UpstreamError("Descope returned invalid JSON") from e
