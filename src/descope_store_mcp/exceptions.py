"""
Exception types shared by the OAuth server, the catalog client and the tools.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode, urlsplit, urlunsplit

INVALID_REQUEST = "invalid_request"
INVALID_CLIENT = "invalid_client"
INVALID_GRANT = "invalid_grant"
UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
INVALID_TOKEN = "invalid_token"
INVALID_REDIRECT_URI = "invalid_redirect_uri"
SERVER_ERROR = "server_error"


def append_query(uri: str, params: Mapping[str, str]) -> str:
    """Add query parameters to a URI, keeping any it already has."""
    parts = urlsplit(uri)
    encoded = urlencode(params)
    query = f"{parts.query}&{encoded}" if parts.query else encoded
    return urlunsplit(parts._replace(query=query))


class OAuthError(Exception):
    """RFC 6749 style error carrying the wire code, description and HTTP status.

    Attributes:
        error: Stable error code (e.g. ``invalid_grant``)
        description: Human readable ``error_description``
        status_code: HTTP status to answer with
        extra: Additional JSON fields merged into the error body
    """

    def __init__(
        self,
        error: str,
        description: str,
        status_code: int = 400,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"{error}: {description}")
        self.error = error
        self.description = description
        self.status_code = status_code
        self.extra = extra or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "error_description": self.description, **self.extra}


class OAuthRedirectError(OAuthError):
    """OAuth error reported to the client by redirecting to its redirect URI."""

    def __init__(self, redirect_uri: str, error: str, description: str) -> None:
        super().__init__(error, description, status_code=302)
        self.redirect_uri = redirect_uri

    @property
    def location(self) -> str:
        """Redirect URI with ``error`` and ``error_description`` appended."""
        return append_query(self.redirect_uri, {"error": self.error, "error_description": self.description})


class RecordNotFound(KeyError):
    """No record is stored under the requested key."""


class RecordExpired(KeyError):
    """The record existed but its lifetime has elapsed; it has been evicted."""


class UpstreamError(Exception):
    """An external collaborator (store API, identity provider) failed."""


class ProductNotFoundError(LookupError):
    """The store API has no product with the requested id."""

    def __init__(self, product_id: Any) -> None:
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id
