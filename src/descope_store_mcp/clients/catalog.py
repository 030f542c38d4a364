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
HTTP client for the Descope Store API.
Lists and fetches products and places orders, mapping transport failures to UpstreamError.
"""

import logging
from typing import Any, Optional, Union
from urllib.parse import quote

import httpx

from ..config import config
from ..exceptions import ProductNotFoundError, UpstreamError
from ..security import CredentialSanitizer

logger = logging.getLogger(__name__)

ProductId = Union[str, int]


def extract_products(payload: Any) -> list[dict[str, Any]]:
    """Accept either a bare product list or ``{"products": [...]}``."""
    if isinstance(payload, dict):
        payload = payload.get("products", [])
    if not isinstance(payload, list):
        raise UpstreamError("Store API returned an unexpected product listing")
    return [product for product in payload if isinstance(product, dict)]


class CatalogClient:
    """Async wrapper around the store's REST API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or config.store_url).rstrip("/")
        self._client = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else config.request_timeout,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_products(
        self, query: Optional[str] = None, category: Optional[str] = None
    ) -> list[dict[str, Any]]:
        params = {}
        if query:
            params["query"] = query
        if category:
            params["type"] = category
        payload = await self._request("GET", "/api/products", params=params)
        return extract_products(payload)

    async def get_product(self, product_id: ProductId) -> dict[str, Any]:
        """Fetch one product.

        Raises:
            ProductNotFoundError: the store answered 404
            UpstreamError: any other failure
        """
        payload = await self._request(
            "GET",
            f"/api/products/{quote(str(product_id), safe='')}",
            not_found=ProductNotFoundError(product_id),
        )
        if isinstance(payload, dict) and isinstance(payload.get("product"), dict):
            payload = payload["product"]
        if not isinstance(payload, dict):
            raise UpstreamError("Store API returned an unexpected product")
        return payload

    async def create_order(self, customer_email: str, items: list[dict[str, Any]]) -> dict[str, Any]:
        payload = await self._request(
            "POST", "/api/orders", json={"customer_email": customer_email, "items": items}
        )
        if isinstance(payload, dict) and isinstance(payload.get("order"), dict):
            payload = payload["order"]
        if not isinstance(payload, dict):
            raise UpstreamError("Store API returned an unexpected order")
        logger.info(f"Created order {payload.get('id')} with {len(items)} item(s)")
        return payload

    async def _request(
        self,
        method: str,
        path: str,
        not_found: Optional[Exception] = None,
        **kwargs: Any,
    ) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Store API {method} {path} failed: {CredentialSanitizer.sanitize_error(e)}")
            raise UpstreamError(f"Store API request failed: {type(e).__name__}") from e

        if response.status_code == 404 and not_found is not None:
            raise not_found
        if response.is_error:
            logger.error(
                f"Store API {method} {path} returned HTTP {response.status_code}: "
                f"{CredentialSanitizer.sanitize_string(response.text[:200])}"
            )
            raise UpstreamError(f"Store API returned HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError("Store API returned invalid JSON") from e


# Shared client (created on first use)
_catalog_client: Optional[CatalogClient] = None


def get_catalog_client() -> CatalogClient:
    """Lazy initialization of the shared catalog client"""
    global _catalog_client
    if _catalog_client is None:
        _catalog_client = CatalogClient()
    return _catalog_client


async def close_catalog_client() -> None:
    global _catalog_client
    if _catalog_client is not None:
        await _catalog_client.aclose()
        _catalog_client = None
