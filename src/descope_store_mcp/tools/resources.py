"""
MCP resources exposing the raw catalog as JSON
"""

import json

from ..clients.catalog import get_catalog_client
from ..core import mcp


@mcp.resource(
    "descope://catalog",
    name="catalog",
    description="Complete Descope Store product catalog",
    mime_type="application/json",
)
async def catalog_resource() -> str:
    products = await get_catalog_client().list_products()
    return json.dumps({"products": products}, indent=2)


@mcp.resource(
    "descope://product/{product_id}",
    name="product",
    description="One Descope Store product by ID",
    mime_type="application/json",
)
async def product_resource(product_id: str) -> str:
    product = await get_catalog_client().get_product(product_id)
    return json.dumps(product, indent=2)
