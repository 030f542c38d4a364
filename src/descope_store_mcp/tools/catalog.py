"""
Catalog tools: search, product details, comparison and browsing
"""

import logging
from typing import Any, Optional, Union

from ..clients.catalog import get_catalog_client
from ..config import config
from ..core import handle_tool_errors, mcp
from ..formatting import (
    format_catalog,
    format_comparison,
    format_product_details,
    format_search_results,
    product_description,
)

logger = logging.getLogger(__name__)


def matches_query(product: dict[str, Any], query: str) -> bool:
    """Case-insensitive substring match on title or description"""
    needle = query.lower()
    title = str(product.get("title") or "").lower()
    return needle in title or needle in product_description(product).lower()


def matches_category(product: dict[str, Any], category: str) -> bool:
    """Case-insensitive equality on type or product_type"""
    wanted = category.lower()
    return any(
        str(product.get(field) or "").lower() == wanted for field in ("type", "product_type")
    )


def filter_products(
    products: list[dict[str, Any]], query: Optional[str] = None, category: Optional[str] = None
) -> list[dict[str, Any]]:
    query = (query or "").strip()
    category = (category or "").strip()
    return [
        product
        for product in products
        if (not query or matches_query(product, query))
        and (not category or matches_category(product, category))
    ]


@mcp.tool(
    description=(
        "Search the Descope Store catalog. "
        "Matches the query against product titles and descriptions, "
        "optionally restricted to one product category."
    )
)
@handle_tool_errors
async def search_products(query: Optional[str] = None, category: Optional[str] = None) -> str:
    """
    Search products by text and category.

    Args:
        query: Text to look for in titles and descriptions (case-insensitive)
        category: Product type to restrict results to (case-insensitive)

    Returns:
        Markdown list of matching products
    """
    products = await get_catalog_client().list_products(query=query, category=category)
    matches = filter_products(products, query, category)
    logger.debug(f"search_products matched {len(matches)} of {len(products)} products")
    return format_search_results(matches, query, category)


@mcp.tool(description="Get full details for one product by its ID.")
@handle_tool_errors
async def get_product(product_id: Union[str, int]) -> str:
    if product_id is None or str(product_id).strip() == "":
        raise ValueError("product_id is required")

    product = await get_catalog_client().get_product(str(product_id).strip())
    return format_product_details(product)


@mcp.tool(
    description=(
        f"Compare {config.min_compare_products} to {config.max_compare_products} products "
        "side by side. The first product listed is presented as the recommendation."
    )
)
@handle_tool_errors
async def compare_products(product_ids: list[Union[str, int]]) -> str:
    """
    Compare several products.

    Args:
        product_ids: IDs of the products to compare, in order of preference

    Returns:
        Markdown comparison table followed by a short section per product
    """
    if not isinstance(product_ids, list) or not (
        config.min_compare_products <= len(product_ids) <= config.max_compare_products
    ):
        raise ValueError(
            f"Provide between {config.min_compare_products} and "
            f"{config.max_compare_products} product IDs to compare"
        )

    client = get_catalog_client()
    products = [await client.get_product(str(product_id)) for product_id in product_ids]
    return format_comparison(products)


@mcp.tool(description="Browse the whole catalog, optionally by category, with a catalog summary.")
@handle_tool_errors
async def browse_catalog(category: Optional[str] = None) -> str:
    products = await get_catalog_client().list_products(category=category)
    return format_catalog(filter_products(products, category=category), category)
