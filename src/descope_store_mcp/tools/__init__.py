"""MCP tools and resources for the Descope Store"""

from .catalog import browse_catalog, compare_products, get_product, search_products
from .orders import create_order
from .resources import catalog_resource, product_resource

__all__ = [
    "browse_catalog",
    "catalog_resource",
    "compare_products",
    "create_order",
    "get_product",
    "product_resource",
    "search_products",
]
