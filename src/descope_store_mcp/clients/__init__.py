"""Descope Store API client module"""

from .catalog import CatalogClient, close_catalog_client, extract_products, get_catalog_client

__all__ = ["CatalogClient", "close_catalog_client", "extract_products", "get_catalog_client"]
