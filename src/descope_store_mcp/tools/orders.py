"""
Order tools: place an order with the store
"""

import logging
import re
from typing import Any

from ..clients.catalog import get_catalog_client
from ..core import handle_tool_errors, mcp
from ..formatting import format_order

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_order_items(items: Any) -> list[dict[str, Any]]:
    """Check and normalise order lines.

    Raises:
        ValueError: empty list, missing product_id, or a quantity that is not a positive integer
    """
    if not isinstance(items, list) or not items:
        raise ValueError("items must be a non-empty list")

    normalised = []
    for index, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ValueError(f"Item {index} must be an object with product_id and quantity")

        product_id = item.get("product_id")
        if product_id is None or str(product_id).strip() == "":
            raise ValueError(f"Item {index} is missing product_id")

        quantity = item.get("quantity")
        if isinstance(quantity, float) and quantity.is_integer():
            quantity = int(quantity)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValueError(f"Item {index} quantity must be a positive integer")

        line: dict[str, Any] = {"product_id": product_id, "quantity": quantity}
        if item.get("variant_id") is not None:
            line["variant_id"] = item["variant_id"]
        normalised.append(line)

    return normalised


@mcp.tool(
    description=(
        "Create an order in the Descope Store. "
        "Each item needs a product_id and a positive quantity; variant_id is optional."
    )
)
@handle_tool_errors
async def create_order(customer_email: str, items: list[dict[str, Any]]) -> str:
    """
    Place an order.

    Args:
        customer_email: Email address the order is placed for
        items: Order lines, e.g. [{"product_id": 1, "quantity": 2, "variant_id": 10}]

    Returns:
        Markdown order confirmation
    """
    email = (customer_email or "").strip()
    if not EMAIL_RE.match(email):
        raise ValueError("customer_email must be a valid email address")

    lines = validate_order_items(items)

    client = get_catalog_client()
    # Every product must exist before the order is submitted
    for line in lines:
        await client.get_product(str(line["product_id"]))

    order = await client.create_order(email, lines)
    return format_order(order)
