"""
Response formatting utilities for LLM-optimized output
"""

import html
import re
from typing import Any, Optional

from .config import config

_TAG_RE = re.compile(r"<[^>]*>")


def strip_html(text: Optional[str]) -> str:
    """Drop tags and decode entities from a product body"""
    if not text:
        return ""
    return html.unescape(_TAG_RE.sub("", text)).strip()


def _number(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _count(value: Any) -> int:
    number = _number(value)
    return int(number) if number is not None else 0


def product_price(product: dict[str, Any]) -> Optional[float]:
    """Product price, falling back to the first variant's price"""
    price = _number(product.get("price"))
    if price is None:
        variants = product.get("variants") or []
        if variants and isinstance(variants[0], dict):
            price = _number(variants[0].get("price"))
    return price


def product_category(product: dict[str, Any]) -> str:
    return str(product.get("type") or product.get("product_type") or "")


def product_description(product: dict[str, Any]) -> str:
    """Plain description, or the HTML body stripped when there is none"""
    description = product.get("description")
    if description:
        return str(description)
    return strip_html(product.get("body") or product.get("body_html"))


def money(value: Optional[float]) -> str:
    return f"${value:.2f}" if value is not None else "N/A"


def _preview(product: dict[str, Any], length: int) -> str:
    text = product_description(product)
    return f"{text[:length]}..." if len(text) > length else text


def _variants(product: dict[str, Any]) -> list[dict[str, Any]]:
    return [v for v in product.get("variants") or [] if isinstance(v, dict)]


def _tags(product: dict[str, Any]) -> list[str]:
    tags = product.get("tags") or []
    if isinstance(tags, str):
        tags = [tag.strip() for tag in tags.split(",")]
    return [str(tag) for tag in tags if tag]


def _price_line(product: dict[str, Any]) -> str:
    price = product_price(product)
    line = f"**{money(price)}**"
    compare_at = _number(product.get("compare_at_price"))
    if price is not None and compare_at and compare_at > price:
        line += f" ~~{money(compare_at)}~~ (Save {money(compare_at - price)})"
    return line


def _product_summary(product: dict[str, Any]) -> str:
    tags = _tags(product)
    return f"""## {product.get('title', 'Untitled product')}

{_price_line(product)}

{_preview(product, config.description_preview_length)}

**📦 Stock:** {_count(product.get('inventory_qty'))} units | **🎯 Variants:** {len(_variants(product))} options
**🏷️ Tags:** {', '.join(tags) if tags else 'none'}
**🆔 Product ID:** {product.get('id')}

---"""


def format_search_results(
    products: list[dict[str, Any]], query: Optional[str] = None, category: Optional[str] = None
) -> str:
    """Format search_products response"""
    criteria = []
    if query:
        criteria.append(f'query "{query}"')
    if category:
        criteria.append(f'category "{category}"')
    described = " and ".join(criteria) if criteria else "all products"

    if not products:
        return f"🔍 No products found for {described}."

    output = [f"# 🔍 Search Results\n\n*{len(products)} product(s) matching {described}*\n\n---"]
    output.extend(_product_summary(product) for product in products)
    return "\n\n".join(output)


def format_product_details(product: dict[str, Any]) -> str:
    """Format get_product response"""
    inventory = _count(product.get("inventory_qty"))
    price = product_price(product)
    compare_at = _number(product.get("compare_at_price"))

    pricing = f"**{money(price)}**"
    if price is not None and compare_at and compare_at > price:
        discount = round((compare_at - price) / compare_at * 100)
        pricing += f" ~~{money(compare_at)}~~ ({discount}% off)"

    byline = " • ".join(part for part in (product.get("vendor"), product_category(product)) if part)

    output = f"""# 🛡️ {product.get('title', 'Untitled product')}

*{byline}*

---

## 💰 Pricing
{pricing}

## 📝 Description
{product_description(product) or 'No description available.'}

## 📦 Availability
- **In Stock:** {inventory} units
- **SKU:** {product.get('sku') or 'N/A'}
- **Status:** {'✅ Available' if inventory > 0 else '❌ Out of Stock'}
"""

    variants = _variants(product)
    if variants:
        output += "\n## 🎯 Variants Available\n"
        for variant in variants:
            name = variant.get("option1_value") or variant.get("title") or variant.get("sku") or "Default"
            output += (
                f"- **{name}**: {money(_number(variant.get('price')))} "
                f"({_count(variant.get('inventory_qty'))} available)\n"
            )

    tags = _tags(product)
    if tags:
        output += "\n## 🏷️ Product Tags\n" + " ".join(f"`{tag}`" for tag in tags) + "\n"

    output += f"\n*Product ID: {product.get('id')}*"
    return output


def format_comparison(products: list[dict[str, Any]]) -> str:
    """Format compare_products response. The first product is the recommendation."""
    rows = "\n".join(
        f"| **{p.get('title', 'Untitled')}** | {money(product_price(p))} | "
        f"{_count(p.get('inventory_qty'))} | {len(_variants(p))} | {product_category(p) or '-'} |"
        for p in products
    )
    output = [
        f"# ⚖️ Product Comparison\n\n*Comparing {len(products)} products*\n\n---",
        "## 📊 Comparison Table\n\n"
        "| Product | Price | Stock | Variants | Category |\n"
        "|---------|-------|-------|----------|----------|\n" + rows,
    ]

    for product in products:
        output.append(
            f"### {product.get('title', 'Untitled')}\n"
            f"{_price_line(product)} | **{_count(product.get('inventory_qty'))} in stock**\n\n"
            f"{_preview(product, 120)}"
        )

    top = products[0]
    output.append(
        f"## 🏆 Recommendation\n\n**{top.get('title', 'Untitled')}** "
        f"(ID {top.get('id')}) at {money(product_price(top))}"
    )
    return "\n\n".join(output)


def format_order(order: dict[str, Any]) -> str:
    """Format create_order response"""
    items = [item for item in order.get("items") or [] if isinstance(item, dict)]
    lines = []
    for item in items:
        quantity = _count(item.get("quantity"))
        price = _number(item.get("price"))
        title = item.get("product_title") or f"Product {item.get('product_id')}"
        sku = f" ({item['variant_sku']})" if item.get("variant_sku") else ""
        subtotal = money(price * quantity) if price is not None else "N/A"
        lines.append(
            f"- **{title}**{sku}\n"
            f"  - Quantity: {quantity}\n"
            f"  - Price: {money(price)} each\n"
            f"  - Subtotal: {subtotal}"
        )

    status = str(order.get("status") or "pending").upper()
    total = _number(order.get("total_price"))

    return f"""# 🎉 Order Created Successfully!

## 📋 Order Details

**Order ID:** #{order.get('id', 'N/A')}
**Customer:** {order.get('customer_email', 'N/A')}
**Status:** {status}
**Total:** {money(total)}
**Items:** {len(items)}

## 🛍️ Items Ordered

{chr(10).join(lines) if lines else 'No item details returned.'}"""


def format_catalog(products: list[dict[str, Any]], category: Optional[str] = None) -> str:
    """Format browse_catalog response with a catalog summary"""
    heading = "# 🛡️ Descope Store Catalog"
    if category:
        heading += f" ({category})"

    if not products:
        return f"{heading}\n\nNo products available."

    prices = [price for price in (product_price(p) for p in products) if price is not None]
    price_range = f"{money(min(prices))} - {money(max(prices))}" if prices else "N/A"

    output = [f"{heading}\n\n---"]
    output.extend(_product_summary(product) for product in products)
    output.append(
        "📊 **Catalog Summary:**\n"
        f"- **{len(products)} Products** available\n"
        f"- **{sum(len(_variants(p)) for p in products)} Variants** total\n"
        f"- **{sum(_count(p.get('inventory_qty')) for p in products)} Items** in stock\n"
        f"- **Price Range:** {price_range}"
    )
    return "\n\n".join(output)
