"""
Product Matcher: tags product mentions in free-text messages and aggregates
per-product mention stats across the lead store.
"""

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from leadtracker.models.lead import Lead
from leadtracker.models.product import Product, ProductMentionStats, ProductStats

logger = logging.getLogger(__name__)

TREND_STEPS = ((5, 100), (3, 75), (1, 50))


def load_products(path: str | Path) -> list[Product]:
    """Read the product catalog. A missing or broken catalog yields no products."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return [Product.model_validate(p) for p in data.get("products", [])]
    except (OSError, json.JSONDecodeError, AttributeError, ValidationError) as e:
        logger.error("Failed to load products from %s: %s", path, e)
        return []


def mentions_product(text: str, product: Product) -> bool:
    """Case-insensitive substring match on the product name or any variation."""
    text_lower = text.lower()
    if product.name.lower() in text_lower:
        return True
    return any(v and v.lower() in text_lower for v in product.variations)


def detect_products(text: str, products: list[Product]) -> list[str]:
    """Names of every product mentioned in the message, in catalog order."""
    detected = []
    for product in products:
        if product.name not in detected and mentions_product(text, product):
            detected.append(product.name)
    return detected


def trend_score(mentions: int) -> int:
    for threshold, score in TREND_STEPS:
        if mentions >= threshold:
            return score
    return 0


def product_stats(leads: dict[str, Lead], products: list[Product]) -> list[ProductStats]:
    """Mention count, latest mention and trend per product, most mentioned first.

    Each message counts at most once per product. Messages carry no timestamp of
    their own, so the latest mention is the newest creation time among the
    leads that mentioned the product.
    """
    stats = []
    for product in products:
        mentions = 0
        last_mention = None
        for lead in leads.values():
            hits = sum(1 for message in lead.messages if mentions_product(message, product))
            if not hits:
                continue
            mentions += hits
            if last_mention is None or lead.timestamp > last_mention:
                last_mention = lead.timestamp

        stats.append(ProductStats(
            name=product.name,
            stats=ProductMentionStats(
                mentions=mentions,
                last_mention=last_mention,
                trend=trend_score(mentions),
            ),
        ))

    stats.sort(key=lambda s: s.stats.mentions, reverse=True)
    return stats
