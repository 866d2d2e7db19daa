"""Result filtering applied once when a provider run succeeds.

Web results drop marketplaces, shop pages, the user's own brand and the
competitor sites the search was seeded with. Social results are kept as-is;
their relevance comes from enrichment. Repeated links collapse to the first
(best ranked) occurrence.
"""

from __future__ import annotations

import re

from app.services.providers.apify import extract_domain
from app.services.providers.queries import brand_from_domain, normalize_competitor
from app.services.providers.types import SOURCE_WEB, RawItem

ECOMMERCE_DOMAINS = frozenset(
    {
        "amazon.com",
        "amazon.de",
        "amazon.co.uk",
        "ebay.com",
        "ebay.de",
        "etsy.com",
        "walmart.com",
        "aliexpress.com",
        "otto.de",
        "zalando.de",
        "idealo.de",
        "target.com",
        "bestbuy.com",
        "reddit.com",
    }
)
SHOP_URL_PATTERNS = (
    re.compile(r"/(products?|collections|shop|cart|checkout)(/|$)", re.IGNORECASE),
    re.compile(r"[?&](add-to-cart|variant)=", re.IGNORECASE),
)


def _domain_matches(domain: str, blocked: str) -> bool:
    return domain == blocked or domain.endswith(f".{blocked}")


def is_blocked_web_result(
    item: RawItem,
    *,
    brand: str | None,
    competitor_domains: tuple[str, ...],
) -> bool:
    domain = item.domain or extract_domain(item.link)
    if any(_domain_matches(domain, blocked) for blocked in ECOMMERCE_DOMAINS):
        return True
    if any(pattern.search(item.link) for pattern in SHOP_URL_PATTERNS):
        return True
    for competitor in competitor_domains:
        if _domain_matches(domain, competitor.removeprefix("www.")):
            return True
    if brand:
        brand_token = brand.strip().lower().replace(" ", "")
        if brand_token and brand_token == brand_from_domain(domain):
            return True
    return False


def filter_results(
    items: list[RawItem] | tuple[RawItem, ...],
    *,
    brand: str | None,
    competitors: list[str] | tuple[str, ...] = (),
) -> list[RawItem]:
    competitor_domains = tuple(normalize_competitor(competitor) for competitor in competitors if competitor)
    ranked = sorted(items, key=lambda item: (item.rank is None, item.rank or 0))
    seen_links: set[str] = set()
    kept: list[RawItem] = []
    for item in ranked:
        link = item.link.strip()
        if not link or link in seen_links:
            continue
        if item.source == SOURCE_WEB and is_blocked_web_result(
            item,
            brand=brand,
            competitor_domains=competitor_domains,
        ):
            continue
        seen_links.add(link)
        kept.append(item)
    return kept
