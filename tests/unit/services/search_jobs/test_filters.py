from __future__ import annotations

from app.services.providers.types import RawItem
from app.services.search_jobs.filters import filter_results, is_blocked_web_result


def _web(link: str, *, rank: int | None = None) -> RawItem:
    return RawItem(link=link, title=link, source="web", rank=rank)


def test_marketplaces_and_shop_pages_are_blocked() -> None:
    assert is_blocked_web_result(_web("https://www.amazon.de/dp/123"), brand=None, competitor_domains=())
    assert is_blocked_web_result(_web("https://smile.amazon.com/x"), brand=None, competitor_domains=())
    assert is_blocked_web_result(_web("https://beans.example/products/keto"), brand=None, competitor_domains=())
    assert not is_blocked_web_result(_web("https://blog.example/keto-review"), brand=None, competitor_domains=())


def test_own_brand_and_competitors_are_blocked() -> None:
    assert is_blocked_web_result(_web("https://beanbros.com/about"), brand="Bean Bros", competitor_domains=())
    assert is_blocked_web_result(
        _web("https://www.bedrop.de/blog"),
        brand=None,
        competitor_domains=("www.bedrop.de",),
    )


def test_filter_results_keeps_best_ranked_duplicate_and_social_items() -> None:
    items = [
        _web("https://blog.example/a", rank=3),
        _web("https://blog.example/a", rank=1),
        _web("https://ebay.com/itm/1", rank=2),
        RawItem(link="https://www.youtube.com/watch?v=abc", title="v", source="youtube", rank=None),
        _web("  ", rank=4),
    ]

    kept = filter_results(items, brand=None, competitors=[])

    assert [(item.link, item.rank) for item in kept] == [
        ("https://blog.example/a", 1),
        ("https://www.youtube.com/watch?v=abc", None),
    ]
