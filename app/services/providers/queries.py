"""Search query construction for the web-search scrape actor.

Every keyword and competitor brand is expanded into one query per requested
source. Social sources use a `site:` filter plus review-style terms in the
target language; web queries OR together several phrase variants and exclude
the large marketplaces. Terms never mix languages: an unknown language falls
back to English as a whole.
"""

from __future__ import annotations

from dataclasses import dataclass
import re

from app.services.providers.types import (
    SOURCE_INSTAGRAM,
    SOURCE_TIKTOK,
    SOURCE_WEB,
    SOURCE_YOUTUBE,
    SearchParams,
)

DISCOVERY_KEYWORD = "keyword"
DISCOVERY_COMPETITOR = "competitor"


@dataclass(frozen=True)
class LocalizedTerms:
    search_terms: tuple[str, ...]
    web_terms: tuple[str, ...]
    instagram_terms: tuple[str, ...]
    discount: str


@dataclass(frozen=True)
class BuiltQuery:
    query: str
    source: str
    origin_type: str
    origin_value: str


@dataclass(frozen=True)
class LocationConfig:
    country_code: str
    language_code: str


LOCALIZED_TERMS: dict[str, LocalizedTerms] = {
    "English": LocalizedTerms(
        search_terms=("review", "test", "experience"),
        web_terms=("review", "test", "blog", "blogger"),
        instagram_terms=("influencer", "recommendation"),
        discount="discount",
    ),
    "German": LocalizedTerms(
        search_terms=("erfahrung", "test", "bewertung"),
        web_terms=("erfahrung", "test", "bewertung", "blog"),
        instagram_terms=("influencer", "empfehlung"),
        discount="rabatt",
    ),
    "Spanish": LocalizedTerms(
        search_terms=("reseña", "opinión", "prueba"),
        web_terms=("reseña", "opinión", "prueba", "blog"),
        instagram_terms=("influencer", "recomendación"),
        discount="descuento",
    ),
    "French": LocalizedTerms(
        search_terms=("avis", "test", "critique"),
        web_terms=("avis", "test", "critique", "blog"),
        instagram_terms=("influenceur", "recommandation"),
        discount="réduction",
    ),
    "Portuguese": LocalizedTerms(
        search_terms=("avaliação", "teste", "opinião"),
        web_terms=("avaliação", "teste", "opinião", "blog"),
        instagram_terms=("influencer", "recomendação"),
        discount="desconto",
    ),
    "Italian": LocalizedTerms(
        search_terms=("recensione", "prova", "opinione"),
        web_terms=("recensione", "prova", "opinione", "blog"),
        instagram_terms=("influencer", "consiglio"),
        discount="sconto",
    ),
    "Dutch": LocalizedTerms(
        search_terms=("ervaring", "test", "beoordeling"),
        web_terms=("ervaring", "test", "beoordeling", "blog"),
        instagram_terms=("influencer", "aanbeveling"),
        discount="korting",
    ),
}

COUNTRY_CODES = {
    "united states": "us",
    "canada": "ca",
    "united kingdom": "uk",
    "germany": "de",
    "france": "fr",
    "netherlands": "nl",
    "belgium": "be",
    "switzerland": "ch",
    "austria": "at",
    "ireland": "ie",
    "denmark": "dk",
    "sweden": "se",
    "norway": "no",
    "finland": "fi",
    "spain": "es",
    "italy": "it",
    "portugal": "pt",
    "poland": "pl",
    "australia": "au",
    "new zealand": "nz",
}
LANGUAGE_CODES = {
    "english": "en",
    "german": "de",
    "spanish": "es",
    "french": "fr",
    "portuguese": "pt",
    "italian": "it",
    "dutch": "nl",
}

SOCIAL_SITE_DOMAINS = {
    SOURCE_YOUTUBE: "youtube.com",
    SOURCE_INSTAGRAM: "instagram.com",
    SOURCE_TIKTOK: "tiktok.com",
}
WEB_EXCLUDED_SITES = ("amazon.com", "amazon.de", "ebay.com", "ebay.de", "reddit.com")
_COMPOUND_TLD_RE = re.compile(r"^(co|com|org|net)\.[a-z]{2}$")


def localized_terms(target_language: str | None) -> LocalizedTerms:
    if target_language:
        for name, terms in LOCALIZED_TERMS.items():
            if name.lower() == target_language.strip().lower():
                return terms
    return LOCALIZED_TERMS["English"]


def location_config(target_country: str | None, target_language: str | None) -> LocationConfig:
    country_code = COUNTRY_CODES.get((target_country or "").strip().lower(), "us")
    language_code = LANGUAGE_CODES.get((target_language or "").strip().lower(), "en")
    return LocationConfig(country_code=country_code, language_code=language_code)


def normalize_competitor(raw: str) -> str:
    """`https://www.Bedrop.de/shop` -> `www.bedrop.de`."""
    cleaned = re.sub(r"^https?://", "", raw.strip(), flags=re.IGNORECASE)
    return cleaned.split("/", 1)[0].lower()


def brand_from_domain(domain: str) -> str:
    cleaned = normalize_competitor(domain)
    cleaned = re.sub(r"^www\.", "", cleaned)
    cleaned = re.sub(r":\d+$", "", cleaned)
    parts = [part for part in cleaned.split(".") if part]
    if not parts:
        return ""
    if len(parts) > 2 and _COMPOUND_TLD_RE.match(".".join(parts[-2:])):
        return parts[-3]
    if len(parts) >= 2:
        return parts[-2]
    return parts[0]


def social_query(term: str, source: str, terms: LocalizedTerms) -> str:
    return f"{term} {' '.join(terms.search_terms)} site:{SOCIAL_SITE_DOMAINS[source]}"


def instagram_query(term: str, terms: LocalizedTerms) -> str:
    return f"{term} {' '.join(terms.instagram_terms)} site:instagram.com"


def web_query(term: str, terms: LocalizedTerms, *, is_competitor: bool) -> str:
    if is_competitor:
        variants = [*terms.web_terms[:3], terms.discount]
    else:
        variants = list(terms.web_terms)
    phrases = " OR ".join(f'"{term} {variant}"' for variant in variants)
    exclusions = " ".join(f"-site:{site}" for site in WEB_EXCLUDED_SITES)
    return f"{phrases} {exclusions}"


def _queries_for(
    term: str,
    params: SearchParams,
    terms: LocalizedTerms,
    *,
    origin_type: str,
    origin_value: str,
) -> list[BuiltQuery]:
    built: list[BuiltQuery] = []
    for source in params.sources:
        if source == SOURCE_WEB:
            query = web_query(term, terms, is_competitor=origin_type == DISCOVERY_COMPETITOR)
        else:
            query = social_query(term, source, terms)
        built.append(BuiltQuery(query, source, origin_type, origin_value))
    if SOURCE_INSTAGRAM in params.sources:
        built.append(BuiltQuery(instagram_query(term, terms), SOURCE_INSTAGRAM, origin_type, origin_value))
    return built


def build_queries(params: SearchParams) -> list[BuiltQuery]:
    terms = localized_terms(params.target_language)
    built: list[BuiltQuery] = []
    for keyword in params.keywords:
        cleaned = keyword.strip()
        if cleaned:
            built.extend(
                _queries_for(cleaned, params, terms, origin_type=DISCOVERY_KEYWORD, origin_value=cleaned)
            )
    for competitor in params.competitors:
        brand = brand_from_domain(competitor)
        if brand:
            built.extend(
                _queries_for(brand, params, terms, origin_type=DISCOVERY_COMPETITOR, origin_value=competitor)
            )
    return built


def attribute_query(search_query: str | None, params: SearchParams) -> tuple[str | None, str | None]:
    """Find which keyword or competitor produced a provider query string."""
    if not search_query:
        return None, None
    haystack = search_query.lower()
    for keyword in sorted(params.keywords, key=len, reverse=True):
        if keyword.strip() and keyword.strip().lower() in haystack:
            return DISCOVERY_KEYWORD, keyword.strip()
    for competitor in params.competitors:
        brand = brand_from_domain(competitor)
        if brand and brand in haystack:
            return DISCOVERY_COMPETITOR, competitor
    return None, None
