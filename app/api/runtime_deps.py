from __future__ import annotations

from fastapi import Depends

from app.services.providers import apify
from app.services.providers.types import (
    SOURCE_INSTAGRAM,
    SOURCE_TIKTOK,
    SOURCE_YOUTUBE,
    EnrichmentProvider,
    SearchProvider,
)
from app.services.purchases.checkout import CheckoutGateway, StripeCheckoutGateway
from app.services.search_jobs import application as search_job_service
from app.settings import settings


def get_apify_client() -> apify.ApifyClient:
    return apify.ApifyClient(
        token=settings.apify_api_token,
        base_url=settings.apify_api_url,
        timeout_seconds=settings.apify_timeout_seconds,
    )


def get_search_provider(
    client: apify.ApifyClient = Depends(get_apify_client),
) -> SearchProvider:
    return apify.ApifySearchProvider(
        client=client,
        actor_id=settings.apify_search_actor_id,
        results_per_page=settings.search_results_per_page,
        max_pages_per_query=settings.search_max_pages_per_query,
    )


def get_enrichment_provider(
    client: apify.ApifyClient = Depends(get_apify_client),
) -> EnrichmentProvider:
    return apify.ApifyEnrichmentProvider(
        client=client,
        actor_ids={
            SOURCE_YOUTUBE: settings.apify_youtube_actor_id,
            SOURCE_INSTAGRAM: settings.apify_instagram_actor_id,
            SOURCE_TIKTOK: settings.apify_tiktok_actor_id,
        },
    )


def get_search_job_service(
    search_provider: SearchProvider = Depends(get_search_provider),
    enrichment_provider: EnrichmentProvider = Depends(get_enrichment_provider),
) -> search_job_service.SearchJobService:
    return search_job_service.SearchJobService(
        search_provider=search_provider,
        enrichment_provider=enrichment_provider,
    )


def get_checkout_gateway() -> CheckoutGateway:
    return StripeCheckoutGateway(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        success_url=settings.checkout_success_url,
        cancel_url=settings.checkout_cancel_url,
    )
