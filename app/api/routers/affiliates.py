from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import ensure_principal_matches, get_api_principal_id
from app.api.errors import ApiException
from app.api.responses import success_payload
from app.api.schemas.affiliates import (
    AffiliateBatchDeleteRequest,
    AffiliateBatchEnvelope,
    AffiliateBatchRequest,
    AffiliateListEnvelope,
    AffiliatePromoteEnvelope,
    AffiliatePromoteRequest,
    AffiliateRemovalEnvelope,
)
from app.db.models import User
from app.db.session import get_db_session
from app.services.affiliates import application as affiliate_service
from app.services.affiliates.types import (
    AFFILIATE_STORES,
    STORE_DISCOVERED,
    AffiliateNotFoundError,
    AffiliateRecord,
)

router = APIRouter(prefix="/affiliates", tags=["api-affiliates"])


def _require_store(store: str) -> str:
    normalized = store.strip().lower()
    if normalized not in AFFILIATE_STORES:
        raise ApiException(
            status_code=404,
            code="unknown_store",
            message=f"Unknown affiliate store: {store}.",
        )
    return normalized


async def _require_user(db_session: AsyncSession, user_id: int) -> User:
    user = await db_session.get(User, user_id)
    if user is None:
        raise ApiException(
            status_code=404,
            code="USER_NOT_FOUND",
            message="User account not found.",
        )
    return user


def serialize_item(item) -> dict:
    return {
        "id": int(item.id),
        "link": item.link,
        "source": item.source,
        "title": item.title,
        "domain": item.domain,
        "snippet": item.snippet,
        "search_keyword": item.search_keyword,
        "discovery_method_type": item.discovery_method_type,
        "discovery_method_value": item.discovery_method_value,
        "person_name": item.person_name,
        "email": item.email,
        "channel": item.channel,
        "extra": item.extra,
        "rank": item.rank,
        "created_at": item.created_at,
    }


@router.post(
    "/saved/promote",
    response_model=AffiliatePromoteEnvelope,
)
async def promote_discovered_item(
    payload: AffiliatePromoteRequest,
    request: Request,
    db_session: AsyncSession = Depends(get_db_session),
    principal_id: int = Depends(get_api_principal_id),
):
    ensure_principal_matches(principal_id, payload.user_id)
    try:
        outcome = await affiliate_service.promote_to_saved(
            db_session,
            user_id=principal_id,
            link=payload.link,
        )
    except AffiliateNotFoundError as exc:
        raise ApiException(
            status_code=404,
            code="affiliate_not_found",
            message="No discovered item with that link.",
        ) from exc
    await db_session.commit()
    link = payload.link.strip()
    return success_payload(
        request,
        data={
            "link": link,
            "item_id": outcome.item_id(link),
            "is_new": outcome.is_new(link),
        },
    )


@router.post(
    "/{store}/batch",
    response_model=AffiliateBatchEnvelope,
)
async def save_batch(
    store: str,
    payload: AffiliateBatchRequest,
    request: Request,
    db_session: AsyncSession = Depends(get_db_session),
    principal_id: int = Depends(get_api_principal_id),
):
    store = _require_store(store)
    ensure_principal_matches(principal_id, payload.user_id)
    await _require_user(db_session, principal_id)
    records = [AffiliateRecord(**item.model_dump()) for item in payload.items]
    outcome = await affiliate_service.persist_batch(
        db_session,
        user_id=principal_id,
        records=records,
        store=store,
    )
    await db_session.commit()
    rows = await affiliate_service.get_items_by_ids(
        db_session,
        user_id=principal_id,
        store=store,
        item_ids=outcome.inserted_ids,
    )
    return success_payload(
        request,
        data={
            "store": store,
            "inserted_ids": outcome.inserted_ids,
            "items": [serialize_item(row) for row in rows],
            "count": len(outcome.inserted),
            "duplicates": len(outcome.existing),
            "rejected": len(outcome.rejected),
        },
    )


@router.get(
    "/{store}",
    response_model=AffiliateListEnvelope,
)
async def list_store(
    store: str,
    request: Request,
    user_id: int | None = Query(default=None),
    limit: int = Query(default=500, ge=1, le=2000),
    offset: int = Query(default=0, ge=0),
    db_session: AsyncSession = Depends(get_db_session),
    principal_id: int = Depends(get_api_principal_id),
):
    store = _require_store(store)
    ensure_principal_matches(principal_id, user_id)
    rows = await affiliate_service.list_items(
        db_session,
        user_id=principal_id,
        store=store,
        limit=limit,
        offset=offset,
    )
    total = await affiliate_service.count_items(db_session, user_id=principal_id, store=store)
    return success_payload(
        request,
        data={
            "store": store,
            "items": [serialize_item(row) for row in rows],
            "count": total,
        },
    )


@router.delete(
    "/{store}",
    response_model=AffiliateRemovalEnvelope,
)
async def remove_from_store(
    store: str,
    request: Request,
    user_id: int | None = Query(default=None),
    link: str | None = Query(default=None),
    clear_all: bool = Query(default=False),
    db_session: AsyncSession = Depends(get_db_session),
    principal_id: int = Depends(get_api_principal_id),
):
    store = _require_store(store)
    ensure_principal_matches(principal_id, user_id)
    if clear_all:
        if store != STORE_DISCOVERED:
            raise ApiException(
                status_code=400,
                code="invalid_request",
                message="Only the discovered store can be cleared.",
            )
        removed = await affiliate_service.clear_discovered(db_session, user_id=principal_id)
    elif link and link.strip():
        removed = await affiliate_service.remove_item(
            db_session,
            user_id=principal_id,
            link=link,
            store=store,
        )
    else:
        raise ApiException(
            status_code=400,
            code="invalid_request",
            message="Provide a link or clear_all=true.",
        )
    await db_session.commit()
    return success_payload(request, data={"store": store, "removed": removed})


@router.post(
    "/{store}/batch-delete",
    response_model=AffiliateRemovalEnvelope,
)
async def remove_batch(
    store: str,
    payload: AffiliateBatchDeleteRequest,
    request: Request,
    db_session: AsyncSession = Depends(get_db_session),
    principal_id: int = Depends(get_api_principal_id),
):
    store = _require_store(store)
    ensure_principal_matches(principal_id, payload.user_id)
    removed = await affiliate_service.remove_items(
        db_session,
        user_id=principal_id,
        links=payload.links,
        store=store,
    )
    await db_session.commit()
    return success_payload(request, data={"store": store, "removed": removed})
