from __future__ import annotations

import logging

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.dialect import insert_for
from app.db.models import DiscoveredAffiliate, SavedAffiliate
from app.logging_utils import structured_log
from app.services.affiliates.types import (
    STORE_DISCOVERED,
    STORE_SAVED,
    AffiliateNotFoundError,
    AffiliateRecord,
    PersistOutcome,
    UnknownStoreError,
)
from app.settings import settings

logger = logging.getLogger(__name__)

_MODELS = {
    STORE_DISCOVERED: DiscoveredAffiliate,
    STORE_SAVED: SavedAffiliate,
}


def model_for_store(store: str):
    try:
        return _MODELS[store]
    except KeyError as exc:
        raise UnknownStoreError(f"Unknown affiliate store: {store!r}") from exc


def _unique_records(records: list[AffiliateRecord]) -> tuple[list[AffiliateRecord], list[str]]:
    unique: dict[str, AffiliateRecord] = {}
    rejected: list[str] = []
    for record in records:
        link = (record.link or "").strip()
        if not link:
            rejected.append(record.link)
            continue
        if link in unique:
            continue
        if link != record.link:
            record = AffiliateRecord(**{**record.__dict__, "link": link})
        unique[link] = record
    return list(unique.values()), rejected


async def persist_batch(
    db_session: AsyncSession,
    *,
    user_id: int,
    records: list[AffiliateRecord],
    store: str,
    chunk_size: int | None = None,
) -> PersistOutcome:
    """Insert-if-absent keyed by (user_id, link); does not commit.

    Links that already exist for the owner are reported as existing and left
    untouched, so concurrent callers persisting the same link can never
    produce two rows.
    """
    model = model_for_store(store)
    unique, rejected = _unique_records(records)
    if not unique:
        return PersistOutcome(rejected=tuple(rejected))

    size = max(1, chunk_size or settings.dedup_insert_chunk_size)
    # Writers take (user_id, link) index locks in link order, so overlapping
    # batches submitted in different orders wait on each other instead of deadlocking.
    ordered = sorted(unique, key=lambda record: record.link)
    inserted: dict[str, int] = {}
    for offset in range(0, len(ordered), size):
        chunk = ordered[offset : offset + size]
        statement = (
            insert_for(db_session, model)
            .values([record.row_values(user_id=user_id) for record in chunk])
            .on_conflict_do_nothing(index_elements=["user_id", "link"])
            .returning(model.id, model.link)
        )
        result = await db_session.execute(statement)
        for row in result.all():
            inserted[row.link] = int(row.id)

    existing: dict[str, int] = {}
    missing_links = [record.link for record in unique if record.link not in inserted]
    for offset in range(0, len(missing_links), size):
        result = await db_session.execute(
            select(model.id, model.link).where(
                model.user_id == user_id,
                model.link.in_(missing_links[offset : offset + size]),
            )
        )
        for row in result.all():
            existing[row.link] = int(row.id)

    structured_log(
        logger,
        "info",
        "affiliates.batch_persisted",
        user_id=user_id,
        store=store,
        submitted=len(records),
        inserted=len(inserted),
        existing=len(existing),
        rejected=len(rejected),
    )
    return PersistOutcome(inserted=inserted, existing=existing, rejected=tuple(rejected))


async def list_items(
    db_session: AsyncSession,
    *,
    user_id: int,
    store: str,
    limit: int = 500,
    offset: int = 0,
):
    model = model_for_store(store)
    result = await db_session.execute(
        select(model)
        .where(model.user_id == user_id)
        .order_by(model.created_at.desc(), model.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def count_items(db_session: AsyncSession, *, user_id: int, store: str) -> int:
    model = model_for_store(store)
    result = await db_session.execute(
        select(func.count()).select_from(model).where(model.user_id == user_id)
    )
    return int(result.scalar_one())


async def remove_items(
    db_session: AsyncSession,
    *,
    user_id: int,
    links: list[str],
    store: str,
) -> int:
    """Delete by (owner, link); links that are absent are ignored. Does not commit."""
    model = model_for_store(store)
    cleaned = sorted({link.strip() for link in links if link and link.strip()})
    if not cleaned:
        return 0
    result = await db_session.execute(
        delete(model).where(model.user_id == user_id, model.link.in_(cleaned))
    )
    removed = int(result.rowcount or 0)
    structured_log(
        logger,
        "info",
        "affiliates.items_removed",
        user_id=user_id,
        store=store,
        requested=len(cleaned),
        removed=removed,
    )
    return removed


async def remove_item(db_session: AsyncSession, *, user_id: int, link: str, store: str) -> int:
    return await remove_items(db_session, user_id=user_id, links=[link], store=store)


async def clear_discovered(db_session: AsyncSession, *, user_id: int) -> int:
    result = await db_session.execute(
        delete(DiscoveredAffiliate).where(DiscoveredAffiliate.user_id == user_id)
    )
    removed = int(result.rowcount or 0)
    structured_log(logger, "info", "affiliates.discovered_cleared", user_id=user_id, removed=removed)
    return removed


def record_from_row(row) -> AffiliateRecord:
    return AffiliateRecord(
        link=row.link,
        source=row.source,
        title=row.title,
        domain=row.domain,
        snippet=row.snippet,
        search_keyword=row.search_keyword,
        discovery_method_type=row.discovery_method_type,
        discovery_method_value=row.discovery_method_value,
        person_name=row.person_name,
        email=row.email,
        channel=row.channel,
        extra=row.extra,
        rank=row.rank,
    )


async def promote_to_saved(db_session: AsyncSession, *, user_id: int, link: str) -> PersistOutcome:
    """Copy a discovered item into the saved store; the discovered row stays."""
    result = await db_session.execute(
        select(DiscoveredAffiliate).where(
            DiscoveredAffiliate.user_id == user_id,
            DiscoveredAffiliate.link == link.strip(),
        )
    )
    discovered = result.scalar_one_or_none()
    if discovered is None:
        raise AffiliateNotFoundError(link)
    return await persist_batch(
        db_session,
        user_id=user_id,
        records=[record_from_row(discovered)],
        store=STORE_SAVED,
    )


async def get_items_by_ids(
    db_session: AsyncSession,
    *,
    user_id: int,
    store: str,
    item_ids: list[int],
):
    if not item_ids:
        return []
    model = model_for_store(store)
    result = await db_session.execute(
        select(model)
        .where(model.user_id == user_id, model.id.in_(item_ids))
        .order_by(model.id.asc())
    )
    return list(result.scalars().all())
