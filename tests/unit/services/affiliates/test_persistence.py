from __future__ import annotations

import asyncio

import pytest

from app.services.affiliates import application as affiliate_service
from app.services.affiliates.types import (
    STORE_DISCOVERED,
    STORE_SAVED,
    AffiliateNotFoundError,
    AffiliateRecord,
    UnknownStoreError,
)
from tests.helpers import insert_user


def _record(link: str, **fields) -> AffiliateRecord:
    return AffiliateRecord(link=link, source=fields.pop("source", "web"), **fields)


@pytest.mark.asyncio
async def test_persist_batch_reports_new_and_existing_links(db_session) -> None:
    user_id = await insert_user(db_session)
    await affiliate_service.persist_batch(
        db_session,
        user_id=user_id,
        records=[_record("https://a.example/post")],
        store=STORE_DISCOVERED,
    )
    await db_session.commit()

    outcome = await affiliate_service.persist_batch(
        db_session,
        user_id=user_id,
        records=[
            _record("https://a.example/post"),
            _record("https://b.example/post"),
            _record("https://b.example/post", title="duplicate in batch"),
        ],
        store=STORE_DISCOVERED,
    )
    await db_session.commit()

    assert list(outcome.inserted) == ["https://b.example/post"]
    assert list(outcome.existing) == ["https://a.example/post"]
    assert outcome.is_new("https://b.example/post")
    assert not outcome.is_new("https://a.example/post")
    assert await affiliate_service.count_items(db_session, user_id=user_id, store=STORE_DISCOVERED) == 2


@pytest.mark.asyncio
async def test_persist_batch_strips_links_and_rejects_blank_ones(db_session) -> None:
    user_id = await insert_user(db_session)

    outcome = await affiliate_service.persist_batch(
        db_session,
        user_id=user_id,
        records=[_record("  https://a.example/post  "), _record("   "), _record("https://a.example/post")],
        store=STORE_SAVED,
    )
    await db_session.commit()

    assert list(outcome.inserted) == ["https://a.example/post"]
    assert outcome.rejected == ("   ",)
    rows = await affiliate_service.list_items(db_session, user_id=user_id, store=STORE_SAVED)
    assert [row.link for row in rows] == ["https://a.example/post"]


@pytest.mark.asyncio
async def test_persist_batch_is_scoped_per_owner_and_per_store(db_session) -> None:
    first_user = await insert_user(db_session)
    second_user = await insert_user(db_session)
    record = _record("https://shared.example/review")

    for user_id in (first_user, second_user):
        for store in (STORE_DISCOVERED, STORE_SAVED):
            outcome = await affiliate_service.persist_batch(
                db_session, user_id=user_id, records=[record], store=store
            )
            assert outcome.is_new(record.link)
    await db_session.commit()


@pytest.mark.asyncio
async def test_persist_batch_chunks_large_batches(db_session) -> None:
    user_id = await insert_user(db_session)
    records = [_record(f"https://blog{index}.example/post") for index in range(7)]
    await affiliate_service.persist_batch(
        db_session, user_id=user_id, records=records[:3], store=STORE_DISCOVERED, chunk_size=2
    )

    outcome = await affiliate_service.persist_batch(
        db_session, user_id=user_id, records=records, store=STORE_DISCOVERED, chunk_size=2
    )
    await db_session.commit()

    assert len(outcome.inserted) == 4
    assert len(outcome.existing) == 3
    assert sorted(outcome.inserted_ids) == sorted(set(outcome.inserted_ids))
    assert await affiliate_service.count_items(db_session, user_id=user_id, store=STORE_DISCOVERED) == 7


@pytest.mark.asyncio
async def test_concurrent_batches_never_duplicate_a_link(db_session, session_factory) -> None:
    user_id = await insert_user(db_session)
    records = [_record(f"https://creator{index}.example/") for index in range(5)]

    async def _persist():
        async with session_factory() as session:
            outcome = await affiliate_service.persist_batch(
                session, user_id=user_id, records=records, store=STORE_DISCOVERED
            )
            await session.commit()
            return outcome

    outcomes = await asyncio.gather(*(_persist() for _ in range(3)))

    assert sum(len(outcome.inserted) for outcome in outcomes) == 5
    for outcome in outcomes:
        assert {outcome.item_id(record.link) for record in records} == {
            outcomes[0].item_id(record.link) for record in records
        }
    assert await affiliate_service.count_items(db_session, user_id=user_id, store=STORE_DISCOVERED) == 5


@pytest.mark.asyncio
async def test_persist_batch_inserts_rows_in_link_order(db_session) -> None:
    user_id = await insert_user(db_session)
    records = [_record("https://c.example/"), _record("https://a.example/"), _record("https://b.example/")]

    outcome = await affiliate_service.persist_batch(
        db_session, user_id=user_id, records=records, store=STORE_DISCOVERED, chunk_size=1
    )
    await db_session.commit()

    ids = [outcome.item_id(link) for link in ("https://a.example/", "https://b.example/", "https://c.example/")]
    assert ids == sorted(ids)


@pytest.mark.asyncio
async def test_overlapping_batches_in_opposite_orders_each_link_lands_once(db_session, session_factory) -> None:
    user_id = await insert_user(db_session)
    records = [_record(f"https://creator{index}.example/") for index in range(5)]

    async def _persist(batch):
        async with session_factory() as session:
            outcome = await affiliate_service.persist_batch(
                session, user_id=user_id, records=batch, store=STORE_DISCOVERED, chunk_size=1
            )
            await session.commit()
            return outcome

    forward, backward = await asyncio.gather(_persist(records), _persist(list(reversed(records))))

    for record in records:
        assert forward.is_new(record.link) != backward.is_new(record.link)
        assert forward.item_id(record.link) == backward.item_id(record.link)
    assert await affiliate_service.count_items(db_session, user_id=user_id, store=STORE_DISCOVERED) == 5


@pytest.mark.asyncio
async def test_remove_items_ignores_absent_links(db_session) -> None:
    user_id = await insert_user(db_session)
    await affiliate_service.persist_batch(
        db_session,
        user_id=user_id,
        records=[_record("https://a.example/"), _record("https://b.example/")],
        store=STORE_SAVED,
    )

    removed = await affiliate_service.remove_items(
        db_session,
        user_id=user_id,
        links=[" https://a.example/ ", "https://missing.example/"],
        store=STORE_SAVED,
    )
    await db_session.commit()

    assert removed == 1
    rows = await affiliate_service.list_items(db_session, user_id=user_id, store=STORE_SAVED)
    assert [row.link for row in rows] == ["https://b.example/"]


@pytest.mark.asyncio
async def test_clear_discovered_leaves_saved_items(db_session) -> None:
    user_id = await insert_user(db_session)
    record = _record("https://a.example/")
    await affiliate_service.persist_batch(db_session, user_id=user_id, records=[record], store=STORE_DISCOVERED)
    await affiliate_service.persist_batch(db_session, user_id=user_id, records=[record], store=STORE_SAVED)

    removed = await affiliate_service.clear_discovered(db_session, user_id=user_id)
    await db_session.commit()

    assert removed == 1
    assert await affiliate_service.count_items(db_session, user_id=user_id, store=STORE_DISCOVERED) == 0
    assert await affiliate_service.count_items(db_session, user_id=user_id, store=STORE_SAVED) == 1


@pytest.mark.asyncio
async def test_promote_copies_discovered_item_once(db_session) -> None:
    user_id = await insert_user(db_session)
    await affiliate_service.persist_batch(
        db_session,
        user_id=user_id,
        records=[
            _record(
                "https://www.youtube.com/watch?v=abc",
                source="youtube",
                person_name="Keto Kitchen",
                channel={"subscribers": 1200},
            )
        ],
        store=STORE_DISCOVERED,
    )

    first = await affiliate_service.promote_to_saved(
        db_session, user_id=user_id, link="https://www.youtube.com/watch?v=abc"
    )
    second = await affiliate_service.promote_to_saved(
        db_session, user_id=user_id, link="https://www.youtube.com/watch?v=abc"
    )
    await db_session.commit()

    assert first.is_new("https://www.youtube.com/watch?v=abc")
    assert not second.is_new("https://www.youtube.com/watch?v=abc")
    saved = await affiliate_service.list_items(db_session, user_id=user_id, store=STORE_SAVED)
    assert [(row.person_name, row.channel) for row in saved] == [("Keto Kitchen", {"subscribers": 1200})]
    assert await affiliate_service.count_items(db_session, user_id=user_id, store=STORE_DISCOVERED) == 1


@pytest.mark.asyncio
async def test_promote_unknown_link_raises(db_session) -> None:
    user_id = await insert_user(db_session)

    with pytest.raises(AffiliateNotFoundError):
        await affiliate_service.promote_to_saved(db_session, user_id=user_id, link="https://nowhere.example/")


def test_unknown_store_name_is_rejected() -> None:
    with pytest.raises(UnknownStoreError):
        affiliate_service.model_for_store("archived")
