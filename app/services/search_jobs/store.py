from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import SearchJob, SearchJobStatus
from app.logging_utils import structured_log

logger = logging.getLogger(__name__)


async def create_job(
    db_session: AsyncSession,
    *,
    user_id: int,
    keywords: list[str],
    sources: list[str],
    competitors: list[str],
    is_onboarding: bool,
    settings_snapshot: dict[str, Any],
    created_at: datetime,
) -> SearchJob:
    job = SearchJob(
        user_id=user_id,
        keywords=list(keywords),
        sources=list(sources),
        competitors=list(competitors),
        is_onboarding=is_onboarding,
        settings_snapshot=dict(settings_snapshot),
        status=SearchJobStatus.CREATED,
        enrichment_cycles=0,
        credits_charged=0,
        created_at=created_at,
        updated_at=created_at,
    )
    db_session.add(job)
    await db_session.flush()
    return job


async def get_job_for_user(
    db_session: AsyncSession,
    *,
    user_id: int,
    job_id: int,
) -> SearchJob | None:
    result = await db_session.execute(
        select(SearchJob)
        .where(SearchJob.id == job_id, SearchJob.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def reload_job(db_session: AsyncSession, *, job_id: int) -> SearchJob:
    result = await db_session.execute(
        select(SearchJob).where(SearchJob.id == job_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def compare_and_set(
    db_session: AsyncSession,
    *,
    job_id: int,
    expected: SearchJobStatus,
    new_status: SearchJobStatus,
    now: datetime,
    **fields: Any,
) -> bool:
    """Move a job from `expected` to `new_status` only if nobody moved it first.

    Exactly one of any number of concurrent callers observes True. Does not
    commit.
    """
    result = await db_session.execute(
        update(SearchJob)
        .where(SearchJob.id == job_id, SearchJob.status == expected)
        .values(status=new_status, updated_at=now, **fields)
        .returning(SearchJob.id)
        .execution_options(synchronize_session=False)
    )
    won = result.scalar_one_or_none() is not None
    structured_log(
        logger,
        "info" if won else "debug",
        "search_jobs.transition" if won else "search_jobs.transition_lost",
        job_id=job_id,
        from_status=expected.value,
        to_status=new_status.value,
    )
    return won


async def update_if_status(
    db_session: AsyncSession,
    *,
    job_id: int,
    status: SearchJobStatus,
    now: datetime,
    **fields: Any,
) -> bool:
    """Write bookkeeping columns while the job is still in `status`. Does not commit."""
    result = await db_session.execute(
        update(SearchJob)
        .where(SearchJob.id == job_id, SearchJob.status == status)
        .values(updated_at=now, **fields)
        .returning(SearchJob.id)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none() is not None
