from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import ensure_principal_matches, get_api_principal_id
from app.api.errors import translate_domain_error
from app.api.responses import success_payload
from app.api.runtime_deps import get_search_job_service
from app.api.schemas.search import (
    SearchJobEnvelope,
    SearchJobStartEnvelope,
    SearchJobStartRequest,
)
from app.db.session import get_db_session
from app.services.credits.errors import InsufficientCreditsError
from app.services.search_jobs import application as search_job_service
from app.services.search_jobs.errors import SearchJobError
from app.services.search_jobs.types import JobSnapshot, StartJobRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search/jobs", tags=["api-search"])


def serialize_snapshot(snapshot: JobSnapshot) -> dict:
    failure = None
    if snapshot.failure_code is not None:
        failure = {"code": snapshot.failure_code, "message": snapshot.failure_message}
    return {
        "job_id": snapshot.job_id,
        "status": snapshot.status,
        "run_id": snapshot.provider_run_id,
        "keywords": snapshot.keywords,
        "sources": snapshot.sources,
        "competitors": snapshot.competitors,
        "is_onboarding": snapshot.is_onboarding,
        "created_at": snapshot.created_at,
        "started_at": snapshot.started_at,
        "completed_at": snapshot.completed_at,
        "failure": failure,
        "items": snapshot.items,
        "result_count": snapshot.result_count,
        "new_count": snapshot.new_count,
    }


@router.post(
    "",
    response_model=SearchJobStartEnvelope,
    status_code=201,
)
async def start_search_job(
    payload: SearchJobStartRequest,
    request: Request,
    db_session: AsyncSession = Depends(get_db_session),
    principal_id: int = Depends(get_api_principal_id),
    service: search_job_service.SearchJobService = Depends(get_search_job_service),
):
    ensure_principal_matches(principal_id, payload.user_id)
    try:
        snapshot = await service.start_job(
            db_session,
            StartJobRequest(
                user_id=payload.user_id,
                keywords=payload.keywords,
                sources=payload.sources,
                competitors=payload.competitors,
                onboarding=payload.onboarding,
            ),
        )
    except (SearchJobError, InsufficientCreditsError) as exc:
        raise translate_domain_error(exc) from exc
    return success_payload(
        request,
        data={
            "job_id": snapshot.job_id,
            "run_id": snapshot.provider_run_id,
            "status": snapshot.status,
        },
    )


@router.get(
    "/{job_id}",
    response_model=SearchJobEnvelope,
)
async def get_search_job(
    job_id: int,
    request: Request,
    user_id: int | None = Query(default=None),
    db_session: AsyncSession = Depends(get_db_session),
    principal_id: int = Depends(get_api_principal_id),
    service: search_job_service.SearchJobService = Depends(get_search_job_service),
):
    ensure_principal_matches(principal_id, user_id)
    try:
        snapshot = await service.poll_job(db_session, user_id=principal_id, job_id=job_id)
    except SearchJobError as exc:
        raise translate_domain_error(exc) from exc
    return success_payload(request, data=serialize_snapshot(snapshot))
