"""Search job lifecycle: admission, provider hand-off and poll-driven progress.

    created --start ok--> running --provider succeeded--> enriching --> completed
       |                     |                               |
       +--start failed-------+--provider failed---> failed   +--processing error--> failed
    any non-terminal state past the wall-clock ceiling ---> timed_out

Progress happens only when somebody polls. Every transition is a
compare-and-set on the current status, so concurrent pollers may all do the
read-only provider work but only one of them applies each transition; the
others simply report what the winner committed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.base import as_utc, utcnow
from app.db.models import (
    TERMINAL_JOB_STATUSES,
    CreditCategory,
    SearchJob,
    SearchJobStatus,
    User,
)
from app.db.session import is_store_unavailable
from app.logging_utils import structured_log
from app.services.affiliates import application as affiliate_service
from app.services.affiliates.types import STORE_DISCOVERED, AffiliateRecord, PersistOutcome
from app.services.credits import ledger
from app.services.providers.apify import metadata_for
from app.services.providers.errors import ProviderPollError, ProviderUnavailableError
from app.services.providers.queries import (
    DISCOVERY_COMPETITOR,
    DISCOVERY_KEYWORD,
    attribute_query,
    normalize_competitor,
)
from app.services.providers.types import (
    ALL_SOURCES,
    PROVIDER_STATUS_FAILED,
    PROVIDER_STATUS_RUNNING,
    SOCIAL_SOURCES,
    EnrichmentPoll,
    EnrichmentProvider,
    RawItem,
    SearchParams,
    SearchProvider,
)
from app.services.search_jobs import store
from app.services.search_jobs.errors import (
    JobNotFoundError,
    ProviderStartFailedError,
    SearchValidationError,
    UserNotFoundError,
)
from app.services.search_jobs.filters import filter_results
from app.services.search_jobs.types import (
    FAILURE_JOB_TIMED_OUT,
    FAILURE_PROVIDER_RUN,
    FAILURE_PROVIDER_START,
    FAILURE_RESULT_PROCESSING,
    FAILURE_START_INTERRUPTED,
    JobSnapshot,
    StartJobRequest,
)
from app.settings import settings

logger = logging.getLogger(__name__)

DISCOVERY_TOPIC = "topic"
# Malformed provider payloads surface as these while results are processed.
PROCESSING_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


def normalize_keywords(raw_keywords: list[str] | None) -> list[str]:
    seen: set[str] = set()
    keywords: list[str] = []
    for raw in raw_keywords or []:
        keyword = " ".join(str(raw).split())
        if keyword and keyword.lower() not in seen:
            seen.add(keyword.lower())
            keywords.append(keyword)
    return keywords


def normalize_sources(raw_sources: list[str] | None) -> list[str]:
    requested = {str(source).strip().lower() for source in (raw_sources or [])}
    return [source for source in ALL_SOURCES if source in requested]


def validate_start_request(request: StartJobRequest) -> tuple[list[str], list[str], list[str]]:
    if request.user_id is None:
        raise SearchValidationError("user_id is required.", code="MISSING_USER_ID")
    keywords = normalize_keywords(request.keywords)
    if not keywords:
        raise SearchValidationError("At least one keyword is required.", code="MISSING_TOPICS")
    if len(keywords) > settings.search_max_keywords:
        raise SearchValidationError(
            f"At most {settings.search_max_keywords} keywords are allowed per search.",
            code="TOO_MANY_KEYWORDS",
        )
    sources = normalize_sources(request.sources) if request.sources else list(ALL_SOURCES)
    if not sources:
        raise SearchValidationError(
            "At least one valid source is required.",
            code="INVALID_SOURCES",
        )
    competitors: list[str] = []
    for raw in request.competitors or []:
        competitor = normalize_competitor(str(raw))
        if competitor and competitor not in competitors:
            competitors.append(competitor)
    return keywords, sources, competitors[: settings.search_max_competitors]


def build_snapshot(job: SearchJob) -> JobSnapshot:
    if job.status in TERMINAL_JOB_STATUSES:
        items = list(job.result_items or [])
    elif job.status == SearchJobStatus.ENRICHING:
        items = [_unenriched_view(raw) for raw in job.raw_items or []]
    else:
        items = []
    return JobSnapshot(
        job_id=job.id,
        status=SearchJobStatus(job.status).value,
        provider_run_id=job.provider_run_id,
        keywords=list(job.keywords or []),
        sources=list(job.sources or []),
        competitors=list(job.competitors or []),
        is_onboarding=bool(job.is_onboarding),
        created_at=as_utc(job.created_at),
        started_at=as_utc(job.started_at),
        completed_at=as_utc(job.completed_at),
        failure_code=job.failure_code,
        failure_message=job.failure_message,
        items=items,
        result_count=job.result_count,
        new_count=job.new_count,
    )


def _unenriched_view(raw: dict[str, Any]) -> dict[str, Any]:
    return {**raw, "is_new": None, "item_id": None}


def _params_for(job: SearchJob) -> SearchParams:
    snapshot = job.settings_snapshot or {}
    return SearchParams(
        keywords=tuple(job.keywords or ()),
        sources=tuple(job.sources or ()),
        competitors=tuple(job.competitors or ()),
        target_country=snapshot.get("target_country"),
        target_language=snapshot.get("target_language"),
    )


def build_records(job: SearchJob, items: list[RawItem], metadata_by_key: dict[str, dict[str, Any]]) -> list[AffiliateRecord]:
    params = _params_for(job)
    fallback_keyword = params.keywords[0] if params.keywords else None
    records: list[AffiliateRecord] = []
    for item in items:
        origin_type, origin_value = attribute_query(item.search_query, params)
        if origin_type is None:
            origin_type, origin_value = DISCOVERY_KEYWORD, fallback_keyword
        if job.is_onboarding and origin_type == DISCOVERY_KEYWORD:
            origin_type = DISCOVERY_TOPIC
        metadata = metadata_for(item, metadata_by_key) or {}
        extra = {
            "search_query": item.search_query,
            "published": item.published,
            "summary": metadata.get("summary"),
        }
        records.append(
            AffiliateRecord(
                link=item.link,
                source=item.source,
                title=item.title,
                domain=item.domain,
                snippet=item.snippet,
                search_keyword=origin_value if origin_type != DISCOVERY_COMPETITOR else fallback_keyword,
                discovery_method_type=origin_type,
                discovery_method_value=origin_value,
                person_name=metadata.get("person_name"),
                email=metadata.get("email"),
                channel=metadata.get("channel"),
                extra={key: value for key, value in extra.items() if value is not None} or None,
                rank=item.rank,
            )
        )
    return records


def result_items(
    records: list[AffiliateRecord], outcome: PersistOutcome, *, user_id: int
) -> list[dict[str, Any]]:
    items: list[dict[str, Any]] = []
    for record in records:
        link = record.link.strip()
        item = {key: value for key, value in record.row_values(user_id=user_id).items() if key != "user_id"}
        item["link"] = link
        item["is_new"] = outcome.is_new(link)
        item["item_id"] = outcome.item_id(link)
        items.append(item)
    return items


class SearchJobService:
    def __init__(
        self,
        *,
        search_provider: SearchProvider,
        enrichment_provider: EnrichmentProvider,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._search_provider = search_provider
        self._enrichment_provider = enrichment_provider
        self._clock = clock

    async def start_job(self, db_session: AsyncSession, request: StartJobRequest) -> JobSnapshot:
        keywords, sources, competitors = validate_start_request(request)
        user = await db_session.get(User, request.user_id)
        if user is None:
            raise UserNotFoundError("User account not found. Please complete onboarding.")

        now = self._clock()
        job = await store.create_job(
            db_session,
            user_id=user.id,
            keywords=keywords,
            sources=sources,
            competitors=competitors,
            is_onboarding=request.onboarding,
            settings_snapshot={
                "target_country": user.target_country,
                "target_language": user.target_language,
                "brand": user.brand,
            },
            created_at=now,
        )
        if not request.onboarding:
            try:
                await ledger.check_and_debit(
                    db_session,
                    user_id=user.id,
                    category=CreditCategory.TOPIC_SEARCH,
                    amount=1,
                    now=now,
                    reference_type="search_job",
                    reference_id=str(job.id),
                )
            except Exception:
                await db_session.rollback()
                raise
            job.credits_charged = 1
        await db_session.commit()
        job_id = job.id
        structured_log(
            logger,
            "info",
            "search_jobs.created",
            user_id=user.id,
            job_id=job_id,
            keyword_count=len(keywords),
            sources=sources,
            onboarding=request.onboarding,
        )

        try:
            run_id = await self._search_provider.start(_params_for(job))
        except ProviderUnavailableError as exc:
            await self._fail_start(db_session, job=job, message=str(exc))
            raise ProviderStartFailedError(
                "Search provider could not start the run. Please try again.",
                job_id=job_id,
            ) from exc

        started_at = self._clock()
        won = await store.compare_and_set(
            db_session,
            job_id=job_id,
            expected=SearchJobStatus.CREATED,
            new_status=SearchJobStatus.RUNNING,
            now=started_at,
            provider_run_id=run_id,
            started_at=started_at,
        )
        await db_session.commit()
        if not won:
            structured_log(logger, "warning", "search_jobs.start_superseded", job_id=job_id, provider_run_id=run_id)
        return build_snapshot(await store.reload_job(db_session, job_id=job_id))

    async def _fail_start(self, db_session: AsyncSession, *, job: SearchJob, message: str) -> None:
        now = self._clock()
        won = await store.compare_and_set(
            db_session,
            job_id=job.id,
            expected=SearchJobStatus.CREATED,
            new_status=SearchJobStatus.FAILED,
            now=now,
            failure_code=FAILURE_PROVIDER_START,
            failure_message=message,
            completed_at=now,
            result_items=[],
            result_count=0,
            new_count=0,
        )
        if won and job.credits_charged:
            await ledger.refund(
                db_session,
                user_id=job.user_id,
                category=CreditCategory.TOPIC_SEARCH,
                amount=job.credits_charged,
                now=now,
                reference_type="search_job",
                reference_id=str(job.id),
            )
        await db_session.commit()
        structured_log(
            logger,
            "warning",
            "search_jobs.provider_start_failed",
            user_id=job.user_id,
            job_id=job.id,
            error=message,
        )

    async def poll_job(self, db_session: AsyncSession, *, user_id: int, job_id: int) -> JobSnapshot:
        job = await store.get_job_for_user(db_session, user_id=user_id, job_id=job_id)
        if job is None:
            raise JobNotFoundError("Job not found or access denied.")
        if job.status in TERMINAL_JOB_STATUSES:
            return build_snapshot(job)

        now = self._clock()
        if now - as_utc(job.created_at) > timedelta(seconds=settings.search_job_timeout_seconds):
            await self._terminate(
                db_session,
                job=job,
                new_status=SearchJobStatus.TIMED_OUT,
                now=now,
                failure_code=FAILURE_JOB_TIMED_OUT,
                failure_message="Search did not finish in time.",
            )
        elif job.status == SearchJobStatus.CREATED:
            await self._advance_created(db_session, job=job, now=now)
        elif job.status == SearchJobStatus.RUNNING:
            await self._advance_running(db_session, job=job, now=now)
        elif job.status == SearchJobStatus.ENRICHING:
            await self._advance_enriching(db_session, job=job, now=now)
        return build_snapshot(await store.reload_job(db_session, job_id=job_id))

    async def _terminate(
        self,
        db_session: AsyncSession,
        *,
        job: SearchJob,
        new_status: SearchJobStatus,
        now: datetime,
        failure_code: str,
        failure_message: str | None,
        refund: bool = False,
    ) -> bool:
        won = await store.compare_and_set(
            db_session,
            job_id=job.id,
            expected=SearchJobStatus(job.status),
            new_status=new_status,
            now=now,
            failure_code=failure_code,
            failure_message=failure_message,
            completed_at=now,
            result_items=[],
            result_count=0,
            new_count=0,
        )
        if won and refund and job.credits_charged:
            await ledger.refund(
                db_session,
                user_id=job.user_id,
                category=CreditCategory.TOPIC_SEARCH,
                amount=job.credits_charged,
                now=now,
                reference_type="search_job",
                reference_id=str(job.id),
            )
        await db_session.commit()
        if won:
            structured_log(
                logger,
                "warning",
                "search_jobs.terminated",
                user_id=job.user_id,
                job_id=job.id,
                status=new_status.value,
                failure_code=failure_code,
            )
        return won

    async def _advance_created(self, db_session: AsyncSession, *, job: SearchJob, now: datetime) -> None:
        # A created job that never got a run id means the starting request died mid-way.
        if now - as_utc(job.created_at) <= timedelta(seconds=settings.search_job_start_grace_seconds):
            return
        await self._terminate(
            db_session,
            job=job,
            new_status=SearchJobStatus.FAILED,
            now=now,
            failure_code=FAILURE_START_INTERRUPTED,
            failure_message="The search never reached the provider.",
            refund=True,
        )

    async def _advance_running(self, db_session: AsyncSession, *, job: SearchJob, now: datetime) -> None:
        try:
            result = await self._search_provider.poll(job.provider_run_id)
        except ProviderPollError as exc:
            structured_log(logger, "warning", "search_jobs.provider_poll_failed", job_id=job.id, error=str(exc))
            await store.update_if_status(
                db_session, job_id=job.id, status=SearchJobStatus.RUNNING, now=now, last_polled_at=now
            )
            await db_session.commit()
            return
        except PROCESSING_ERRORS as exc:
            await self._fail_unprocessable(db_session, job=job, now=now, exc=exc)
            return

        if result.status == PROVIDER_STATUS_RUNNING:
            await store.update_if_status(
                db_session, job_id=job.id, status=SearchJobStatus.RUNNING, now=now, last_polled_at=now
            )
            await db_session.commit()
            return

        if result.status == PROVIDER_STATUS_FAILED:
            await self._terminate(
                db_session,
                job=job,
                new_status=SearchJobStatus.FAILED,
                now=now,
                failure_code=FAILURE_PROVIDER_RUN,
                failure_message=result.failure_reason,
            )
            return

        snapshot = job.settings_snapshot or {}
        try:
            kept = filter_results(list(result.items), brand=snapshot.get("brand"), competitors=job.competitors or [])
            raw_items = [item.to_dict() for item in kept]
        except PROCESSING_ERRORS as exc:
            await self._fail_unprocessable(db_session, job=job, now=now, exc=exc)
            return
        needs_enrichment = any(item.source in SOCIAL_SOURCES for item in kept)
        won = await store.compare_and_set(
            db_session,
            job_id=job.id,
            expected=SearchJobStatus.RUNNING,
            new_status=SearchJobStatus.ENRICHING,
            now=now,
            raw_items=raw_items,
            enrichment_started_at=now,
            enrichment_cycles=0,
            enrichment_handle=None if needs_enrichment else {},
            last_polled_at=now,
        )
        await db_session.commit()
        if not won:
            return
        structured_log(
            logger,
            "info",
            "search_jobs.provider_succeeded",
            user_id=job.user_id,
            job_id=job.id,
            item_count=len(result.items),
            kept_count=len(kept),
        )

        if needs_enrichment:
            # Only the transition winner starts enrichment runs, so they are never spawned twice.
            handle = await self._enrichment_provider.start(kept)
            await store.update_if_status(
                db_session,
                job_id=job.id,
                status=SearchJobStatus.ENRICHING,
                now=now,
                enrichment_handle=handle,
            )
            await db_session.commit()
        await self._advance_enriching(db_session, job=await store.reload_job(db_session, job_id=job.id), now=now)

    async def _fail_unprocessable(
        self, db_session: AsyncSession, *, job: SearchJob, now: datetime, exc: Exception
    ) -> None:
        logger.exception("search_jobs.result_processing_failed", extra={"job_id": job.id})
        await self._terminate(
            db_session,
            job=job,
            new_status=SearchJobStatus.FAILED,
            now=now,
            failure_code=FAILURE_RESULT_PROCESSING,
            failure_message=f"{exc.__class__.__name__}: {exc}",
        )

    async def _advance_enriching(self, db_session: AsyncSession, *, job: SearchJob, now: datetime) -> None:
        handle = job.enrichment_handle
        enrichment: EnrichmentPoll | None
        if handle is None:
            enrichment = None
        elif not handle:
            enrichment = EnrichmentPoll(finished=True)
        else:
            try:
                enrichment = await asyncio.wait_for(
                    self._enrichment_provider.poll(handle),
                    timeout=settings.search_enrichment_wait_budget_seconds,
                )
            except TimeoutError:
                enrichment = None

        cycles = int(job.enrichment_cycles or 0) + 1
        started = as_utc(job.enrichment_started_at) or now
        ceiling_reached = (
            cycles >= settings.search_enrichment_max_cycles
            or now - started >= timedelta(seconds=settings.search_enrichment_max_seconds)
        )
        if enrichment is not None and enrichment.finished:
            await self._complete(db_session, job=job, metadata_by_key=enrichment.metadata_by_key, now=now)
            return
        if ceiling_reached:
            structured_log(
                logger,
                "warning",
                "search_jobs.enrichment_ceiling_reached",
                job_id=job.id,
                cycles=cycles,
            )
            partial = enrichment.metadata_by_key if enrichment is not None else {}
            await self._complete(db_session, job=job, metadata_by_key=partial, now=now)
            return
        await store.update_if_status(
            db_session,
            job_id=job.id,
            status=SearchJobStatus.ENRICHING,
            now=now,
            enrichment_cycles=cycles,
            last_polled_at=now,
        )
        await db_session.commit()

    async def _complete(
        self,
        db_session: AsyncSession,
        *,
        job: SearchJob,
        metadata_by_key: dict[str, dict[str, Any]],
        now: datetime,
    ) -> None:
        job_id = job.id
        user_id = job.user_id
        try:
            won = await store.compare_and_set(
                db_session,
                job_id=job_id,
                expected=SearchJobStatus.ENRICHING,
                new_status=SearchJobStatus.COMPLETED,
                now=now,
                completed_at=now,
                last_polled_at=now,
            )
            if not won:
                await db_session.rollback()
                return
            items = [RawItem.from_dict(raw) for raw in job.raw_items or []]
            records = build_records(job, items, metadata_by_key)
            outcome = await affiliate_service.persist_batch(
                db_session,
                user_id=user_id,
                records=records,
                store=STORE_DISCOVERED,
            )
            snapshot_items = result_items(records, outcome, user_id=user_id)
            await store.update_if_status(
                db_session,
                job_id=job_id,
                status=SearchJobStatus.COMPLETED,
                now=now,
                result_items=snapshot_items,
                result_count=len(snapshot_items),
                new_count=len(outcome.inserted),
            )
            await db_session.commit()
        except SQLAlchemyError as exc:
            await db_session.rollback()
            if is_store_unavailable(exc):
                raise
            logger.exception("search_jobs.result_processing_failed", extra={"job_id": job_id})
            await self._fail_processing(db_session, job_id=job_id, now=now, message=str(exc.__class__.__name__))
            return
        except PROCESSING_ERRORS as exc:
            await db_session.rollback()
            logger.exception("search_jobs.result_processing_failed", extra={"job_id": job_id})
            await self._fail_processing(db_session, job_id=job_id, now=now, message=str(exc))
            return

        structured_log(
            logger,
            "info",
            "search_jobs.completed",
            user_id=user_id,
            job_id=job_id,
            result_count=len(snapshot_items),
            new_count=len(outcome.inserted),
        )

    async def _fail_processing(self, db_session: AsyncSession, *, job_id: int, now: datetime, message: str) -> None:
        await store.compare_and_set(
            db_session,
            job_id=job_id,
            expected=SearchJobStatus.ENRICHING,
            new_status=SearchJobStatus.FAILED,
            now=now,
            failure_code=FAILURE_RESULT_PROCESSING,
            failure_message=message,
            completed_at=now,
            result_items=[],
            result_count=0,
            new_count=0,
        )
        await db_session.commit()
