from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

FAILURE_PROVIDER_START = "PROVIDER_START_FAILED"
FAILURE_PROVIDER_RUN = "PROVIDER_RUN_FAILED"
FAILURE_START_INTERRUPTED = "START_INTERRUPTED"
FAILURE_RESULT_PROCESSING = "RESULT_PROCESSING_FAILED"
FAILURE_JOB_TIMED_OUT = "JOB_TIMED_OUT"


@dataclass(frozen=True)
class StartJobRequest:
    user_id: int | None
    keywords: list[str]
    sources: list[str]
    competitors: list[str] = field(default_factory=list)
    onboarding: bool = False


@dataclass(frozen=True)
class JobSnapshot:
    job_id: int
    status: str
    provider_run_id: str | None
    keywords: list[str]
    sources: list[str]
    competitors: list[str]
    is_onboarding: bool
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    failure_code: str | None
    failure_message: str | None
    items: list[dict[str, Any]]
    result_count: int | None
    new_count: int | None
