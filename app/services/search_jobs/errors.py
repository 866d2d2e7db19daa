from __future__ import annotations


class SearchJobError(Exception):
    code = "search_job_error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class SearchValidationError(SearchJobError):
    code = "INVALID_REQUEST"


class UserNotFoundError(SearchJobError):
    code = "USER_NOT_FOUND"


class JobNotFoundError(SearchJobError):
    code = "JOB_NOT_FOUND"


class ProviderStartFailedError(SearchJobError):
    code = "PROVIDER_START_FAILED"

    def __init__(self, message: str, *, job_id: int) -> None:
        super().__init__(message)
        self.job_id = job_id
