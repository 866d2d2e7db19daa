from __future__ import annotations

from fastapi import Request

from app.api.errors import ApiException

PRINCIPAL_HEADER = "X-User-Id"


async def get_api_principal_id(request: Request) -> int:
    """User id asserted by the upstream authentication layer."""
    raw_value = (request.headers.get(PRINCIPAL_HEADER) or "").strip()
    if not raw_value:
        raise ApiException(
            status_code=401,
            code="auth_required",
            message="Authentication required.",
        )
    try:
        principal_id = int(raw_value)
    except ValueError as exc:
        raise ApiException(
            status_code=401,
            code="auth_required",
            message="Authentication required.",
        ) from exc
    if principal_id <= 0:
        raise ApiException(
            status_code=401,
            code="auth_required",
            message="Authentication required.",
        )
    return principal_id


def ensure_principal_matches(principal_id: int, user_id: int | None) -> None:
    if user_id is not None and user_id != principal_id:
        raise ApiException(
            status_code=403,
            code="forbidden",
            message="Not authorized to access this resource.",
        )
