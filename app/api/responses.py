from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder
from starlette.requests import Request
from starlette.responses import JSONResponse


def response_meta(request: Request) -> dict[str, Any]:
    state = getattr(request, "state", None)
    return {"request_id": getattr(state, "request_id", None) if state is not None else None}


def success_payload(request: Request, *, data: Any) -> dict[str, Any]:
    """Envelope for routers that return through a `response_model`."""
    return {"data": data, "meta": response_meta(request)}


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    payload = {
        "error": {"code": code, "message": message, "details": details},
        "meta": response_meta(request),
    }
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(payload),
        headers=headers,
    )
