from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from nodehub.enums import ErrorCode
from nodehub.observability import request_id_of


def _meta(request: Request) -> dict[str, str]:
    return {"at": datetime.now(timezone.utc).isoformat(), "request_id": request_id_of(request)}


def ok(request: Request, data: Any, *, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": True, "data": jsonable_encoder(data), "meta": _meta(request)},
    )


def fail(request: Request, code: ErrorCode | str, message: str, *, status_code: int = 400) -> JSONResponse:
    code_s = code.value if isinstance(code, ErrorCode) else str(code)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": code_s, "message": message}, "meta": _meta(request)},
    )
