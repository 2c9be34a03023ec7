from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from healthgame.errors import EngineError


def ok(data: Any = None, meta: Optional[Dict[str, Any]] = None) -> JSONResponse:
    return JSONResponse(
        content=jsonable_encoder(
            {
                "ok": True,
                "data": data,
                "meta": meta or {},
            }
        )
    )


def error(message: str, code: str = "error", status: int = 400) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={
            "ok": False,
            "error": code,
            "message": message,
        },
    )


def engine_error(exc: EngineError) -> JSONResponse:
    return error(exc.message, code=exc.code, status=exc.status_code)
