import logging

from fastapi import FastAPI, Request

from healthgame.errors import EngineError
from healthgame.utils.envelope import engine_error, error

log = logging.getLogger("healthgame.errors")


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(EngineError)
    async def engine_error_handler(request: Request, exc: EngineError):
        if exc.status_code >= 500:
            log.error("Engine error on %s: %s", request.url.path, exc.message)
        return engine_error(exc)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        log.exception("Unhandled error on %s", request.url.path)
        return error("Internal server error", code="internal_error", status=500)
