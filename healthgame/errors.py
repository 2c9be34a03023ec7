from __future__ import annotations


class EngineError(Exception):
    code = "engine_error"
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        super().__init__(message)


class InvalidInputError(EngineError):
    code = "invalid_input"
    status_code = 400


class EventNotFoundError(EngineError):
    code = "not_found"
    status_code = 404


class LedgerConflictError(EngineError):
    code = "ledger_conflict"
    status_code = 409


class StorageUnavailableError(EngineError):
    code = "storage_unavailable"
    status_code = 503
