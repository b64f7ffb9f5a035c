"""Exception hierarchy shared by the managers and the HTTP layer."""

from __future__ import annotations

from typing import Any, Dict


class TarologistError(RuntimeError):
    code = "TAROLOGIST_ERROR"
    http_status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_response(self) -> Dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


class UnauthenticatedError(TarologistError):
    code = "UNAUTHENTICATED"
    http_status = 401

    def __init__(self, message: str = "Пользователь не авторизован") -> None:
        super().__init__(message)


class StoreError(TarologistError):
    """The remote document store could not be reached or refused the request."""

    code = "STORE_UNAVAILABLE"
    http_status = 503


class WriteError(TarologistError):
    """A write (save/update/delete/submit) was not acknowledged by the store.

    Safe to retry: every write targets a client-chosen document id.
    """

    code = "WRITE_FAILED"
    http_status = 502

    def __init__(self, operation: str, cause: Exception) -> None:
        super().__init__(f"{operation} failed, please retry: {cause}")
        self.operation = operation
        self.cause = cause


class ReadingError(TarologistError):
    code = "INVALID_READING"
    http_status = 400


class ReadingStateError(TarologistError):
    code = "INVALID_READING_STATE"
    http_status = 409


class InterpretationError(TarologistError):
    code = "INTERPRETATION_FAILED"
    http_status = 502


class NotFoundError(TarologistError):
    code = "NOT_FOUND"
    http_status = 404
