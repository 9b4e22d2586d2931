"""Global error handlers ensuring request_id is included in JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from messenger.api.request_id import get_request_id
from messenger.domain.chat import exceptions as chat_exc

_STATUS_BY_ERROR: tuple[tuple[type[chat_exc.ChatError], int], ...] = (
    (chat_exc.AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (chat_exc.AuthorizationError, status.HTTP_403_FORBIDDEN),
    (chat_exc.ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (chat_exc.NotFoundError, status.HTTP_404_NOT_FOUND),
    (chat_exc.PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http_error(exc: chat_exc.ChatError) -> HTTPException:
    """Translate a messaging domain error into an HTTPException."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.reason)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.reason)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        rid = get_request_id(request)
        payload = {"detail": exc.detail, "request_id": rid}
        return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        rid = get_request_id(request)
        payload = {"detail": "validation_error", "errors": jsonable_errors(exc), "request_id": rid}
        return JSONResponse(status_code=422, content=payload)

    @app.exception_handler(chat_exc.ChatError)
    async def chat_exc_handler(request: Request, exc: chat_exc.ChatError):  # type: ignore[override]
        http_exc = to_http_error(exc)
        rid = get_request_id(request)
        return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail, "request_id": rid})


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    errors = []
    for item in exc.errors():
        entry = {key: value for key, value in item.items() if key in ("loc", "msg", "type")}
        entry["loc"] = [str(part) for part in entry.get("loc", ())]
        errors.append(entry)
    return errors
