from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

logger = structlog.get_logger()


class ComplaintDeskError(Exception):
    """
    Base class for every error raised by the complaint engine.
    Subclasses fix the machine readable code and the HTTP status.
    """
    code = "complaint_desk_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class PermissionDeniedError(ComplaintDeskError):
    code = "permission_denied"
    status_code = status.HTTP_403_FORBIDDEN


class InvalidTransitionError(ComplaintDeskError):
    code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT


class InvalidEnumValueError(ComplaintDeskError):
    code = "invalid_enum_value"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class ValidationFailedError(ComplaintDeskError):
    code = "validation_failed"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidAssigneeError(ComplaintDeskError):
    code = "invalid_assignee"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class EmptyBatchError(ComplaintDeskError):
    code = "empty_batch"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(ComplaintDeskError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ConcurrentModificationError(ComplaintDeskError):
    code = "concurrent_modification"
    status_code = status.HTTP_409_CONFLICT


class StoreUnavailableError(ComplaintDeskError):
    code = "store_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class NotificationFailed(ComplaintDeskError):
    """
    Never propagated to callers. Carried as a warning next to an
    otherwise successful assignment.
    """
    code = "notification_failed"
    status_code = status.HTTP_502_BAD_GATEWAY


async def complaint_desk_exception_handler(request: Request, exc: ComplaintDeskError):
    """
    Render domain errors as {"detail", "code"}.
    """
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("domain_error", code=exc.code, error=exc.message, path=request.url.path, **_safe_context(exc.context))
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def global_exception_handler(request: Request, exc: Exception):
    """
    Catch-all for unhandled exceptions.
    Prevents stack trace leakage in production.
    """
    logger.error("unhandled_exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unexpected error occurred. Please contact support."},
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """
    Standard HTTP exception handler.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Pydantic validation error handler.
    """
    logger.warning("validation_error", errors=exc.errors(), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation error", "errors": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    # ctx may hold exception instances which JSONResponse cannot encode
    errors = []
    for err in exc.errors():
        err = dict(err)
        if "ctx" in err:
            err["ctx"] = {k: str(v) for k, v in err["ctx"].items()}
        errors.append(err)
    return errors


def _safe_context(context: Optional[Dict[str, Any]]) -> Dict[str, str]:
    return {k: str(v) for k, v in (context or {}).items()}
