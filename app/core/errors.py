"""
Compliance error types and the FastAPI handlers that render them.

Services raise these; routers never catch them. Every error is request
scoped: the unit of work is rolled back and the caller gets the JSON
envelope {"error": code, "message": ..., "details": {...}}.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ComplianceError(Exception):
    """Base class for all request-scoped rejections."""

    code = "error"
    status_code = 400

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationFailed(ComplianceError):
    """Missing or blank required field. Nothing is applied."""

    code = "validation"
    status_code = 422

    def __init__(self, field: str, message: str):
        super().__init__(message, {"field": field})
        self.field = field


class QuotaExceeded(ComplianceError):
    """Case creation blocked by the subscription limit for that case type."""

    code = "quota_exceeded"
    status_code = 402

    def __init__(self, case_type: str, limit: int, used: int, reason: str = "limit_reached"):
        super().__init__(
            f"Plan limit reached for {case_type} cases ({used}/{limit})",
            {"type": case_type, "limit": limit, "used": used, "reason": reason},
        )
        self.case_type = case_type
        self.limit = limit
        self.used = used


class NotEligible(ComplianceError):
    """Defense submitted outside its window."""

    code = "not_eligible"
    status_code = 409


class DefenseAlreadySubmitted(NotEligible):
    code = "already_submitted"


class AlreadyTerminal(ComplianceError):
    """Decision attempted on a closed case."""

    code = "already_terminal"
    status_code = 409


class NotFound(ComplianceError):
    code = "not_found"
    status_code = 404


class CaseNotFound(NotFound):
    def __init__(self, case_id: str):
        super().__init__(f"Case {case_id} not found", {"case_id": case_id})


class Forbidden(ComplianceError):
    code = "forbidden"
    status_code = 403


async def compliance_error_handler(request: Request, exc: ComplianceError) -> JSONResponse:
    logger.warning(
        "Rejected %s %s: %s (%s)", request.method, request.url.path, exc.code, exc.message
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies / params get the same envelope as service-level validation."""
    errors = jsonable_encoder(exc.errors())
    field = ".".join(str(part) for part in errors[0]["loc"][1:]) if errors else None
    logger.warning("Rejected %s %s: invalid request (%s)", request.method, request.url.path, field)
    return JSONResponse(
        status_code=ValidationFailed.status_code,
        content={
            "error": ValidationFailed.code,
            "message": "Invalid request",
            "details": {"field": field, "errors": errors},
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the compliance error envelope on the app."""
    app.add_exception_handler(ComplianceError, compliance_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
