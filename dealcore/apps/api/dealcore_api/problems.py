"""Render Err results and HTTP errors as RFC 9457 problem+json."""

import uuid
from typing import Any, Optional

from fastapi.responses import JSONResponse

from dealcore_api.context import request_id_var
from dealcore_api.results import Err
from dealcore_api.schemas import ProblemDetail

PROBLEM_BASE_URI = "https://api.dealcore.local/problems"
PROBLEM_MEDIA_TYPE = "application/problem+json"


def trace_instance() -> str:
    """Opaque per-request instance URI."""
    request_id = request_id_var.get()
    return f"urn:dealcore:trace:{request_id}" if request_id else f"urn:dealcore:trace:{uuid.uuid4()}"


def problem_type_for(code: str) -> str:
    return f"{PROBLEM_BASE_URI}/{code.lower().replace('_', '-')}"


def problem_response(
    err: Err,
    extra: Optional[dict[str, Any]] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    """Problem+json response for a domain Err; status and title come from its ErrorCode."""
    problem = ProblemDetail(
        type=problem_type_for(err.code.value),
        title=err.code.http_title,
        status=err.code.http_status,
        detail=err.detail or err.code.http_title,
        instance=trace_instance(),
        code=err.code.value,
        **{**err.extensions, **(extra or {})},
    )
    return JSONResponse(
        status_code=err.code.http_status,
        content=problem.model_dump(mode="json", exclude_none=True),
        media_type=PROBLEM_MEDIA_TYPE,
        headers=headers,
    )


def http_problem_response(
    status_code: int,
    title: str,
    detail: Any,
    type_uri: Optional[str] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    problem = ProblemDetail(
        type=type_uri or f"{PROBLEM_BASE_URI}/http-{status_code}",
        title=title,
        status=status_code,
        detail=detail,
        instance=trace_instance(),
    )
    return JSONResponse(
        status_code=status_code,
        content=problem.model_dump(mode="json", exclude_none=True),
        media_type=PROBLEM_MEDIA_TYPE,
        headers=headers,
    )
