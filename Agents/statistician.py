"""
FILE: Agents/statistician.py
------------------------------
Statistician agent: the request/response boundary around
core/statistician_engine.py.

handle_request() takes the JSON-shaped payload a client sends
({testType, dependentVariables, ..., data, options}) and always returns a
plain dict:

    {"results": AnalysisResult dict}             on success
    {"error":   {"kind": ..., "message": ...}}   on failure

No exception escapes: unexpected failures are logged and returned with
kind "internal".
"""

import logging
from typing import Any

from pydantic import ValidationError

from Schemas.statistician import AnalysisRequest, AnalysisResult, ErrorDetail
from core.errors import AnalysisError
from core.statistician_engine import run_analysis

logger = logging.getLogger(__name__)


def _validation_message(error: ValidationError) -> str:
    problems = []
    for issue in error.errors():
        location = ".".join(str(part) for part in issue["loc"]) or "request"
        problems.append(f"{location}: {issue['msg']}")
    return "Invalid request: " + "; ".join(problems)


def parse_request(payload: dict[str, Any] | AnalysisRequest) -> AnalysisRequest:
    if isinstance(payload, AnalysisRequest):
        return payload
    return AnalysisRequest.model_validate(payload)


# ─────────────────────────────────────────────
# PUBLIC ENTRY POINT
# ─────────────────────────────────────────────

def handle_request(payload: dict[str, Any] | AnalysisRequest) -> dict[str, Any]:
    """Runs one analysis request and wraps the outcome for the caller."""
    try:
        request = parse_request(payload)
        result: AnalysisResult = run_analysis(request)
    except ValidationError as e:
        logger.warning("Rejected malformed request: %s", e.error_count())
        detail = ErrorDetail(kind="invalid_request", message=_validation_message(e))
        return {"error": detail.model_dump()}
    except AnalysisError as e:
        logger.warning("Analysis failed (%s): %s", e.kind, e.message)
        return {"error": ErrorDetail(**e.to_dict()).model_dump()}
    except Exception as e:
        logger.exception("Unexpected failure while handling the request")
        return {"error": ErrorDetail(kind="internal", message=f"Internal error: {e}").model_dump()}

    return {"results": result.model_dump(mode="json")}
