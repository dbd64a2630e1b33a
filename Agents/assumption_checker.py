"""
FILE: Agents/assumption_checker.py
------------------------------------
Assumption Checker agent. Exposes run_assumption_checker() for the
LangGraph orchestrator and for direct callers.

Imports:
  - Engine   ← core/assumption_engine.py
  - Registry ← Utils/assumptions_requirements_registry.py (via the engine)
  - Schemas  ← Schemas/assumption_checker.py
"""

import logging
from typing import Any

from pydantic import ValidationError

from Agents.statistician import _validation_message, parse_request
from Schemas.assumption_checker import AssumptionCheckerOutput
from Schemas.statistician import AnalysisRequest, ErrorDetail
from core.assumption_engine import check_assumptions
from core.errors import AnalysisError

logger = logging.getLogger(__name__)


def format_checker_response(output: AssumptionCheckerOutput) -> str:
    """Human-readable pass/fail listing."""
    lines = [f"Assumption checks for {output.test_type}:"]
    for a in output.assumptions:
        mark = "PASS" if a.passed else "FAIL"
        lines.append(f"  [{mark}] {a.name}: {a.value} ({a.threshold})")
        if not a.passed:
            lines.append(f"         {a.recommendation}")
    lines.append(output.summary)
    return "\n".join(lines)


# ─────────────────────────────────────────────
# PUBLIC ENTRY POINT
# ─────────────────────────────────────────────

def run_assumption_checker(payload: dict[str, Any] | AnalysisRequest) -> dict[str, Any]:
    """
    Returns:
        {
          "final_response": Human-readable summary shown to the user.
          "checker_output": AssumptionCheckerOutput dict.
        }
    or {"error": {"kind", "message"}} when the request itself is unusable.
    """
    try:
        request = parse_request(payload)
        output = check_assumptions(request)
    except ValidationError as e:
        return {"error": ErrorDetail(kind="invalid_request", message=_validation_message(e)).model_dump()}
    except AnalysisError as e:
        logger.warning("Assumption checking failed (%s): %s", e.kind, e.message)
        return {"error": ErrorDetail(**e.to_dict()).model_dump()}
    except Exception as e:
        logger.exception("Unexpected failure while checking assumptions")
        return {"error": ErrorDetail(kind="internal", message=f"Internal error: {e}").model_dump()}

    logger.info("%s: %d/%d assumptions passed", output.test_type, output.passed_count, output.total_count)
    return {
        "final_response": format_checker_response(output),
        "checker_output": output.model_dump(mode="json"),
    }
