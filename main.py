"""
FILE: main.py
--------------
LangGraph orchestrator for Statwise.
Wires the assumption checker, the statistician and the narrator into a
StateGraph with conditional edges that end the run on an error.

Pipeline flow:
  assumption_checker
      ↓ if error → END
  statistician
      ↓ if error → END
  narrator
      ↓
  END

State:
  StatwiseState TypedDict: the request payload plus every stage's output.

Usage:
  python main.py request.json [summary|apa|discussion] ["research question"]
"""

import json
import logging
import sys
from typing import Any, TypedDict

from langgraph.graph import END, StateGraph

from Agents.assumption_checker import run_assumption_checker
from Agents.narrator import Narrator, TemplateNarrator, run_narrator
from Agents.statistician import handle_request
from Schemas.narrator import NarrativeStyle
from Schemas.statistician import AnalysisResult
from core.final_report_engine import render_markdown

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────
# STATE SCHEMA
# TypedDict, all fields optional, populated as the pipeline progresses
# ─────────────────────────────────────────────

class StatwiseState(TypedDict, total=False):
    # ── Inputs ──
    request:           dict
    style:             str
    research_question: str | None

    # ── Stage outputs ──
    checker_output: dict
    results:        dict
    narrative:      dict

    # ── Routing ──
    error: dict | None


# ─────────────────────────────────────────────
# NODE FUNCTIONS
# ─────────────────────────────────────────────

def node_assumption_checker(state: StatwiseState) -> StatwiseState:
    outcome = run_assumption_checker(state["request"])
    if "error" in outcome:
        return {"error": outcome["error"]}
    logger.info(outcome["final_response"])
    return {"checker_output": outcome["checker_output"]}


def node_statistician(state: StatwiseState) -> StatwiseState:
    outcome = handle_request(state["request"])
    if "error" in outcome:
        return {"error": outcome["error"]}
    return {"results": outcome["results"]}


def make_narrator_node(narrator: Narrator):
    def node_narrator(state: StatwiseState) -> StatwiseState:
        result = AnalysisResult.model_validate(state["results"])
        output = run_narrator(
            result,
            style=state.get("style") or NarrativeStyle.SUMMARY,
            research_question=state.get("research_question"),
            narrator=narrator,
        )
        return {"narrative": output.model_dump(mode="json")}

    return node_narrator


def route_on_error(next_node: str):
    def route(state: StatwiseState) -> str:
        return END if state.get("error") else next_node

    return route


# ─────────────────────────────────────────────
# GRAPH
# ─────────────────────────────────────────────

def build_graph(narrator: Narrator | None = None):
    graph = StateGraph(StatwiseState)

    graph.add_node("assumption_checker", node_assumption_checker)
    graph.add_node("statistician", node_statistician)
    graph.add_node("narrator", make_narrator_node(narrator or TemplateNarrator()))

    graph.set_entry_point("assumption_checker")
    graph.add_conditional_edges("assumption_checker", route_on_error("statistician"))
    graph.add_conditional_edges("statistician", route_on_error("narrator"))
    graph.add_edge("narrator", END)

    return graph.compile()


def run_pipeline(
    payload: dict[str, Any],
    style: NarrativeStyle | str = NarrativeStyle.SUMMARY,
    research_question: str | None = None,
    narrator: Narrator | None = None,
) -> StatwiseState:
    """Runs the full pipeline on one request payload and returns the final state."""
    app = build_graph(narrator)
    return app.invoke({
        "request":           payload,
        "style":             NarrativeStyle(style).value,
        "research_question": research_question,
        "error":             None,
    })


# ─────────────────────────────────────────────
# CLI
# ─────────────────────────────────────────────

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if len(sys.argv) < 2:
        print("Usage: python main.py request.json [summary|apa|discussion] [research question]")
        sys.exit(1)

    with open(sys.argv[1], encoding="utf-8") as f:
        payload = json.load(f)
    style = sys.argv[2] if len(sys.argv) > 2 else "summary"
    question = sys.argv[3] if len(sys.argv) > 3 else None

    state = run_pipeline(payload, style=style, research_question=question)

    print("\n" + "=" * 60)
    print("  STATWISE")
    print("=" * 60)

    if state.get("error"):
        print(f"\nStopped ({state['error']['kind']}): {state['error']['message']}")
        sys.exit(2)

    print(render_markdown(AnalysisResult.model_validate(state["results"])))
    print("\n" + state["narrative"]["text"])
