"""
FILE: Agents/narrator.py
--------------------------
Narrator agent. Turns an AnalysisResult into prose.

Two implementations share the Narrator protocol:
  - TemplateNarrator : deterministic text built from the result itself
  - LLMNarrator      : sends the structured result to a LangChain chat model
                       (ChatGroq unless another model is injected)

The statistics engine never depends on either of them.
"""

import json
import logging
from typing import Protocol

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from Prompts.narrator import DEFAULT_SYSTEM_PROMPT, NARRATOR_SYSTEM_PROMPTS, NARRATOR_USER_PROMPT
from Schemas.narrator import NarrativeOutput, NarrativeStyle
from Schemas.statistician import AnalysisResult
from constants.narrator import NARRATOR_MAX_TOKENS, NARRATOR_MODEL, NARRATOR_TEMPERATURE

logger = logging.getLogger(__name__)


class Narrator(Protocol):
    def narrate(
        self,
        result: AnalysisResult,
        style: NarrativeStyle,
        research_question: str | None = None,
    ) -> str: ...


# ─────────────────────────────────────────────
# TEMPLATE NARRATOR
# ─────────────────────────────────────────────

class TemplateNarrator:
    """Offline narrator; the same result always yields the same text."""

    name = "template"

    def narrate(
        self,
        result: AnalysisResult,
        style: NarrativeStyle,
        research_question: str | None = None,
    ) -> str:
        style = NarrativeStyle(style)
        if style == NarrativeStyle.APA:
            return self._apa(result, research_question)
        if style == NarrativeStyle.DISCUSSION:
            return self._discussion(result, research_question)
        return self._summary(result, research_question)

    @staticmethod
    def _sample(result: AnalysisResult) -> str:
        return f" (N = {result.n_observations})" if result.n_observations else ""

    def _summary(self, result: AnalysisResult, question: str | None) -> str:
        parts = []
        if question:
            parts.append(f"Research question: {question}")
        parts.append(f"{result.test_name}{self._sample(result)}: {result.summary}")
        if result.warnings:
            parts.append(
                f"Note: {len(result.warnings)} data issue(s) were handled automatically; "
                f"see the warnings before relying on these results."
            )
        return "\n\n".join(parts)

    def _apa(self, result: AnalysisResult, question: str | None) -> str:
        aim = f" to examine {question.rstrip('?.').lower()}" if question else ""
        name = result.test_name.lower()
        article = "An" if name[:1] in "aeiou" and not name.startswith(("one", "uni")) else "A"
        return f"{article} {name} was conducted{aim}{self._sample(result)}. {result.summary}"

    def _discussion(self, result: AnalysisResult, question: str | None) -> str:
        parts = [
            f"With respect to {question.rstrip('?.').lower()}, the {result.test_name.lower()} "
            f"indicated the following. {result.summary}" if question
            else f"The {result.test_name.lower()} indicated the following. {result.summary}"
        ]
        if result.warnings:
            limits = " ".join(result.warnings)
            parts.append(f"Several limitations apply. {limits}")
        else:
            parts.append("No data-quality issues were encountered during the analysis.")
        parts.append(
            "Future research should replicate these findings in an independent sample "
            "and consider additional variables that may account for the observed pattern."
        )
        return "\n\n".join(parts)


# ─────────────────────────────────────────────
# LLM NARRATOR
# ─────────────────────────────────────────────

class LLMNarrator:
    """
    Chat-model narrator. The default ChatGroq client is created on first use
    so importing this module never needs an API key.
    """

    def __init__(self, chat_model: BaseChatModel | None = None):
        self._model = chat_model

    @property
    def model(self) -> BaseChatModel:
        if self._model is None:
            from langchain_groq import ChatGroq

            self._model = ChatGroq(
                model=NARRATOR_MODEL,
                temperature=NARRATOR_TEMPERATURE,
                max_tokens=NARRATOR_MAX_TOKENS,
            )
        return self._model

    @property
    def name(self) -> str:
        model = self._model
        if model is None:
            return NARRATOR_MODEL
        return getattr(model, "model_name", None) or getattr(model, "model", None) or type(model).__name__

    def narrate(
        self,
        result: AnalysisResult,
        style: NarrativeStyle,
        research_question: str | None = None,
    ) -> str:
        style = NarrativeStyle(style)
        system_prompt = NARRATOR_SYSTEM_PROMPTS.get(style.value, DEFAULT_SYSTEM_PROMPT)
        user_prompt = NARRATOR_USER_PROMPT.format(
            test_type=result.test_type,
            research_question=research_question or "Not specified",
            results=json.dumps(result.model_dump(mode="json"), indent=2),
            style=style.value,
        )
        logger.info("Generating %s narrative for %s", style.value, result.test_type)
        response = self.model.invoke([
            SystemMessage(content=system_prompt),
            HumanMessage(content=user_prompt),
        ])
        return str(response.content).strip()


# ─────────────────────────────────────────────
# PUBLIC ENTRY POINT
# ─────────────────────────────────────────────

def run_narrator(
    result: AnalysisResult,
    style: NarrativeStyle | str = NarrativeStyle.SUMMARY,
    research_question: str | None = None,
    narrator: Narrator | None = None,
) -> NarrativeOutput:
    narrator = narrator or TemplateNarrator()
    style = NarrativeStyle(style)
    text = narrator.narrate(result, style, research_question)
    return NarrativeOutput(style=style, text=text, generated_by=getattr(narrator, "name", type(narrator).__name__))
