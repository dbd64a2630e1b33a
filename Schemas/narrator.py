"""
FILE: Schemas/narrator.py
---------------------------
Schemas for narrative generation over an AnalysisResult.
"""

from enum import Enum

from pydantic import BaseModel


class NarrativeStyle(str, Enum):
    SUMMARY    = "summary"      # plain-language explanation
    APA        = "apa"          # APA 7th results paragraph
    DISCUSSION = "discussion"   # academic discussion section


class NarrativeOutput(BaseModel):
    style:        NarrativeStyle
    text:         str
    generated_by: str           # "template" or the chat model name
