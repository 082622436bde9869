"""Interpretation of classifier output.

The remote classifier answers with a bare string. It is mapped here, right
at the boundary, onto the closed :data:`ClassifierOutcome` sum type so the
rest of the pipeline never branches on raw strings:

- ``Category(code)``: a member of the active vocabulary (matched ignoring
  case and punctuation, returned in canonical spelling)
- ``Personal()``: the ``PERSONAL`` sentinel
- ``ManualReview()``: the ``MANUAL_REVIEW`` sentinel
- ``Unrecognized(raw)``: anything else
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from .models import SheetShape

PERSONAL_SENTINEL = "PERSONAL"
MANUAL_REVIEW_SENTINEL = "MANUAL_REVIEW"

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True, slots=True)
class Category:
    code: str


@dataclass(frozen=True, slots=True)
class Personal:
    pass


@dataclass(frozen=True, slots=True)
class ManualReview:
    pass


@dataclass(frozen=True, slots=True)
class Unrecognized:
    raw: str


type ClassifierOutcome = Category | Personal | ManualReview | Unrecognized


def _fold(value: str) -> str:
    return _NON_ALNUM_RE.sub("", value.lower())


_PERSONAL_FOLDED = _fold(PERSONAL_SENTINEL)
_MANUAL_REVIEW_FOLDED = _fold(MANUAL_REVIEW_SENTINEL)


def interpret_category(raw: str, vocabulary: Sequence[str]) -> ClassifierOutcome:
    folded = _fold(raw or "")
    if folded == _PERSONAL_FOLDED:
        return Personal()
    if folded == _MANUAL_REVIEW_FOLDED:
        return ManualReview()
    for code in vocabulary:
        if _fold(code) == folded and folded:
            return Category(code)
    return Unrecognized(raw)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


class ClassifierVerdictBody(BaseModel):
    """Typed view of one categorization answer."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    category: str
    confidence: float
    rationale: str = ""

    @field_validator("confidence")
    @classmethod
    def _confidence_in_range(cls, v: float) -> float:
        if 0.0 <= float(v) <= 1.0:
            return float(v)
        raise ValueError("confidence must be in [0,1]")


class StructureAnalysisBody(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    detected_shape: str
    confidence: float
    rationale: str = ""

    @field_validator("detected_shape")
    @classmethod
    def _shape_known(cls, v: str) -> str:
        # Raises InvalidDeclaredShape (a ValueError) for unknown keywords.
        return str(SheetShape.parse(v))

    @field_validator("confidence")
    @classmethod
    def _confidence_in_range(cls, v: float) -> float:
        if 0.0 <= float(v) <= 1.0:
            return float(v)
        raise ValueError("confidence must be in [0,1]")


def parse_verdict(body: Mapping[str, Any]) -> ClassifierVerdictBody:
    if not isinstance(body, Mapping):
        raise ValueError("Invalid response: expected a JSON object at top level")
    return ClassifierVerdictBody.model_validate(body)


def parse_structure_analysis(body: Mapping[str, Any]) -> StructureAnalysisBody:
    if not isinstance(body, Mapping):
        raise ValueError("Invalid response: expected a JSON object at top level")
    return StructureAnalysisBody.model_validate(body)


__all__ = [
    "Category",
    "ClassifierOutcome",
    "ClassifierVerdictBody",
    "MANUAL_REVIEW_SENTINEL",
    "ManualReview",
    "PERSONAL_SENTINEL",
    "Personal",
    "StructureAnalysisBody",
    "Unrecognized",
    "interpret_category",
    "parse_structure_analysis",
    "parse_verdict",
]
