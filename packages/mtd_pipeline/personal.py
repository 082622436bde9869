"""Heuristic detection of personal (non-business) spending.

Runs before any remote classification: a positive match keeps the row away
from the classifier entirely and records it as personal.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from functools import cache

_CONFIDENCE_CAP: float = 0.9
_CONFIDENCE_BASE: float = 0.5
_CONFIDENCE_STEP: float = 0.2

PERSONAL_TERMS: tuple[str, ...] = (
    # Grocery chains and food shopping
    "tesco",
    "sainsbury",
    "sainsburys",
    "asda",
    "morrisons",
    "waitrose",
    "aldi",
    "lidl",
    "co-op food",
    "ocado",
    "grocery",
    "groceries",
    "supermarket",
    # Entertainment subscriptions
    "netflix",
    "spotify",
    "disney+",
    "disney plus",
    "amazon prime",
    "prime video",
    "apple music",
    "now tv",
    "cinema",
    # Personal care, fitness and clothing
    "personal care",
    "hairdresser",
    "barber",
    "salon",
    "gym",
    "fitness",
    "clothing",
    "clothes",
    "primark",
    # Family and household
    "personal",
    "private",
    "family",
    "spouse",
    "wife",
    "husband",
    "children",
    "kids",
    "school fees",
    "nursery",
    "childcare",
    "pocket money",
    "birthday",
    "household",
)


@dataclass(frozen=True, slots=True)
class PersonalMatch:
    is_personal: bool
    matched_terms: tuple[str, ...]
    confidence: float


@cache
def _pattern_for(term: str) -> re.Pattern[str]:
    # Word boundaries on alphanumeric edges only, so 'disney+' still matches.
    left = r"(?<![a-z0-9])" if term[:1].isalnum() else ""
    right = r"(?![a-z0-9])" if term[-1:].isalnum() else ""
    return re.compile(left + re.escape(term) + right)


def _normalize(description: str) -> str:
    return " ".join(description.lower().replace("'", "").split())


def detect_personal(
    description: str,
    amount: Decimal | float | None = None,
    *,
    terms: Iterable[str] = PERSONAL_TERMS,
) -> PersonalMatch:
    """Return which personal-indicator ``terms`` appear in ``description``.

    Confidence grows with the number of distinct matches: 0.5 for one term,
    +0.2 for each additional term, capped at 0.9. ``amount`` is accepted for
    interface parity with the classifier context and does not affect the
    verdict.
    """

    text = _normalize(description or "")
    if not text:
        return PersonalMatch(False, (), 0.0)
    matched = tuple(
        dict.fromkeys(t for t in terms if t and _pattern_for(t.lower()).search(text))
    )
    if not matched:
        return PersonalMatch(False, (), 0.0)
    confidence = min(_CONFIDENCE_CAP, _CONFIDENCE_BASE + _CONFIDENCE_STEP * (len(matched) - 1))
    return PersonalMatch(True, matched, round(confidence, 2))


__all__ = ["PERSONAL_TERMS", "PersonalMatch", "detect_personal"]
