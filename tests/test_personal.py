from __future__ import annotations

import pytest

from mtd_pipeline.personal import detect_personal


def test_grocery_chain_is_personal_with_confidence_per_match() -> None:
    match = detect_personal("Tesco Groceries")
    assert match.is_personal
    assert match.matched_terms == ("tesco", "groceries")
    assert match.confidence == 0.7


def test_single_term_scores_half() -> None:
    assert detect_personal("NETFLIX.COM").confidence == 0.5


def test_confidence_is_capped() -> None:
    match = detect_personal("Tesco supermarket groceries for family birthday")
    assert match.is_personal
    assert match.confidence == 0.9


@pytest.mark.parametrize(
    "description",
    [
        "Holiday Inn Express - client visit",
        "Gymshark wholesale order",
        "Accountant fees",
        "Premier Inn",
        "",
    ],
)
def test_business_descriptions_are_not_flagged(description: str) -> None:
    match = detect_personal(description)
    assert not match.is_personal
    assert match.matched_terms == ()
    assert match.confidence == 0.0


def test_apostrophes_and_symbols_are_tolerated() -> None:
    assert detect_personal("SAINSBURY'S LOCAL").is_personal
    assert detect_personal("Disney+ monthly").matched_terms == ("disney+",)


def test_custom_terms() -> None:
    assert detect_personal("Lottery ticket", terms=("lottery",)).is_personal
    assert not detect_personal("Tesco", terms=("lottery",)).is_personal
