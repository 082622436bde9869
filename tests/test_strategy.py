# ruff: noqa: E402, I001
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import pytest

from mtd_pipeline.classifier import ClassifierGateway
from mtd_pipeline.errors import InvalidDeclaredShape, MissingPriorPeriods
from mtd_pipeline.models import SheetShape
from mtd_pipeline.periods import Period
from mtd_pipeline.retry import RetryPolicy
from mtd_pipeline.strategy import resolve_strategy
from tests.helpers.openai_stub import APIStatusError, OpenAIStub

_ROWS = [{"Description": f"Row {i}", "Amount": str(i)} for i in range(30)]


def _gateway(stub: OpenAIStub) -> ClassifierGateway:
    return ClassifierGateway(lambda: stub, policy=RetryPolicy(sleep=lambda _s: None))


def test_first_period_is_always_direct() -> None:
    stub = OpenAIStub(structure=lambda rows: ("cumulative", 0.9, ""))
    s = resolve_strategy(Period.Q1, declared_shape="cumulative", rows=_ROWS, gateway=_gateway(stub))
    assert s.kind is SheetShape.DIRECT
    assert s.source == "first_period"
    assert stub.calls == []


def test_first_period_still_validates_declared_shape() -> None:
    with pytest.raises(InvalidDeclaredShape):
        resolve_strategy("q1", declared_shape="zigzag")


def test_declared_shape_is_authoritative() -> None:
    stub = OpenAIStub(structure=lambda rows: ("cumulative", 0.9, ""))
    s = resolve_strategy("q2", declared_shape="multi-section", rows=_ROWS, gateway=_gateway(stub))
    assert s.kind is SheetShape.MULTI_SECTION
    assert s.source == "declared"
    assert stub.calls == []


def test_analysis_runs_once_on_a_sample() -> None:
    seen: list[list[dict[str, Any]]] = []

    def structure(rows: list[dict[str, Any]]) -> tuple[str, float, str]:
        seen.append(rows)
        return "multi_section", 0.75, "quarter labels"

    stub = OpenAIStub(structure=structure)
    s = resolve_strategy(Period.Q3, rows=_ROWS, gateway=_gateway(stub), sample_size=5)
    assert s.kind is SheetShape.MULTI_SECTION
    assert s.source == "analysis"
    assert s.confidence == pytest.approx(0.75)
    assert not s.degraded
    assert len(stub.calls) == 1
    assert len(seen[0]) == 5


def test_failed_analysis_degrades_to_direct(caplog: pytest.LogCaptureFixture) -> None:
    def denied(rows: list[dict[str, Any]]) -> Any:
        raise APIStatusError("Incorrect API key provided", 401)

    stub = OpenAIStub(structure=denied)
    with caplog.at_level(logging.WARNING, logger="mtd_pipeline"):
        s = resolve_strategy(Period.Q2, rows=_ROWS, gateway=_gateway(stub))
    assert s.kind is SheetShape.DIRECT
    assert s.degraded
    assert s.source == "fallback"
    assert any("strategy:degraded" in r.getMessage() for r in caplog.records)


def test_malformed_analysis_degrades_to_direct() -> None:
    stub = OpenAIStub(structure=lambda rows: ("sideways", 0.9, ""))
    s = resolve_strategy(Period.Q2, rows=_ROWS, gateway=_gateway(stub))
    assert s.kind is SheetShape.DIRECT and s.degraded
    assert len(stub.calls) == 3


def test_no_gateway_degrades_to_direct() -> None:
    s = resolve_strategy(Period.Q4, rows=_ROWS)
    assert s.kind is SheetShape.DIRECT and s.degraded


def test_cumulative_requires_prior_totals() -> None:
    with pytest.raises(MissingPriorPeriods):
        resolve_strategy(Period.Q2, declared_shape="cumulative")


def test_cumulative_detected_by_analysis_also_requires_prior_totals() -> None:
    stub = OpenAIStub(structure=lambda rows: ("cumulative", 0.9, ""))
    with pytest.raises(MissingPriorPeriods):
        resolve_strategy(Period.Q2, rows=_ROWS, gateway=_gateway(stub))


def test_cumulative_with_summed_prior_totals() -> None:
    s = resolve_strategy(
        Period.Q2,
        declared_shape="cumulative",
        prior_period_totals={"turnover": "1000.50", "travelCosts": 20},
    )
    assert s.kind is SheetShape.CUMULATIVE
    assert s.prior_period_totals == {"turnover": Decimal("1000.50"), "travelCosts": Decimal("20")}


def test_cumulative_with_per_period_totals_sums_earlier_periods() -> None:
    s = resolve_strategy(
        Period.Q3,
        declared_shape="cumulative",
        prior_period_totals={
            "Q1": {"turnover": "1000", "travelCosts": "50"},
            Period.Q2: {"turnover": "1500"},
        },
    )
    assert s.prior_period_totals == {"turnover": Decimal("2500"), "travelCosts": Decimal("50")}


def test_per_period_totals_must_cover_every_earlier_period() -> None:
    with pytest.raises(MissingPriorPeriods) as ei:
        resolve_strategy(
            Period.Q4,
            declared_shape="cumulative",
            prior_period_totals={"Q1": {"turnover": "1"}, "Q3": {"turnover": "1"}},
        )
    assert "Q2" in str(ei.value)


def test_non_numeric_prior_total_is_rejected() -> None:
    with pytest.raises(ValueError):
        resolve_strategy(
            Period.Q2, declared_shape="cumulative", prior_period_totals={"turnover": "lots"}
        )


def test_missing_credentials_degrade_to_direct(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    gateway = ClassifierGateway(policy=RetryPolicy(sleep=lambda _s: None))
    s = resolve_strategy("q2", rows=_ROWS, gateway=gateway)
    assert s.kind is SheetShape.DIRECT
    assert s.degraded
    assert s.source == "fallback"


def test_first_period_records_an_ignored_declared_shape(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="mtd_pipeline"):
        s = resolve_strategy("q1", declared_shape="cumulative")
    assert s.kind is SheetShape.DIRECT
    assert s.overridden_shape is SheetShape.CUMULATIVE
    assert any("strategy:first_period_override" in r.getMessage() for r in caplog.records)
    assert resolve_strategy("q1").overridden_shape is None
    assert resolve_strategy("q1", declared_shape="direct").overridden_shape is None
