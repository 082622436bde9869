# ruff: noqa: E402, I001
from __future__ import annotations

import json
from datetime import date
from decimal import Decimal
from typing import Any

import pytest
from openai import OpenAIError

from mtd_pipeline.categories import BusinessType, vocabulary
from mtd_pipeline.categorization import (
    Category,
    ManualReview,
    Personal,
    Unrecognized,
    interpret_category,
)
from mtd_pipeline.classifier import ClassifierContext, ClassifierGateway
from mtd_pipeline.errors import ClassificationServiceFailure
from mtd_pipeline.models import Direction, SheetShape
from mtd_pipeline.periods import Period
from mtd_pipeline.retry import RetryPolicy
from tests.helpers.openai_stub import APIStatusError, OpenAIStub, extract_transaction, install

_VOCAB = vocabulary(BusinessType.SOLE_TRADER)


def _ctx(description: str = "Premier Inn Manchester", amount: str = "120.00") -> ClassifierContext:
    return ClassifierContext(
        amount=Decimal(amount),
        description=description,
        date=date(2024, 7, 10),
        business_type=BusinessType.SOLE_TRADER,
        vocabulary=_VOCAB,
        direction=Direction.EXPENSE,
    )


def _gateway() -> ClassifierGateway:
    return ClassifierGateway(policy=RetryPolicy(sleep=lambda _s: None))


# ---- Outcome interpretation ----------------------------------------------------


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("travelCosts", Category("travelCosts")),
        ("Travel Costs", Category("travelCosts")),
        ("PERSONAL", Personal()),
        ("manual review", ManualReview()),
        ("holidayCosts", Unrecognized("holidayCosts")),
        ("", Unrecognized("")),
    ],
)
def test_interpret_category(raw: str, expected: object) -> None:
    assert interpret_category(raw, _VOCAB) == expected


# ---- Gateway -------------------------------------------------------------------


def test_classify_sends_one_structured_request(monkeypatch: pytest.MonkeyPatch) -> None:
    stub = OpenAIStub(lambda tx: ("travelCosts", 0.93, "hotel stay"))
    created = install(monkeypatch, stub)

    verdict = _gateway().classify(_ctx())

    assert verdict.outcome == Category("travelCosts")
    assert verdict.confidence == pytest.approx(0.93)
    assert verdict.rationale == "hotel stay"

    assert created == [{"max_retries": 0, "timeout": 30.0}]
    assert len(stub.calls) == 1
    call = stub.calls[0]
    assert call["model"] == "gpt-5-mini"
    assert call["timeout"] == 30.0
    fmt = call["text"]["format"]
    assert fmt["type"] == "json_schema" and fmt["name"] == "transaction_category"
    assert fmt["strict"] is True
    assert "travelCosts" in call["input"]
    assert extract_transaction(call["input"]) == {
        "amount": "120.00",
        "description": "Premier Inn Manchester",
        "date": "2024-07-10",
        "direction": "expense",
    }


def test_model_and_timeout_come_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MTD_CLASSIFIER_MODEL", "gpt-test")
    monkeypatch.setenv("MTD_CLASSIFIER_TIMEOUT_SEC", "5")
    stub = OpenAIStub()
    install(monkeypatch, stub)
    _gateway().classify(_ctx())
    assert stub.calls[0]["model"] == "gpt-test"
    assert stub.calls[0]["timeout"] == 5.0


def test_client_is_created_once_per_gateway(monkeypatch: pytest.MonkeyPatch) -> None:
    stub = OpenAIStub()
    created = install(monkeypatch, stub)
    gw = _gateway()
    gw.classify(_ctx("a"))
    gw.classify(_ctx("b"))
    assert len(created) == 1
    assert len(stub.calls) == 2


def test_malformed_output_is_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    answers = iter(["not json", json.dumps({"category": "adminCosts"}), ("adminCosts", 0.8, "ok")])
    stub = OpenAIStub(lambda tx: next(answers))
    install(monkeypatch, stub)

    verdict = _gateway().classify(_ctx("Stamps"))

    assert verdict.outcome == Category("adminCosts")
    assert len(stub.calls) == 3


def test_out_of_range_confidence_counts_as_malformed(monkeypatch: pytest.MonkeyPatch) -> None:
    stub = OpenAIStub(lambda tx: ("adminCosts", 1.7, "too sure"))
    install(monkeypatch, stub)
    with pytest.raises(ClassificationServiceFailure) as ei:
        _gateway().classify(_ctx())
    assert ei.value.retryable is True
    assert ei.value.attempts == 3
    assert len(stub.calls) == 3


def test_transport_failures_exhaust_to_service_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def boom(tx: dict[str, Any]) -> Any:
        raise TimeoutError("request timed out")

    stub = OpenAIStub(boom)
    install(monkeypatch, stub)
    sleeps: list[float] = []
    gw = ClassifierGateway(policy=RetryPolicy(sleep=sleeps.append))

    with pytest.raises(ClassificationServiceFailure) as ei:
        gw.classify(_ctx())

    assert ei.value.retryable is True
    assert len(stub.calls) == 3
    assert sleeps == [1.0, 2.0]
    assert isinstance(ei.value.__cause__, TimeoutError)


def test_structural_failure_is_not_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    def denied(tx: dict[str, Any]) -> Any:
        raise APIStatusError("Incorrect API key provided", 401)

    stub = OpenAIStub(denied)
    install(monkeypatch, stub)

    with pytest.raises(ClassificationServiceFailure) as ei:
        _gateway().classify(_ctx())

    assert ei.value.retryable is False
    assert ei.value.attempts == 1
    assert len(stub.calls) == 1


def test_unrecognized_answer_is_returned_not_raised(monkeypatch: pytest.MonkeyPatch) -> None:
    stub = OpenAIStub(lambda tx: ("holidayCosts", 0.6, "??"))
    install(monkeypatch, stub)
    verdict = _gateway().classify(_ctx())
    assert verdict.outcome == Unrecognized("holidayCosts")
    assert verdict.raw_category == "holidayCosts"
    assert len(stub.calls) == 1


def test_analyze_structure(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[list[dict[str, Any]]] = []

    def structure(rows: list[dict[str, Any]]) -> tuple[str, float, str]:
        seen.append(rows)
        return "Cumulative", 0.8, "running totals"

    stub = OpenAIStub(structure=structure)
    install(monkeypatch, stub)

    analysis = _gateway().analyze_structure([{"Description": "Sales", "Amount": "10"}], Period.Q2)

    assert analysis.detected_shape is SheetShape.CUMULATIVE
    assert analysis.confidence == pytest.approx(0.8)
    assert seen == [[{"Description": "Sales", "Amount": "10"}]]
    assert stub.calls[0]["text"]["format"]["name"] == "sheet_structure"


def test_injected_client_factory_skips_sdk(monkeypatch: pytest.MonkeyPatch) -> None:
    def _no_sdk(*a: Any, **kw: Any) -> Any:
        raise AssertionError("OpenAI() must not be constructed")

    import mtd_pipeline.classifier as classifier_mod

    monkeypatch.setattr(classifier_mod, "OpenAI", _no_sdk)
    stub = OpenAIStub(lambda tx: ("PERSONAL", 0.7, "groceries"))
    gw = ClassifierGateway(lambda: stub, policy=RetryPolicy(sleep=lambda _s: None))
    assert gw.classify(_ctx("Big shop")).outcome == Personal()


def test_missing_credentials_fail_without_retrying(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    sleeps: list[float] = []
    gw = ClassifierGateway(policy=RetryPolicy(sleep=sleeps.append))

    with pytest.raises(ClassificationServiceFailure) as ei:
        gw.classify(_ctx())

    assert ei.value.retryable is False
    assert ei.value.attempts == 0
    assert isinstance(ei.value.__cause__, OpenAIError)
    assert sleeps == []


def test_failing_client_factory_is_a_service_failure() -> None:
    def _factory() -> Any:
        raise OpenAIError("The api_key client option must be set")

    gw = ClassifierGateway(_factory, policy=RetryPolicy(sleep=lambda _s: None))
    with pytest.raises(ClassificationServiceFailure) as ei:
        gw.analyze_structure([{"Description": "Sales", "Amount": "10"}], Period.Q2)
    assert ei.value.retryable is False
