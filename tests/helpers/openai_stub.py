"""Test helpers to stub the OpenAI Responses client used by ``classifier.py``.

The stub parses the user-content payload to extract the embedded transaction
JSON and returns a deterministic verdict. Tests provide a ``decide`` callable
mapping each transaction to a ``(category, confidence, rationale)`` tuple, or
raising to simulate a transport failure. Structural-analysis requests are
answered by ``structure`` the same way.
"""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from typing import Any

TX_BEGIN = "BEGIN_TRANSACTION_JSON\n"
TX_END = "\nEND_TRANSACTION_JSON"
SAMPLE_BEGIN = "BEGIN_SAMPLE_ROWS_JSON\n"
SAMPLE_END = "\nEND_SAMPLE_ROWS_JSON"


def extract_transaction(user_content: str) -> dict[str, Any]:
    b = user_content.find(TX_BEGIN)
    e = user_content.rfind(TX_END)
    if b == -1 or e == -1 or e <= b:
        raise AssertionError("classify: user content missing embedded transaction JSON")
    return json.loads(user_content[b + len(TX_BEGIN) : e])


def extract_sample(user_content: str) -> list[dict[str, Any]]:
    b = user_content.find(SAMPLE_BEGIN)
    e = user_content.rfind(SAMPLE_END)
    if b == -1 or e == -1 or e <= b:
        raise AssertionError("analyze_structure: user content missing sample rows JSON")
    return json.loads(user_content[b + len(SAMPLE_BEGIN) : e])


class _Resp:
    def __init__(self, text: str) -> None:
        self.output_text = text


class OpenAIStub:
    """Minimal stub matching the ``openai.OpenAI`` shape used by ``classifier.py``.

    Parameters
    ----------
    decide:
        Receives the transaction mapping (``amount``, ``description``,
        ``date``, ``direction``) and returns ``(category, confidence,
        rationale)``. May raise to simulate a failed attempt. A returned
        ``str`` is sent verbatim as the output text (malformed output tests).
    structure:
        Same for structural analysis, receiving the sampled rows and returning
        ``(detected_shape, confidence, rationale)``.
    sleep_per_call:
        Optional delay making concurrency observable.
    """

    def __init__(
        self,
        decide: Callable[[dict[str, Any]], Any] | None = None,
        *,
        structure: Callable[[list[dict[str, Any]]], Any] | None = None,
        sleep_per_call: float = 0.0,
    ) -> None:
        self._decide = decide or (lambda tx: ("other", 0.9, "default"))
        self._structure = structure or (lambda rows: ("direct", 0.9, "default"))
        self.sleep_per_call = sleep_per_call
        self.calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self.inflight = 0
        self.max_inflight = 0

        class _Responses:
            def __init__(self, outer: OpenAIStub) -> None:
                self._outer = outer

            def create(self, **kwargs: Any) -> _Resp:
                outer = self._outer
                with outer._lock:
                    outer.calls.append(kwargs)
                    outer.inflight += 1
                    outer.max_inflight = max(outer.max_inflight, outer.inflight)
                try:
                    if outer.sleep_per_call:
                        time.sleep(outer.sleep_per_call)
                    user_content = kwargs["input"]
                    if SAMPLE_BEGIN in user_content:
                        answer = outer._structure(extract_sample(user_content))
                        keys = ("detected_shape", "confidence", "rationale")
                    else:
                        answer = outer._decide(extract_transaction(user_content))
                        keys = ("category", "confidence", "rationale")
                    if isinstance(answer, str):
                        return _Resp(answer)
                    return _Resp(json.dumps(dict(zip(keys, answer, strict=True))))
                finally:
                    with outer._lock:
                        outer.inflight -= 1

        self.responses = _Responses(self)

    @property
    def classify_calls(self) -> list[dict[str, Any]]:
        return [c for c in self.calls if SAMPLE_BEGIN not in c["input"]]

    @property
    def structure_calls(self) -> list[dict[str, Any]]:
        return [c for c in self.calls if SAMPLE_BEGIN in c["input"]]


def install(monkeypatch: Any, stub: OpenAIStub) -> list[dict[str, Any]]:
    """Route ``mtd_pipeline.classifier.OpenAI(...)`` to ``stub``; return client kwargs seen."""

    import mtd_pipeline.classifier as classifier_mod

    created: list[dict[str, Any]] = []

    def _factory(*args: Any, **kwargs: Any) -> OpenAIStub:
        created.append(kwargs)
        return stub

    monkeypatch.setattr(classifier_mod, "OpenAI", _factory)
    return created


class APIStatusError(Exception):
    """Stand-in for an SDK status error carrying ``status_code``."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code
