"""Gateway to the remote text classifier (OpenAI Responses API).

Public API:
    - :class:`ClassifierGateway` with :meth:`~ClassifierGateway.classify` and
      :meth:`~ClassifierGateway.analyze_structure`
    - :class:`ClassifierContext`, :class:`ClassifierVerdict`,
      :class:`StructureAnalysis`

Each attempt is one ``responses.create`` call carrying its own timeout; the
SDK's built-in retries are disabled so :class:`~mtd_pipeline.retry.RetryPolicy`
is the only retry loop. No side effects occur at import time (no client
creation, no environment reads).
"""

from __future__ import annotations

import json
import os
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from openai import OpenAI, OpenAIError
from openai.types.responses import ResponseTextConfigParam

from . import prompting
from .categories import BusinessType
from .categorization import (
    ClassifierOutcome,
    interpret_category,
    parse_structure_analysis,
    parse_verdict,
)
from .errors import ClassificationServiceFailure
from .logging_setup import get_logger
from .models import Direction, SheetShape
from .periods import Period
from .retry import RetryExhausted, RetryPolicy

# ---- Tunables (private) ------------------------------------------------------

_MODEL_DEFAULT: str = "gpt-5-mini"
_TIMEOUT_SEC_DEFAULT: float = 30.0

_logger = get_logger("mtd_pipeline.classifier")


@dataclass(frozen=True, slots=True)
class ClassifierContext:
    amount: Decimal
    description: str
    date: date | None
    business_type: BusinessType
    vocabulary: tuple[str, ...]
    direction: Direction = Direction.UNKNOWN


@dataclass(frozen=True, slots=True)
class ClassifierVerdict:
    outcome: ClassifierOutcome
    confidence: float
    rationale: str
    raw_category: str


@dataclass(frozen=True, slots=True)
class StructureAnalysis:
    detected_shape: SheetShape
    confidence: float
    rationale: str


def _extract_response_json_mapping(resp: Any) -> Mapping[str, Any]:
    """Decode the JSON mapping from an OpenAI Responses SDK result.

    Prefers ``resp.output_text`` and falls back to
    ``resp.output[0].content[0].text``. Raises ``ValueError`` when no text is
    found or it is not valid JSON.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        output = getattr(resp, "output", None)
        first = output[0] if output else None
        content = getattr(first, "content", None)
        if content:
            txt_obj = getattr(content[0], "text", None)
            if isinstance(txt_obj, str):
                text = txt_obj
            else:
                # Some SDKs expose text as an object with a ``value`` string.
                maybe_val = getattr(txt_obj, "value", None)
                if isinstance(maybe_val, str):
                    text = maybe_val
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")

    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError("Model output was not valid JSON per the requested schema") from e
    if not isinstance(decoded, Mapping):
        raise ValueError("Model output was not a JSON object")
    return decoded


def _create_client(timeout: float) -> OpenAI:
    return OpenAI(max_retries=0, timeout=timeout)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        _logger.warning("config:invalid_env name=%s value=%r using=%s", name, raw, default)
        return default


class ClassifierGateway:
    """Wraps the remote classifier with timeouts, retries and output validation.

    The OpenAI client is created lazily on first use and shared by all calls
    made through this gateway (the SDK client is thread-safe).
    """

    def __init__(
        self,
        client_factory: Callable[[], Any] | None = None,
        *,
        model: str | None = None,
        timeout: float | None = None,
        policy: RetryPolicy | None = None,
    ) -> None:
        self.model = model or os.getenv("MTD_CLASSIFIER_MODEL") or _MODEL_DEFAULT
        self.timeout = (
            timeout
            if timeout is not None
            else _env_float("MTD_CLASSIFIER_TIMEOUT_SEC", _TIMEOUT_SEC_DEFAULT)
        )
        self.policy = policy or RetryPolicy()
        self._client_factory = client_factory
        self._client: Any = None
        self._client_lock = threading.Lock()

    def _get_client(self) -> Any:
        with self._client_lock:
            if self._client is None:
                if self._client_factory is not None:
                    self._client = self._client_factory()
                else:
                    self._client = _create_client(self.timeout)
            return self._client

    def _call[T](
        self,
        *,
        label: str,
        instructions: str,
        user_content: str,
        text_cfg: ResponseTextConfigParam,
        parse: Callable[[Mapping[str, Any]], T],
    ) -> T:
        try:
            client = self._get_client()
        except OpenAIError as e:
            _logger.error(
                "classifier:%s_client_unavailable retryable=False error=%s",
                label,
                e.__class__.__name__,
            )
            raise ClassificationServiceFailure(
                f"{label} failed: classifier client could not be created: {e}",
                retryable=False,
                attempts=0,
            ) from e

        def _once() -> T:
            resp = client.responses.create(
                model=self.model,
                instructions=instructions,
                input=user_content,
                text=text_cfg,
                timeout=self.timeout,
            )
            # Validation failures count as malformed output and are retried.
            return parse(_extract_response_json_mapping(resp))

        def _on_retry(attempt: int, exc: BaseException, delay: float) -> None:
            _logger.warning(
                "classifier:%s_retry attempt=%d delay_sec=%.2f error=%s",
                label,
                attempt,
                delay,
                exc.__class__.__name__,
            )

        t0 = time.perf_counter()
        try:
            parsed = self.policy.run(_once, on_retry=_on_retry)
        except RetryExhausted as e:
            dt_ms = (time.perf_counter() - t0) * 1000.0
            _logger.error(
                "classifier:%s_failed attempts=%d retryable=%s latency_ms=%.2f error=%s",
                label,
                e.attempts,
                e.retryable,
                dt_ms,
                e.last_error.__class__.__name__,
            )
            raise ClassificationServiceFailure(
                f"{label} failed after {e.attempts} attempt(s): {e.last_error}",
                retryable=e.retryable,
                attempts=e.attempts,
            ) from e.last_error
        _logger.debug(
            "classifier:%s_done latency_ms=%.2f", label, (time.perf_counter() - t0) * 1000.0
        )
        return parsed

    def classify(self, context: ClassifierContext) -> ClassifierVerdict:
        """Classify one transaction.

        Raises :class:`~mtd_pipeline.errors.ClassificationServiceFailure`
        when no valid answer could be obtained. Malformed answers are retried
        like transport failures; a well-formed answer outside the vocabulary
        comes back as ``Unrecognized``.
        """

        tx_json = prompting.serialize_transaction(
            {
                "amount": context.amount,
                "description": context.description,
                "date": context.date,
                "direction": context.direction,
            }
        )
        user_content = prompting.build_user_content(
            tx_json, business_type=context.business_type, vocabulary=context.vocabulary
        )
        body = self._call(
            label="classify",
            instructions=prompting.build_system_instructions(),
            user_content=user_content,
            text_cfg=ResponseTextConfigParam(format=prompting.build_response_format()),
            parse=parse_verdict,
        )
        return ClassifierVerdict(
            outcome=interpret_category(body.category, context.vocabulary),
            confidence=body.confidence,
            rationale=body.rationale,
            raw_category=body.category,
        )

    def analyze_structure(
        self, sample_rows: Sequence[Mapping[str, Any]], target: Period
    ) -> StructureAnalysis:
        """Ask the classifier whether a sheet looks direct, cumulative or multi-section."""

        body = self._call(
            label="analyze_structure",
            instructions=prompting.build_structure_instructions(),
            user_content=prompting.build_structure_user_content(sample_rows, target),
            text_cfg=ResponseTextConfigParam(format=prompting.build_structure_response_format()),
            parse=parse_structure_analysis,
        )
        return StructureAnalysis(
            detected_shape=SheetShape(body.detected_shape),
            confidence=body.confidence,
            rationale=body.rationale,
        )


__all__ = [
    "ClassifierContext",
    "ClassifierGateway",
    "ClassifierVerdict",
    "StructureAnalysis",
]
