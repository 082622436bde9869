"""Prompt construction for the remote classifier.

This module builds:
- The system instructions and user content for single-row categorization,
  with the row serialized as JSON between ``BEGIN_TRANSACTION_JSON`` /
  ``END_TRANSACTION_JSON`` markers.
- The instructions and user content for structural analysis of a sheet
  sample (cumulative vs multi-section vs single period).
- The strict ``response_format`` (JSON Schema) objects for the OpenAI
  Responses API.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from datetime import date
from decimal import Decimal
from typing import Any

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

from .categories import BusinessType, describe
from .categorization import MANUAL_REVIEW_SENTINEL, PERSONAL_SENTINEL
from .models import Direction, SheetShape
from .periods import Period

TX_BEGIN = "BEGIN_TRANSACTION_JSON"
TX_END = "END_TRANSACTION_JSON"
SAMPLE_BEGIN = "BEGIN_SAMPLE_ROWS_JSON"
SAMPLE_END = "END_SAMPLE_ROWS_JSON"

TX_FIELD_ORDER: tuple[str, ...] = ("amount", "description", "date", "direction")

_BUSINESS_LABEL: dict[BusinessType, str] = {
    BusinessType.SOLE_TRADER: "a self-employed sole trader",
    BusinessType.LANDLORD: "a UK property landlord",
}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Direction):
        return str(value)
    return value


def serialize_transaction(tx: Mapping[str, Any]) -> str:
    """Serialize one transaction with a fixed field order."""

    return json.dumps({k: _jsonable(tx.get(k)) for k in TX_FIELD_ORDER}, ensure_ascii=False)


def build_system_instructions() -> str:
    return (
        "You classify business transactions into official UK tax-authority category codes "
        "for quarterly Making Tax Digital updates. Choose exactly one code from the provided "
        f"list. Answer {PERSONAL_SENTINEL} when the transaction is personal (non-business) "
        f"spending and {MANUAL_REVIEW_SENTINEL} when you cannot decide with confidence. Never "
        "invent codes. Output JSON only that conforms to the specified schema."
    )


def build_user_content(
    tx_json: str,
    *,
    business_type: BusinessType,
    vocabulary: Sequence[str],
) -> str:
    lines = [
        f"The business is {_BUSINESS_LABEL[business_type]}.",
        "",
        "Valid category codes:",
    ]
    lines.extend(f"- {code}: {describe(code)}" for code in vocabulary)
    lines.extend(
        [
            f"- {PERSONAL_SENTINEL}: personal, non-business spending",
            f"- {MANUAL_REVIEW_SENTINEL}: needs a human decision",
            "",
            "Transaction:",
            TX_BEGIN,
            tx_json,
            TX_END,
        ]
    )
    return "\n".join(lines)


def build_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    """Return the strict JSON Schema for one categorization verdict.

    ``category`` is left as a free string so out-of-vocabulary answers reach
    the caller and are routed to manual review instead of failing the call.
    """

    schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "category": {"type": "string"},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
            "rationale": {"type": "string"},
        },
        "required": ["category", "confidence", "rationale"],
        "additionalProperties": False,
    }
    return {
        "type": "json_schema",
        "name": "transaction_category",
        "schema": schema,
        "strict": True,
    }


# ---------------------------------------------------------------------------
# Structural analysis
# ---------------------------------------------------------------------------


def build_structure_instructions() -> str:
    return (
        "You inspect samples of spreadsheet rows uploaded for a quarterly tax update and "
        "judge their shape. 'direct' means the figures cover only the requested quarter. "
        "'cumulative' means the figures are running totals since the start of the tax year. "
        "'multi_section' means one sheet holds several quarters under labels such as "
        "'Quarter 1' or 'Q2'. Output JSON only that conforms to the specified schema."
    )


def build_structure_user_content(sample_rows: Sequence[Mapping[str, Any]], target: Period) -> str:
    sample = [{str(k): _jsonable(v) for k, v in row.items()} for row in sample_rows]
    return "\n".join(
        [
            f"Requested quarter: {target.name} (quarter {target.number} of the tax year).",
            f"Rows sampled: {len(sample)}",
            SAMPLE_BEGIN,
            json.dumps(sample, ensure_ascii=False, default=str),
            SAMPLE_END,
        ]
    )


def build_structure_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "detected_shape": {"type": "string", "enum": [str(s) for s in SheetShape]},
            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
            "rationale": {"type": "string"},
        },
        "required": ["detected_shape", "confidence", "rationale"],
        "additionalProperties": False,
    }
    return {
        "type": "json_schema",
        "name": "sheet_structure",
        "schema": schema,
        "strict": True,
    }


__all__ = [
    "SAMPLE_BEGIN",
    "SAMPLE_END",
    "TX_BEGIN",
    "TX_END",
    "build_response_format",
    "build_structure_instructions",
    "build_structure_response_format",
    "build_structure_user_content",
    "build_system_instructions",
    "build_user_content",
    "serialize_transaction",
]
