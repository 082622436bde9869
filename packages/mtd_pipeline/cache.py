"""Classification cache shared by concurrent classifier calls.

The cache memoizes successful category assignments keyed by
``(business type, |amount|, normalized description prefix, window)`` so
repeated rows in a submission do not hit the remote classifier twice.

- In memory: a dict guarded by a ``threading.Lock``. Concurrent inserts for
  the same key are last-write-wins.
- Only category-assigned results are stored; personal and manual-review
  outcomes are never cached.
- Optional persistence across runs: :meth:`ClassificationCache.save` and
  :meth:`ClassificationCache.load`. Files live under the cache root
  (default ``./.cache``, override with ``MTD_CACHE_DIR``) at
  ``<cache_root>/classifications/<window>.json``. Scope the key with a
  ``window`` (e.g. the tax year) when persisting so stale classifications
  roll over.

Atomicity: writes target ``.tmp`` first and then ``os.replace`` into place.
"""

from __future__ import annotations

import contextlib
import json
import os
import re
import threading
import unicodedata
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .categories import BusinessType
from .logging_setup import get_logger
from .models import ClassificationResult

# Bump only when the on-disk JSON shape changes.
SCHEMA_VERSION: int = 1

_DESCRIPTION_PREFIX_LEN: int = 50

_WINDOW_RE = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")

_logger = get_logger("mtd_pipeline.cache")


class CacheKey(NamedTuple):
    business_type: str
    amount: str
    description: str
    window: str | None = None


def _normalize_description(description: str) -> str:
    s = unicodedata.normalize("NFKC", description or "")
    return " ".join(s.split()).lower()[:_DESCRIPTION_PREFIX_LEN]


def key_for(
    business_type: BusinessType | str,
    amount: Decimal | int | float | str,
    description: str,
    *,
    window: str | None = None,
) -> CacheKey:
    """Build the deterministic cache key for one row."""

    magnitude = abs(Decimal(str(amount))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return CacheKey(
        business_type=str(BusinessType.parse(business_type)),
        amount=str(magnitude),
        description=_normalize_description(description),
        window=window,
    )


# ----------------------------------------------------------------------------
# On-disk DTOs
# ----------------------------------------------------------------------------


class CacheEntry(BaseModel):
    model_config = ConfigDict(strict=True, extra="forbid", str_strip_whitespace=True)

    business_type: str
    amount: str
    description: str
    window: str | None = None
    category: str
    confidence: float
    rationale: str

    @field_validator("confidence")
    @classmethod
    def _confidence_in_unit_interval(cls, v: float) -> float:
        if 0.0 <= v <= 1.0:
            return v
        raise ValueError("confidence must be within [0,1]")


class CacheFile(BaseModel):
    """Top-level schema for a persisted classification cache."""

    model_config = ConfigDict(strict=True, extra="forbid")

    schema_version: int
    entries: list[CacheEntry]


def _get_cache_root() -> Path:
    """Return the cache root: ``MTD_CACHE_DIR`` when set, else ``./.cache``."""

    root = os.getenv("MTD_CACHE_DIR")
    if root and root.strip():
        return Path(root).expanduser().resolve()
    return (Path.cwd() / ".cache").resolve()


def default_cache_path(window: str = "default") -> Path:
    if not _WINDOW_RE.fullmatch(window):
        raise ValueError(f"Invalid cache window {window!r}: use letters, digits, '.', '_' or '-'")
    return _get_cache_root() / "classifications" / f"{window}.json"


# ----------------------------------------------------------------------------
# Cache
# ----------------------------------------------------------------------------


class ClassificationCache:
    """Thread-safe memo of successful classifications."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: dict[CacheKey, ClassificationResult] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def get(self, key: CacheKey) -> ClassificationResult | None:
        with self._lock:
            return self._data.get(key)

    def put(self, key: CacheKey, result: ClassificationResult) -> bool:
        """Store ``result`` when it assigns a category; return whether it was stored."""

        if result.category is None:
            return False
        with self._lock:
            self._data[key] = result
        return True

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    # ---- persistence -------------------------------------------------------

    def save(self, path: Path | None = None) -> Path:
        path = path or default_cache_path()
        with self._lock:
            items = list(self._data.items())
        doc = CacheFile(
            schema_version=SCHEMA_VERSION,
            entries=[
                CacheEntry(
                    business_type=k.business_type,
                    amount=k.amount,
                    description=k.description,
                    window=k.window,
                    category=str(v.category),
                    confidence=float(v.confidence),
                    rationale=v.rationale,
                )
                for k, v in items
            ],
        )
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            tmp.write_text(
                json.dumps(doc.model_dump(mode="json"), ensure_ascii=False, separators=(",", ":")),
                encoding="utf-8",
            )
            os.replace(tmp, path)
        except Exception:
            with contextlib.suppress(FileNotFoundError):
                tmp.unlink()
            raise
        _logger.debug("cache:saved entries=%d path=%s", len(items), os.fspath(path))
        return path

    @classmethod
    def load(cls, path: Path | None = None) -> ClassificationCache:
        """Load a persisted cache; unreadable or mismatched files yield an empty cache."""

        path = path or default_cache_path()
        cache = cls()
        if not path.exists():
            return cache
        try:
            parsed = CacheFile.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValidationError):
            _logger.debug(
                "cache:read_failed; starting empty path=%s", os.fspath(path), exc_info=True
            )
            return cache
        if parsed.schema_version != SCHEMA_VERSION:
            return cache
        for e in parsed.entries:
            cache._data[CacheKey(e.business_type, e.amount, e.description, e.window)] = (
                ClassificationResult.categorized(
                    e.category, confidence=e.confidence, rationale=e.rationale, source="cache"
                )
            )
        _logger.debug("cache:loaded entries=%d path=%s", len(cache._data), os.fspath(path))
        return cache


__all__ = [
    "CacheKey",
    "ClassificationCache",
    "default_cache_path",
    "key_for",
]
