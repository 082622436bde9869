from __future__ import annotations

import os
from decimal import Decimal
from pathlib import Path

import pytest

from mtd_pipeline.cache import ClassificationCache, default_cache_path, key_for
from mtd_pipeline.models import ClassificationResult


def _travel() -> ClassificationResult:
    return ClassificationResult.categorized("travelCosts", confidence=0.9, rationale="hotel")


def test_key_normalizes_amount_sign_and_description_spacing() -> None:
    a = key_for("sole_trader", Decimal("-12.5"), "  Premier   Inn ")
    b = key_for("self-employment", "12.50", "premier inn")
    assert a == b
    assert a.amount == "12.50"


def test_key_uses_description_prefix_and_business_type() -> None:
    prefix = "x" * 50
    assert key_for("landlord", 1, prefix + "AAA") == key_for("landlord", 1, prefix + "BBB")
    assert key_for("landlord", 1, "Gas safety") != key_for("sole_trader", 1, "Gas safety")
    assert key_for("landlord", 1, "Gas safety") != key_for("landlord", 1, "Gas safety", window="2024-25")


def test_only_categorized_results_are_stored() -> None:
    cache = ClassificationCache()
    key = key_for("sole_trader", 10, "Tesco")
    assert not cache.put(key, ClassificationResult.personal(confidence=0.5, rationale="tesco"))
    assert not cache.put(key, ClassificationResult.manual_review(confidence=0.2, rationale="?"))
    assert len(cache) == 0
    assert cache.put(key, _travel())
    assert cache.get(key) == _travel()


def test_default_path_follows_env_root(tmp_path: Path) -> None:
    path = default_cache_path("2024-25")
    assert path == Path(os.environ["MTD_CACHE_DIR"]).resolve() / "classifications" / "2024-25.json"
    with pytest.raises(ValueError):
        default_cache_path("../escape")


def test_save_then_load_restores_entries_as_cache_hits(tmp_path: Path) -> None:
    cache = ClassificationCache()
    key = key_for("sole_trader", 120, "Premier Inn", window="2024-25")
    cache.put(key, _travel())
    path = cache.save(tmp_path / "c.json")
    assert path.exists()
    assert not (tmp_path / "c.json.tmp").exists()

    loaded = ClassificationCache.load(path)
    hit = loaded.get(key)
    assert hit is not None
    assert hit.category == "travelCosts"
    assert hit.source == "cache"


def test_load_missing_or_corrupt_file_starts_empty(tmp_path: Path) -> None:
    assert len(ClassificationCache.load(tmp_path / "missing.json")) == 0
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    assert len(ClassificationCache.load(bad)) == 0
