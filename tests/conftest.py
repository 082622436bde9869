"""Pytest configuration for test isolation.

The classification cache can persist to a project-relative directory
(``./.cache``) and the batch orchestrator pauses between batches. To keep
tests hermetic and fast we redirect the cache root to a per-test temporary
directory and zero the inter-batch delay via an autouse fixture.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Make sure the workspace `packages/` dir is on sys.path so `mtd_pipeline` is importable
_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]


@pytest.fixture(autouse=True)
def _isolate_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Force a per-test cache root and no pause between batches."""

    cache_root = tmp_path / "cache"
    cache_root.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("MTD_CACHE_DIR", os.fspath(cache_root))
    monkeypatch.setenv("MTD_BATCH_DELAY_SEC", "0")
    monkeypatch.delenv("MTD_BATCH_SIZE", raising=False)
    monkeypatch.delenv("MTD_CLASSIFIER_MODEL", raising=False)
