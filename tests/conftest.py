"""Shared fixtures for tk-proxy tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from tkproxy.config import ServerConfig
from tkproxy.data.store import CaptureStore
from tkproxy.models.report import Report, parse_report

type RowSpec = tuple[str, str, str, str, dict[str, Any]]

TEST_TOKEN = "test-token"


def build_report_document(rows: list[RowSpec]) -> dict[str, Any]:
    """Build a raw report document from ``(date, source, model, provider, fields)`` rows.

    ``fields`` may carry token kinds plus ``cost`` and ``messages``. The
    rollups are deliberately left as zeros since merging recomputes them.
    """
    by_date: dict[str, list[dict[str, Any]]] = {}
    for date, source, model_id, provider_id, fields in rows:
        tokens = {
            "input": fields.get("input", 0),
            "output": fields.get("output", 0),
            "cacheRead": fields.get("cache_read", 0),
            "cacheWrite": fields.get("cache_write", 0),
            "reasoning": fields.get("reasoning", 0),
        }
        by_date.setdefault(date, []).append(
            {
                "source": source,
                "modelId": model_id,
                "providerId": provider_id,
                "tokens": tokens,
                "cost": fields.get("cost", 0),
                "messages": fields.get("messages", 0),
            }
        )
    return {
        "meta": {"generatedAt": "", "version": "test", "dateRange": {"start": "", "end": ""}},
        "summary": {},
        "years": [],
        "contributions": [
            {"date": date, "totals": {}, "intensity": 0, "tokenBreakdown": {}, "sources": sources}
            for date, sources in by_date.items()
        ],
    }


@pytest.fixture
def report_document() -> Callable[[list[RowSpec]], dict[str, Any]]:
    """Factory for raw report documents."""
    return build_report_document


@pytest.fixture
def make_report() -> Callable[[list[RowSpec]], Report]:
    """Factory for validated reports."""

    def _make(rows: list[RowSpec]) -> Report:
        return parse_report(build_report_document(rows))

    return _make


@pytest.fixture
def sample_report(make_report: Callable[[list[RowSpec]], Report]) -> Report:
    return make_report(
        [
            ("2026-01-01", "claude", "opus", "anthropic", {"input": 10, "cost": 1.0}),
            ("2026-01-02", "codex", "gpt-5", "openai", {"output": 5, "cost": 0.5}),
        ]
    )


@pytest.fixture
def store(tmp_path: Path) -> CaptureStore:
    """An initialized capture store under a temporary data directory."""
    capture_store = CaptureStore(tmp_path / "data")
    capture_store.initialize()
    return capture_store


@pytest.fixture
def server_config(tmp_path: Path) -> ServerConfig:
    """Server config with auth on, dry-run submits and an hour-0 gate."""
    return ServerConfig(
        data_dir=tmp_path / "data",
        submit_hour_utc=0,
        auth_token=TEST_TOKEN,
        dry_run_submit=True,
        drain_timeout_s=1.0,
    )
