"""Reading report files and combining them offline."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from result import Err, Ok, Result

from tkproxy.errors import InvalidReportError, StorageError, TkProxyError
from tkproxy.models.report import Report, extract_report
from tkproxy.services.merge import combine
from tkproxy.services.tokscale import safe_parse_json

logger = logging.getLogger(__name__)


def stamp_for_filename(now: datetime | None = None) -> str:
    moment = now or datetime.now(UTC)
    return moment.strftime("%Y-%m-%dT%H-%M-%S-%fZ")


def default_combined_file() -> Path:
    return Path(f"tk-combined-{stamp_for_filename()}.json")


def write_json(path: Path, data: Any) -> Path:
    """Write pretty JSON, creating parent directories; returns the absolute path."""
    absolute = path.resolve()
    try:
        absolute.parent.mkdir(parents=True, exist_ok=True)
        absolute.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot write {absolute}: {exc}"
        raise StorageError(msg) from exc
    return absolute


def read_report_file(path: Path) -> Report:
    """Load a report from a bare report, capture document or upload body file."""
    absolute = path.resolve()
    try:
        content = absolute.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read {absolute}: {exc}"
        raise StorageError(msg) from exc
    parsed = safe_parse_json(content)
    if parsed is None:
        msg = f"File is not valid JSON: {absolute}"
        raise InvalidReportError(msg)
    report = extract_report(parsed)
    if report is None:
        msg = f"No tokscale payload found in {absolute}"
        raise InvalidReportError(msg)
    return report


def combine_files(inputs: Sequence[Path], output: Path) -> Result[tuple[Path, Report], str]:
    """Merge every input file's report and write the result to ``output``."""
    try:
        reports = [read_report_file(path) for path in inputs]
        combined = combine(reports)
        written = write_json(output, combined.to_wire())
    except TkProxyError as exc:
        return Err(str(exc))
    logger.debug("Combined %d file(s) into %s", len(reports), written)
    return Ok((written, combined))


def summary_line(report: Report) -> str:
    summary = report.summary
    return (
        f"{summary.total_tokens:,} tokens, ${summary.total_cost:,.2f}, "
        f"{summary.active_days} active day(s)"
    )
