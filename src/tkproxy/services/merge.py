"""Merge engine — combine per-host reports into one canonical report.

Rows are keyed by ``(date, source, model_id, provider_id)`` and summed
field-wise. Only the rows are trusted: every rollup (day totals, intensity,
summary, years) is recomputed from the merged rows, never copied from an
input report. Integer fields add exactly and float fields go through
``math.fsum``, so the result does not depend on input order.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from tkproxy.errors import EmptyInputError, NoContributionRowsError
from tkproxy.models.report import (
    TOKEN_FIELDS,
    DailyContribution,
    DailyTotals,
    DateRange,
    Number,
    Report,
    ReportMeta,
    ReportSummary,
    SourceRow,
    TokenCounts,
    YearSummary,
)
from tkproxy.services.schedule import utc_now_iso

logger = logging.getLogger(__name__)

REPORT_VERSION = "tk-proxy-1.0.0"

type RowKey = tuple[str, str, str]


def exact_sum(values: Iterable[Number]) -> Number:
    """Sum ints exactly; fall back to a correctly rounded float sum otherwise."""
    items = list(values)
    if all(isinstance(value, int) for value in items):
        return sum(items)
    return math.fsum(items)


def intensity_for(cost: Number, max_cost: Number) -> int:
    """Bucket a day's cost relative to the busiest day into 0-4."""
    if cost <= 0 or max_cost <= 0:
        return 0
    ratio = cost / max_cost
    if ratio < 0.25:
        return 1
    if ratio < 0.5:
        return 2
    if ratio < 0.75:
        return 3
    return 4


@dataclass
class _RowAccumulator:
    """Collects every contribution to one row key before summing."""

    source: str
    model_id: str
    provider_id: str
    tokens: dict[str, list[Number]] = field(
        default_factory=lambda: {name: [] for name in TOKEN_FIELDS}
    )
    cost: list[Number] = field(default_factory=list)
    messages: list[Number] = field(default_factory=list)

    def add(self, row: SourceRow) -> None:
        for name in TOKEN_FIELDS:
            self.tokens[name].append(getattr(row.tokens, name))
        self.cost.append(row.cost)
        self.messages.append(row.messages)

    def build(self) -> SourceRow:
        return SourceRow(
            source=self.source,
            model_id=self.model_id,
            provider_id=self.provider_id,
            tokens=TokenCounts(**{name: exact_sum(self.tokens[name]) for name in TOKEN_FIELDS}),
            cost=exact_sum(self.cost),
            messages=exact_sum(self.messages),
        )


def _collect_rows(reports: Sequence[Report]) -> dict[str, dict[RowKey, _RowAccumulator]]:
    by_date: dict[str, dict[RowKey, _RowAccumulator]] = {}
    for report in reports:
        for day in report.contributions:
            if not day.date:
                continue
            day_rows = by_date.setdefault(day.date, {})
            for row in day.sources:
                accumulator = day_rows.get(row.key)
                if accumulator is None:
                    accumulator = _RowAccumulator(row.source, row.model_id, row.provider_id)
                    day_rows[row.key] = accumulator
                accumulator.add(row)
    return by_date


def _build_day(date: str, accumulators: Iterable[_RowAccumulator]) -> DailyContribution:
    rows = sorted((acc.build() for acc in accumulators), key=lambda row: row.key)
    breakdown = TokenCounts(
        **{name: exact_sum(getattr(row.tokens, name) for row in rows) for name in TOKEN_FIELDS}
    )
    return DailyContribution(
        date=date,
        totals=DailyTotals(
            tokens=breakdown.total(),
            cost=exact_sum(row.cost for row in rows),
            messages=exact_sum(row.messages for row in rows),
        ),
        intensity=0,
        token_breakdown=breakdown,
        sources=rows,
    )


def _year_sort_key(summary: YearSummary) -> tuple[int, int, str]:
    if summary.year.isdigit():
        return (0, int(summary.year), summary.year)
    return (1, 0, summary.year)


def compute_year_summaries(contributions: Sequence[DailyContribution]) -> list[YearSummary]:
    """Group days by the first four characters of their date."""
    grouped: dict[str, list[DailyContribution]] = {}
    for day in contributions:
        grouped.setdefault(day.date[:4], []).append(day)

    years = [
        YearSummary(
            year=year,
            total_tokens=exact_sum(day.totals.tokens for day in days),
            total_cost=exact_sum(day.totals.cost for day in days),
            range=DateRange(
                start=min(day.date for day in days),
                end=max(day.date for day in days),
            ),
        )
        for year, days in grouped.items()
    ]
    return sorted(years, key=_year_sort_key)


def combine(reports: Sequence[Report], *, now: datetime | None = None) -> Report:
    """Merge reports from any number of hosts into one canonical report.

    Args:
        reports: Reports to merge. Order does not affect the result.
        now: Merge time stamped into ``meta.generated_at`` (defaults to now).

    Raises:
        EmptyInputError: If ``reports`` is empty.
        NoContributionRowsError: If no report has a dated contribution.
    """
    if not reports:
        msg = "No payloads provided for combine."
        raise EmptyInputError(msg)

    by_date = _collect_rows(reports)
    contributions = [_build_day(date, by_date[date].values()) for date in sorted(by_date)]
    if not contributions:
        msg = "No contribution rows found in the provided payloads."
        raise NoContributionRowsError(msg)

    max_cost = max((day.totals.cost for day in contributions), default=0)
    for day in contributions:
        day.intensity = intensity_for(day.totals.cost, max_cost)

    total_cost = exact_sum(day.totals.cost for day in contributions)
    active_days = len(contributions)
    sources = sorted({row.source for day in contributions for row in day.sources})
    models = sorted({row.model_id for day in contributions for row in day.sources})

    logger.debug(
        "Combined %d report(s) into %d day(s), %d source(s)",
        len(reports),
        active_days,
        len(sources),
    )
    return Report(
        meta=ReportMeta(
            generated_at=utc_now_iso(now),
            version=REPORT_VERSION,
            date_range=DateRange(start=contributions[0].date, end=contributions[-1].date),
        ),
        summary=ReportSummary(
            total_tokens=exact_sum(day.totals.tokens for day in contributions),
            total_cost=total_cost,
            total_days=active_days,
            active_days=active_days,
            average_per_day=total_cost / active_days if active_days else 0,
            max_cost_in_single_day=max_cost,
            sources=sources,
            models=models,
        ),
        years=compute_year_summaries(contributions),
        contributions=contributions,
    )
