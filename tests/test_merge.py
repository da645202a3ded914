"""Tests for the report merge engine."""

from __future__ import annotations

import itertools
from datetime import UTC, datetime

import pytest

from tkproxy.errors import EmptyInputError, NoContributionRowsError, NothingToMergeError
from tkproxy.models.report import parse_report
from tkproxy.services.merge import REPORT_VERSION, combine, exact_sum, intensity_for

NOW = datetime(2026, 2, 18, 3, 0, tzinfo=UTC)


def _shape(report) -> list[tuple[str, list[tuple[str, str, str]]]]:  # type: ignore[no-untyped-def]
    return [(day.date, [row.key for row in day.sources]) for day in report.contributions]


def test_combine_merges_matching_rows_and_keeps_others(make_report) -> None:
    report_a = make_report(
        [
            (
                "2026-02-10",
                "codex",
                "gpt-5.2-codex",
                "openai",
                {"input": 10, "output": 2, "cost": 1, "messages": 3},
            )
        ]
    )
    report_b = make_report(
        [
            (
                "2026-02-10",
                "codex",
                "gpt-5.2-codex",
                "openai",
                {"input": 5, "output": 1, "cost": 2, "messages": 4},
            ),
            (
                "2026-02-10",
                "claude",
                "claude-opus",
                "anthropic",
                {"input": 7, "output": 3, "cost": 3, "messages": 2},
            ),
        ]
    )

    combined = combine([report_a, report_b], now=NOW)

    assert len(combined.contributions) == 1
    day = combined.contributions[0]
    assert [row.source for row in day.sources] == ["claude", "codex"]
    claude, codex = day.sources
    assert (claude.tokens.input, claude.tokens.output, claude.cost, claude.messages) == (7, 3, 3, 2)
    assert (codex.tokens.input, codex.tokens.output, codex.cost, codex.messages) == (15, 3, 3, 7)
    assert day.totals.tokens == 28
    assert day.totals.cost == 6
    assert day.token_breakdown.input == 22
    assert combined.summary.total_tokens == 28
    assert combined.summary.total_cost == 6
    assert combined.summary.sources == ["claude", "codex"]
    assert combined.summary.models == ["claude-opus", "gpt-5.2-codex"]


def test_combine_spans_years(make_report) -> None:
    first = make_report([("2025-12-31", "claude", "opus", "anthropic", {"cost": 2, "input": 1})])
    second = make_report([("2026-01-01", "claude", "opus", "anthropic", {"cost": 4, "input": 2})])

    combined = combine([second, first], now=NOW)

    assert combined.summary.max_cost_in_single_day == 4
    assert combined.meta.date_range.start == "2025-12-31"
    assert combined.meta.date_range.end == "2026-01-01"
    assert [(year.year, year.total_cost) for year in combined.years] == [("2025", 2), ("2026", 4)]
    assert combined.years[0].range.start == "2025-12-31"
    assert combined.years[1].total_tokens == 2


def test_combine_is_invariant_under_permutation(make_report) -> None:
    reports = [
        make_report(
            [
                ("2026-01-01", "claude", "opus", "anthropic", {"input": 3, "cost": 0.1}),
                ("2026-01-03", "codex", "gpt-5", "openai", {"output": 2, "cost": 0.2}),
            ]
        ),
        make_report([("2026-01-01", "claude", "opus", "anthropic", {"input": 4, "cost": 0.7})]),
        make_report(
            [
                ("2026-01-02", "gemini", "pro", "google", {"reasoning": 9, "cost": 0.3}),
                ("2026-01-03", "codex", "gpt-5", "openai", {"output": 1, "cost": 1e-9}),
            ]
        ),
    ]

    results = [
        combine(list(order), now=NOW).to_wire() for order in itertools.permutations(reports)
    ]

    assert all(result == results[0] for result in results)


def test_combine_with_itself_doubles_totals_and_keeps_shape(sample_report) -> None:
    single = combine([sample_report], now=NOW)
    doubled = combine([sample_report, sample_report], now=NOW)

    assert doubled.summary.total_tokens == single.summary.total_tokens * 2
    assert doubled.summary.total_cost == single.summary.total_cost * 2
    assert doubled.summary.sources == single.summary.sources
    assert doubled.summary.models == single.summary.models
    assert _shape(doubled) == _shape(single)


def test_combine_recomputes_summary_instead_of_trusting_inputs(report_document) -> None:
    document = report_document([("2026-01-01", "claude", "opus", "anthropic", {"input": 5})])
    document["summary"] = {"totalTokens": 999_999, "totalCost": 123.0, "sources": ["bogus"]}
    document["contributions"][0]["totals"] = {"tokens": 42, "cost": 42, "messages": 42}
    document["contributions"][0]["intensity"] = 4

    combined = combine([parse_report(document)], now=NOW)

    assert combined.summary.total_tokens == 5
    assert combined.summary.total_cost == 0
    assert combined.summary.sources == ["claude"]
    assert combined.contributions[0].totals.messages == 0
    assert combined.contributions[0].intensity == 0


def test_combine_sets_meta_and_summary_counts(make_report) -> None:
    report = make_report(
        [
            ("2026-01-01", "claude", "opus", "anthropic", {"cost": 1.0}),
            ("2026-01-05", "claude", "opus", "anthropic", {"cost": 3.0}),
        ]
    )

    combined = combine([report], now=NOW)

    assert combined.meta.version == REPORT_VERSION
    assert combined.meta.generated_at == "2026-02-18T03:00:00.000Z"
    assert combined.summary.active_days == 2
    assert combined.summary.total_days == 2
    assert combined.summary.average_per_day == 2.0
    assert [day.intensity for day in combined.contributions] == [2, 4]


def test_combine_treats_missing_and_bad_numbers_as_zero(report_document) -> None:
    document = report_document([("2026-01-01", "claude", "opus", "anthropic", {"input": 2})])
    row = document["contributions"][0]["sources"][0]
    row["cost"] = "not-a-number"
    row["messages"] = None
    row["tokens"]["output"] = float("nan")
    row["tokens"]["reasoning"] = "7"

    combined = combine([parse_report(document)], now=NOW)

    merged = combined.contributions[0].sources[0]
    assert merged.cost == 0
    assert merged.messages == 0
    assert merged.tokens.output == 0
    assert merged.tokens.reasoning == 7
    assert combined.summary.total_tokens == 9


def test_combine_skips_contributions_without_a_date(report_document) -> None:
    document = report_document([("2026-01-01", "claude", "opus", "anthropic", {"input": 1})])
    document["contributions"].append({"sources": [{"source": "x", "tokens": {"input": 50}}]})

    combined = combine([parse_report(document)], now=NOW)

    assert [day.date for day in combined.contributions] == ["2026-01-01"]
    assert combined.summary.total_tokens == 1


def test_combine_rejects_empty_input() -> None:
    with pytest.raises(EmptyInputError):
        combine([])


def test_combine_rejects_reports_without_rows(report_document) -> None:
    empty = parse_report(report_document([]))
    with pytest.raises(NoContributionRowsError):
        combine([empty, empty])
    assert issubclass(NoContributionRowsError, NothingToMergeError)


@pytest.mark.parametrize(
    ("cost", "max_cost", "expected"),
    [
        (0, 10, 0),
        (-1, 10, 0),
        (5, 0, 0),
        (2.4, 10, 1),
        (2.5, 10, 2),
        (5, 10, 3),
        (7.5, 10, 4),
        (10, 10, 4),
    ],
)
def test_intensity_buckets(cost: float, max_cost: float, expected: int) -> None:
    assert intensity_for(cost, max_cost) == expected


def test_exact_sum_keeps_ints_exact_and_floats_order_independent() -> None:
    assert exact_sum([2**60, 1, -(2**60)]) == 1
    assert isinstance(exact_sum([1, 2, 3]), int)
    assert exact_sum([0.1, 1e20, -1e20]) == exact_sum([1e20, -1e20, 0.1]) == 0.1
