"""Tests for report parsing, wrappers and wire serialization."""

from __future__ import annotations

import pytest

from tkproxy.errors import InvalidReportError
from tkproxy.models.captures import ClientSnapshot, SubmitResponse
from tkproxy.models.report import as_number, extract_report, is_report, parse_report


def test_is_report_checks_outer_shape(report_document) -> None:
    document = report_document([])
    assert is_report(document)
    assert not is_report({"meta": {}, "summary": {}})
    assert not is_report({"meta": [], "summary": {}, "contributions": []})
    assert not is_report([document])


@pytest.mark.parametrize("wrapper", ["payload", "submitPayload", "parsedStdout"])
def test_extract_report_from_wrappers(report_document, wrapper: str) -> None:
    document = report_document([("2026-01-01", "claude", "opus", "anthropic", {"input": 3})])

    report = extract_report({"schemaVersion": "x", wrapper: document})

    assert report is not None
    assert report.contributions[0].sources[0].tokens.input == 3


def test_extract_report_prefers_bare_document(report_document) -> None:
    document = report_document([("2026-01-01", "claude", "opus", "anthropic", {"input": 1})])
    document["payload"] = report_document(
        [("2026-01-01", "claude", "opus", "anthropic", {"input": 99})]
    )

    report = extract_report(document)

    assert report is not None
    assert report.contributions[0].sources[0].tokens.input == 1


def test_extract_report_returns_none_without_candidate() -> None:
    assert extract_report({"payload": {"meta": {}}}) is None
    assert extract_report("nope") is None
    assert extract_report(None) is None


def test_parse_report_rejects_non_reports() -> None:
    with pytest.raises(InvalidReportError):
        parse_report({"hello": "world"})


def test_rows_default_missing_labels_to_unknown(report_document) -> None:
    document = report_document([("2026-01-01", "claude", "opus", "anthropic", {})])
    row = document["contributions"][0]["sources"][0]
    del row["providerId"]
    row["modelId"] = None

    report = parse_report(document)

    parsed = report.contributions[0].sources[0]
    assert parsed.key == ("claude", "unknown", "unknown")


def test_report_serializes_with_camel_case_keys(sample_report) -> None:
    wire = sample_report.to_wire()

    assert set(wire) == {"meta", "summary", "years", "contributions"}
    day = wire["contributions"][0]
    assert "tokenBreakdown" in day
    row = day["sources"][0]
    assert {"modelId", "providerId"} <= set(row)
    assert set(row["tokens"]) == {"input", "output", "cacheRead", "cacheWrite", "reasoning"}
    assert "dateRange" in wire["meta"]


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (5, 5),
        (2.5, 2.5),
        ("12", 12),
        ("0.25", 0.25),
        ("abc", 0),
        (None, 0),
        (float("inf"), 0),
        ("nan", 0),
        ([1], 0),
    ],
)
def test_as_number(value: object, expected: float) -> None:
    assert as_number(value) == expected


def test_client_snapshot_describe_omits_payload(sample_report) -> None:
    snapshot = ClientSnapshot(
        client_id="laptop",
        captured_at="2026-02-18T00:00:00.000Z",
        received_at="2026-02-18T00:00:01.000Z",
        source_host="laptop.local",
        payload=sample_report,
    )

    assert snapshot.describe() == {
        "clientId": "laptop",
        "capturedAt": "2026-02-18T00:00:00.000Z",
        "receivedAt": "2026-02-18T00:00:01.000Z",
        "sourceHost": "laptop.local",
    }
    assert snapshot.to_wire()["schemaVersion"] == "tk-proxy-client-capture.v1"


def test_submit_response_accepts_loose_bodies() -> None:
    response = SubmitResponse.model_validate(
        {"submissionId": 42, "metrics": {"totalTokens": 10, "totalCost": 1.5}, "extra": True}
    )

    assert response.submission_id == "42"
    assert response.metrics is not None
    assert response.metrics.total_tokens == 10
    assert SubmitResponse.model_validate({"metrics": "n/a"}).metrics is None
