"""Pydantic models for tk-proxy."""

from tkproxy.models.captures import (
    CaptureDocument,
    ClientSnapshot,
    SubmissionRecord,
    SubmissionResult,
    SubmissionState,
    SubmitResponse,
)
from tkproxy.models.report import (
    DailyContribution,
    DailyTotals,
    DateRange,
    Report,
    ReportMeta,
    ReportSummary,
    SourceRow,
    TokenCounts,
    YearSummary,
    extract_report,
    is_report,
    parse_report,
)

__all__ = [
    "CaptureDocument",
    "ClientSnapshot",
    "DailyContribution",
    "DailyTotals",
    "DateRange",
    "Report",
    "ReportMeta",
    "ReportSummary",
    "SourceRow",
    "SubmissionRecord",
    "SubmissionResult",
    "SubmissionState",
    "SubmitResponse",
    "TokenCounts",
    "YearSummary",
    "extract_report",
    "is_report",
    "parse_report",
]
