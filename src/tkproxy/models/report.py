"""Report models — the tokscale contribution payload.

Field names are snake_case in Python and camelCase on the wire. Every
numeric field is normalized on the way in: missing, non-numeric and
non-finite values become 0, so upstream reports with holes never poison a
merge.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from tkproxy.errors import InvalidReportError

Number = int | float

TOKEN_FIELDS: tuple[str, ...] = ("input", "output", "cache_read", "cache_write", "reasoning")

# Wrapper fields that may hold a report, checked in order after the bare document.
_WRAPPER_FIELDS: tuple[str, ...] = ("payload", "submitPayload", "parsedStdout")


def as_number(value: object) -> Number:
    """Coerce a loosely typed JSON value to a finite number, defaulting to 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else 0
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return 0
        if not math.isfinite(parsed):
            return 0
        return int(parsed) if parsed.is_integer() else parsed
    return 0


def _as_label(value: object) -> str:
    return "unknown" if value is None else str(value)


def _as_list(value: object) -> list[Any]:
    return value if isinstance(value, list) else []


def _as_dict(value: object) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


class WireModel(BaseModel):
    """Base model mapping snake_case attributes to camelCase JSON keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )

    def to_wire(self) -> dict[str, Any]:
        """Dump to a JSON-ready dict using wire (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True)


class TokenCounts(WireModel):
    """Per-kind token counts."""

    input: Number = 0
    output: Number = 0
    cache_read: Number = 0
    cache_write: Number = 0
    reasoning: Number = 0

    @field_validator(*TOKEN_FIELDS, mode="before")
    @classmethod
    def coerce_counts(cls, value: object) -> Number:
        return as_number(value)

    def total(self) -> Number:
        return sum(getattr(self, name) for name in TOKEN_FIELDS)


class SourceRow(WireModel):
    """Usage for one (source, model, provider) on one date."""

    source: str = "unknown"
    model_id: str = "unknown"
    provider_id: str = "unknown"
    tokens: TokenCounts = Field(default_factory=TokenCounts)
    cost: Number = 0
    messages: Number = 0

    @field_validator("source", "model_id", "provider_id", mode="before")
    @classmethod
    def coerce_label(cls, value: object) -> str:
        return _as_label(value)

    @field_validator("tokens", mode="before")
    @classmethod
    def coerce_tokens(cls, value: object) -> dict[str, Any] | TokenCounts:
        return value if isinstance(value, TokenCounts) else _as_dict(value)

    @field_validator("cost", "messages", mode="before")
    @classmethod
    def coerce_number(cls, value: object) -> Number:
        return as_number(value)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.source, self.model_id, self.provider_id)


class DailyTotals(WireModel):
    tokens: Number = 0
    cost: Number = 0
    messages: Number = 0

    @field_validator("tokens", "cost", "messages", mode="before")
    @classmethod
    def coerce_number(cls, value: object) -> Number:
        return as_number(value)


class DailyContribution(WireModel):
    """All usage rows for a single calendar date."""

    date: str = ""
    totals: DailyTotals = Field(default_factory=DailyTotals)
    intensity: int = 0
    token_breakdown: TokenCounts = Field(default_factory=TokenCounts)
    sources: list[SourceRow] = Field(default_factory=list)

    @field_validator("date", mode="before")
    @classmethod
    def coerce_date(cls, value: object) -> str:
        return "" if value is None else str(value)

    @field_validator("intensity", mode="before")
    @classmethod
    def coerce_intensity(cls, value: object) -> int:
        return int(as_number(value))

    @field_validator("totals", "token_breakdown", mode="before")
    @classmethod
    def coerce_object(cls, value: object) -> object:
        return value if isinstance(value, BaseModel) else _as_dict(value)

    @field_validator("sources", mode="before")
    @classmethod
    def coerce_rows(cls, value: object) -> list[Any]:
        return _as_list(value)


class DateRange(WireModel):
    start: str = ""
    end: str = ""


class YearSummary(WireModel):
    year: str = ""
    total_tokens: Number = 0
    total_cost: Number = 0
    range: DateRange = Field(default_factory=DateRange)

    @field_validator("total_tokens", "total_cost", mode="before")
    @classmethod
    def coerce_number(cls, value: object) -> Number:
        return as_number(value)


class ReportMeta(WireModel):
    generated_at: str = ""
    version: str = ""
    date_range: DateRange = Field(default_factory=DateRange)

    @field_validator("generated_at", "version", mode="before")
    @classmethod
    def coerce_text(cls, value: object) -> str:
        return "" if value is None else str(value)

    @field_validator("date_range", mode="before")
    @classmethod
    def coerce_range(cls, value: object) -> object:
        return value if isinstance(value, DateRange) else _as_dict(value)


class ReportSummary(WireModel):
    total_tokens: Number = 0
    total_cost: Number = 0
    total_days: int = 0
    active_days: int = 0
    average_per_day: Number = 0
    max_cost_in_single_day: Number = 0
    sources: list[str] = Field(default_factory=list)
    models: list[str] = Field(default_factory=list)

    @field_validator(
        "total_tokens",
        "total_cost",
        "average_per_day",
        "max_cost_in_single_day",
        mode="before",
    )
    @classmethod
    def coerce_number(cls, value: object) -> Number:
        return as_number(value)

    @field_validator("total_days", "active_days", mode="before")
    @classmethod
    def coerce_count(cls, value: object) -> int:
        return int(as_number(value))

    @field_validator("sources", "models", mode="before")
    @classmethod
    def coerce_names(cls, value: object) -> list[str]:
        return [str(item) for item in _as_list(value)]


class Report(WireModel):
    """A tokscale contribution report, as produced by ``tokscale graph``."""

    meta: ReportMeta
    summary: ReportSummary
    years: list[YearSummary] = Field(default_factory=list)
    contributions: list[DailyContribution]

    @field_validator("years", mode="before")
    @classmethod
    def coerce_years(cls, value: object) -> list[Any]:
        return [item for item in _as_list(value) if isinstance(item, (dict, YearSummary))]


def is_report(data: object) -> bool:
    """Return True when ``data`` has the outer shape of a report document."""
    return (
        isinstance(data, dict)
        and isinstance(data.get("meta"), dict)
        and isinstance(data.get("summary"), dict)
        and isinstance(data.get("contributions"), list)
    )


def parse_report(data: object) -> Report:
    """Validate a decoded JSON value as a report.

    Raises:
        InvalidReportError: If the value is not a report or a nested field is unusable.
    """
    if not is_report(data):
        msg = "Document is not a tokscale contribution payload"
        raise InvalidReportError(msg)
    try:
        return Report.model_validate(data)
    except PydanticValidationError as exc:
        msg = f"Invalid tokscale contribution payload: {exc.error_count()} field error(s)"
        raise InvalidReportError(msg) from exc


def extract_report(data: object) -> Report | None:
    """Find a report in a bare document or in a known wrapper field.

    Accepts the report itself, or an object whose ``payload``,
    ``submitPayload`` or ``parsedStdout`` field holds one. Returns None
    when no candidate has the report shape.
    """
    if is_report(data):
        return parse_report(data)
    if not isinstance(data, dict):
        return None
    for field_name in _WRAPPER_FIELDS:
        candidate = data.get(field_name)
        if is_report(candidate):
            return parse_report(candidate)
    return None
