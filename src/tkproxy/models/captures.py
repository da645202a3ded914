"""Server-held documents: client snapshots, submission state and records."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import ConfigDict, Field, field_validator

from tkproxy.models.report import Report, WireModel

CLIENT_CAPTURE_SCHEMA = "tk-proxy-client-capture.v1"
STATE_SCHEMA = "tk-proxy-server-state.v1"
SUBMISSION_SCHEMA = "tk-proxy-submission.v1"
CAPTURE_DOCUMENT_SCHEMA = "tk-proxy-capture.v1"

SubmissionMode = Literal["dry-run", "submit"]


class ClientSnapshot(WireModel):
    """Latest report uploaded by one client."""

    schema_version: str = CLIENT_CAPTURE_SCHEMA
    client_id: str
    captured_at: str
    received_at: str
    source_host: str | None = None
    payload: Report

    def describe(self) -> dict[str, Any]:
        """Identity and timing fields only, without the payload."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            include={"client_id", "captured_at", "received_at", "source_host"},
        )


class SubmissionState(WireModel):
    """Persisted daily-submit gate state for one data directory."""

    schema_version: str = STATE_SCHEMA
    last_submitted_date: str | None = None
    last_submitted_at: str | None = None
    last_submit_error: str | None = None
    last_submission_id: str | None = None


class SubmissionResult(WireModel):
    mode: SubmissionMode
    response: dict[str, Any] = Field(default_factory=dict)


class SubmissionRecord(WireModel):
    """What was submitted on a given UTC date, and what came back."""

    schema_version: str = SUBMISSION_SCHEMA
    submitted_date: str
    created_at: str
    result: SubmissionResult
    payload: Report


class SubmitMetrics(WireModel):
    total_tokens: float | None = None
    total_cost: float | None = None


class SubmitResponse(WireModel):
    """Response body of the remote submit endpoint."""

    model_config = ConfigDict(extra="allow")

    submission_id: str | None = None
    metrics: SubmitMetrics | None = None
    raw: str | None = None

    @field_validator("submission_id", mode="before")
    @classmethod
    def coerce_submission_id(cls, value: object) -> str | None:
        return None if value is None else str(value)

    @field_validator("metrics", mode="before")
    @classmethod
    def coerce_metrics(cls, value: object) -> object:
        return value if isinstance(value, (dict, SubmitMetrics)) else None


class HostInfo(WireModel):
    hostname: str
    platform: str
    arch: str
    release: str
    python_version: str


class CommandInfo(WireModel):
    argv: list[str]
    cwd: str
    started_at: str
    ended_at: str
    exit_code: int


class CommandOutput(WireModel):
    stdout: str = ""
    stderr: str = ""


class CaptureDocument(WireModel):
    """Record of one wrapped command run, written by ``tk-proxy capture``."""

    schema_version: str = CAPTURE_DOCUMENT_SCHEMA
    created_at: str
    host: HostInfo
    command: CommandInfo
    output: CommandOutput
    parsed_stdout: Any = None
    submit_payload: Report | None = None
    submit_payload_error: str | None = None
