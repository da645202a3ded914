"""Protocol definitions for external collaborators."""

from __future__ import annotations

from typing import Protocol

from tkproxy.models.captures import SubmitResponse
from tkproxy.models.report import Report


class ReportCollectorProtocol(Protocol):
    """Produces this machine's current report."""

    async def collect(self) -> Report: ...


class SubmitterProtocol(Protocol):
    """Sends a canonical report to the remote accounting service."""

    async def submit(self, report: Report) -> SubmitResponse: ...
