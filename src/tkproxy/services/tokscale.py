"""Boundary adapters for the tokscale CLI and the tokscale submit API."""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TextIO

import httpx
from pydantic import ValidationError as PydanticValidationError

from tkproxy.errors import CommandError, InvalidReportError, SubmissionError
from tkproxy.models.captures import SubmitResponse
from tkproxy.models.report import Report, parse_report

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://tokscale.ai"
API_URL_ENV = "TOKSCALE_API_URL"
GRAPH_ARGS: tuple[str, ...] = ("tokscale", "graph", "--no-spinner")
_READ_CHUNK = 64 * 1024


@dataclass(slots=True)
class CommandResult:
    """Outcome of a finished subprocess."""

    exit_code: int
    stdout: str
    stderr: str


@dataclass(frozen=True, slots=True)
class Credentials:
    token: str
    username: str


def safe_parse_json(text: str) -> Any:
    """Decode JSON, returning None on any decode error."""
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None


async def _read_stream(stream: asyncio.StreamReader, mirror: TextIO | None) -> str:
    """Collect a child stream, echoing each chunk to ``mirror`` as it arrives."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    parts: list[str] = []
    while chunk := await stream.read(_READ_CHUNK):
        text = decoder.decode(chunk)
        parts.append(text)
        if mirror is not None and text:
            mirror.write(text)
            mirror.flush()
    tail = decoder.decode(b"", final=True)
    if tail:
        parts.append(tail)
        if mirror is not None:
            mirror.write(tail)
    return "".join(parts)


async def run_command(argv: list[str], *, mirror_output: bool = False) -> CommandResult:
    """Run ``argv`` to completion, capturing stdout and stderr.

    With ``mirror_output`` each chunk is also echoed to our own stdout or
    stderr as soon as the child writes it.

    A missing executable is reported as exit code 127 rather than raised,
    matching what a shell would do.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        return CommandResult(exit_code=127, stdout="", stderr=str(exc))

    if process.stdout is None or process.stderr is None:
        msg = f"No output pipes for {argv[0]}"
        raise CommandError(msg)
    stdout, stderr = await asyncio.gather(
        _read_stream(process.stdout, sys.stdout if mirror_output else None),
        _read_stream(process.stderr, sys.stderr if mirror_output else None),
    )
    exit_code = await process.wait()
    return CommandResult(exit_code=exit_code, stdout=stdout, stderr=stderr)


class GraphCollector:
    """Produces the local report by running ``tokscale graph``."""

    def __init__(self, extra_args: tuple[str, ...] = ()) -> None:
        self._argv = [*GRAPH_ARGS, *extra_args]

    async def collect(self) -> Report:
        result = await run_command(self._argv)
        if result.exit_code != 0:
            msg = f"tokscale graph failed with exit code {result.exit_code}: {result.stderr.strip()}"
            raise CommandError(msg)
        parsed = safe_parse_json(result.stdout.strip())
        if parsed is None:
            msg = "tokscale graph output was not valid JSON"
            raise CommandError(msg)
        try:
            return parse_report(parsed)
        except InvalidReportError as exc:
            msg = f"tokscale graph output is not a contribution payload: {exc}"
            raise CommandError(msg) from exc


def credentials_path() -> Path:
    return Path.home() / ".config" / "tokscale" / "credentials.json"


def read_credentials(path: Path | None = None) -> Credentials:
    """Read the operator's tokscale login.

    Raises:
        SubmissionError: If the file is missing or lacks ``token``/``username``.
    """
    source = path or credentials_path()
    try:
        content = source.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read tokscale credentials {source}: {exc}"
        raise SubmissionError(msg) from exc
    data = safe_parse_json(content)
    if not isinstance(data, dict) or not data.get("token") or not data.get("username"):
        msg = f"Invalid credentials file: {source}"
        raise SubmissionError(msg)
    return Credentials(token=str(data["token"]), username=str(data["username"]))


class TokscaleSubmitter:
    """Posts a canonical report to ``/api/submit``."""

    def __init__(
        self,
        base_url: str | None = None,
        credentials_file: Path | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_s: float = 60.0,
    ) -> None:
        self._base_url = (base_url or os.environ.get(API_URL_ENV) or DEFAULT_API_URL).rstrip("/")
        self._credentials_file = credentials_file
        self._transport = transport
        self._timeout_s = timeout_s

    async def submit(self, report: Report) -> SubmitResponse:
        """Submit ``report`` and return the parsed response body.

        Raises:
            SubmissionError: On a non-2xx response or a transport failure.
        """
        credentials = read_credentials(self._credentials_file)
        url = f"{self._base_url}/api/submit"
        headers = {"Authorization": f"Bearer {credentials.token}"}
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self._timeout_s
            ) as client:
                response = await client.post(url, json=report.to_wire(), headers=headers)
        except httpx.HTTPError as exc:
            msg = f"Submission request failed: {exc}"
            raise SubmissionError(msg) from exc

        body = safe_parse_json(response.text)
        if not isinstance(body, dict):
            body = {"raw": response.text}
        if not response.is_success:
            msg = f"Submission failed ({response.status_code}): {json.dumps(body)}"
            raise SubmissionError(msg, status=response.status_code, payload=body)

        logger.info("Submitted report to %s (status %d)", url, response.status_code)
        try:
            return SubmitResponse.model_validate(body)
        except PydanticValidationError:
            return SubmitResponse(raw=response.text)
