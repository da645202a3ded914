"""Capture mode — run a command and keep a JSON record of what it did.

When the wrapped command is ``tokscale submit ...`` the capture also holds
the report that submit would have sent, produced by running ``tokscale
graph`` with the same source and date filters.
"""

from __future__ import annotations

import logging
import os
import platform
import socket
from collections.abc import Sequence
from pathlib import Path

from tkproxy.errors import CommandError
from tkproxy.models.captures import CaptureDocument, CommandInfo, CommandOutput, HostInfo
from tkproxy.services.report_files import stamp_for_filename
from tkproxy.services.schedule import utc_now_iso
from tkproxy.services.tokscale import GraphCollector, run_command, safe_parse_json

logger = logging.getLogger(__name__)

SOURCE_FLAGS = frozenset(
    {
        "--opencode",
        "--claude",
        "--codex",
        "--gemini",
        "--cursor",
        "--amp",
        "--droid",
        "--openclaw",
        "--pi",
    }
)
VALUE_FLAGS = frozenset({"--since", "--until", "--year"})


def _command_name(arg: str) -> str:
    name = Path(arg).name.lower()
    return name.removesuffix(".exe")


def _submit_index(argv: Sequence[str]) -> int:
    for index in range(1, len(argv)):
        if argv[index] == "submit" and _command_name(argv[index - 1]) == "tokscale":
            return index
    return -1


def is_tokscale_submit(argv: Sequence[str]) -> bool:
    return _submit_index(argv) != -1


def graph_args_for_submit(argv: Sequence[str]) -> tuple[str, ...]:
    """Translate ``tokscale submit`` filters into ``tokscale graph`` arguments.

    Raises:
        CommandError: If a value flag such as ``--since`` has no value.
    """
    index = _submit_index(argv)
    if index == -1:
        return ()
    rest = list(argv[index + 1 :])
    args: list[str] = []
    position = 0
    while position < len(rest):
        token = rest[position]
        if token in SOURCE_FLAGS:
            args.append(token)
        elif token in VALUE_FLAGS:
            value = rest[position + 1] if position + 1 < len(rest) else ""
            if not value or value.startswith("--"):
                msg = f"Missing value for {token} in submit command."
                raise CommandError(msg)
            args.extend((token, value))
            position += 1
        position += 1
    return tuple(args)


def default_capture_file() -> Path:
    host = "".join(ch if ch.isalnum() or ch in "._-" else "_" for ch in socket.gethostname())
    return Path(f"tk-capture-{host}-{stamp_for_filename()}.json")


async def capture_command(argv: Sequence[str]) -> CaptureDocument:
    """Run ``argv`` (mirroring its output) and build its capture document."""
    started_at = utc_now_iso()
    result = await run_command(list(argv), mirror_output=True)
    ended_at = utc_now_iso()

    document = CaptureDocument(
        created_at=ended_at,
        host=HostInfo(
            hostname=socket.gethostname(),
            platform=platform.system().lower(),
            arch=platform.machine(),
            release=platform.release(),
            python_version=platform.python_version(),
        ),
        command=CommandInfo(
            argv=list(argv),
            cwd=os.getcwd(),
            started_at=started_at,
            ended_at=ended_at,
            exit_code=result.exit_code,
        ),
        output=CommandOutput(stdout=result.stdout, stderr=result.stderr),
        parsed_stdout=safe_parse_json(result.stdout.strip()),
    )

    if is_tokscale_submit(argv):
        try:
            collector = GraphCollector(graph_args_for_submit(argv))
            document.submit_payload = await collector.collect()
        except CommandError as exc:
            logger.warning("Could not build submit payload: %s", exc)
            document.submit_payload_error = str(exc)
    return document
