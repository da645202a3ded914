"""Parsing of ``POST /v1/captures`` bodies into client snapshots."""

from __future__ import annotations

import json

from tkproxy.data.store import sanitize_client_id
from tkproxy.errors import InvalidClientIdError, InvalidReportError, InvalidUploadError
from tkproxy.models.captures import ClientSnapshot
from tkproxy.models.report import extract_report


def parse_upload(body: bytes | str, received_at: str) -> ClientSnapshot:
    """Validate an upload body and build the snapshot to store.

    The report is taken from ``payload`` (bare or wrapped), or from the body
    itself when there is no ``payload`` field.

    Raises:
        InvalidUploadError: If anything about the body is unusable.
    """
    try:
        parsed = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError, RecursionError) as exc:
        msg = "Request body must be valid JSON"
        raise InvalidUploadError(msg) from exc
    if not isinstance(parsed, dict):
        msg = "Request body must be a JSON object"
        raise InvalidUploadError(msg)

    raw_client_id = parsed.get("clientId")
    if not isinstance(raw_client_id, str) or not raw_client_id.strip():
        msg = "clientId is required"
        raise InvalidUploadError(msg)
    try:
        client_id = sanitize_client_id(raw_client_id)
    except InvalidClientIdError as exc:
        raise InvalidUploadError(str(exc)) from exc

    candidate = parsed.get("payload")
    try:
        report = extract_report(parsed if candidate is None else candidate)
    except InvalidReportError as exc:
        raise InvalidUploadError(str(exc)) from exc
    if report is None:
        msg = "payload is required and must be a tokscale contribution payload"
        raise InvalidUploadError(msg)

    captured_at = parsed.get("capturedAt")
    if not isinstance(captured_at, str) or not captured_at.strip():
        captured_at = received_at
    source_host = parsed.get("sourceHost")
    if isinstance(source_host, str) and source_host.strip():
        source_host = source_host.strip()
    else:
        source_host = None

    return ClientSnapshot(
        client_id=client_id,
        captured_at=captured_at,
        received_at=received_at,
        source_host=source_host,
        payload=report,
    )
