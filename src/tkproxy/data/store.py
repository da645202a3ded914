"""Durable JSON storage for client snapshots and submission state.

Layout under the data directory::

    clients/<client-id>.json      latest ClientSnapshot per client
    state.json                    SubmissionState
    submissions/<yyyy-mm-dd>.json SubmissionRecord per UTC date

Every write goes to a temporary file in the target's directory and is then
renamed over the target, so readers only ever see a complete document.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from tkproxy.errors import InvalidClientIdError, StorageError
from tkproxy.models.captures import ClientSnapshot, SubmissionRecord, SubmissionState

logger = logging.getLogger(__name__)

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def sanitize_client_id(client_id: str) -> str:
    """Trim and restrict a client id to ``[A-Za-z0-9._-]``.

    Raises:
        InvalidClientIdError: If the id is empty after trimming.
    """
    normalized = client_id.strip()
    if not normalized:
        msg = "clientId must not be empty"
        raise InvalidClientIdError(msg)
    return _UNSAFE_ID_CHARS.sub("_", normalized)


def write_json_atomic(path: Path, data: Any) -> None:
    """Write ``data`` as indented JSON, replacing ``path`` atomically.

    Raises:
        StorageError: If the temporary file cannot be written or renamed.
    """
    text = json.dumps(data, indent=2) + "\n"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
        )
    except OSError as exc:
        msg = f"Cannot write {path}: {exc}"
        raise StorageError(msg) from exc

    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as file:
            file.write(text)
            file.flush()
            os.fsync(file.fileno())
        os.replace(tmp_path, path)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        msg = f"Cannot write {path}: {exc}"
        raise StorageError(msg) from exc


@dataclass(slots=True)
class SnapshotScan:
    """Result of reading every client snapshot file."""

    snapshots: list[ClientSnapshot] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class CaptureStore:
    """File-backed store rooted at a server data directory."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    @property
    def clients_dir(self) -> Path:
        return self._root / "clients"

    @property
    def submissions_dir(self) -> Path:
        return self._root / "submissions"

    @property
    def state_path(self) -> Path:
        return self._root / "state.json"

    def initialize(self) -> None:
        """Create the directory tree."""
        try:
            self.clients_dir.mkdir(parents=True, exist_ok=True)
            self.submissions_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Cannot create data directory {self._root}: {exc}"
            raise StorageError(msg) from exc

    def put_client_snapshot(self, client_id: str, snapshot: ClientSnapshot) -> ClientSnapshot:
        """Replace the stored snapshot for ``client_id``.

        The stored document carries the sanitized id, which is also the
        file name.
        """
        safe_id = sanitize_client_id(client_id)
        if snapshot.client_id != safe_id:
            snapshot = snapshot.model_copy(update={"client_id": safe_id})
        write_json_atomic(self.clients_dir / f"{safe_id}.json", snapshot.to_wire())
        logger.debug("Stored snapshot for client %s", safe_id)
        return snapshot

    def scan_client_snapshots(self) -> SnapshotScan:
        """Read all snapshots, collecting names of files that fail to parse."""
        scan = SnapshotScan()
        try:
            paths = sorted(self.clients_dir.glob("*.json"))
        except OSError as exc:
            msg = f"Cannot list {self.clients_dir}: {exc}"
            raise StorageError(msg) from exc

        for path in paths:
            if not path.is_file():
                continue
            try:
                raw = json.loads(path.read_text(encoding="utf-8"))
                snapshot = ClientSnapshot.model_validate(raw)
            except (
                OSError,
                UnicodeDecodeError,
                RecursionError,
                json.JSONDecodeError,
                PydanticValidationError,
            ):
                logger.warning("Skipping unreadable client snapshot: %s", path.name)
                scan.skipped.append(path.name)
                continue
            if not snapshot.client_id:
                scan.skipped.append(path.name)
                continue
            scan.snapshots.append(snapshot)

        scan.snapshots.sort(key=lambda item: item.client_id)
        return scan

    def list_client_snapshots(self) -> list[ClientSnapshot]:
        """All stored snapshots sorted by client id; corrupt files are skipped."""
        return self.scan_client_snapshots().snapshots

    def read_state(self) -> SubmissionState:
        """Load submission state; a missing file yields the zero state."""
        raw = self._read_json(self.state_path)
        if not isinstance(raw, dict):
            return SubmissionState()
        try:
            return SubmissionState.model_validate(raw)
        except PydanticValidationError as exc:
            msg = f"Invalid state file {self.state_path}"
            raise StorageError(msg) from exc

    def write_state(self, state: SubmissionState) -> None:
        write_json_atomic(self.state_path, state.to_wire())

    def submission_path(self, date: str) -> Path:
        if not _DATE_RE.match(date):
            msg = f"Invalid submission date: {date}"
            raise StorageError(msg)
        return self.submissions_dir / f"{date}.json"

    def write_submission_record(self, date: str, record: SubmissionRecord) -> None:
        """Write the record for ``date``, replacing any earlier one for that day."""
        write_json_atomic(self.submission_path(date), record.to_wire())

    def read_submission_record(self, date: str) -> SubmissionRecord | None:
        raw = self._read_json(self.submission_path(date))
        if raw is None:
            return None
        try:
            return SubmissionRecord.model_validate(raw)
        except PydanticValidationError as exc:
            msg = f"Invalid submission record for {date}"
            raise StorageError(msg) from exc

    def _read_json(self, path: Path) -> Any:
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            msg = f"Cannot read {path}: {exc}"
            raise StorageError(msg) from exc
        except UnicodeDecodeError as exc:
            msg = f"File is not UTF-8 text: {path}"
            raise StorageError(msg) from exc
        try:
            return json.loads(content)
        except (json.JSONDecodeError, RecursionError) as exc:
            msg = f"Corrupt JSON in {path}: {exc}"
            raise StorageError(msg) from exc
