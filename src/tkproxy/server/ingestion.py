"""Ingestion server core — snapshot intake and the daily-submit loop.

One ``IngestionServer`` owns every piece of mutable scheduling state: its
lifecycle phase, the cached submission state, the in-flight guard and its
background tasks. Nothing is module-global, so several instances can run
side by side in one process.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from result import Err, Ok, Result

from tkproxy.config import ServerConfig
from tkproxy.data.store import CaptureStore
from tkproxy.errors import NoCapturesAvailableError
from tkproxy.models.captures import (
    ClientSnapshot,
    SubmissionRecord,
    SubmissionResult,
    SubmissionState,
)
from tkproxy.server.uploads import parse_upload
from tkproxy.services.merge import combine
from tkproxy.services.protocols import SubmitterProtocol
from tkproxy.services.schedule import should_run_daily_submit, utc_date_string, utc_now_iso
from tkproxy.services.tokscale import TokscaleSubmitter

logger = logging.getLogger(__name__)

type Clock = Callable[[], datetime]


class ServerPhase(StrEnum):
    STARTING = "starting"
    LISTENING = "listening"
    IDLE = "idle"
    SUBMITTING = "submitting"
    DRAINING = "draining"
    STOPPED = "stopped"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class IngestionServer:
    """Accepts client snapshots and submits one combined report per UTC day."""

    def __init__(
        self,
        config: ServerConfig,
        store: CaptureStore | None = None,
        submitter: SubmitterProtocol | None = None,
        clock: Clock = _utc_now,
    ) -> None:
        self._config = config
        self._store = store or CaptureStore(config.data_dir)
        self._submitter = submitter or TokscaleSubmitter()
        self._clock = clock
        self._state = SubmissionState()
        self._phase = ServerPhase.STARTING
        self._submit_in_progress = False
        self._timer_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def config(self) -> ServerConfig:
        return self._config

    @property
    def store(self) -> CaptureStore:
        return self._store

    @property
    def state(self) -> SubmissionState:
        return self._state

    @property
    def phase(self) -> ServerPhase:
        return self._phase

    @property
    def submit_in_progress(self) -> bool:
        return self._submit_in_progress

    async def start(self, *, run_timer: bool = True) -> None:
        """Prepare storage, load state and start the daily-submit timer."""
        await asyncio.to_thread(self._store.initialize)
        self._state = await asyncio.to_thread(self._store.read_state)
        self._phase = ServerPhase.LISTENING
        logger.info(
            "Ingestion server ready (data_dir=%s, submit_hour_utc=%d, dry_run=%s, auth=%s)",
            self._store.root,
            self._config.submit_hour_utc,
            self._config.dry_run_submit,
            self._config.auth_enabled,
        )
        if run_timer:
            self._timer_task = asyncio.create_task(self._run_timer())

    async def stop(self) -> None:
        """Stop the timer and wait for an in-flight submission to finish."""
        self._phase = ServerPhase.DRAINING
        if self._timer_task is not None:
            self._timer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer_task
            self._timer_task = None

        pending = list(self._tasks)
        if pending:
            logger.info("Waiting for %d outstanding submission task(s)", len(pending))
            _, not_done = await asyncio.wait(pending, timeout=self._config.drain_timeout_s)
            for task in not_done:
                logger.warning("Cancelling submission task still running at shutdown")
                task.cancel()
        self._phase = ServerPhase.STOPPED
        logger.info("Ingestion server stopped")

    async def _run_timer(self) -> None:
        while True:
            self.schedule_check()
            await asyncio.sleep(self._config.check_interval_s)

    def schedule_check(self) -> asyncio.Task[bool] | None:
        """Start a background daily-submit check unless one is in flight."""
        if self._submit_in_progress:
            logger.debug("Submission still in flight; skipping timer tick")
            return None
        task = asyncio.create_task(self.maybe_submit())
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Daily submit check crashed", exc_info=exc)

    async def maybe_submit(self, now: datetime | None = None) -> bool:
        """Run today's submission if the gate allows and none is in flight.

        Returns:
            True if an attempt was made (successful or not).
        """
        if self._submit_in_progress:
            return False
        if self._phase in (ServerPhase.DRAINING, ServerPhase.STOPPED):
            return False
        moment = now or self._clock()
        due = should_run_daily_submit(
            moment, self._state.last_submitted_date, self._config.submit_hour_utc
        )
        if not due:
            if self._phase is ServerPhase.LISTENING:
                self._phase = ServerPhase.IDLE
            return False

        self._submit_in_progress = True
        self._phase = ServerPhase.SUBMITTING
        try:
            await self.submit_daily(moment)
        finally:
            self._submit_in_progress = False
            if self._phase is ServerPhase.SUBMITTING:
                self._phase = ServerPhase.IDLE
        return True

    async def submit_daily(self, now: datetime) -> Result[SubmissionRecord, str]:
        """Merge all stored snapshots and submit them for ``now``'s UTC date.

        Failures never advance ``last_submitted_date``; they are stamped into
        ``last_submit_error`` so the next timer tick retries.
        """
        date = utc_date_string(now)
        try:
            record = await self._submit_for(date, now)
        except Exception as exc:
            message = f"[{utc_now_iso(self._clock())}] {exc}"
            self._state = self._state.model_copy(update={"last_submit_error": message})
            try:
                await asyncio.to_thread(self._store.write_state, self._state)
            except Exception:
                logger.exception("Could not persist submit error")
            logger.error("Daily submit failed: %s", message)
            return Err(message)
        return Ok(record)

    async def _submit_for(self, date: str, now: datetime) -> SubmissionRecord:
        snapshots = await asyncio.to_thread(self._store.list_client_snapshots)
        if not snapshots:
            msg = "No client captures available"
            raise NoCapturesAvailableError(msg)
        report = combine([snapshot.payload for snapshot in snapshots], now=now)

        submission_id: str | None = None
        if self._config.dry_run_submit:
            result = SubmissionResult(
                mode="dry-run", response={"summary": report.summary.to_wire()}
            )
        else:
            response = await self._submitter.submit(report)
            submission_id = response.submission_id
            result = SubmissionResult(
                mode="submit",
                response=response.model_dump(mode="json", by_alias=True, exclude_none=True),
            )

        record = SubmissionRecord(
            submitted_date=date,
            created_at=utc_now_iso(self._clock()),
            result=result,
            payload=report,
        )
        await asyncio.to_thread(self._store.write_submission_record, date, record)
        self._state = SubmissionState(
            last_submitted_date=date,
            last_submitted_at=utc_now_iso(self._clock()),
            last_submit_error=None,
            last_submission_id=submission_id,
        )
        await asyncio.to_thread(self._store.write_state, self._state)
        logger.info(
            "%s complete for %s (%d client(s), %d day(s))",
            "Dry-run submit" if self._config.dry_run_submit else "Submit",
            date,
            len(snapshots),
            report.summary.active_days,
        )
        return record

    async def accept_upload(self, body: bytes) -> ClientSnapshot:
        """Validate an upload body and store it as the client's latest snapshot."""
        snapshot = parse_upload(body, utc_now_iso(self._clock()))
        stored = await asyncio.to_thread(
            self._store.put_client_snapshot, snapshot.client_id, snapshot
        )
        logger.info(
            "Accepted capture from %s (host=%s, %d day(s))",
            stored.client_id,
            stored.source_host or "-",
            len(stored.payload.contributions),
        )
        return stored

    async def status(self) -> dict[str, Any]:
        """Operator view of submission state and known clients."""
        scan = await asyncio.to_thread(self._store.scan_client_snapshots)
        return {
            "ok": True,
            "now": utc_now_iso(self._clock()),
            "phase": self._phase.value,
            "authEnabled": self._config.auth_enabled,
            "submitHourUtc": self._config.submit_hour_utc,
            "lastSubmittedDate": self._state.last_submitted_date,
            "lastSubmittedAt": self._state.last_submitted_at,
            "lastSubmitError": self._state.last_submit_error,
            "lastSubmissionId": self._state.last_submission_id,
            "clients": [snapshot.describe() for snapshot in scan.snapshots],
            "skippedClientFiles": scan.skipped,
        }
