"""Upload client — periodically collect the local report and POST it."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import socket
from collections.abc import Callable
from typing import Any

import httpx
from result import Err, Ok, Result

from tkproxy.config import ClientConfig
from tkproxy.services.protocols import ReportCollectorProtocol
from tkproxy.services.schedule import compute_wait_with_jitter, utc_now_iso
from tkproxy.services.tokscale import GraphCollector

logger = logging.getLogger(__name__)


class UploadClient:
    """Collect-and-upload loop with jittered spacing between uploads."""

    def __init__(
        self,
        config: ClientConfig,
        collector: ReportCollectorProtocol | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        wait_fn: Callable[[int, int], int] = compute_wait_with_jitter,
    ) -> None:
        self._config = config
        self._collector = collector or GraphCollector()
        self._transport = transport
        self._wait_fn = wait_fn
        self._stop = asyncio.Event()

    def request_stop(self) -> None:
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if not self._config.no_auth and self._config.auth_token:
            headers["Authorization"] = f"Bearer {self._config.auth_token}"
        return headers

    async def upload_once(self) -> Result[dict[str, Any], str]:
        """Collect one report and upload it; errors are returned, not raised."""
        captured_at = utc_now_iso()
        try:
            report = await self._collector.collect()
            body = {
                "clientId": self._config.client_id,
                "capturedAt": captured_at,
                "sourceHost": socket.gethostname(),
                "payload": report.to_wire(),
            }
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self._config.request_timeout_ms / 1000,
            ) as client:
                response = await client.post(
                    self._config.captures_url, json=body, headers=self._headers()
                )
        except Exception as exc:
            return Err(f"capture/upload failed: {exc}")

        if not response.is_success:
            return Err(f"Upload failed ({response.status_code}): {response.text}")
        logger.info("Uploaded capture at %s", captured_at)
        try:
            return Ok(response.json())
        except ValueError:
            return Ok({})

    async def run(self) -> None:
        """Upload until stopped; exits after one round when ``once`` is set."""
        logger.info(
            "Starting with server=%s client_id=%s interval_ms=%d jitter_ms=%d auth=%s",
            self._config.base_url,
            self._config.client_id,
            self._config.interval_ms,
            self._config.jitter_ms,
            not self._config.no_auth,
        )
        while not self._stop.is_set():
            result = await self.upload_once()
            if isinstance(result, Err):
                logger.error("%s", result.err_value)
            if self._config.once:
                break
            wait_ms = self._wait_fn(self._config.interval_ms, self._config.jitter_ms)
            logger.debug("Next upload in %d ms", wait_ms)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop.wait(), timeout=wait_ms / 1000)


async def run_client(config: ClientConfig) -> None:
    """Run the upload loop, stopping cleanly on SIGINT/SIGTERM."""
    client = UploadClient(config)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, client.request_stop)
    await client.run()
