# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Background flush worker for the telemetry sink.

The message hot path only *requests* a flush; requests are coalesced and a
dedicated asyncio task performs the blocking flush in a worker thread, with
retry and exponential backoff.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from .telemetry_sink import TelemetrySink

logger = logging.getLogger(__name__)


class FlushWorker:
    """
    Owns all flush calls to a TelemetrySink.

    Design:
    - request_flush() is synchronous and never blocks or raises
    - Pending requests collapse into a single flush
    - Sink calls run in a single-thread executor so the event loop stays free
    - Failed flushes are retried with exponential backoff, then dropped
    """

    def __init__(
        self,
        sink: TelemetrySink,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
    ):
        """
        Initialize flush worker.

        Args:
            sink: Telemetry sink to flush
            max_retries: Retries after the first failed attempt
            backoff_seconds: Base delay, doubled after every failed attempt
        """
        self.sink = sink
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

        self.requests = 0
        self.flushes = 0
        self.failures = 0

        self._pending = False
        self._wakeup: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="langfuse-flush")
        self.running = False

    async def start(self):
        """Start the background flush task."""
        self.running = True
        self._wakeup = asyncio.Event()
        if self._pending:
            self._wakeup.set()
        self._task = asyncio.create_task(self._run())
        logger.info(
            f"Flush worker started (retries: {self.max_retries}, backoff: {self.backoff_seconds}s)"
        )

    def request_flush(self) -> None:
        """Ask for a flush without waiting for it."""
        self.requests += 1
        self._pending = True
        if self._wakeup is not None:
            self._wakeup.set()

    async def _run(self):
        while self.running:
            await self._wakeup.wait()
            self._wakeup.clear()
            if not self.running:
                break
            if self._pending:
                self._pending = False
                await self.flush_now()

    async def flush_now(self) -> bool:
        """
        Flush the sink, retrying with backoff.

        Returns:
            True if a flush attempt succeeded
        """
        loop = asyncio.get_running_loop()
        for attempt in range(self.max_retries + 1):
            try:
                await loop.run_in_executor(self._executor, self.sink.flush)
                self.flushes += 1
                logger.debug("Telemetry sink flushed")
                return True
            except Exception as e:
                if attempt >= self.max_retries:
                    break
                delay = self.backoff_seconds * (2 ** attempt)
                logger.warning(f"Flush failed (attempt {attempt + 1}): {e}; retrying in {delay:.1f}s")
                await asyncio.sleep(delay)

        self.failures += 1
        logger.error(f"Flush failed after {self.max_retries + 1} attempts, buffered records may be lost")
        return False

    async def stop(self):
        """Stop the background task and flush whatever is still buffered."""
        self.running = False
        if self._wakeup is not None:
            self._wakeup.set()
        if self._task is not None:
            await self._task
            self._task = None

        await self.flush_now()
        self._pending = False
        logger.info(f"Flush worker stopped ({self.flushes} flushes, {self.failures} failures)")

    async def shutdown_sink(self):
        """Run the sink's shutdown handshake off the event loop."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self._executor, self.sink.shutdown)
            logger.info("Telemetry sink shut down")
        except Exception as e:
            logger.error(f"Error shutting down telemetry sink: {e}", exc_info=True)
        finally:
            self._executor.shutdown(wait=False)
