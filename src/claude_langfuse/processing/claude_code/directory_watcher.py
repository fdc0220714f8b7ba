# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Directory watcher for Claude Code conversation files.

Watches the projects tree with watchdog and surfaces one event per file
once that file has been quiet (no further writes) for a short period,
so a file is never read in the middle of a burst of appends.
"""

import asyncio
import fnmatch
import logging
from pathlib import Path
from typing import AsyncIterator, Dict, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ...config import ConfigurationError

logger = logging.getLogger(__name__)

_STOP = object()


def _event_path_to_path(event_path: Union[bytes, str]) -> Path:
    """Convert watchdog event path to Path, handling bytes properly."""
    if isinstance(event_path, bytes):
        return Path(event_path.decode("utf-8", errors="replace"))
    return Path(event_path)


class ConversationEventHandler(FileSystemEventHandler):
    """Forward created/modified/moved conversation files to the watcher."""

    def __init__(self, watcher: 'ConversationDirectoryWatcher'):
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent):
        if not event.is_directory:
            self.watcher.notify(_event_path_to_path(event.src_path))

    def on_modified(self, event: FileSystemEvent):
        if not event.is_directory:
            self.watcher.notify(_event_path_to_path(event.src_path))

    def on_moved(self, event: FileSystemEvent):
        # Editors and atomic writers rename a temp file into place
        if not event.is_directory:
            self.watcher.notify(_event_path_to_path(event.dest_path))


class ConversationDirectoryWatcher:
    """
    Watch a directory tree for conversation file changes.

    Strategy:
    1. watchdog observer thread reports raw filesystem events
    2. Events hop onto the event loop via call_soon_threadsafe
    3. Per-path debounce: each event re-arms a quiet-period timer
    4. Settled paths are queued and yielded by events()
    """

    def __init__(
        self,
        root: Path,
        pattern: str = "*.jsonl",
        quiet_period: float = 0.5,
        emit_initial: bool = True,
    ):
        """
        Initialize watcher.

        Args:
            root: Directory to watch recursively
            pattern: File name glob to report
            quiet_period: Seconds a file must stay unchanged before it is reported
            emit_initial: Report every existing matching file on start
        """
        self.root = Path(root)
        self.pattern = pattern
        self.quiet_period = quiet_period
        self.emit_initial = emit_initial

        self.observer: Optional[Observer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._pending: Dict[Path, asyncio.TimerHandle] = {}
        self.running = False

    def matches(self, path: Path) -> bool:
        return fnmatch.fnmatch(path.name, self.pattern)

    async def start(self):
        """
        Start watching.

        Raises:
            ConfigurationError: If the root directory does not exist
        """
        if not self.root.is_dir():
            raise ConfigurationError(f"Claude projects directory not found: {self.root}")

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self.running = True

        self.observer = Observer()
        self.observer.schedule(ConversationEventHandler(self), str(self.root), recursive=True)
        self.observer.start()

        if self.emit_initial:
            existing = sorted(self.root.rglob(self.pattern))
            for path in existing:
                self._schedule(path)
            logger.debug(f"Queued {len(existing)} existing conversation files")

        logger.info(f"Watching {self.root} for {self.pattern} (quiet period: {self.quiet_period}s)")

    def notify(self, path: Path) -> None:
        """Report a raw change. Safe to call from any thread."""
        if not self.running or self._loop is None or not self.matches(path):
            return
        try:
            self._loop.call_soon_threadsafe(self._schedule, path)
        except RuntimeError:
            # Loop already closed during shutdown
            logger.debug(f"Dropped change event for {path}: event loop closed")

    def _schedule(self, path: Path) -> None:
        if not self.running:
            return
        handle = self._pending.pop(path, None)
        if handle is not None:
            handle.cancel()
        self._pending[path] = self._loop.call_later(self.quiet_period, self._emit, path)

    def _emit(self, path: Path) -> None:
        self._pending.pop(path, None)
        if self.running:
            self._queue.put_nowait(path)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def events(self) -> AsyncIterator[Path]:
        """Yield settled file paths until stop() is called."""
        while True:
            item = await self._queue.get()
            if item is _STOP:
                return
            yield item

    async def stop(self):
        """Stop emitting events and release the observer."""
        if not self.running:
            return
        self.running = False

        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()

        if self.observer is not None:
            self.observer.stop()
            await asyncio.get_running_loop().run_in_executor(None, self.observer.join, 1)
            self.observer = None

        if self._queue is not None:
            # Settled but unconsumed paths are dropped; the next run re-reads them
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(_STOP)

        logger.info("Directory watcher stopped")
