# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Main server for Claude Langfuse Monitor.

Orchestrates history backfill, live directory watching, forwarding to
Langfuse and graceful shutdown.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from .claude_code.conversation_processor import ConversationFileProcessor
from .claude_code.directory_watcher import ConversationDirectoryWatcher
from .claude_code.history_scanner import history_cutoff, scan_history
from .claude_code.message_processor import MessageProcessor
from .claude_code.session_resolver import SessionIdentityResolver
from .sink.flush_worker import FlushWorker
from .sink.telemetry_sink import LangfuseSink, TelemetrySink
from ..config import ConfigurationError, MonitorConfig, load_config

logger = logging.getLogger(__name__)


class MonitorServer:
    """
    Main server for conversation monitoring.

    Manages:
    - Telemetry sink and background flush worker
    - Run-lifetime state (session cache, processed ids, counters)
    - History backfill followed by live watching
    - Graceful shutdown
    """

    def __init__(self, config: Optional[MonitorConfig] = None, sink: Optional[TelemetrySink] = None):
        """
        Initialize monitor server.

        Args:
            config: Configuration instance (loads default if not provided)
            sink: Telemetry sink (built from config if not provided and not in dry-run)
        """
        self.config = config or load_config()
        options = self.config.monitor

        if sink is None and not options.dry_run and self.config.langfuse.has_credentials():
            sink = LangfuseSink.from_config(self.config.langfuse)
        self.sink = sink

        self.flush_worker: Optional[FlushWorker] = None
        if self.sink is not None:
            self.flush_worker = FlushWorker(
                self.sink,
                max_retries=options.flush_retries,
                backoff_seconds=options.flush_backoff_seconds,
            )

        self.session_resolver = SessionIdentityResolver(max_sessions=self.config.cache.max_sessions)
        self.message_processor = MessageProcessor(
            sink=self.sink,
            flush_requester=self.flush_worker.request_flush if self.flush_worker else None,
            quiet=options.quiet,
            dry_run=options.dry_run or self.sink is None,
            user_id=self.config.langfuse.user_id,
            default_model=self.config.langfuse.default_model,
            flush_every=options.flush_every,
            max_processed_messages=self.config.cache.max_processed_messages,
        )
        self.conversation_processor = ConversationFileProcessor(
            self.session_resolver,
            self.message_processor,
            anchor=self.config.paths.anchor_segment,
        )

        self.watcher: Optional[ConversationDirectoryWatcher] = None
        self.running = False
        self._stop_requested = False
        self._stop_task: Optional[asyncio.Task] = None

    def _validate(self) -> Path:
        """
        Check the environment before starting.

        Raises:
            ConfigurationError: If the projects directory or credentials are missing
        """
        projects_dir = self.config.get_projects_dir()
        if not self.config.monitor.dry_run and self.sink is None:
            raise ConfigurationError(
                "Langfuse credentials not configured "
                "(set LANGFUSE_PUBLIC_KEY and LANGFUSE_SECRET_KEY or add them to the config file)"
            )
        return projects_dir

    async def run(self) -> None:
        """Backfill history, then watch until stopped."""
        projects_dir = self._validate()
        logger.info(f"Claude projects: {projects_dir}")

        self.running = True
        self._install_signal_handlers()

        if self.flush_worker:
            await self.flush_worker.start()

        try:
            if self.config.monitor.history_hours > 0:
                await self.process_history(projects_dir)

            if self._stop_requested:
                return

            self.watcher = ConversationDirectoryWatcher(
                projects_dir,
                pattern=self.config.paths.file_pattern,
                quiet_period=self.config.monitor.debounce_seconds,
                emit_initial=self.config.monitor.emit_initial_events,
            )
            await self.watcher.start()
            if self._stop_requested:
                await self.watcher.stop()
            logger.info(f"Watching for new Claude Code activity (Langfuse UI: {self.config.langfuse.host})")

            async for file_path in self.watcher.events():
                self._process_file(file_path)
                await asyncio.sleep(0)
        finally:
            await self.shutdown()

    async def process_history(self, projects_dir: Path) -> List[Path]:
        """Process conversation files modified within the lookback window."""
        hours = self.config.monitor.history_hours
        logger.info(f"Processing last {hours:g} hours of history...")

        conversations = scan_history(
            projects_dir, history_cutoff(hours), pattern=self.config.paths.file_pattern
        )
        logger.info(f"Found {len(conversations)} recent conversations")

        for file_path in conversations:
            if self._stop_requested:
                logger.info("Stop requested, ending history backfill early")
                break
            self._process_file(file_path)
            await asyncio.sleep(0)

        logger.info(f"Processed {len(conversations)} conversations")
        return conversations

    def _process_file(self, file_path: Path) -> None:
        try:
            self.conversation_processor.process(file_path)
        except Exception as e:
            logger.error(f"Unexpected error processing {file_path}: {e}", exc_info=True)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread
                logger.debug(f"Signal handler for {sig} not installed")

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

    def request_stop(self) -> None:
        """Stop emitting watch events; the current file is finished first."""
        if self._stop_requested:
            return
        logger.info("Received shutdown signal, stopping monitor...")
        self._stop_requested = True
        if self.watcher is not None:
            self._stop_task = asyncio.get_running_loop().create_task(self.watcher.stop())

    async def shutdown(self) -> None:
        """Final flush and sink shutdown handshake."""
        if not self.running:
            return
        self.running = False
        self._remove_signal_handlers()

        if self._stop_task is not None:
            await self._stop_task
            self._stop_task = None
        if self.watcher is not None:
            await self.watcher.stop()

        if self.flush_worker:
            try:
                await self.flush_worker.stop()
            except Exception as e:
                logger.error(f"Error during final flush: {e}", exc_info=True)
            await self.flush_worker.shutdown_sink()

        stats = self.message_processor.get_stats()
        logger.info(
            f"Monitor stopped: {stats['user']} user / {stats['assistant']} assistant messages "
            f"({stats['forward_errors']} forwarding errors)"
        )

    def check_status(self) -> bool:
        """
        Print a human-readable readiness report.

        Returns:
            True if the monitor is ready to run
        """
        print("🔍 Claude Langfuse Monitor Status")
        print("=" * 50)

        try:
            projects_dir = self.config.get_projects_dir()
            print("✅ Claude projects directory found")
            print(f"   {projects_dir}")
        except ConfigurationError:
            print("❌ Claude projects directory not found")
            print(f"   {self.config.paths.claude_projects_dir}")
            return False

        if self.config.source_file:
            print(f"   Config file: {self.config.source_file}")

        if self.config.langfuse.has_credentials():
            print("✅ Langfuse credentials configured")
        else:
            print("❌ Langfuse credentials not configured")
            print("   Set LANGFUSE_PUBLIC_KEY and LANGFUSE_SECRET_KEY or add them to ~/.claude-langfuse/config.yaml")
            return False

        print(f"   Host: {self.config.langfuse.host}")

        print("\n✅ Monitor ready to run")
        print("   Start with: claude-langfuse start")
        return True


def setup_logging(level: str = "INFO") -> None:
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="claude-langfuse",
        description="Automatic Langfuse tracking for Claude Code activity",
    )
    parser.add_argument("--config", type=Path, help="Path to config file or directory")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    start_parser = subparsers.add_parser("start", help="Start monitoring Claude Code activity")
    start_parser.add_argument(
        "--history",
        type=float,
        default=None,
        help="Process last N hours of history (0 disables backfill)"
    )
    start_parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only show summaries, not individual messages"
    )
    start_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Process files without sending anything to Langfuse"
    )

    subparsers.add_parser("status", help="Check monitor status and configuration")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = load_config(args.config)
    except (ConfigurationError, OSError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging.level)

    if args.command == "status":
        config.monitor.dry_run = True
        server = MonitorServer(config)
        return 0 if server.check_status() else 1

    if args.history is not None:
        config.monitor.history_hours = args.history
    if args.quiet:
        config.monitor.quiet = True
    if args.dry_run:
        config.monitor.dry_run = True

    try:
        server = MonitorServer(config)
        asyncio.run(server.run())
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
