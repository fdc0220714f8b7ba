# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Message processor for Claude Code conversation entries.

Turns user/assistant entries into Langfuse traces and generations:
- Classification (only user and assistant entries are forwarded)
- Deduplication by entry uuid for the life of the run
- Text extraction, including tool_use/tool_result summaries
- Optional one-line console echo per message
- Best-effort forwarding with periodic flush requests
"""

import logging
import sys
from typing import Callable, Dict, Optional, TextIO

from .entry import ConversationEntry, extract_text
from ..sink.telemetry_sink import GenerationRecord, TelemetrySink, TraceRecord
from ...config import DEFAULT_MODEL
from ...shared.lru_cache import LRUSet
from ...shared.project_utils import project_display_name

logger = logging.getLogger(__name__)

FORWARDED_KINDS = ("user", "assistant")
MESSAGE_ICONS = {"user": "👤", "assistant": "🤖"}
PREVIEW_CHARS = 60
RECORD_SOURCE = "claude_code_automatic"

DEFAULT_MAX_PROCESSED_MESSAGES = 200_000


class MessageProcessor:
    """
    Forward conversation entries to a telemetry sink exactly once per run.

    Design:
    1. An entry id is recorded as processed before it is forwarded, so a
       failed forward is never retried (at-most-once)
    2. Counters are kept regardless of quiet mode for status reporting
    3. Flushes are only requested; a FlushWorker performs them
    """

    def __init__(
        self,
        sink: Optional[TelemetrySink] = None,
        flush_requester: Optional[Callable[[], None]] = None,
        quiet: bool = False,
        dry_run: bool = False,
        user_id: str = "claude-code",
        default_model: str = DEFAULT_MODEL,
        flush_every: int = 10,
        max_processed_messages: int = DEFAULT_MAX_PROCESSED_MESSAGES,
        output: Optional[TextIO] = None,
    ):
        """
        Initialize message processor.

        Args:
            sink: Telemetry sink (may be None in dry-run mode)
            flush_requester: Non-blocking callable asking for a sink flush
            quiet: Suppress the per-message console line
            dry_run: Process locally but never call the sink
            user_id: User identity attached to every trace
            default_model: Model name for generations that do not carry one
            flush_every: Request a flush every N processed messages
            max_processed_messages: Capacity of the processed-id set
            output: Stream for the console echo (default: stdout)
        """
        if sink is None and not dry_run:
            raise ValueError("A telemetry sink is required unless dry_run is set")

        self.sink = sink
        self.flush_requester = flush_requester
        self.quiet = quiet
        self.dry_run = dry_run
        self.user_id = user_id
        self.default_model = default_model
        self.flush_every = flush_every
        self.output = output

        self.processed_messages = LRUSet(max_processed_messages, name="processed messages")
        self.processed_total = 0
        self.message_count: Dict[str, int] = {kind: 0 for kind in FORWARDED_KINDS}
        self.forward_errors = 0

    def handle(
        self,
        entry: ConversationEntry,
        session_id: str,
        project_path: str,
        conversation_id: str,
    ) -> bool:
        """
        Process one entry.

        Returns:
            True if the entry was new and accepted, False if it was ignored
        """
        if entry.kind not in FORWARDED_KINDS:
            return False

        if not entry.uuid or entry.uuid in self.processed_messages:
            return False

        # Mark first: a later failure must not cause a second forward
        self.processed_messages.add(entry.uuid)
        self.processed_total += 1
        self.message_count[entry.kind] += 1

        text = extract_text(entry.message)

        if not self.quiet:
            self._echo(entry.kind, project_path, text)

        if self.dry_run:
            return True

        try:
            if entry.kind == "user":
                self.sink.record_trace(
                    self._build_trace(entry, text, session_id, project_path, conversation_id)
                )
            else:
                self.sink.record_generation(
                    self._build_generation(entry, text, project_path, conversation_id)
                )
        except Exception as e:
            self.forward_errors += 1
            logger.error(f"Error creating {entry.kind} record {entry.uuid}: {e}")

        if self.flush_every > 0 and self.processed_total % self.flush_every == 0:
            self._request_flush()

        return True

    def _build_trace(
        self,
        entry: ConversationEntry,
        text: str,
        session_id: str,
        project_path: str,
        conversation_id: str,
    ) -> TraceRecord:
        return TraceRecord(
            id=entry.uuid,
            session_id=session_id,
            user_id=self.user_id,
            input=text,
            timestamp=entry.timestamp,
            metadata={
                "project": project_path,
                "conversationId": conversation_id,
                "gitBranch": entry.git_branch,
                "cwd": entry.cwd,
                "messageType": entry.kind,
                "source": RECORD_SOURCE,
            },
        )

    def _build_generation(
        self,
        entry: ConversationEntry,
        text: str,
        project_path: str,
        conversation_id: str,
    ) -> GenerationRecord:
        return GenerationRecord(
            id=entry.uuid,
            trace_id=entry.parent_uuid,
            model=entry.model or self.default_model,
            output=text,
            start_time=entry.timestamp,
            end_time=entry.timestamp,
            metadata={
                "project": project_path,
                "conversationId": conversation_id,
                "requestId": entry.request_id,
                "messageType": entry.kind,
                "source": RECORD_SOURCE,
            },
        )

    def _echo(self, kind: str, project_path: str, text: str) -> None:
        """Print one preview line. Never raises."""
        try:
            project_name = project_display_name(project_path)
            preview = text[:PREVIEW_CHARS].replace("\r", " ").replace("\n", " ")
            stream = self.output or sys.stdout
            print(f"{MESSAGE_ICONS[kind]} [{project_name}] {preview}...", file=stream)
        except Exception as e:
            logger.debug(f"Could not echo message preview: {e}")

    def _request_flush(self) -> None:
        if self.flush_requester is None:
            return
        try:
            self.flush_requester()
        except Exception as e:
            logger.error(f"Error requesting flush: {e}")

    def get_stats(self) -> Dict[str, int]:
        """Counters for status reporting."""
        return {
            "user": self.message_count["user"],
            "assistant": self.message_count["assistant"],
            "processed": self.processed_total,
            "tracked_ids": len(self.processed_messages),
            "forward_errors": self.forward_errors,
        }
