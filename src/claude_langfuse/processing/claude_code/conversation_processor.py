# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Conversation file processor.

Reads a whole Claude Code JSONL file, derives its project and session
identity from the path and hands every parsed entry to the message
processor. Deduplication happens downstream, so re-reading a file after
each change is safe.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from .entry import ConversationEntry
from .message_processor import MessageProcessor
from .session_resolver import SessionIdentityResolver
from ...shared.project_utils import DEFAULT_ANCHOR_SEGMENT, parse_conversation_path

logger = logging.getLogger(__name__)


class ConversationFileProcessor:
    """Process one conversation file per call."""

    def __init__(
        self,
        session_resolver: SessionIdentityResolver,
        message_processor: MessageProcessor,
        anchor: str = DEFAULT_ANCHOR_SEGMENT,
    ):
        self.session_resolver = session_resolver
        self.message_processor = message_processor
        self.anchor = anchor

        self.files_processed = 0
        self.file_errors = 0
        self.invalid_lines = 0

    def process(self, file_path: Union[str, Path]) -> Optional[int]:
        """
        Process a conversation file.

        Args:
            file_path: Path to a JSONL conversation file

        Returns:
            Number of entries dispatched, or None if the file was skipped
            or could not be read
        """
        location = parse_conversation_path(file_path, self.anchor)
        if location is None:
            logger.debug(f"Ignoring file outside {self.anchor}/ layout: {file_path}")
            return None

        session_id = self.session_resolver.resolve(
            file_path, location.project_path, location.conversation_id
        )

        try:
            content = Path(file_path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            self.file_errors += 1
            logger.error(f"Error processing {file_path}: {e}")
            return None

        dispatched = 0
        for line_number, line in enumerate(content.splitlines(), start=1):
            line = line.strip()
            if not line:
                continue

            try:
                entry = ConversationEntry.from_json_line(line)
            except ValueError as e:
                self.invalid_lines += 1
                logger.debug(f"Skipping invalid line {line_number} in {file_path}: {e}")
                continue

            try:
                self.message_processor.handle(
                    entry, session_id, location.project_path, location.conversation_id
                )
            except Exception as e:
                self.invalid_lines += 1
                logger.error(f"Error handling line {line_number} in {file_path}: {e}", exc_info=True)
                continue
            dispatched += 1

        self.files_processed += 1
        return dispatched
