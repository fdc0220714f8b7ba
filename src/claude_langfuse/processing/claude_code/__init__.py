# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Claude Code processing components.

Watches Claude Code JSONL conversation files and turns their messages into
Langfuse records.
"""

from .conversation_processor import ConversationFileProcessor
from .directory_watcher import ConversationDirectoryWatcher
from .history_scanner import scan_history
from .message_processor import MessageProcessor
from .session_resolver import SessionIdentityResolver

__all__ = [
    "ConversationFileProcessor",
    "ConversationDirectoryWatcher",
    "MessageProcessor",
    "SessionIdentityResolver",
    "scan_history",
]
