# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Session identity for Claude Code conversation files.

Every conversation file maps to one Langfuse session. The id is a digest of
the decoded project path and conversation id, so it is stable across runs
and across repeated resolutions within a run.
"""

import hashlib
import logging
from pathlib import Path
from typing import Optional, Union

from ...shared.lru_cache import LRUCache

logger = logging.getLogger(__name__)

DEFAULT_MAX_SESSIONS = 50_000


def compute_session_id(project_path: str, conversation_id: str) -> str:
    """MD5 hex digest of ``"{project_path}:{conversation_id}"``."""
    session_data = f"{project_path}:{conversation_id}"
    return hashlib.md5(session_data.encode("utf-8")).hexdigest()


class SessionIdentityResolver:
    """Resolve and cache session ids by conversation file path."""

    def __init__(self, max_sessions: int = DEFAULT_MAX_SESSIONS):
        self.sessions = LRUCache(max_sessions, name="session cache")

    def resolve(
        self,
        file_path: Union[str, Path],
        project_path: str,
        conversation_id: str,
    ) -> str:
        key = str(file_path)
        session_id = self.sessions.get(key)
        if session_id is None:
            session_id = compute_session_id(project_path, conversation_id)
            self.sessions.set(key, session_id)
            logger.debug(f"New session {session_id} for {key}")
        return session_id

    def get(self, file_path: Union[str, Path]) -> Optional[str]:
        """Cached session id for a file, if any."""
        return self.sessions.peek(str(file_path))

    def __len__(self) -> int:
        return len(self.sessions)
