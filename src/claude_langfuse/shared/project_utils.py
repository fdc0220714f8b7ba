# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""Shared helpers for deriving project identity from conversation file paths."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

# Claude Code encodes every "/" of the workspace path as "-" in the project directory name.
SEPARATOR_ENCODING_CHAR = "-"
DEFAULT_ANCHOR_SEGMENT = "projects"


@dataclass(frozen=True)
class ConversationLocation:
    """Project and conversation identity derived from a conversation file path."""

    encoded_project: str
    project_path: str
    conversation_id: str


def decode_project_segment(encoded_project: str) -> str:
    """
    Decode an encoded project directory name back into a path string.

    Lossy: a workspace path that itself contained "-" cannot be told apart
    from one with an extra separator.
    """
    return encoded_project.replace(SEPARATOR_ENCODING_CHAR, "/")


def parse_conversation_path(
    file_path: Union[str, Path],
    anchor: str = DEFAULT_ANCHOR_SEGMENT,
) -> Optional[ConversationLocation]:
    """
    Derive project and conversation identity from ``<root>/<anchor>/<encoded>/.../<id>.jsonl``.

    Returns:
        ConversationLocation, or None when the path is outside the expected layout.
    """
    parts = Path(file_path).parts
    try:
        anchor_idx = parts.index(anchor)
    except ValueError:
        return None

    # Need at least the encoded project segment and the file name after the anchor.
    if anchor_idx >= len(parts) - 2:
        return None

    encoded_project = parts[anchor_idx + 1]
    return ConversationLocation(
        encoded_project=encoded_project,
        project_path=decode_project_segment(encoded_project),
        conversation_id=Path(file_path).stem,
    )


def project_display_name(project_path: str) -> str:
    """Last segment of a decoded project path, or the path itself when it has none."""
    name = project_path.rstrip("/").rsplit("/", 1)[-1]
    return name or project_path


__all__ = [
    "ConversationLocation",
    "decode_project_segment",
    "parse_conversation_path",
    "project_display_name",
]
