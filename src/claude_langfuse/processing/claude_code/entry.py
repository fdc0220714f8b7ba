# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Claude Code JSONL entry model and message text extraction.

One line of a conversation file is one entry. Only ``user`` and
``assistant`` entries are forwarded; everything else (summaries,
queue operations, system records) is ignored downstream.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

TOOL_INPUT_PREVIEW_CHARS = 100
TOOL_RESULT_PREVIEW_CHARS = 200


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp, falling back to the current time."""
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
        except (ValueError, TypeError):
            logger.debug(f"Unparsable timestamp {value!r}, using current time")
    return datetime.now(timezone.utc)


def _optional_str(value: Any) -> Optional[str]:
    """Identifier fields must be non-empty strings; anything else is treated as missing."""
    if isinstance(value, str) and value:
        return value
    return None


@dataclass
class ConversationEntry:
    """A single parsed line of a Claude Code conversation file."""

    kind: str
    uuid: Optional[str]
    message: Union[Dict[str, Any], str, None]
    timestamp: datetime
    parent_uuid: Optional[str] = None
    request_id: Optional[str] = None
    git_branch: Optional[str] = None
    cwd: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConversationEntry':
        """
        Build an entry from a decoded JSON object.

        Raises:
            ValueError: If data is not a JSON object
        """
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")

        message = data.get("message")
        if not isinstance(message, (dict, str)):
            message = None

        return cls(
            kind=str(data.get("type") or "unknown"),
            uuid=_optional_str(data.get("uuid")),
            message=message,
            timestamp=parse_timestamp(data.get("timestamp")),
            parent_uuid=_optional_str(data.get("parentUuid")),
            request_id=_optional_str(data.get("requestId")),
            git_branch=_optional_str(data.get("gitBranch")),
            cwd=_optional_str(data.get("cwd")),
            raw=data,
        )

    @classmethod
    def from_json_line(cls, line: str) -> 'ConversationEntry':
        """
        Parse one JSONL line.

        Raises:
            ValueError: If the line is not valid JSON or not an object
        """
        return cls.from_dict(json.loads(line))

    @property
    def model(self) -> Optional[str]:
        if isinstance(self.message, dict):
            model = self.message.get("model")
            if isinstance(model, str) and model:
                return model
        return None


def _abbreviate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def _summarize_tool_use(block: Dict[str, Any]) -> str:
    name = block.get("name") or "unknown"
    try:
        arguments = json.dumps(block.get("input", {}), ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        arguments = str(block.get("input"))
    return f"[tool_use: {name}({_abbreviate(arguments, TOOL_INPUT_PREVIEW_CHARS)})]"


def _summarize_tool_result(block: Dict[str, Any]) -> str:
    content = block.get("content")
    if isinstance(content, list):
        # Tool results carry their own text blocks
        content = " ".join(
            item["text"] for item in content
            if isinstance(item, dict) and item.get("type") == "text"
            and isinstance(item.get("text"), str)
        )
    elif content is None:
        content = ""
    elif not isinstance(content, str):
        content = str(content)

    label = "tool_error" if block.get("is_error") else "tool_result"
    return f"[{label}: {_abbreviate(content.strip(), TOOL_RESULT_PREVIEW_CHARS)}]"


def _render_content_blocks(blocks: list) -> str:
    rendered = []
    for block in blocks:
        if isinstance(block, str):
            rendered.append(block)
            continue
        if not isinstance(block, dict):
            continue

        block_type = block.get("type")
        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str):
                rendered.append(text)
        elif block_type == "tool_use":
            rendered.append(_summarize_tool_use(block))
        elif block_type == "tool_result":
            rendered.append(_summarize_tool_result(block))

    return "\n".join(part for part in rendered if part)


def extract_text(message: Any) -> str:
    """
    Extract forwardable text from an entry's message payload.

    - ``{"text": ...}`` uses the text field
    - ``{"content": "..."}`` uses the content string
    - ``{"content": [blocks]}`` renders text blocks and summarizes tool blocks
    - a plain string is used directly
    - anything else yields an empty string
    """
    if isinstance(message, str):
        return message

    if not isinstance(message, dict):
        return ""

    if "text" in message:
        text = message.get("text")
        return text if isinstance(text, str) else ""

    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return _render_content_blocks(content)

    return ""
