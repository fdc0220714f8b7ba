# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Telemetry sink for forwarding conversation messages to Langfuse.

The monitor only needs four operations from the backend: record a trace,
record a generation, flush buffered records and shut down. The Langfuse
SDK already buffers events on its own background thread, so record calls
are cheap and non-blocking; flush and shutdown block on network I/O.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from langfuse import Langfuse

from ...config import LangfuseConfig

logger = logging.getLogger(__name__)

USER_TRACE_NAME = "claude_code_user"
ASSISTANT_GENERATION_NAME = "claude_response"


@dataclass
class TraceRecord:
    """Top-level record for one user message."""
    id: str
    session_id: str
    user_id: str
    input: str
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
    name: str = USER_TRACE_NAME


@dataclass
class GenerationRecord:
    """Model response record, linked to its parent message."""
    id: str
    trace_id: Optional[str]
    model: str
    output: str
    start_time: datetime
    end_time: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
    name: str = ASSISTANT_GENERATION_NAME


class TelemetrySink(Protocol):
    """Operations the monitor needs from a telemetry backend."""

    def record_trace(self, record: TraceRecord) -> None: ...

    def record_generation(self, record: GenerationRecord) -> None: ...

    def flush(self) -> None: ...

    def shutdown(self) -> None: ...


class LangfuseSink:
    """
    TelemetrySink backed by the Langfuse Python SDK.

    Args:
        client: Langfuse client instance
    """

    def __init__(self, client: Langfuse):
        self.client = client

    @classmethod
    def from_config(cls, config: LangfuseConfig) -> 'LangfuseSink':
        client = Langfuse(
            public_key=config.public_key,
            secret_key=config.secret_key,
            host=config.host,
        )
        logger.info(f"Langfuse client initialized for {config.host}")
        return cls(client)

    def record_trace(self, record: TraceRecord) -> None:
        self.client.trace(
            id=record.id,
            name=record.name,
            session_id=record.session_id,
            user_id=record.user_id,
            input=record.input,
            metadata=record.metadata,
            timestamp=record.timestamp,
        )

    def record_generation(self, record: GenerationRecord) -> None:
        self.client.generation(
            id=record.id,
            trace_id=record.trace_id,
            name=record.name,
            model=record.model,
            output=record.output,
            metadata=record.metadata,
            start_time=record.start_time,
            end_time=record.end_time,
        )

    def flush(self) -> None:
        self.client.flush()

    def shutdown(self) -> None:
        self.client.shutdown()
