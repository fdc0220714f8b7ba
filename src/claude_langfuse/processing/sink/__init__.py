# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""Telemetry sink and flush worker."""

from .flush_worker import FlushWorker
from .telemetry_sink import GenerationRecord, LangfuseSink, TelemetrySink, TraceRecord

__all__ = [
    "FlushWorker",
    "GenerationRecord",
    "LangfuseSink",
    "TelemetrySink",
    "TraceRecord",
]
