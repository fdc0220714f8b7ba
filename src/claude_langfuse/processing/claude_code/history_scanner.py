# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""History scanner: conversation files modified within the lookback window."""

import logging
import time
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


def history_cutoff(hours: float, now: Optional[float] = None) -> float:
    """Epoch timestamp ``hours`` before ``now``."""
    if now is None:
        now = time.time()
    return now - hours * 3600


def scan_history(root: Path, cutoff_timestamp: float, pattern: str = "*.jsonl") -> List[Path]:
    """
    Recursively list files under root modified at or after the cutoff.

    Args:
        root: Claude projects directory
        cutoff_timestamp: Epoch seconds; older files are skipped
        pattern: File name glob

    Returns:
        Matching file paths, sorted by path
    """
    results = []
    for file_path in Path(root).rglob(pattern):
        try:
            if not file_path.is_file():
                continue
            mtime = file_path.stat().st_mtime
        except OSError as e:
            # Removed or unreadable between listing and stat
            logger.debug(f"Skipping {file_path}: {e}")
            continue

        if mtime >= cutoff_timestamp:
            results.append(file_path)

    results.sort()
    logger.debug(f"Found {len(results)} conversation files under {root} since {cutoff_timestamp:.0f}")
    return results
