# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Claude Langfuse Monitor.

Mirrors Claude Code conversation logs into Langfuse traces and generations.
"""

__version__ = "0.1.0"
