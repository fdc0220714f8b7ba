# Copyright © 2025 Sierra Labs LLC
# SPDX-License-Identifier: AGPL-3.0-only
# License-Filename: LICENSE

"""
Bounded least-recently-used containers for run-lifetime state.

The monitor remembers processed message ids and session ids for as long as
it runs. Both are capped so a long-lived process cannot grow without bound;
the entry touched longest ago is evicted first.
"""

import logging
from collections import OrderedDict
from typing import Any, Hashable, Iterator, Optional

logger = logging.getLogger(__name__)


class LRUCache:
    """Key/value cache with least-recently-used eviction."""

    def __init__(self, max_entries: int, name: str = "cache"):
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.max_entries = max_entries
        self.name = name
        self.evictions = 0
        self._entries: "OrderedDict[Hashable, Any]" = OrderedDict()

    def get(self, key: Hashable, default: Optional[Any] = None) -> Any:
        """Get a value and mark it as recently used."""
        if key not in self._entries:
            return default
        self._entries.move_to_end(key)
        return self._entries[key]

    def peek(self, key: Hashable, default: Optional[Any] = None) -> Any:
        """Get a value without touching its recency."""
        return self._entries.get(key, default)

    def set(self, key: Hashable, value: Any) -> None:
        self._entries[key] = value
        self._entries.move_to_end(key)
        self._evict()

    def _evict(self) -> None:
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self.evictions += 1
            logger.debug(f"Evicted {evicted!r} from {self.name} (capacity {self.max_entries})")

    def keys(self) -> list:
        return list(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class LRUSet:
    """Membership set with least-recently-used eviction."""

    def __init__(self, max_entries: int, name: str = "set"):
        self._cache = LRUCache(max_entries, name=name)

    def add(self, key: Hashable) -> None:
        self._cache.set(key, None)

    def touch(self, key: Hashable) -> bool:
        """Mark a member as recently used. Returns False if it is not a member."""
        if key not in self._cache:
            return False
        self._cache.get(key)
        return True

    @property
    def evictions(self) -> int:
        return self._cache.evictions

    def __contains__(self, key: Hashable) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self._cache.keys())
