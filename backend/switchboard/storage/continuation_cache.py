"""
Per-conversation continuation tokens.

Some providers keep server-side conversation state and hand back an opaque
token to resume it. Turns of one conversation are processed sequentially, so
a plain last-write-wins map is enough; entries expire after ``ttl_seconds``
of inactivity and the map is capped at ``max_entries``.
"""

import time
from collections import OrderedDict
from typing import Optional, Tuple


class ContinuationCache:
    def __init__(self, max_entries: int = 10_000, ttl_seconds: float = 24 * 3600):
        self._entries: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()
        self._max_entries = max_entries
        self._ttl = ttl_seconds

    def get(self, conversation_id: Optional[str]) -> Optional[str]:
        if not conversation_id:
            return None
        entry = self._entries.get(conversation_id)
        if entry is None:
            return None
        token, stored_at = entry
        if time.monotonic() - stored_at > self._ttl:
            del self._entries[conversation_id]
            return None
        return token

    def set(self, conversation_id: Optional[str], token: Optional[str]) -> None:
        if not conversation_id or not token:
            return
        self._entries[conversation_id] = (token, time.monotonic())
        self._entries.move_to_end(conversation_id)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)
