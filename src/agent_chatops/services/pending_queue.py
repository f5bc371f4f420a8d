from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Deque, Optional

from agent_chatops.domain.jobs import PendingRequest
from agent_chatops.observability.structured_log import log_json

logger = logging.getLogger(__name__)


class PendingQueue:
    """Requests deferred while the job slot was busy.

    Only one deferred request survives a busy period: ``drain_one`` hands out
    the oldest entry and drops the rest, so a long job never ends in a burst
    of stale replays.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: Deque[PendingRequest] = deque()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def enqueue(self, pending: PendingRequest) -> int:
        with self._lock:
            self._items.append(pending)
            position = len(self._items)
        log_json(logger, "queue.enqueued", position=position, text=pending.raw_text[:80])
        return position

    def drain_one(self) -> Optional[PendingRequest]:
        with self._lock:
            if not self._items:
                return None
            head = self._items.popleft()
            dropped = list(self._items)
            self._items.clear()
        for item in dropped:
            log_json(logger, "queue.dropped", text=item.raw_text[:80])
        log_json(logger, "queue.drained", text=head.raw_text[:80], dropped=len(dropped))
        return head

    def clear(self) -> int:
        with self._lock:
            count = len(self._items)
            self._items.clear()
        return count
