"""Dispatch queue — a due-time index of pending messages.

Messages for the same (user, channel) form a FIFO lane: only the lane head
can be claimed, and a claimed lane stays in flight until the worker reports
back, so an "order delivered" message can never overtake "order shipped".
Retry backoff and deferral are expressed by moving the head's due time, never
by a thread sleeping on it. Lanes of different users are independent.

The queue is an in-process index; pending messages are the durable record
and ``rebuild`` restores the index from them on startup.
"""

import heapq
import itertools
import threading
from collections import deque
from datetime import datetime

import structlog

logger = structlog.get_logger(__name__)


class DispatchQueue:
    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._lanes: dict[tuple[str, str], deque] = {}
        self._lane_of: dict[str, tuple[str, str]] = {}
        self._due: dict[str, datetime] = {}
        self._in_flight: set[tuple[str, str]] = set()
        self._heap: list = []
        self._seq = itertools.count()

    def __len__(self):
        with self._cond:
            return len(self._lane_of)

    def __contains__(self, message_id):
        with self._cond:
            return str(message_id) in self._lane_of

    def enqueue(self, message_id, user_id, channel: str, due: datetime):
        """Append a message to its lane. Enqueueing the same id twice is a no-op."""
        message_id = str(message_id)
        lane = (str(user_id), channel)
        with self._cond:
            if message_id in self._lane_of:
                return
            self._lane_of[message_id] = lane
            self._due[message_id] = due
            queue = self._lanes.setdefault(lane, deque())
            queue.append(message_id)
            if len(queue) == 1:
                self._push_head(lane)
            self._cond.notify()

    def claim_due(self, now: datetime, limit: int | None = None) -> list[str]:
        """Claim lane heads whose due time has passed, marking their lanes in flight."""
        claimed = []
        with self._cond:
            while self._heap and (limit is None or len(claimed) < limit):
                due, _, message_id = self._heap[0]
                if due > now:
                    break
                heapq.heappop(self._heap)
                lane = self._lane_of.get(message_id)
                if (
                    lane is None
                    or lane in self._in_flight
                    or self._lanes[lane][0] != message_id
                    or self._due[message_id] != due
                ):
                    continue  # stale entry
                self._in_flight.add(lane)
                claimed.append(message_id)
        return claimed

    def complete(self, message_id, next_due: datetime | None = None):
        """Release a claimed lane.

        With ``next_due`` the message stays at the head of its lane and becomes
        due again at that time; otherwise it leaves the queue.
        """
        message_id = str(message_id)
        with self._cond:
            lane = self._lane_of.get(message_id)
            if lane is None:
                return
            self._in_flight.discard(lane)
            queue = self._lanes[lane]
            if next_due is not None:
                self._due[message_id] = next_due
            else:
                queue.remove(message_id)
                del self._lane_of[message_id]
                del self._due[message_id]
                if not queue:
                    del self._lanes[lane]
                    return
            self._push_head(lane)
            self._cond.notify()

    def next_due(self) -> datetime | None:
        with self._cond:
            heads = [self._due[queue[0]] for lane, queue in self._lanes.items() if lane not in self._in_flight]
        return min(heads) if heads else None

    def wait(self, timeout: float):
        """Block until something is enqueued or released, or ``timeout`` elapses."""
        with self._cond:
            self._cond.wait(timeout)

    def wake(self):
        """Release every thread blocked in ``wait``."""
        with self._cond:
            self._cond.notify_all()

    def rebuild(self, messages):
        """Re-index pending messages, in enqueue order."""
        ordered = sorted(messages, key=lambda m: (m.enqueued_at, str(m.id)))
        for message in ordered:
            self.enqueue(
                message.id,
                message.user_id,
                message.original_channel or message.channel,
                message.scheduled_for or message.enqueued_at,
            )
        logger.info("Dispatch queue rebuilt", pending=len(ordered))

    def clear(self):
        with self._cond:
            self._lanes.clear()
            self._lane_of.clear()
            self._due.clear()
            self._in_flight.clear()
            self._heap.clear()

    def _push_head(self, lane):
        head = self._lanes[lane][0]
        heapq.heappush(self._heap, (self._due[head], next(self._seq), head))
