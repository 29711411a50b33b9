"""Visibility Filter and the "ever shown" memory.

Whether a reduced-log entry renders is not a pure function of its current
value. An entry that was shown once stays shown, unless its kind is in a small
re-hide list, so rows do not disappear and reappear as later entries arrive.
The memory of shown entries is a ``VisibleSet`` bounded by capacity and TTL;
losing an entry from it is a memory-management event, not a semantic one.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable, Iterable, Sequence

from interaction_engine.messages import AskKind, SayKind, TaskMessage

DEFAULT_CAPACITY = 250
DEFAULT_TTL_SECONDS = 15 * 60.0

# Asks never shown when first seen, and re-hidden even after being shown.
HIDDEN_ASKS: frozenset[AskKind] = frozenset({
    AskKind.API_REQ_FAILED,
    AskKind.RESUME_TASK,
    AskKind.RESUME_COMPLETED_TASK,
})

# Folded into the command row by the combiner; only a decision marker.
DECISION_MARKER_ASKS: frozenset[AskKind] = frozenset({AskKind.COMMAND_OUTPUT})

# Request bookkeeping, only shown while the log is still short.
BOOKKEEPING_SAYS: frozenset[SayKind] = frozenset({
    SayKind.API_REQ_STARTED,
    SayKind.API_REQ_FINISHED,
    SayKind.API_REQ_RETRIED,
    SayKind.API_REQ_DELETED,
    SayKind.MCP_SERVER_REQUEST_STARTED,
})


# -----------------------------------------------------------------------------
# VisibleSet
# -----------------------------------------------------------------------------


class VisibleSet:
    """LRU + TTL bounded set of timestamps that have been rendered.

    Every ``add`` refreshes both recency and expiry, so an entry that keeps
    rendering never expires. Protected timestamps (the current tail of the
    log) are never evicted and never reported as expired.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize VisibleSet.

        Args:
            capacity: Maximum number of remembered timestamps. 0 disables the bound.
            ttl_seconds: Seconds since the last ``add`` after which an entry is forgotten.
                0 disables expiry.
            clock: Monotonic time source, injectable for tests.
        """
        self._entries: OrderedDict[int, float] = OrderedDict()
        self._capacity = capacity
        self._ttl = ttl_seconds
        self._clock = clock
        self._protected: frozenset[int] = frozenset()

    def __contains__(self, ts: object) -> bool:
        if not isinstance(ts, int) or ts not in self._entries:
            return False
        if ts in self._protected or self._ttl <= 0:
            return True
        return self._clock() - self._entries[ts] <= self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    @property
    def protected(self) -> frozenset[int]:
        return self._protected

    def protect(self, timestamps: Iterable[int]) -> None:
        """Replace the set of timestamps exempt from eviction."""
        self._protected = frozenset(timestamps)

    def add(self, ts: int) -> None:
        """Remember ``ts`` as shown (idempotent, refreshes recency and TTL)."""
        self._entries[ts] = self._clock()
        self._entries.move_to_end(ts)
        self._evict()

    def clear(self) -> None:
        self._entries.clear()
        self._protected = frozenset()

    def _evict(self) -> None:
        if self._ttl > 0:
            now = self._clock()
            expired = [
                ts
                for ts, seen_at in self._entries.items()
                if now - seen_at > self._ttl and ts not in self._protected
            ]
            for ts in expired:
                del self._entries[ts]

        if self._capacity > 0 and len(self._entries) > self._capacity:
            for ts in list(self._entries):
                if len(self._entries) <= self._capacity:
                    break
                if ts in self._protected:
                    continue
                del self._entries[ts]


# -----------------------------------------------------------------------------
# Visibility rules
# -----------------------------------------------------------------------------


def _is_empty_text(message: TaskMessage) -> bool:
    return message.is_say(SayKind.TEXT) and not message.has_content


def should_rehide(message: TaskMessage) -> bool:
    """Whether an entry that was shown before must be hidden now."""
    ask = message.ask_kind
    if ask is not None and ask in HIDDEN_ASKS:
        return True
    say = message.say_kind
    if say is not None and say in BOOKKEEPING_SAYS:
        return True
    return _is_empty_text(message)


def is_initially_visible(
    message: TaskMessage,
    reduced: Sequence[TaskMessage],
    short_log_threshold: int = 1,
) -> bool:
    """Kind-specific rules for an entry that has never been shown.

    Args:
        message: Entry to classify.
        reduced: The whole reduced log ``message`` belongs to.
        short_log_threshold: Reduced logs at most this long still show
            request bookkeeping, so a brand-new task shows activity.
    """
    if message.type == "ask":
        ask = message.ask_kind
        if ask is None:
            return False
        if ask in HIDDEN_ASKS or ask in DECISION_MARKER_ASKS:
            return False
        if ask == AskKind.COMPLETION_RESULT and message.text == "":
            return False
        return True

    say = message.say_kind
    if say is None:
        return False
    if say in BOOKKEEPING_SAYS:
        return len(reduced) <= short_log_threshold
    if say == SayKind.API_REQ_RETRY_DELAYED:
        last = reduced[-1] if reduced else None
        second_last = reduced[-2] if len(reduced) > 1 else None
        if last is not None and last.is_ask(AskKind.RESUME_TASK) and second_last is not None:
            return second_last.ts == message.ts
        return last is not None and last.ts == message.ts
    if say == SayKind.TEXT:
        return message.has_content
    return True


class VisibilityFilter:
    """Decides which reduced-log entries render, remembering what was shown.

    Example:
        visibility = VisibilityFilter()
        visible = visibility.filter(reduced)
    """

    def __init__(self, visible_set: VisibleSet | None = None, short_log_threshold: int = 1) -> None:
        self._visible_set = visible_set if visible_set is not None else VisibleSet()
        self._short_log_threshold = short_log_threshold

    @property
    def visible_set(self) -> VisibleSet:
        return self._visible_set

    def is_visible(self, message: TaskMessage, reduced: Sequence[TaskMessage]) -> bool:
        if message.ts in self._visible_set:
            return not should_rehide(message)
        return is_initially_visible(message, reduced, self._short_log_threshold)

    def filter(self, reduced: Sequence[TaskMessage]) -> list[TaskMessage]:
        """Return the visible entries of ``reduced`` and remember them as shown."""
        self._visible_set.protect(m.ts for m in reduced[-2:])
        visible = [message for message in reduced if self.is_visible(message, reduced)]
        for message in visible:
            self._visible_set.add(message.ts)
        return visible

    def reset(self) -> None:
        self._visible_set.clear()


__all__ = [
    "BOOKKEEPING_SAYS",
    "DECISION_MARKER_ASKS",
    "DEFAULT_CAPACITY",
    "DEFAULT_TTL_SECONDS",
    "HIDDEN_ASKS",
    "VisibilityFilter",
    "VisibleSet",
    "is_initially_visible",
    "should_rehide",
]
