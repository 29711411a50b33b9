"""Session Grouper: partitions visible entries into rows and sub-session groups.

A browser automation run is rendered as one group: it opens with a
``browser_action_launch`` ask, keeps collecting browser-session entries, and
ends on an explicit close action, on the first entry that does not belong to
the session, or abnormally when the enclosing API request was cancelled.

The grouper is an explicit FSM. Each visible entry is classified into a
``GroupInput`` and ``TRANSITIONS[(state, input)]`` gives the next state and
the action applied to the output. It is rebuilt from scratch on every
derivation, so it holds no state across log changes.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from enum import Enum, auto
from typing import Union

from interaction_engine.messages import AskKind, SayKind, TaskMessage
from interaction_engine.payloads import BrowserActionPayload, parse_api_request_info, parse_payload

GroupedEntry = Union[TaskMessage, list[TaskMessage]]
"""A standalone entry or an ordered sub-session group."""


class GrouperState(Enum):
    IDLE = auto()
    IN_SESSION = auto()


class GroupInput(Enum):
    """Classification of one visible entry relative to the open group."""

    OPENER = auto()
    MEMBER = auto()
    CLOSER = auto()
    CANCELLED_REQUEST = auto()
    OUTSIDER = auto()


class GroupAction(Enum):
    EMIT = auto()  # standalone entry
    START = auto()  # flush any open group, open a new one with the entry
    APPEND = auto()
    APPEND_AND_FLUSH = auto()
    FLUSH_AND_EMIT = auto()


TRANSITIONS: dict[tuple[GrouperState, GroupInput], tuple[GrouperState, GroupAction]] = {
    (GrouperState.IDLE, GroupInput.OPENER): (GrouperState.IN_SESSION, GroupAction.START),
    (GrouperState.IDLE, GroupInput.MEMBER): (GrouperState.IDLE, GroupAction.EMIT),
    (GrouperState.IDLE, GroupInput.CLOSER): (GrouperState.IDLE, GroupAction.EMIT),
    (GrouperState.IDLE, GroupInput.CANCELLED_REQUEST): (GrouperState.IDLE, GroupAction.EMIT),
    (GrouperState.IDLE, GroupInput.OUTSIDER): (GrouperState.IDLE, GroupAction.EMIT),
    (GrouperState.IN_SESSION, GroupInput.OPENER): (GrouperState.IN_SESSION, GroupAction.START),
    (GrouperState.IN_SESSION, GroupInput.MEMBER): (GrouperState.IN_SESSION, GroupAction.APPEND),
    (GrouperState.IN_SESSION, GroupInput.CLOSER): (GrouperState.IDLE, GroupAction.APPEND_AND_FLUSH),
    (GrouperState.IN_SESSION, GroupInput.CANCELLED_REQUEST): (GrouperState.IDLE, GroupAction.FLUSH_AND_EMIT),
    (GrouperState.IN_SESSION, GroupInput.OUTSIDER): (GrouperState.IDLE, GroupAction.FLUSH_AND_EMIT),
}

BROWSER_SESSION_ASKS: frozenset[AskKind] = frozenset({AskKind.BROWSER_ACTION_LAUNCH})

BROWSER_SESSION_SAYS: frozenset[SayKind] = frozenset({
    SayKind.API_REQ_STARTED,
    SayKind.TEXT,
    SayKind.BROWSER_ACTION,
    SayKind.BROWSER_ACTION_RESULT,
})


def is_browser_session_message(message: TaskMessage) -> bool:
    """Whether an entry belongs to an open browser session."""
    ask = message.ask_kind
    if ask is not None:
        return ask in BROWSER_SESSION_ASKS
    say = message.say_kind
    return say is not None and say in BROWSER_SESSION_SAYS


def is_close_action(message: TaskMessage) -> bool:
    if not message.is_say(SayKind.BROWSER_ACTION):
        return False
    payload = parse_payload(message.text, BrowserActionPayload)
    return isinstance(payload, BrowserActionPayload) and payload.is_close


def _last_request_cancelled(group: Sequence[TaskMessage]) -> bool:
    for message in reversed(group):
        if message.is_say(SayKind.API_REQ_STARTED):
            info = parse_api_request_info(message.text)
            return info is not None and info.is_cancelled
    return False


class SessionGrouper:
    """Stepwise grouping FSM.

    Example:
        grouper = SessionGrouper()
        for message in visible:
            grouper.feed(message)
        rows = grouper.finish()
    """

    def __init__(self) -> None:
        self._state = GrouperState.IDLE
        self._group: list[TaskMessage] = []
        self._result: list[GroupedEntry] = []

    @property
    def state(self) -> GrouperState:
        return self._state

    def classify(self, message: TaskMessage) -> GroupInput:
        if message.is_ask(AskKind.BROWSER_ACTION_LAUNCH):
            return GroupInput.OPENER
        if self._state is not GrouperState.IN_SESSION:
            return GroupInput.OUTSIDER
        if message.is_say(SayKind.API_REQ_STARTED) and _last_request_cancelled(self._group):
            return GroupInput.CANCELLED_REQUEST
        if not is_browser_session_message(message):
            return GroupInput.OUTSIDER
        if is_close_action(message):
            return GroupInput.CLOSER
        return GroupInput.MEMBER

    def feed(self, message: TaskMessage) -> None:
        next_state, action = TRANSITIONS[(self._state, self.classify(message))]

        if action is GroupAction.EMIT:
            self._result.append(message)
        elif action is GroupAction.START:
            self._flush()
            self._group.append(message)
        elif action is GroupAction.APPEND:
            self._group.append(message)
        elif action is GroupAction.APPEND_AND_FLUSH:
            self._group.append(message)
            self._flush()
        elif action is GroupAction.FLUSH_AND_EMIT:
            self._flush()
            self._result.append(message)

        self._state = next_state

    def finish(self) -> list[GroupedEntry]:
        """Flush an open group as-is (no synthetic close) and return the rows."""
        self._flush()
        self._state = GrouperState.IDLE
        result, self._result = self._result, []
        return result

    def _flush(self) -> None:
        if self._group:
            self._result.append(list(self._group))
            self._group = []


def condensing_indicator(visible: Sequence[TaskMessage]) -> TaskMessage:
    """Synthetic partial row shown while the host condenses the context."""
    ts = visible[-1].ts + 1 if visible else 0
    return TaskMessage(ts=ts, type="say", say=SayKind.CONDENSE_CONTEXT.value, partial=True)


def group_messages(visible: Iterable[TaskMessage], condensing: bool = False) -> list[GroupedEntry]:
    """Partition visible entries into an ordered list of ``Entry | Entry[]``.

    Args:
        visible: Output of the visibility filter.
        condensing: Append a condensing indicator row after the groups.
    """
    entries = list(visible)
    grouper = SessionGrouper()
    for message in entries:
        grouper.feed(message)
    result = grouper.finish()
    if condensing:
        result.append(condensing_indicator(entries))
    return result


__all__ = [
    "BROWSER_SESSION_ASKS",
    "BROWSER_SESSION_SAYS",
    "TRANSITIONS",
    "GroupAction",
    "GroupInput",
    "GroupedEntry",
    "GrouperState",
    "SessionGrouper",
    "condensing_indicator",
    "group_messages",
    "is_browser_session_message",
    "is_close_action",
]
