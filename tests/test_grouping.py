"""Tests for interaction_engine.grouping module."""

from __future__ import annotations

import itertools

from interaction_engine.grouping import (
    TRANSITIONS,
    GroupAction,
    GroupInput,
    GrouperState,
    SessionGrouper,
    condensing_indicator,
    group_messages,
    is_close_action,
)
from interaction_engine.messages import TaskMessage


def ask(ts: int, kind: str, text: str | None = None, **kwargs) -> TaskMessage:
    return TaskMessage(ts=ts, type="ask", ask=kind, text=text, **kwargs)


def say(ts: int, kind: str, text: str | None = None, **kwargs) -> TaskMessage:
    return TaskMessage(ts=ts, type="say", say=kind, text=text, **kwargs)


def shape(grouped: list) -> list:
    return [[m.ts for m in entry] if isinstance(entry, list) else entry.ts for entry in grouped]


LAUNCH = "browser_action_launch"
NAVIGATE = '{"action": "launch", "url": "https://example.com"}'
CLICK = '{"action": "click", "coordinate": "10,20"}'
CLOSE = '{"action": "close"}'


# =============================================================================
# Transition Table Tests
# =============================================================================


def test_transitions_cover_every_pair():
    """Test the table is total over states and inputs."""
    assert set(TRANSITIONS) == set(itertools.product(GrouperState, GroupInput))


def test_opener_always_starts_group():
    """Test an opener starts a group from either state."""
    for state in GrouperState:
        assert TRANSITIONS[(state, GroupInput.OPENER)] == (GrouperState.IN_SESSION, GroupAction.START)


# =============================================================================
# Grouping Tests
# =============================================================================


def test_browser_session_lifecycle():
    """Test launch, actions and close form one group followed by a standalone entry."""
    grouped = group_messages([
        ask(1, LAUNCH, "https://example.com"),
        say(2, "browser_action", NAVIGATE),
        say(3, "browser_action", CLOSE),
        say(4, "text", "done"),
    ])

    assert shape(grouped) == [[1, 2, 3], 4]


def test_outsider_ends_session():
    """Test an entry outside the session flushes the group and stands alone."""
    grouped = group_messages([
        ask(1, LAUNCH, "https://example.com"),
        say(2, "text", "looking"),
        say(3, "browser_action_result", "{}"),
        ask(4, "followup", "?"),
        say(5, "text", "after"),
    ])

    assert shape(grouped) == [[1, 2, 3], 4, 5]


def test_cancelled_request_ends_session():
    """Test a new request after a cancelled one ends the session abnormally."""
    grouped = group_messages([
        ask(1, LAUNCH, "https://example.com"),
        say(2, "api_req_started", '{"request": "a", "cancelReason": "user_cancelled"}'),
        say(3, "api_req_started", '{"request": "b"}'),
    ])

    assert shape(grouped) == [[1, 2], 3]


def test_unfinished_request_stays_in_session():
    """Test a new request after a normal one is a member."""
    grouped = group_messages([
        ask(1, LAUNCH, "https://example.com"),
        say(2, "api_req_started", '{"request": "a", "cost": 0.1}'),
        say(3, "api_req_started", '{"request": "b"}'),
    ])

    assert shape(grouped) == [[1, 2, 3]]


def test_log_ending_in_session_flushes_group():
    """Test an open session at the end of the log is emitted without a close."""
    grouped = group_messages([
        say(1, "text", "task"),
        ask(2, LAUNCH, "https://example.com"),
        say(3, "browser_action", CLICK),
    ])

    assert shape(grouped) == [1, [2, 3]]


def test_new_opener_starts_new_group():
    """Test a launch inside a session closes the first group."""
    grouped = group_messages([
        ask(1, LAUNCH, "a"),
        say(2, "text", "x"),
        ask(3, LAUNCH, "b"),
        say(4, "text", "y"),
    ])

    assert shape(grouped) == [[1, 2], [3, 4]]


def test_members_outside_session_are_standalone():
    """Test browser entries without a launch are not grouped."""
    grouped = group_messages([say(1, "browser_action", CLICK), say(2, "text", "x")])

    assert shape(grouped) == [1, 2]


def test_grouper_is_reusable_after_finish():
    """Test finish resets the grouper."""
    grouper = SessionGrouper()
    grouper.feed(ask(1, LAUNCH, "a"))
    assert grouper.state is GrouperState.IN_SESSION

    assert shape(grouper.finish()) == [[1]]
    assert grouper.state is GrouperState.IDLE
    assert grouper.finish() == []


def test_is_close_action():
    """Test close detection only applies to browser_action says."""
    assert is_close_action(say(1, "browser_action", CLOSE))
    assert not is_close_action(say(1, "browser_action", CLICK))
    assert not is_close_action(say(1, "browser_action", "not json"))
    assert not is_close_action(say(1, "text", CLOSE))


# =============================================================================
# Condensing Indicator Tests
# =============================================================================


def test_condensing_indicator_appended():
    """Test the indicator follows the last visible entry."""
    grouped = group_messages([say(5, "text", "a")], condensing=True)

    assert shape(grouped) == [5, 6]
    indicator = grouped[-1]
    assert isinstance(indicator, TaskMessage)
    assert indicator.say == "condense_context"
    assert indicator.is_partial


def test_condensing_indicator_empty_log():
    """Test the indicator on an empty visible list."""
    assert condensing_indicator([]).ts == 0
    assert shape(group_messages([], condensing=True)) == [0]
