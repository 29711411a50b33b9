"""Tests for interaction_engine.state module."""

from __future__ import annotations

import itertools

import pytest

from interaction_engine.messages import AskKind, TaskMessage
from interaction_engine.state import (
    ASK_RULES,
    NEUTRAL_STATE,
    TRANSITIONS,
    ButtonLabel,
    InteractionPhase,
    InteractionState,
    InteractionStateMachine,
    Trigger,
    apply_trigger,
    classify,
    derive_state,
    is_streaming,
    tool_labels,
)


def ask(ts: int, kind: str, text: str | None = None, **kwargs) -> TaskMessage:
    return TaskMessage(ts=ts, type="ask", ask=kind, text=text, **kwargs)


def say(ts: int, kind: str, text: str | None = None, **kwargs) -> TaskMessage:
    return TaskMessage(ts=ts, type="say", say=kind, text=text, **kwargs)


TASK = say(1, "text", "do the thing")
READ_TOOL = '{"tool": "readFile", "path": "a.py"}'


def state_after(*entries: TaskMessage) -> InteractionState:
    machine = InteractionStateMachine()
    return machine.observe([TASK, *entries])


# =============================================================================
# Transition Table Tests
# =============================================================================


def test_transitions_cover_every_pair():
    """Test the table is total over phases and triggers."""
    assert set(TRANSITIONS) == set(itertools.product(InteractionPhase, Trigger))


def test_ask_rules_cover_every_ask_kind():
    """Test every known ask kind has a rule."""
    assert set(ASK_RULES) == set(AskKind)


_TRIGGER_MESSAGES: dict[Trigger, TaskMessage | None] = {
    Trigger.ASK_PARTIAL: ask(5, "followup", "?", partial=True),
    Trigger.ASK_COMPLETE: ask(5, "followup", "?"),
    Trigger.SAY_RETRY_DELAYED: say(5, "api_req_retry_delayed", "r"),
    Trigger.SAY_REQUEST_AFTER_COMMAND_OUTPUT: say(5, "api_req_started", "{}"),
    Trigger.TRANSPARENT: say(5, "text", "x"),
    Trigger.RESOLVED: None,
    Trigger.LOG_CLEARED: None,
}


@pytest.mark.parametrize(("phase", "trigger"), list(itertools.product(InteractionPhase, Trigger)))
def test_apply_trigger_follows_table(phase: InteractionPhase, trigger: Trigger):
    """Test every (phase, trigger) pair lands in the phase the table names."""
    state = InteractionState(phase=phase)

    result = apply_trigger(state, trigger, _TRIGGER_MESSAGES[trigger])

    assert result.phase is TRANSITIONS[(phase, trigger)]


# =============================================================================
# classify Tests
# =============================================================================


def test_classify():
    """Test log tails map to triggers."""
    assert classify(None, None) is Trigger.LOG_CLEARED
    assert classify(ask(2, "tool", READ_TOOL, partial=True), TASK) is Trigger.ASK_PARTIAL
    assert classify(ask(2, "tool", READ_TOOL), TASK) is Trigger.ASK_COMPLETE
    assert classify(ask(2, "brand_new_ask"), TASK) is Trigger.TRANSPARENT
    assert classify(say(2, "api_req_retry_delayed"), TASK) is Trigger.SAY_RETRY_DELAYED
    assert classify(say(3, "api_req_started", "{}"), ask(2, "command_output", "o")) is (
        Trigger.SAY_REQUEST_AFTER_COMMAND_OUTPUT
    )
    assert classify(say(3, "api_req_started", "{}"), ask(2, "followup")) is Trigger.TRANSPARENT
    assert classify(say(2, "text", "x"), TASK) is Trigger.TRANSPARENT


# =============================================================================
# Ask State Tests
# =============================================================================


@pytest.mark.parametrize(
    ("kind", "text", "sending_disabled", "primary", "secondary"),
    [
        ("api_req_failed", "boom", True, ButtonLabel.RETRY, ButtonLabel.START_NEW_TASK),
        ("mistake_limit_reached", "x", False, ButtonLabel.PROCEED_ANYWAYS, ButtonLabel.START_NEW_TASK),
        ("followup", "?", False, None, None),
        ("tool", READ_TOOL, False, ButtonLabel.APPROVE, ButtonLabel.REJECT),
        ("browser_action_launch", "https://example.com", False, ButtonLabel.APPROVE, ButtonLabel.REJECT),
        ("command", "ls", False, ButtonLabel.RUN_COMMAND, ButtonLabel.REJECT),
        ("command_output", "out", False, ButtonLabel.PROCEED_WHILE_RUNNING, ButtonLabel.KILL_COMMAND),
        ("use_mcp_server", "{}", False, ButtonLabel.APPROVE, ButtonLabel.REJECT),
        ("completion_result", "done", False, ButtonLabel.START_NEW_TASK, None),
        ("resume_task", None, False, ButtonLabel.RESUME_TASK, ButtonLabel.TERMINATE),
        ("resume_completed_task", None, False, ButtonLabel.START_NEW_TASK, None),
    ],
)
def test_final_ask_state(
    kind: str,
    text: str | None,
    sending_disabled: bool,
    primary: ButtonLabel | None,
    secondary: ButtonLabel | None,
):
    """Test the state each final ask produces."""
    state = state_after(ask(2, kind, text))

    assert state.phase is InteractionPhase.AWAITING_DECISION
    assert state.ask is AskKind(kind)
    assert state.sending_disabled is sending_disabled
    assert state.enable_buttons
    assert state.primary_label is primary
    assert state.secondary_label is secondary
    assert state.decision_pending


def test_partial_tool_ask():
    """Test a streaming tool ask locks input and disables buttons."""
    state = state_after(ask(2, "tool", READ_TOOL, partial=True))

    assert state.phase is InteractionPhase.STREAMING_ASK
    assert state.sending_disabled
    assert not state.enable_buttons
    assert not state.decision_pending


def test_partial_followup_keeps_buttons_enabled():
    """Test a streaming followup keeps buttons enabled but nothing is pending."""
    state = state_after(ask(2, "followup", "Wh", partial=True))

    assert state.sending_disabled
    assert state.enable_buttons
    assert not state.decision_pending


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ('{"tool": "editedExistingFile", "path": "a"}', (ButtonLabel.SAVE, ButtonLabel.REJECT)),
        ('{"tool": "insertContent", "path": "a"}', (ButtonLabel.SAVE, ButtonLabel.REJECT)),
        ('{"tool": "searchAndReplace", "path": "a"}', (ButtonLabel.APPROVE, ButtonLabel.REJECT)),
        ('{"tool": "finishTask"}', (ButtonLabel.COMPLETE_SUBTASK_AND_RETURN, None)),
        (
            '{"tool": "readFile", "batchFiles": [{"path": "a"}, {"path": "b"}]}',
            (ButtonLabel.APPROVE_BATCH, ButtonLabel.DENY_BATCH),
        ),
        (READ_TOOL, (ButtonLabel.APPROVE, ButtonLabel.REJECT)),
        ("not json", (ButtonLabel.APPROVE, ButtonLabel.REJECT)),
    ],
)
def test_tool_labels(text: str, expected: tuple):
    """Test tool labels depend on the declared action."""
    assert tool_labels(ask(2, "tool", text)) == expected


def test_tool_label_override_reaches_state():
    """Test the override is applied to the derived state."""
    state = state_after(ask(2, "tool", '{"tool": "appliedDiff", "path": "a"}'))

    assert state.primary_label is ButtonLabel.SAVE


def test_ask_trigger_without_ask_tail_changes_phase_only():
    """Test an ask trigger with no usable tail keeps the decision fields."""
    before = state_after(ask(2, "followup", "?"))

    after = apply_trigger(before, Trigger.ASK_COMPLETE, None)

    assert after.phase is TRANSITIONS[(before.phase, Trigger.ASK_COMPLETE)]
    assert after.ask is AskKind.FOLLOWUP
    assert apply_trigger(before, Trigger.ASK_PARTIAL, say(3, "text", "x")).ask is AskKind.FOLLOWUP


# =============================================================================
# Say Transition Tests
# =============================================================================


def test_retry_delayed_locks_input():
    """Test a retry delay disables input and keeps the rest."""
    before = state_after(ask(2, "followup", "?"))
    after = derive_state(before, say(3, "api_req_retry_delayed", "r"), ask(2, "followup", "?"))

    assert after.sending_disabled
    assert after.phase is InteractionPhase.INPUT_LOCKED
    assert after.primary_label == before.primary_label


def test_request_after_command_output_clears_decision():
    """Test a new request right after a command-output decision clears it."""
    machine = InteractionStateMachine()
    output = ask(2, "command_output", "")
    machine.observe([TASK, output])

    state = machine.observe([TASK, output, say(3, "api_req_started", "{}")])

    assert state.ask is None
    assert state.sending_disabled
    assert not state.enable_buttons
    assert state.primary_label is ButtonLabel.PROCEED_WHILE_RUNNING


def test_transparent_say_keeps_state():
    """Test ordinary says leave the state unchanged."""
    machine = InteractionStateMachine()
    before = machine.observe([TASK, ask(2, "command", "ls")])

    after = machine.observe([TASK, ask(2, "command", "ls"), say(3, "text", "thinking")])

    assert after == before


def test_unknown_ask_is_transparent():
    """Test an unknown ask kind does not change the state."""
    machine = InteractionStateMachine()
    before = machine.observe([TASK, ask(2, "followup", "?")])

    after = machine.observe([TASK, ask(2, "followup", "?"), ask(3, "brand_new_ask", "x")])

    assert after == before


# =============================================================================
# InteractionStateMachine Tests
# =============================================================================


def test_resolve_does_not_rearm_on_same_log():
    """Test re-observing an unchanged log keeps a resolved decision resolved."""
    machine = InteractionStateMachine()
    log = [TASK, ask(2, "tool", READ_TOOL)]
    machine.observe(log)

    resolved = machine.resolve()
    assert resolved.ask is None
    assert resolved.sending_disabled

    assert machine.observe(list(log)) == resolved


def test_new_tail_rearms():
    """Test a changed tail is derived again after a resolution."""
    machine = InteractionStateMachine()
    machine.observe([TASK, ask(2, "tool", READ_TOOL)])
    machine.resolve()

    state = machine.observe([TASK, ask(2, "tool", READ_TOOL), ask(3, "followup", "?")])

    assert state.ask is AskKind.FOLLOWUP


def test_empty_log_resets_to_neutral():
    """Test an empty log returns to the neutral state."""
    machine = InteractionStateMachine()
    machine.observe([TASK, ask(2, "api_req_failed", "x")])

    assert machine.observe([]) == NEUTRAL_STATE


def test_observers_called_on_change_only():
    """Test observers receive (old, new) once per change."""
    machine = InteractionStateMachine()
    calls: list[tuple[InteractionState, InteractionState]] = []
    machine.add_observer(lambda old, new: calls.append((old, new)))

    log = [TASK, ask(2, "followup", "?")]
    machine.observe(log)
    machine.observe(log)

    assert len(calls) == 1
    assert calls[0][0] == NEUTRAL_STATE
    assert calls[0][1].ask is AskKind.FOLLOWUP


def test_remove_observer():
    """Test a removed observer is no longer called."""
    machine = InteractionStateMachine()
    calls: list = []

    def observer(old: InteractionState, new: InteractionState) -> None:
        calls.append(new)

    machine.add_observer(observer)
    machine.remove_observer(observer)
    machine.observe([TASK, ask(2, "followup", "?")])

    assert calls == []


def test_reset_clears_state_and_tail():
    """Test reset returns to neutral and forgets the observed tail."""
    machine = InteractionStateMachine()
    log = [TASK, ask(2, "followup", "?")]
    machine.observe(log)

    assert machine.reset() == NEUTRAL_STATE
    assert machine.observe(log).ask is AskKind.FOLLOWUP


# =============================================================================
# is_streaming Tests
# =============================================================================


def test_is_streaming_empty():
    """Test an empty log is not streaming."""
    assert not is_streaming([], NEUTRAL_STATE)


def test_is_streaming_partial_tail():
    """Test a partial tail is streaming."""
    reduced = [say(2, "text", "ab", partial=True)]

    assert is_streaming(reduced, NEUTRAL_STATE)


def test_is_streaming_waiting_tool_ask():
    """Test a final ask with enabled actions is not streaming."""
    tool = ask(3, "tool", READ_TOOL)
    reduced = [say(2, "api_req_started", '{"request": "r"}'), tool]

    assert not is_streaming(reduced, state_after(tool))


def test_is_streaming_partial_tool_ask():
    """Test a partial tool ask is streaming."""
    tool = ask(3, "tool", READ_TOOL, partial=True)

    assert is_streaming([tool], state_after(tool))


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ('{"request": "r"}', True),
        ('{"request": "r", "cost": 0.01}', False),
        ("garbage", False),
    ],
)
def test_is_streaming_open_request(text: str, expected: bool):
    """Test an unfinished last request is streaming."""
    reduced = [say(2, "api_req_started", text), say(3, "text", "partial output")]

    assert is_streaming(reduced, NEUTRAL_STATE) is expected
