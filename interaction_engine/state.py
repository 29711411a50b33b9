"""Interaction state machine.

Derives, from the last one or two entries of the reduced log, what the user
may do next: whether the input is disabled, which decision is pending, and
the primary/secondary action labels.

The machine is explicit:

- ``Trigger`` classifies the log tail (or a user/auto resolution).
- ``TRANSITIONS[(phase, trigger)]`` gives the next ``InteractionPhase`` for
  every pair.
- ``ASK_RULES`` gives the fixed state each ask kind produces.

Say entries are transparent except for a retry delay (locks input) and a new
request starting right after a command-output decision (clears the decision).
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from enum import Enum, auto

from interaction_engine._logger import get_logger
from interaction_engine.messages import AskKind, SayKind, TaskMessage
from interaction_engine.payloads import ReadToolPayload, ToolPayloadBase, parse_api_request_info, parse_tool_payload

logger = get_logger(__name__)

# =============================================================================
# Labels and phases
# =============================================================================


class ButtonLabel(str, Enum):
    """Stable label keys for the primary/secondary actions (localized by the view)."""

    APPROVE = "approve"
    REJECT = "reject"
    SAVE = "save"
    RUN_COMMAND = "run_command"
    PROCEED_WHILE_RUNNING = "proceed_while_running"
    KILL_COMMAND = "kill_command"
    RETRY = "retry"
    START_NEW_TASK = "start_new_task"
    PROCEED_ANYWAYS = "proceed_anyways"
    RESUME_TASK = "resume_task"
    TERMINATE = "terminate"
    COMPLETE_SUBTASK_AND_RETURN = "complete_subtask_and_return"
    APPROVE_BATCH = "approve_batch"
    DENY_BATCH = "deny_batch"


class InteractionPhase(Enum):
    """Coarse phase of the interaction.

    - IDLE: neutral, input enabled, nothing pending
    - STREAMING_ASK: an ask is still being streamed
    - AWAITING_DECISION: a final ask is waiting for a response
    - INPUT_LOCKED: input disabled while the host works
    """

    IDLE = auto()
    STREAMING_ASK = auto()
    AWAITING_DECISION = auto()
    INPUT_LOCKED = auto()


class Trigger(Enum):
    ASK_PARTIAL = auto()
    ASK_COMPLETE = auto()
    SAY_RETRY_DELAYED = auto()
    SAY_REQUEST_AFTER_COMMAND_OUTPUT = auto()
    TRANSPARENT = auto()
    RESOLVED = auto()
    LOG_CLEARED = auto()


def _build_transitions() -> dict[tuple[InteractionPhase, Trigger], InteractionPhase]:
    table: dict[tuple[InteractionPhase, Trigger], InteractionPhase] = {}
    for phase in InteractionPhase:
        table[(phase, Trigger.ASK_PARTIAL)] = InteractionPhase.STREAMING_ASK
        table[(phase, Trigger.ASK_COMPLETE)] = InteractionPhase.AWAITING_DECISION
        table[(phase, Trigger.SAY_RETRY_DELAYED)] = InteractionPhase.INPUT_LOCKED
        table[(phase, Trigger.SAY_REQUEST_AFTER_COMMAND_OUTPUT)] = InteractionPhase.INPUT_LOCKED
        table[(phase, Trigger.TRANSPARENT)] = phase
        table[(phase, Trigger.RESOLVED)] = InteractionPhase.INPUT_LOCKED
        table[(phase, Trigger.LOG_CLEARED)] = InteractionPhase.IDLE
    return table


TRANSITIONS: dict[tuple[InteractionPhase, Trigger], InteractionPhase] = _build_transitions()


# =============================================================================
# Ask rules
# =============================================================================


class Gate(Enum):
    ALWAYS = auto()
    NEVER = auto()
    WHILE_PARTIAL = auto()
    WHEN_FINAL = auto()

    def evaluate(self, partial: bool) -> bool:
        if self is Gate.ALWAYS:
            return True
        if self is Gate.NEVER:
            return False
        if self is Gate.WHILE_PARTIAL:
            return partial
        return not partial


@dataclass(frozen=True)
class AskRule:
    """State produced by one ask kind.

    Attributes:
        sending_disabled: When the text input is disabled.
        buttons_enabled: When the decision buttons are enabled.
        primary: Primary action label.
        secondary: Secondary action label.
    """

    sending_disabled: Gate
    buttons_enabled: Gate
    primary: ButtonLabel | None
    secondary: ButtonLabel | None


ASK_RULES: dict[AskKind, AskRule] = {
    AskKind.API_REQ_FAILED: AskRule(Gate.ALWAYS, Gate.ALWAYS, ButtonLabel.RETRY, ButtonLabel.START_NEW_TASK),
    AskKind.MISTAKE_LIMIT_REACHED: AskRule(
        Gate.NEVER, Gate.ALWAYS, ButtonLabel.PROCEED_ANYWAYS, ButtonLabel.START_NEW_TASK
    ),
    # Buttons stay "enabled" while streaming: toggling them would re-trigger
    # input focus on every partial update. There are no buttons to press.
    AskKind.FOLLOWUP: AskRule(Gate.WHILE_PARTIAL, Gate.ALWAYS, None, None),
    AskKind.TOOL: AskRule(Gate.WHILE_PARTIAL, Gate.WHEN_FINAL, ButtonLabel.APPROVE, ButtonLabel.REJECT),
    AskKind.BROWSER_ACTION_LAUNCH: AskRule(
        Gate.WHILE_PARTIAL, Gate.WHEN_FINAL, ButtonLabel.APPROVE, ButtonLabel.REJECT
    ),
    AskKind.COMMAND: AskRule(Gate.WHILE_PARTIAL, Gate.WHEN_FINAL, ButtonLabel.RUN_COMMAND, ButtonLabel.REJECT),
    AskKind.COMMAND_OUTPUT: AskRule(
        Gate.NEVER, Gate.ALWAYS, ButtonLabel.PROCEED_WHILE_RUNNING, ButtonLabel.KILL_COMMAND
    ),
    AskKind.USE_MCP_SERVER: AskRule(Gate.WHILE_PARTIAL, Gate.WHEN_FINAL, ButtonLabel.APPROVE, ButtonLabel.REJECT),
    AskKind.COMPLETION_RESULT: AskRule(Gate.WHILE_PARTIAL, Gate.WHEN_FINAL, ButtonLabel.START_NEW_TASK, None),
    AskKind.RESUME_TASK: AskRule(Gate.NEVER, Gate.ALWAYS, ButtonLabel.RESUME_TASK, ButtonLabel.TERMINATE),
    AskKind.RESUME_COMPLETED_TASK: AskRule(Gate.NEVER, Gate.ALWAYS, ButtonLabel.START_NEW_TASK, None),
}


SAVE_TOOLS: frozenset[str] = frozenset({"editedExistingFile", "appliedDiff", "newFileCreated", "insertContent"})
"""Write tools labelled Save; other writes keep Approve."""


def tool_labels(message: TaskMessage) -> tuple[ButtonLabel | None, ButtonLabel | None]:
    """Labels for an ``ask: tool`` entry, which depend on the declared action."""
    payload = parse_tool_payload(message.text)
    if isinstance(payload, ToolPayloadBase):
        if payload.tool in SAVE_TOOLS:
            return ButtonLabel.SAVE, ButtonLabel.REJECT
        if payload.tool == "finishTask":
            return ButtonLabel.COMPLETE_SUBTASK_AND_RETURN, None
        if isinstance(payload, ReadToolPayload) and payload.tool == "readFile" and payload.is_batch:
            return ButtonLabel.APPROVE_BATCH, ButtonLabel.DENY_BATCH
    return ButtonLabel.APPROVE, ButtonLabel.REJECT


# =============================================================================
# State
# =============================================================================


@dataclass(frozen=True)
class InteractionState:
    """Derived, never persisted, interaction state."""

    phase: InteractionPhase = InteractionPhase.IDLE
    ask: AskKind | None = None
    partial: bool = False
    sending_disabled: bool = False
    enable_buttons: bool = False
    primary_label: ButtonLabel | None = None
    secondary_label: ButtonLabel | None = None

    @property
    def decision_pending(self) -> bool:
        """A final ask is waiting for a response and its actions are enabled."""
        return self.ask is not None and self.enable_buttons and not self.partial


NEUTRAL_STATE = InteractionState()


def classify(last: TaskMessage | None, second_last: TaskMessage | None) -> Trigger:
    """Map the log tail to a trigger."""
    if last is None:
        return Trigger.LOG_CLEARED

    if last.type == "ask":
        if last.ask_kind is None:
            logger.debug("Unknown ask kind %r at ts=%s is transparent", last.ask, last.ts)
            return Trigger.TRANSPARENT
        return Trigger.ASK_PARTIAL if last.is_partial else Trigger.ASK_COMPLETE

    if last.is_say(SayKind.API_REQ_RETRY_DELAYED):
        return Trigger.SAY_RETRY_DELAYED
    if (
        last.is_say(SayKind.API_REQ_STARTED)
        and second_last is not None
        and second_last.is_ask(AskKind.COMMAND_OUTPUT)
    ):
        return Trigger.SAY_REQUEST_AFTER_COMMAND_OUTPUT
    return Trigger.TRANSPARENT


def apply_trigger(
    state: InteractionState,
    trigger: Trigger,
    last: TaskMessage | None = None,
) -> InteractionState:
    """Pure transition function."""
    phase = TRANSITIONS[(state.phase, trigger)]

    if trigger in (Trigger.ASK_PARTIAL, Trigger.ASK_COMPLETE):
        if last is None or last.ask_kind is None:
            logger.debug("Ask trigger %s without a known ask tail", trigger.name)
            return replace(state, phase=phase)
        ask = last.ask_kind
        rule = ASK_RULES[ask]
        partial = last.is_partial
        primary, secondary = tool_labels(last) if ask is AskKind.TOOL else (rule.primary, rule.secondary)
        return InteractionState(
            phase=phase,
            ask=ask,
            partial=partial,
            sending_disabled=rule.sending_disabled.evaluate(partial),
            enable_buttons=rule.buttons_enabled.evaluate(partial),
            primary_label=primary,
            secondary_label=secondary,
        )

    if trigger is Trigger.SAY_RETRY_DELAYED:
        return replace(state, phase=phase, sending_disabled=True)

    if trigger in (Trigger.SAY_REQUEST_AFTER_COMMAND_OUTPUT, Trigger.RESOLVED):
        return replace(state, phase=phase, ask=None, partial=False, sending_disabled=True, enable_buttons=False)

    if trigger is Trigger.LOG_CLEARED:
        return NEUTRAL_STATE

    return replace(state, phase=phase)


def derive_state(
    state: InteractionState,
    last: TaskMessage | None,
    second_last: TaskMessage | None,
) -> InteractionState:
    """Next state from the current state and the log tail."""
    trigger = classify(last, second_last)
    return apply_trigger(state, trigger, last)


# =============================================================================
# State machine
# =============================================================================


class InteractionStateMachine:
    """Stateful wrapper that re-derives only when the log tail content changes.

    A resolved decision stays resolved until the tail actually changes, so
    re-deriving an unchanged log does not re-arm it. Observers are called
    with ``(old_state, new_state)`` on every change.
    """

    def __init__(self) -> None:
        self._state = NEUTRAL_STATE
        self._tail: tuple[TaskMessage | None, TaskMessage | None] | None = None
        self._observers: list[Callable[[InteractionState, InteractionState], None]] = []

    @property
    def state(self) -> InteractionState:
        return self._state

    def add_observer(self, callback: Callable[[InteractionState, InteractionState], None]) -> None:
        """Add state change observer.

        Args:
            callback: Function called with (old_state, new_state).
        """
        self._observers.append(callback)

    def remove_observer(self, callback: Callable[[InteractionState, InteractionState], None]) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    def observe(self, log: Sequence[TaskMessage]) -> InteractionState:
        """Feed the current log (task message included) and return the state."""
        last = log[-1] if log else None
        second_last = log[-2] if len(log) > 1 else None
        tail = (last, second_last)
        if tail == self._tail:
            return self._state
        self._tail = tail
        return self._set(derive_state(self._state, last, second_last))

    def resolve(self) -> InteractionState:
        """The pending decision was answered (by the user or on their behalf)."""
        return self._set(apply_trigger(self._state, Trigger.RESOLVED))

    def reset(self) -> InteractionState:
        self._tail = None
        return self._set(apply_trigger(self._state, Trigger.LOG_CLEARED))

    def _set(self, new_state: InteractionState) -> InteractionState:
        old_state = self._state
        self._state = new_state
        if old_state != new_state:
            for observer in self._observers:
                observer(old_state, new_state)
        return new_state


# =============================================================================
# Streaming
# =============================================================================


def is_streaming(reduced: Sequence[TaskMessage], state: InteractionState) -> bool:
    """Whether the host is still producing output for the current turn."""
    last = reduced[-1] if reduced else None
    if last is None:
        return False

    is_tool_asking = (
        last.type == "ask" and state.ask is not None and state.enable_buttons and state.primary_label is not None
    )
    if is_tool_asking:
        return False

    if last.is_partial:
        return True

    for message in reversed(reduced):
        if message.is_say(SayKind.API_REQ_STARTED):
            info = parse_api_request_info(message.text)
            return info is not None and not info.is_finished
    return False


__all__ = [
    "ASK_RULES",
    "NEUTRAL_STATE",
    "SAVE_TOOLS",
    "TRANSITIONS",
    "AskRule",
    "ButtonLabel",
    "Gate",
    "InteractionPhase",
    "InteractionState",
    "InteractionStateMachine",
    "Trigger",
    "apply_trigger",
    "classify",
    "derive_state",
    "is_streaming",
    "tool_labels",
]
