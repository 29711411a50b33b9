"""Chat session: the session-scoped context that owns all engine state.

ChatSession holds the event log and everything derived from or attached to
it (the visible set, the interaction state machine, the auto-approver, the
command correlator, the composer and the expanded rows) behind one explicit
``reset``. There is no module-level state: two sessions never share memory.

Example:
    session = ChatSession(channel, config)
    await session.handle({"type": "messageUpdated", "message": {...}})
    model = session.derive()
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from pydantic import ValidationError

from interaction_engine._logger import get_logger
from interaction_engine.approval import AutoApprover, SleepFunc
from interaction_engine.combiner import combine_messages
from interaction_engine.commands import CommandExecutionCorrelator
from interaction_engine.config import EngineConfig
from interaction_engine.events import (
    ComposerChangedEvent,
    CondenseCompletedEvent,
    CondenseStartedEvent,
    EngineEvent,
    EventListener,
    FocusInputRequestedEvent,
    InteractionStateChangedEvent,
    SessionResetEvent,
)
from interaction_engine.exceptions import ProtocolError
from interaction_engine.grouping import GroupedEntry, group_messages
from interaction_engine.messages import AskKind, TaskMessage, apply_revision, revise
from interaction_engine.metrics import get_api_metrics
from interaction_engine.policy import AutoApprovalPolicy
from interaction_engine.protocol import (
    AskResponse,
    AskResponseKind,
    CancelTask,
    ClearTask,
    CondenseTaskContextRequest,
    HostChannel,
    HostState,
    NewTask,
    TerminalOperation,
    TerminateTask,
    parse_inbound,
)
from interaction_engine.render import RenderModel, build_rows
from interaction_engine.state import InteractionState, InteractionStateMachine, is_streaming
from interaction_engine.visibility import VisibilityFilter, VisibleSet

logger = get_logger(__name__)

# Asks that accept a free-text reply from the composer.
TEXT_RESPONSE_ASKS: frozenset[AskKind] = frozenset({
    AskKind.FOLLOWUP,
    AskKind.TOOL,
    AskKind.BROWSER_ACTION_LAUNCH,
    AskKind.COMMAND,
    AskKind.COMMAND_OUTPUT,
    AskKind.USE_MCP_SERVER,
    AskKind.COMPLETION_RESULT,
    AskKind.RESUME_TASK,
    AskKind.RESUME_COMPLETED_TASK,
    AskKind.MISTAKE_LIMIT_REACHED,
})

# Asks whose primary action is an affirmative response.
_APPROVE_ASKS: frozenset[AskKind] = frozenset({
    AskKind.API_REQ_FAILED,
    AskKind.COMMAND,
    AskKind.TOOL,
    AskKind.BROWSER_ACTION_LAUNCH,
    AskKind.USE_MCP_SERVER,
    AskKind.RESUME_TASK,
    AskKind.MISTAKE_LIMIT_REACHED,
})

# Asks whose secondary action is a negative response carrying the composer text.
_REJECT_ASKS: frozenset[AskKind] = frozenset({
    AskKind.COMMAND,
    AskKind.TOOL,
    AskKind.BROWSER_ACTION_LAUNCH,
    AskKind.USE_MCP_SERVER,
})


def parse_log(raw: Iterable[Any]) -> list[TaskMessage]:
    """Validate wire records into a revised log, skipping invalid records."""
    messages: list[TaskMessage] = []
    for item in raw:
        try:
            messages.append(TaskMessage.model_validate(item))
        except ValidationError as e:
            logger.warning("Skipping invalid log record: %d validation error(s)", e.error_count())
    return revise(messages)


class ChatSession:
    """Session-scoped interaction engine."""

    def __init__(
        self,
        channel: HostChannel,
        config: EngineConfig | None = None,
        *,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize ChatSession.

        Args:
            channel: Outbound host channel.
            config: Engine configuration; defaults apply when omitted.
            sleep: Awaitable delay used for the write-approval window.
            clock: Monotonic clock for the visible set and orphan buffer.
        """
        self._config = config or EngineConfig()
        self._channel = channel
        self._listeners: list[EventListener] = []

        self._policy: AutoApprovalPolicy = self._config.auto_approve
        self._log: list[TaskMessage] = []
        self._reduced: list[TaskMessage] = []
        self._grouped: list[GroupedEntry] = []
        self._task_id: str | None = None

        visibility = self._config.visibility
        self._visibility = VisibilityFilter(
            VisibleSet(capacity=visibility.capacity, ttl_seconds=visibility.ttl_seconds, clock=clock),
            short_log_threshold=visibility.short_log_threshold,
        )
        self._machine = InteractionStateMachine()
        self._machine.add_observer(self._on_state_changed)
        self._approver = AutoApprover(channel, sleep=sleep, on_event=self._emit)
        commands = self._config.commands
        self._correlator = CommandExecutionCorrelator(
            orphan_capacity=commands.orphan_capacity,
            orphan_ttl_seconds=commands.orphan_ttl_seconds,
            shell_integration_disabled=commands.shell_integration_disabled,
            clock=clock,
            on_event=self._emit,
        )

        self._expanded_rows: dict[int, bool] = {}
        self._input_text = ""
        self._selected_images: list[str] = []
        self._condensing = False

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def log(self) -> list[TaskMessage]:
        return list(self._log)

    @property
    def task(self) -> TaskMessage | None:
        return self._log[0] if self._log else None

    @property
    def task_id(self) -> str | None:
        if self._task_id is not None:
            return self._task_id
        task = self.task
        return str(task.ts) if task is not None else None

    @property
    def reduced(self) -> list[TaskMessage]:
        return list(self._reduced)

    @property
    def grouped(self) -> list[GroupedEntry]:
        return list(self._grouped)

    @property
    def policy(self) -> AutoApprovalPolicy:
        return self._policy

    @property
    def state(self) -> InteractionState:
        return self._machine.state

    @property
    def epoch(self) -> int:
        return self._approver.epoch

    @property
    def approver(self) -> AutoApprover:
        return self._approver

    @property
    def correlator(self) -> CommandExecutionCorrelator:
        return self._correlator

    @property
    def visible_set(self) -> VisibleSet:
        return self._visibility.visible_set

    @property
    def input_text(self) -> str:
        return self._input_text

    @property
    def selected_images(self) -> list[str]:
        return list(self._selected_images)

    @property
    def condensing(self) -> bool:
        return self._condensing

    @property
    def expanded_rows(self) -> dict[int, bool]:
        return dict(self._expanded_rows)

    @property
    def is_streaming(self) -> bool:
        return is_streaming(self._reduced, self._machine.state)

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: EngineEvent) -> None:
        for listener in self._listeners:
            listener(event)

    def _on_state_changed(self, old_state: InteractionState, new_state: InteractionState) -> None:
        self._emit(InteractionStateChangedEvent(event_id="state", old_state=old_state, new_state=new_state))
        accepts_input = not new_state.sending_disabled and not new_state.enable_buttons
        accepted_input = not old_state.sending_disabled and not old_state.enable_buttons
        if accepts_input and not accepted_input:
            self._emit(FocusInputRequestedEvent(event_id="state", reason="state"))

    # =========================================================================
    # Inbound
    # =========================================================================

    async def handle(self, raw: Any) -> None:
        """Dispatch one inbound host message. Invalid messages are logged and ignored."""
        try:
            message = parse_inbound(raw)
        except ProtocolError as e:
            logger.warning("Ignoring inbound message: %s", e)
            return

        match message.type:
            case "state":
                await self.apply_state(message.state)
            case "messageUpdated":
                try:
                    record = TaskMessage.model_validate(message.message)
                except ValidationError as e:
                    logger.warning("Ignoring invalid messageUpdated record: %d error(s)", e.error_count())
                    return
                await self.upsert_message(record)
            case "commandExecutionStatus":
                self._correlator.handle_status(message.text)
            case "action":
                self._handle_action(message.action)
            case "invoke":
                await self._handle_invoke(message.invoke, message.text or "", message.images or [])
            case "selectedImages":
                self.add_selected_images(message.images)
            case "condenseTaskContextResponse":
                self.finish_condense(message.text)

    def _handle_action(self, action: str) -> None:
        state = self._machine.state
        if action == "focusInput":
            self._emit(FocusInputRequestedEvent(event_id=action, reason=action))
        elif action == "didBecomeVisible":
            if not state.sending_disabled and not state.enable_buttons:
                self._emit(FocusInputRequestedEvent(event_id=action, reason=action))
        else:
            logger.debug("Ignoring unknown action %r", action)

    async def _handle_invoke(self, invoke: str, text: str, images: list[str]) -> None:
        match invoke:
            case "newChat":
                self.reset_composer()
            case "sendMessage":
                await self.send_message(text, images)
            case "setChatBoxMessage":
                self.set_chat_box_message(text, images)
            case "primaryButtonClick":
                await self.click_primary(text, images)
            case "secondaryButtonClick":
                await self.click_secondary(text, images)

    async def apply_state(self, state: HostState) -> None:
        """Apply a full state snapshot: log, policy and command settings."""
        try:
            self._policy = state.policy
        except ValidationError as e:
            logger.warning("Keeping previous policy, invalid policy in state: %d error(s)", e.error_count())
        self._correlator.shell_integration_disabled = state.shell_integration_disabled
        self._task_id = state.task_id
        self._replace_log(parse_log(state.messages))
        await self._on_log_changed()

    async def set_policy(self, policy: AutoApprovalPolicy) -> None:
        """Replace the policy snapshot and re-evaluate the pending decision."""
        self._policy = policy
        await self._maybe_auto_approve()

    async def upsert_message(self, message: TaskMessage) -> None:
        """Apply one new or revised log record."""
        self._replace_log(apply_revision(self._log, message))
        await self._on_log_changed()

    def _replace_log(self, log: list[TaskMessage]) -> None:
        old_task_ts = self._log[0].ts if self._log else None
        new_task_ts = log[0].ts if log else None
        if old_task_ts != new_task_ts:
            logger.debug("Task changed (%s -> %s), clearing session memory", old_task_ts, new_task_ts)
            self._approver.reset()
            self._visibility.reset()
            self._correlator.reset()
            self._expanded_rows.clear()
        self._log = log

    # =========================================================================
    # Derivation
    # =========================================================================

    async def _on_log_changed(self) -> None:
        self._refresh()
        await self._maybe_auto_approve()

    def _refresh(self) -> None:
        self._reduced = combine_messages(self._log[1:])
        self._machine.observe(self._log[:1] + self._reduced)

        visible = self._visibility.filter(self._reduced)
        self._grouped = group_messages(visible, condensing=self._condensing)

        pending = self._pending_ask()
        self._approver.cancel_unless(pending.ts if pending is not None else None)

    def _pending_ask(self) -> TaskMessage | None:
        if not self._machine.state.decision_pending:
            return None
        tail = self._reduced[-1] if self._reduced else (self._log[0] if self._log else None)
        if tail is None or tail.type != "ask":
            return None
        return tail

    async def _maybe_auto_approve(self) -> None:
        await self._approver.evaluate(self._pending_ask(), self._policy, on_approved=self._machine.resolve)

    def derive(self) -> RenderModel:
        """Build the render model for the current log."""
        state = self._machine.state
        rows = build_rows(
            self._grouped,
            reduced=self._reduced,
            state=state,
            expanded_rows=self._expanded_rows,
            policy=self._policy,
            correlator=self._correlator,
        )
        return RenderModel(
            rows=rows,
            state=state,
            is_streaming=is_streaming(self._reduced, state),
            metrics=get_api_metrics(self._reduced),
            task=self.task,
            condensing=self._condensing,
        )

    # =========================================================================
    # Composer
    # =========================================================================

    def set_chat_box_message(self, text: str, images: Sequence[str] = ()) -> None:
        """Append text (space separated) and images to the composer."""
        self._input_text = text if self._input_text == "" else f"{self._input_text} {text}"
        self._set_images([*self._selected_images, *images])

    def set_input_text(self, text: str) -> None:
        self._input_text = text
        self._emit_composer()

    def add_selected_images(self, images: Sequence[str]) -> None:
        if images:
            self._set_images([*self._selected_images, *images])

    def reset_composer(self) -> None:
        """Clear the composer and resolve any decision, keeping labels."""
        self._input_text = ""
        self._selected_images = []
        self._emit_composer()
        self._machine.resolve()

    def _set_images(self, images: list[str]) -> None:
        limit = self._config.composer.max_images_per_message
        if len(images) > limit:
            logger.info("Dropping %d image(s) over the limit of %d", len(images) - limit, limit)
        self._selected_images = images[:limit]
        self._emit_composer()

    def _emit_composer(self) -> None:
        self._emit(
            ComposerChangedEvent(event_id="composer", text=self._input_text, image_count=len(self._selected_images))
        )

    # =========================================================================
    # User actions
    # =========================================================================

    async def send_message(self, text: str, images: Sequence[str] = ()) -> None:
        """Send composer text: a new task on an empty log, else a reply to a text-accepting ask."""
        text = text.strip()
        images = list(images)
        if not text and not images:
            return

        ask = self._machine.state.ask
        if not self._log:
            await self._channel.post(NewTask(text=text, images=images))
        elif ask is not None and ask in TEXT_RESPONSE_ASKS:
            self._approver.cancel("manual")
            await self._channel.post(AskResponse(ask_response="messageResponse", text=text, images=images))
        self.reset_composer()

    async def click_suggestion(self, answer: str, append: bool = False) -> None:
        """Use a follow-up suggestion: send it, or append it to the composer."""
        if append:
            self.set_input_text(f"{self._input_text} \n{answer}" if self._input_text else answer)
            return
        await self.send_message(answer)

    def _approval_in_flight(self) -> bool:
        token = self._approver.in_flight
        if token is None:
            return False
        logger.debug("Ignoring click, auto-approval for ts=%s is being posted", token.ask_ts)
        return True

    async def click_primary(self, text: str | None = None, images: Sequence[str] | None = None) -> None:
        """Primary action for the pending decision."""
        if self._approval_in_flight():
            return
        self._approver.cancel("manual")
        ask = self._machine.state.ask

        if ask in _APPROVE_ASKS:
            await self._respond("yesButtonClicked", text, images)
        elif ask in (AskKind.COMPLETION_RESULT, AskKind.RESUME_COMPLETED_TASK):
            await self.start_new_task()
        elif ask is AskKind.COMMAND_OUTPUT:
            await self._channel.post(TerminalOperation(terminal_operation="continue"))

        self._machine.resolve()

    async def click_secondary(self, text: str | None = None, images: Sequence[str] | None = None) -> None:
        """Secondary action; cancels the task instead while the host is streaming."""
        if self.is_streaming:
            await self._channel.post(CancelTask())
            return
        if self._approval_in_flight():
            return

        self._approver.cancel("manual")
        ask = self._machine.state.ask

        if ask in (AskKind.API_REQ_FAILED, AskKind.MISTAKE_LIMIT_REACHED):
            await self.start_new_task()
        elif ask is AskKind.RESUME_TASK:
            await self._channel.post(AskResponse(ask_response="noButtonClicked"))
        elif ask in _REJECT_ASKS:
            await self._respond("noButtonClicked", text, images)
        elif ask is AskKind.COMMAND_OUTPUT:
            await self._channel.post(TerminalOperation(terminal_operation="abort"))

        self._machine.resolve()

    async def _respond(self, kind: AskResponseKind, text: str | None, images: Sequence[str] | None) -> None:
        text = (self._input_text if text is None else text).strip()
        images = list(self._selected_images if images is None else images)
        if text or images:
            await self._channel.post(AskResponse(ask_response=kind, text=text, images=images))
        else:
            await self._channel.post(AskResponse(ask_response=kind))
        self._input_text = ""
        self._selected_images = []
        self._emit_composer()

    async def respond_batch(self, response: dict[str, bool]) -> None:
        """Structured reply to a batch permission ask (path -> approved)."""
        if self._approval_in_flight():
            return
        self._approver.cancel("manual")
        await self._channel.post(AskResponse(ask_response="objectResponse", text=json.dumps(response)))

    async def start_new_task(self) -> None:
        await self._channel.post(ClearTask())

    async def terminate_task(self) -> None:
        self._approver.cancel("manual")
        await self._channel.post(TerminateTask())
        self._machine.resolve()

    async def condense(self) -> bool:
        """Ask the host to condense the task context.

        Returns:
            False when a condense is already running or input is disabled.
        """
        task_id = self.task_id
        if self._condensing or self._machine.state.sending_disabled or task_id is None:
            return False
        self._condensing = True
        self._refresh()
        self._emit(CondenseStartedEvent(event_id=task_id, task_id=task_id))
        await self._channel.post(CondenseTaskContextRequest(text=task_id))
        return True

    def finish_condense(self, task_id: str | None) -> None:
        if not task_id or task_id != self.task_id:
            logger.debug("Ignoring condense response for task %r", task_id)
            return
        self._condensing = False
        self._refresh()
        self._emit(CondenseCompletedEvent(event_id=task_id, task_id=task_id))

    def toggle_row(self, ts: int) -> bool:
        """Flip the expansion of a row (or a row inside a session group)."""
        expanded = not self._expanded_rows.get(ts, False)
        self._expanded_rows[ts] = expanded
        return expanded

    def toggle_command(self, execution_id: str) -> bool:
        return self._correlator.toggle(execution_id)

    # =========================================================================
    # Reset
    # =========================================================================

    def reset(self) -> int:
        """Atomically clear the session.

        Bumps the epoch and cancels any pending auto-approval before anything
        else, with no suspension point in between.

        Returns:
            The new epoch.
        """
        epoch = self._approver.reset()
        self._log = []
        self._reduced = []
        self._grouped = []
        self._task_id = None
        self._visibility.reset()
        self._correlator.reset()
        self._expanded_rows.clear()
        self._input_text = ""
        self._selected_images = []
        self._condensing = False
        self._machine.reset()
        self._emit(SessionResetEvent(event_id=str(epoch), epoch=epoch))
        return epoch


__all__ = ["TEXT_RESPONSE_ASKS", "ChatSession", "parse_log"]
