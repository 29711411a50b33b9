"""Auto-approval scheduling.

Provides AutoApprover, which answers an approvable ask on the user's behalf.

Each decision gets one ``ApprovalToken`` keyed by the ask timestamp and the
session epoch. Write-classified tool asks wait ``write_delay_ms`` first,
giving the user a last-moment window to act manually; the wait is an asyncio
task that is cancelled by a manual resolution, a task reset or a tail change.
A token fires at most once, and a token from an older epoch never fires.
A token whose response is still being posted when the epoch moves on does
not resolve the new epoch's decision.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from interaction_engine._logger import get_logger
from interaction_engine.events import (
    AutoApprovalCancelledEvent,
    AutoApprovalEmittedEvent,
    AutoApprovalFailedEvent,
    AutoApprovalScheduledEvent,
    EngineEvent,
)
from interaction_engine.exceptions import EmissionError
from interaction_engine.messages import TaskMessage
from interaction_engine.policy import AutoApprovalPolicy, is_auto_approved, needs_write_delay
from interaction_engine.protocol import AskResponse, HostChannel

logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[object]]


@dataclass
class ApprovalToken:
    """Cancellation token for one scheduled auto-approval."""

    ask_ts: int
    epoch: int
    delay_ms: int = 0
    cancelled: bool = False
    fired: bool = False

    @property
    def key(self) -> tuple[int, int]:
        return (self.epoch, self.ask_ts)

    @property
    def is_active(self) -> bool:
        return not self.cancelled and not self.fired

    def cancel(self) -> bool:
        """Cancel the token. Returns False if it already fired or was cancelled."""
        if not self.is_active:
            return False
        self.cancelled = True
        return True


class AutoApprover:
    """Schedules and emits affirmative responses for auto-approved asks.

    Example:
        approver = AutoApprover(channel)
        await approver.evaluate(last_message, policy, on_approved=machine.resolve)
    """

    def __init__(
        self,
        channel: HostChannel,
        *,
        sleep: SleepFunc = asyncio.sleep,
        on_event: Callable[[EngineEvent], None] | None = None,
    ) -> None:
        """Initialize AutoApprover.

        Args:
            channel: Host channel the response is posted to.
            sleep: Awaitable delay, injectable for tests.
            on_event: Listener for scheduling events.
        """
        self._channel = channel
        self._sleep = sleep
        self._on_event = on_event
        self._epoch = 0
        self._pending: ApprovalToken | None = None
        self._task: asyncio.Task[None] | None = None
        self._in_flight: ApprovalToken | None = None
        self._decided: set[tuple[int, int]] = set()

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def pending(self) -> ApprovalToken | None:
        """Token waiting on the write delay, if any."""
        if self._pending is not None and self._pending.is_active:
            return self._pending
        return None

    @property
    def in_flight(self) -> ApprovalToken | None:
        """Token whose response is being posted in the current epoch, if any."""
        token = self._in_flight
        if token is not None and token.epoch == self._epoch:
            return token
        return None

    async def evaluate(
        self,
        message: TaskMessage | None,
        policy: AutoApprovalPolicy,
        on_approved: Callable[[], object],
    ) -> ApprovalToken | None:
        """Approve ``message`` if the policy allows it and it was not decided yet.

        Args:
            message: The ask holding the pending decision.
            policy: Current policy snapshot.
            on_approved: Called once the response was posted, unless the epoch
                moved on while posting.

        Returns:
            The token for the decision, or None when nothing was scheduled.
        """
        if message is None:
            return None
        pending = self.pending
        if pending is not None and pending.ask_ts == message.ts and not is_auto_approved(message, policy):
            self.cancel("policy")
            self._decided.discard(pending.key)
            return None
        if not is_auto_approved(message, policy):
            return None

        key = (self._epoch, message.ts)
        if key in self._decided:
            return None
        self._decided.add(key)

        delay_ms = policy.write_delay_ms if needs_write_delay(message) else 0
        token = ApprovalToken(ask_ts=message.ts, epoch=self._epoch, delay_ms=delay_ms)
        self._emit(AutoApprovalScheduledEvent(event_id=str(message.ts), ask_ts=message.ts, delay_ms=delay_ms))

        if delay_ms <= 0:
            await self._fire(token, on_approved)
            return token

        self.cancel("superseded")
        self._pending = token
        self._task = asyncio.get_running_loop().create_task(self._delayed_fire(token, on_approved))
        return token

    def cancel(self, reason: str = "manual") -> bool:
        """Cancel the pending delayed approval, if any."""
        token = self._pending
        task = self._task
        self._pending = None
        self._task = None
        if task is not None and not task.done():
            task.cancel()
        if token is None or not token.cancel():
            return False
        logger.debug("Cancelled auto-approval for ts=%s (%s)", token.ask_ts, reason)
        self._emit(AutoApprovalCancelledEvent(event_id=str(token.ask_ts), ask_ts=token.ask_ts, reason=reason))
        return True

    def cancel_unless(self, ask_ts: int | None) -> bool:
        """Cancel the pending approval unless it belongs to ``ask_ts``."""
        token = self.pending
        if token is None or token.ask_ts == ask_ts:
            return False
        return self.cancel("superseded")

    def reset(self) -> int:
        """Start a new epoch: cancel pending work and forget decided asks."""
        self.cancel("reset")
        self._epoch += 1
        self._decided.clear()
        return self._epoch

    async def join(self) -> None:
        """Wait for the pending delayed approval to finish or be cancelled."""
        task = self._task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def _delayed_fire(self, token: ApprovalToken, on_approved: Callable[[], object]) -> None:
        await self._sleep(token.delay_ms / 1000)
        if self._pending is token:
            self._pending = None
            self._task = None
        await self._fire(token, on_approved)

    async def _fire(self, token: ApprovalToken, on_approved: Callable[[], object]) -> None:
        if not token.is_active or token.epoch != self._epoch:
            logger.debug("Discarding stale auto-approval for ts=%s (epoch %s)", token.ask_ts, token.epoch)
            return
        token.fired = True
        self._in_flight = token

        try:
            await self._channel.post(AskResponse(ask_response="yesButtonClicked"))
        except Exception as e:
            error = EmissionError(f"Failed to post auto-approval for ts={token.ask_ts}", cause=e)
            logger.exception(str(error))
            self._emit(AutoApprovalFailedEvent(event_id=str(token.ask_ts), ask_ts=token.ask_ts, error=str(e)))
            return
        finally:
            if self._in_flight is token:
                self._in_flight = None

        if token.epoch != self._epoch:
            logger.debug("Session reset while posting auto-approval for ts=%s, not resolving", token.ask_ts)
            return
        on_approved()
        self._emit(AutoApprovalEmittedEvent(event_id=str(token.ask_ts), ask_ts=token.ask_ts))

    def _emit(self, event: EngineEvent) -> None:
        if self._on_event is not None:
            self._on_event(event)


__all__ = ["ApprovalToken", "AutoApprover", "SleepFunc"]
