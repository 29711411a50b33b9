"""Engine events for sideband observers.

The engine reports what it did (and what the view should do) through these
events rather than through return values, so hosts can log them, drive focus,
or surface failures without coupling to the session internals.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from interaction_engine.state import InteractionState


@dataclass
class EngineEvent:
    """Base class for engine events.

    Attributes:
        event_id: Identifier correlating related events (e.g. scheduled/emitted
            pairs share the ask timestamp).
        timestamp: When the event was created.
    """

    event_id: str
    timestamp: datetime = field(default_factory=datetime.now)


EventListener = Callable[[EngineEvent], None]


# =============================================================================
# Interaction Events
# =============================================================================


@dataclass
class InteractionStateChangedEvent(EngineEvent):
    """Emitted when the derived interaction state changes.

    Attributes:
        old_state: State before the change.
        new_state: State after the change.
    """

    old_state: InteractionState | None = None
    new_state: InteractionState | None = None


@dataclass
class FocusInputRequestedEvent(EngineEvent):
    """Emitted when the text input should take focus.

    Attributes:
        reason: What asked for focus (``focusInput``, ``didBecomeVisible``, ``state``).
    """

    reason: str = ""


@dataclass
class ComposerChangedEvent(EngineEvent):
    """Emitted when the composer text or selected images change."""

    text: str = ""
    image_count: int = 0


# =============================================================================
# Auto-Approval Events
# =============================================================================


@dataclass
class AutoApprovalScheduledEvent(EngineEvent):
    """Emitted when an auto-approval is scheduled.

    Attributes:
        ask_ts: Timestamp of the ask being approved.
        delay_ms: Delay before emission (0 for immediate).
    """

    ask_ts: int = 0
    delay_ms: int = 0


@dataclass
class AutoApprovalEmittedEvent(EngineEvent):
    """Emitted after the affirmative response was posted."""

    ask_ts: int = 0


@dataclass
class AutoApprovalCancelledEvent(EngineEvent):
    """Emitted when a pending auto-approval is cancelled before firing.

    Attributes:
        reason: ``manual``, ``reset`` or ``superseded``.
    """

    ask_ts: int = 0
    reason: str = ""


@dataclass
class AutoApprovalFailedEvent(EngineEvent):
    """Emitted when posting the affirmative response failed.

    The decision stays pending for the user to resolve.
    """

    ask_ts: int = 0
    error: str = ""


# =============================================================================
# Command / Context Events
# =============================================================================


@dataclass
class CommandStatusDroppedEvent(EngineEvent):
    """Emitted when a command status event is discarded.

    Attributes:
        execution_id: Execution id the event referenced, if readable.
        reason: ``malformed``, ``expired`` or ``evicted``.
    """

    execution_id: str | None = None
    reason: str = ""


@dataclass
class CondenseStartedEvent(EngineEvent):
    task_id: str = ""


@dataclass
class CondenseCompletedEvent(EngineEvent):
    task_id: str = ""


@dataclass
class SessionResetEvent(EngineEvent):
    """Emitted after an atomic session reset.

    Attributes:
        epoch: Session epoch after the reset.
    """

    epoch: int = 0


__all__ = [
    "AutoApprovalCancelledEvent",
    "AutoApprovalEmittedEvent",
    "AutoApprovalFailedEvent",
    "AutoApprovalScheduledEvent",
    "CommandStatusDroppedEvent",
    "ComposerChangedEvent",
    "CondenseCompletedEvent",
    "CondenseStartedEvent",
    "EngineEvent",
    "EventListener",
    "FocusInputRequestedEvent",
    "InteractionStateChangedEvent",
    "SessionResetEvent",
]
