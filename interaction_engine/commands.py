"""Command Execution Correlator.

Long-running commands report their status out of band, keyed by an execution
id, independently of the message log. The correlator keeps one record per
execution id and joins it with the command entry at render time.

Status events may arrive before the command entry is known; they wait in a
bounded orphan buffer and are adopted when the entry is tracked. Persisted
command entries may carry an embedded snapshot of the last known status
ahead of their text::

    <status>{"executionId": "42", "status": "exited", "exitCode": 0}</status>
    npm test
"""

from __future__ import annotations

import json
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from interaction_engine._logger import get_logger
from interaction_engine.combiner import parse_command_and_output
from interaction_engine.events import CommandStatusDroppedEvent, EngineEvent
from interaction_engine.payloads import safe_json_object

logger = get_logger(__name__)

DEFAULT_ORPHAN_CAPACITY = 100
DEFAULT_ORPHAN_TTL_SECONDS = 300.0

SNAPSHOT_OPEN = "<status>"
SNAPSHOT_CLOSE = "</status>"


# =============================================================================
# Status events
# =============================================================================


class _Status(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    execution_id: str = Field(alias="executionId")


class StartedStatus(_Status):
    status: Literal["started"] = "started"
    pid: int | None = None
    command: str = ""


class OutputStatus(_Status):
    """Full output so far; replaces the live buffer."""

    status: Literal["output"] = "output"
    output: str = ""


class ExitedStatus(_Status):
    status: Literal["exited"] = "exited"
    exit_code: int | None = Field(default=None, alias="exitCode")


class FallbackStatus(_Status):
    """The interactive terminal is unavailable; output must render expanded."""

    status: Literal["fallback"] = "fallback"


CommandStatus = Annotated[
    Union[StartedStatus, OutputStatus, ExitedStatus, FallbackStatus],
    Field(discriminator="status"),
]

CommandStatusAdapter: TypeAdapter[CommandStatus] = TypeAdapter(CommandStatus)


def parse_status(text: str | None) -> CommandStatus | None:
    """Validate a status payload; None when malformed."""
    data = safe_json_object(text)
    if data is None:
        return None
    try:
        return CommandStatusAdapter.validate_python(data)
    except ValidationError:
        return None


def encode_status_snapshot(status: CommandStatus) -> str:
    """Serialize ``status`` as the leading marker of a persisted command text."""
    payload = status.model_dump(by_alias=True, exclude_none=True)
    return f"{SNAPSHOT_OPEN}{json.dumps(payload)}{SNAPSHOT_CLOSE}\n"


def split_status_snapshot(text: str | None) -> tuple[CommandStatus | None, str]:
    """Split a persisted command text into ``(snapshot, display_text)``.

    A malformed snapshot is stripped but ignored.
    """
    if not text or not text.startswith(SNAPSHOT_OPEN):
        return None, text or ""
    end = text.find(SNAPSHOT_CLOSE)
    if end == -1:
        return None, text

    raw = text[len(SNAPSHOT_OPEN) : end]
    rest = text[end + len(SNAPSHOT_CLOSE) :]
    if rest.startswith("\n"):
        rest = rest[1:]

    snapshot = parse_status(raw)
    if snapshot is None:
        logger.debug("Ignoring malformed status snapshot: %r", raw[:80])
    return snapshot, rest


def execution_id_for(ts: int) -> str:
    """Execution id the host assigns to the command entry with timestamp ``ts``."""
    return str(ts)


# =============================================================================
# Records
# =============================================================================


class ExecutionStatus(str, Enum):
    NOT_STARTED = "not-started"
    STARTED = "started"
    EXITED = "exited"


@dataclass
class CommandExecution:
    """Live state of one command execution.

    Attributes:
        execution_id: Correlation key.
        status: Current lifecycle status.
        pid: Process id once started.
        exit_code: Exit code once exited.
        output: Streamed output buffer.
        expanded: Whether the output renders expanded.
        live: Whether any live status event was applied.
        restored: Whether an embedded snapshot was applied.
    """

    execution_id: str
    status: ExecutionStatus = ExecutionStatus.NOT_STARTED
    pid: int | None = None
    exit_code: int | None = None
    output: str = ""
    expanded: bool = False
    live: bool = False
    restored: bool = False

    def apply(self, event: CommandStatus) -> None:
        if isinstance(event, StartedStatus):
            self.status = ExecutionStatus.STARTED
            self.pid = event.pid
        elif isinstance(event, OutputStatus):
            self.output = event.output
        elif isinstance(event, ExitedStatus):
            self.status = ExecutionStatus.EXITED
            self.exit_code = event.exit_code
        elif isinstance(event, FallbackStatus):
            self.expanded = True


@dataclass(frozen=True)
class CommandView:
    """Display model of a command entry joined with its execution record."""

    execution_id: str
    command: str
    output: str
    status: ExecutionStatus
    pid: int | None
    exit_code: int | None
    expanded: bool

    @property
    def is_running(self) -> bool:
        return self.status is ExecutionStatus.STARTED


# =============================================================================
# Correlator
# =============================================================================


class CommandExecutionCorrelator:
    """Joins out-of-band command status events with command entries.

    Example:
        correlator = CommandExecutionCorrelator()
        correlator.handle_status('{"executionId": "42", "status": "started", "pid": 7, "command": "ls"}')
        view = correlator.view("42", message.text)
    """

    def __init__(
        self,
        orphan_capacity: int = DEFAULT_ORPHAN_CAPACITY,
        orphan_ttl_seconds: float = DEFAULT_ORPHAN_TTL_SECONDS,
        shell_integration_disabled: bool = False,
        clock: Callable[[], float] = time.monotonic,
        on_event: Callable[[EngineEvent], None] | None = None,
    ) -> None:
        self._records: dict[str, CommandExecution] = {}
        self._orphans: OrderedDict[str, list[tuple[float, CommandStatus]]] = OrderedDict()
        self._orphan_capacity = orphan_capacity
        self._orphan_ttl = orphan_ttl_seconds
        self._clock = clock
        self._on_event = on_event
        self.shell_integration_disabled = shell_integration_disabled

    def __contains__(self, execution_id: object) -> bool:
        return execution_id in self._records

    def get(self, execution_id: str) -> CommandExecution | None:
        return self._records.get(execution_id)

    @property
    def orphan_ids(self) -> list[str]:
        return list(self._orphans)

    def handle_status(self, text: str | None) -> bool:
        """Apply one ``commandExecutionStatus`` payload.

        Returns:
            True if the event was applied or buffered, False if it was dropped.
        """
        event = parse_status(text)
        if event is None:
            logger.warning("Dropping malformed command status event: %r", (text or "")[:80])
            self._emit(CommandStatusDroppedEvent(event_id="malformed", reason="malformed"))
            return False

        record = self._records.get(event.execution_id)
        if record is not None:
            record.apply(event)
            record.live = True
            return True

        self._buffer_orphan(event)
        return True

    def track(self, execution_id: str, text: str | None = None) -> CommandExecution:
        """Return the record for ``execution_id``, creating it on first sight.

        The embedded snapshot in ``text`` applies until a live event arrives.
        """
        record = self._records.get(execution_id)
        if record is None:
            record = CommandExecution(execution_id=execution_id, expanded=self.shell_integration_disabled)
            self._records[execution_id] = record

        if not record.live and not record.restored:
            snapshot, _ = split_status_snapshot(text)
            if snapshot is not None and snapshot.execution_id == execution_id:
                record.apply(snapshot)
                record.restored = True

        self._adopt_orphans(record)
        return record

    def toggle(self, execution_id: str) -> bool:
        record = self.track(execution_id)
        record.expanded = not record.expanded
        return record.expanded

    def view(self, execution_id: str, text: str | None) -> CommandView:
        """Display model for a command entry; live output wins over persisted output."""
        record = self.track(execution_id, text)
        _, display_text = split_status_snapshot(text)
        command, parsed_output = parse_command_and_output(display_text)
        return CommandView(
            execution_id=execution_id,
            command=command,
            output=record.output or parsed_output,
            status=record.status,
            pid=record.pid,
            exit_code=record.exit_code,
            expanded=record.expanded,
        )

    def reset(self) -> None:
        self._records.clear()
        self._orphans.clear()

    def _buffer_orphan(self, event: CommandStatus) -> None:
        self._prune_orphans()
        entries = self._orphans.setdefault(event.execution_id, [])
        entries.append((self._clock(), event))
        self._orphans.move_to_end(event.execution_id)

        while self._orphan_capacity > 0 and len(self._orphans) > self._orphan_capacity:
            execution_id, dropped = self._orphans.popitem(last=False)
            logger.info("Dropping %d status event(s) for unknown execution %s", len(dropped), execution_id)
            self._emit(CommandStatusDroppedEvent(event_id=execution_id, execution_id=execution_id, reason="evicted"))

    def _prune_orphans(self) -> None:
        if self._orphan_ttl <= 0:
            return
        now = self._clock()
        for execution_id in list(self._orphans):
            entries = [(seen_at, e) for seen_at, e in self._orphans[execution_id] if now - seen_at <= self._orphan_ttl]
            if entries:
                self._orphans[execution_id] = entries
                continue
            del self._orphans[execution_id]
            logger.info("Dropping expired status events for unknown execution %s", execution_id)
            self._emit(CommandStatusDroppedEvent(event_id=execution_id, execution_id=execution_id, reason="expired"))

    def _adopt_orphans(self, record: CommandExecution) -> None:
        if record.execution_id not in self._orphans:
            return
        self._prune_orphans()
        for _, event in self._orphans.pop(record.execution_id, []):
            record.apply(event)
            record.live = True

    def _emit(self, event: EngineEvent) -> None:
        if self._on_event is not None:
            self._on_event(event)


__all__ = [
    "DEFAULT_ORPHAN_CAPACITY",
    "DEFAULT_ORPHAN_TTL_SECONDS",
    "CommandExecution",
    "CommandExecutionCorrelator",
    "CommandStatus",
    "CommandStatusAdapter",
    "CommandView",
    "ExecutionStatus",
    "ExitedStatus",
    "FallbackStatus",
    "OutputStatus",
    "StartedStatus",
    "encode_status_snapshot",
    "execution_id_for",
    "split_status_snapshot",
]
