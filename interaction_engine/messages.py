"""Task event log records.

A task's log is an append-only list of TaskMessage records ordered by ``ts``.
The timestamp doubles as the identifier: a record arriving with the ``ts`` of
an existing record is a revision of that record (streamed text growing while
``partial``), never a new entry.

Example:
    log: list[TaskMessage] = []
    log = apply_revision(log, TaskMessage(ts=5, type="say", say="text", text="ab", partial=True))
    log = apply_revision(log, TaskMessage(ts=5, type="say", say="text", text="abcd"))
    assert [m.text for m in log] == ["abcd"]
"""

from __future__ import annotations

import bisect
from collections.abc import Iterable
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# -----------------------------------------------------------------------------
# Kinds
# -----------------------------------------------------------------------------


class AskKind(str, Enum):
    """Closed set of requests for user input."""

    FOLLOWUP = "followup"
    COMMAND = "command"
    COMMAND_OUTPUT = "command_output"
    COMPLETION_RESULT = "completion_result"
    TOOL = "tool"
    API_REQ_FAILED = "api_req_failed"
    RESUME_TASK = "resume_task"
    RESUME_COMPLETED_TASK = "resume_completed_task"
    MISTAKE_LIMIT_REACHED = "mistake_limit_reached"
    BROWSER_ACTION_LAUNCH = "browser_action_launch"
    USE_MCP_SERVER = "use_mcp_server"


class SayKind(str, Enum):
    """Closed set of informational emissions."""

    TASK = "task"
    ERROR = "error"
    API_REQ_STARTED = "api_req_started"
    API_REQ_FINISHED = "api_req_finished"
    API_REQ_RETRIED = "api_req_retried"
    API_REQ_RETRY_DELAYED = "api_req_retry_delayed"
    API_REQ_DELETED = "api_req_deleted"
    TEXT = "text"
    REASONING = "reasoning"
    COMPLETION_RESULT = "completion_result"
    USER_FEEDBACK = "user_feedback"
    USER_FEEDBACK_DIFF = "user_feedback_diff"
    COMMAND_OUTPUT = "command_output"
    SHELL_INTEGRATION_WARNING = "shell_integration_warning"
    BROWSER_ACTION = "browser_action"
    BROWSER_ACTION_RESULT = "browser_action_result"
    MCP_SERVER_REQUEST_STARTED = "mcp_server_request_started"
    MCP_SERVER_RESPONSE = "mcp_server_response"
    SUBTASK_RESULT = "subtask_result"
    CHECKPOINT_SAVED = "checkpoint_saved"
    ROOIGNORE_ERROR = "rooignore_error"
    DIFF_ERROR = "diff_error"
    CONDENSE_CONTEXT = "condense_context"
    CONDENSE_CONTEXT_ERROR = "condense_context_error"
    CODEBASE_SEARCH_RESULT = "codebase_search_result"


def _lookup(enum_cls: type[Enum], value: str | None) -> Any:
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


# -----------------------------------------------------------------------------
# TaskMessage
# -----------------------------------------------------------------------------


class TaskMessage(BaseModel):
    """One record of a task's event log.

    Kind strings are kept as received so that a record with an unknown kind
    still round-trips; ``ask_kind`` / ``say_kind`` give the typed view and
    return None for kinds this engine does not know.
    """

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    ts: int
    type: Literal["ask", "say"]
    ask: str | None = None
    say: str | None = None
    text: str | None = None
    images: list[str] | None = None
    partial: bool | None = None
    progress_status: dict[str, Any] | None = Field(default=None, alias="progressStatus")
    context_condense: dict[str, Any] | None = Field(default=None, alias="contextCondense")

    @property
    def ask_kind(self) -> AskKind | None:
        """Typed ask kind, None for says and unknown asks."""
        if self.type != "ask":
            return None
        return _lookup(AskKind, self.ask)

    @property
    def say_kind(self) -> SayKind | None:
        """Typed say kind, None for asks and unknown says."""
        if self.type != "say":
            return None
        return _lookup(SayKind, self.say)

    @property
    def kind(self) -> str | None:
        """Raw kind string regardless of type."""
        return self.ask if self.type == "ask" else self.say

    @property
    def is_partial(self) -> bool:
        return self.partial is True

    @property
    def has_content(self) -> bool:
        """True when the record carries non-empty text or at least one image."""
        return bool(self.text) or bool(self.images)

    def is_ask(self, kind: AskKind) -> bool:
        return self.type == "ask" and self.ask == kind.value

    def is_say(self, kind: SayKind) -> bool:
        return self.type == "say" and self.say == kind.value

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the persisted flat record layout."""
        return self.model_dump(by_alias=True, exclude_none=True)


# -----------------------------------------------------------------------------
# Revision semantics
# -----------------------------------------------------------------------------


def apply_revision(log: list[TaskMessage], message: TaskMessage) -> list[TaskMessage]:
    """Apply one arriving record to a log and return the new log.

    A record whose ``ts`` matches an existing entry replaces it in place.
    Otherwise it is inserted in timestamp order (appended in the common case).

    Args:
        log: Current log, ordered by ts. Not mutated.
        message: Arriving record.

    Returns:
        New log list.
    """
    result = list(log)
    if result and result[-1].ts == message.ts:
        result[-1] = message
        return result
    if not result or result[-1].ts < message.ts:
        result.append(message)
        return result

    keys = [m.ts for m in result]
    index = bisect.bisect_left(keys, message.ts)
    if index < len(result) and result[index].ts == message.ts:
        result[index] = message
    else:
        result.insert(index, message)
    return result


def revise(messages: Iterable[TaskMessage]) -> list[TaskMessage]:
    """Fold a stream of records (revisions included) into a log, in arrival order."""
    log: list[TaskMessage] = []
    for message in messages:
        log = apply_revision(log, message)
    return log


def parse_messages(raw: Iterable[Any]) -> list[TaskMessage]:
    """Validate wire records into a revised log.

    Records that fail validation are skipped by the caller's choice; this
    helper validates strictly and lets pydantic errors propagate.
    """
    return revise(TaskMessage.model_validate(item) for item in raw)


__all__ = [
    "AskKind",
    "SayKind",
    "TaskMessage",
    "apply_revision",
    "parse_messages",
    "revise",
]
