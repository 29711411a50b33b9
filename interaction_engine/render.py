"""Render model assembly.

Joins the grouped visible entries with the interaction state, the policy and
the command correlator into plain, immutable row models. Views consume the
model; nothing here performs I/O or mutates engine state beyond tracking
command entries in the correlator.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Union

from interaction_engine.combiner import COMMAND_OUTPUT_STRING
from interaction_engine.commands import CommandExecutionCorrelator, CommandView, execution_id_for
from interaction_engine.grouping import GroupedEntry
from interaction_engine.messages import AskKind, SayKind, TaskMessage
from interaction_engine.metrics import ApiMetrics
from interaction_engine.payloads import ApiRequestInfo, parse_api_request_info
from interaction_engine.policy import AutoApprovalPolicy, is_auto_approved
from interaction_engine.state import InteractionState

APPROVAL_BUTTON_ASKS: frozenset[AskKind] = frozenset({AskKind.TOOL, AskKind.USE_MCP_SERVER})


@dataclass(frozen=True)
class MessageRow:
    """One standalone entry.

    Attributes:
        message: The visible entry.
        is_last: Last row of the model.
        is_expanded: User-toggled expansion.
        show_approval_buttons: Inline approve/reject for the pending tool or MCP ask.
        show_command_buttons: Inline run/reject for the pending command ask.
        enable_buttons: Whether the inline buttons are enabled.
        is_command_executing: The command of this row is running.
        is_mcp_server_responding: An MCP request of this row is in flight.
        api_request: Parsed request info for ``api_req_started`` rows.
        command: Command display model for ``ask: command`` rows.
    """

    message: TaskMessage
    is_last: bool = False
    is_expanded: bool = False
    show_approval_buttons: bool = False
    show_command_buttons: bool = False
    enable_buttons: bool = False
    is_command_executing: bool = False
    is_mcp_server_responding: bool = False
    api_request: ApiRequestInfo | None = None
    command: CommandView | None = None

    @property
    def ts(self) -> int:
        return self.message.ts


@dataclass(frozen=True)
class BrowserSessionRow:
    """A browser session group rendered as one row."""

    messages: tuple[TaskMessage, ...]
    is_last: bool = False
    expanded: frozenset[int] = field(default_factory=frozenset)

    @property
    def ts(self) -> int:
        return self.messages[0].ts

    def is_expanded(self, ts: int) -> bool:
        return ts in self.expanded


Row = Union[MessageRow, BrowserSessionRow]


@dataclass(frozen=True)
class RenderModel:
    """Everything a view needs to draw the conversation."""

    rows: tuple[Row, ...]
    state: InteractionState
    is_streaming: bool = False
    metrics: ApiMetrics = field(default_factory=ApiMetrics)
    task: TaskMessage | None = None
    condensing: bool = False

    @property
    def input_disabled(self) -> bool:
        return self.state.sending_disabled or self.condensing


def _message_row(
    message: TaskMessage,
    *,
    is_last: bool,
    last_reduced: TaskMessage | None,
    state: InteractionState,
    expanded_rows: Mapping[int, bool],
    policy: AutoApprovalPolicy,
    correlator: CommandExecutionCorrelator,
) -> MessageRow:
    ask = message.ask_kind
    show_approval = (
        is_last and ask in APPROVAL_BUTTON_ASKS and state.ask is ask and not is_auto_approved(message, policy)
    )
    show_command = is_last and ask is AskKind.COMMAND and state.ask is AskKind.COMMAND

    command = None
    if ask is AskKind.COMMAND:
        command = correlator.view(execution_id_for(message.ts), message.text)

    is_command_executing = (
        is_last
        and last_reduced is not None
        and last_reduced.is_ask(AskKind.COMMAND)
        and COMMAND_OUTPUT_STRING in (last_reduced.text or "")
    )
    is_mcp_responding = (
        is_last and last_reduced is not None and last_reduced.is_say(SayKind.MCP_SERVER_REQUEST_STARTED)
    )

    api_request = None
    if message.is_say(SayKind.API_REQ_STARTED):
        api_request = parse_api_request_info(message.text)

    return MessageRow(
        message=message,
        is_last=is_last,
        is_expanded=expanded_rows.get(message.ts, False),
        show_approval_buttons=show_approval,
        show_command_buttons=show_command,
        enable_buttons=state.enable_buttons,
        is_command_executing=is_command_executing,
        is_mcp_server_responding=is_mcp_responding,
        api_request=api_request,
        command=command,
    )


def build_rows(
    grouped: Sequence[GroupedEntry],
    *,
    reduced: Sequence[TaskMessage],
    state: InteractionState,
    expanded_rows: Mapping[int, bool],
    policy: AutoApprovalPolicy,
    correlator: CommandExecutionCorrelator,
) -> tuple[Row, ...]:
    """Turn grouped entries into rows."""
    last_reduced = reduced[-1] if reduced else None
    last_index = len(grouped) - 1
    rows: list[Row] = []

    for index, entry in enumerate(grouped):
        is_last = index == last_index
        if isinstance(entry, list):
            expanded = frozenset(m.ts for m in entry if expanded_rows.get(m.ts, False))
            rows.append(BrowserSessionRow(messages=tuple(entry), is_last=is_last, expanded=expanded))
            continue
        rows.append(
            _message_row(
                entry,
                is_last=is_last,
                last_reduced=last_reduced,
                state=state,
                expanded_rows=expanded_rows,
                policy=policy,
                correlator=correlator,
            )
        )
    return tuple(rows)


__all__ = [
    "APPROVAL_BUTTON_ASKS",
    "BrowserSessionRow",
    "MessageRow",
    "RenderModel",
    "Row",
    "build_rows",
]
