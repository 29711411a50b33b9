"""Auto-approval policy snapshot and decision.

``AutoApprovalPolicy`` is the host-owned set of switches. The engine only
reads it; a new snapshot replaces the old one wholesale. ``is_auto_approved``
is a pure function of one log entry and one snapshot.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from interaction_engine.command_validation import validate_command
from interaction_engine.messages import AskKind, TaskMessage
from interaction_engine.payloads import (
    FetchInstructionsPayload,
    McpServerUsePayload,
    ModeSwitchPayload,
    OpaquePayload,
    SubtaskPayload,
    ToolPayloadBase,
    parse_payload,
    parse_tool_payload,
)

DEFAULT_WRITE_DELAY_MS = 1000


class McpTool(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    always_allow: bool = Field(default=False, alias="alwaysAllow")


class McpServer(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    tools: list[McpTool] = Field(default_factory=list)

    def find_tool(self, name: str | None) -> McpTool | None:
        return next((tool for tool in self.tools if tool.name == name), None)


class AutoApprovalPolicy(BaseModel):
    """Policy snapshot. Accepts both snake_case and the host's camelCase keys."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    auto_approval_enabled: bool = Field(default=False, alias="autoApprovalEnabled")
    always_allow_read_only: bool = Field(default=False, alias="alwaysAllowReadOnly")
    always_allow_read_only_outside_workspace: bool = Field(
        default=False, alias="alwaysAllowReadOnlyOutsideWorkspace"
    )
    always_allow_write: bool = Field(default=False, alias="alwaysAllowWrite")
    always_allow_write_outside_workspace: bool = Field(default=False, alias="alwaysAllowWriteOutsideWorkspace")
    always_allow_execute: bool = Field(default=False, alias="alwaysAllowExecute")
    always_allow_browser: bool = Field(default=False, alias="alwaysAllowBrowser")
    always_allow_mcp: bool = Field(default=False, alias="alwaysAllowMcp")
    always_allow_mode_switch: bool = Field(default=False, alias="alwaysAllowModeSwitch")
    always_allow_subtasks: bool = Field(default=False, alias="alwaysAllowSubtasks")
    allowed_commands: list[str] = Field(default_factory=list, alias="allowedCommands")
    write_delay_ms: int = Field(default=DEFAULT_WRITE_DELAY_MS, alias="writeDelayMs", ge=0)
    mcp_servers: list[McpServer] = Field(default_factory=list, alias="mcpServers")

    def find_server(self, name: str) -> McpServer | None:
        return next((server for server in self.mcp_servers if server.name == name), None)


# -----------------------------------------------------------------------------
# Classification
# -----------------------------------------------------------------------------


def is_read_only_tool_action(message: TaskMessage) -> bool:
    """Tool ask whose declared action only reads. An ask without text counts as read."""
    if message.type != "ask":
        return False
    if not message.text:
        return True
    payload = parse_tool_payload(message.text)
    return isinstance(payload, ToolPayloadBase) and payload.is_read_only


def is_write_tool_action(message: TaskMessage) -> bool:
    """Tool ask whose declared action modifies files. An ask without text counts as write."""
    if message.type != "ask":
        return False
    if not message.text:
        return True
    payload = parse_tool_payload(message.text)
    return isinstance(payload, ToolPayloadBase) and payload.is_write


def is_mcp_tool_always_allowed(message: TaskMessage, policy: AutoApprovalPolicy) -> bool:
    """Whether the MCP tool named by a ``use_mcp_server`` ask is flagged always-allow."""
    if not message.is_ask(AskKind.USE_MCP_SERVER):
        return False
    if not message.text:
        return True

    payload = parse_payload(message.text, McpServerUsePayload)
    if not isinstance(payload, McpServerUsePayload) or payload.type != "use_mcp_tool":
        return False
    server = policy.find_server(payload.server_name)
    tool = server.find_tool(payload.tool_name) if server is not None else None
    return tool is not None and tool.always_allow


def is_allowed_command(message: TaskMessage, policy: AutoApprovalPolicy) -> bool:
    if message.type != "ask":
        return False
    return validate_command(message.text or "", policy.allowed_commands)


# -----------------------------------------------------------------------------
# Decision
# -----------------------------------------------------------------------------


def _is_tool_auto_approved(message: TaskMessage, policy: AutoApprovalPolicy) -> bool:
    payload = parse_tool_payload(message.text or "{}")
    if isinstance(payload, OpaquePayload):
        return False

    if isinstance(payload, FetchInstructionsPayload):
        if payload.content == "create_mode":
            return policy.always_allow_mode_switch
        if payload.content == "create_mcp_server":
            return policy.always_allow_mcp
    if isinstance(payload, ModeSwitchPayload):
        return policy.always_allow_mode_switch
    if isinstance(payload, SubtaskPayload):
        return policy.always_allow_subtasks

    outside = payload.is_outside_workspace
    if is_read_only_tool_action(message):
        return policy.always_allow_read_only and (not outside or policy.always_allow_read_only_outside_workspace)
    if is_write_tool_action(message):
        return policy.always_allow_write and (not outside or policy.always_allow_write_outside_workspace)
    return False


def is_auto_approved(message: TaskMessage | None, policy: AutoApprovalPolicy) -> bool:
    """Whether the engine may answer ``message`` affirmatively on the user's behalf."""
    if message is None or message.type != "ask" or not policy.auto_approval_enabled:
        return False

    ask = message.ask_kind
    if ask is AskKind.BROWSER_ACTION_LAUNCH:
        return policy.always_allow_browser
    if ask is AskKind.USE_MCP_SERVER:
        return policy.always_allow_mcp and is_mcp_tool_always_allowed(message, policy)
    if ask is AskKind.COMMAND:
        return policy.always_allow_execute and is_allowed_command(message, policy)
    if ask is AskKind.TOOL:
        return _is_tool_auto_approved(message, policy)
    return False


def needs_write_delay(message: TaskMessage) -> bool:
    """Approvals of write-classified tool asks wait ``write_delay_ms`` before emitting."""
    return message.is_ask(AskKind.TOOL) and is_write_tool_action(message)


__all__ = [
    "DEFAULT_WRITE_DELAY_MS",
    "AutoApprovalPolicy",
    "McpServer",
    "McpTool",
    "is_allowed_command",
    "is_auto_approved",
    "is_mcp_tool_always_allowed",
    "is_read_only_tool_action",
    "is_write_tool_action",
    "needs_write_delay",
]
