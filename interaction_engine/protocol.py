"""Host channel protocol.

The engine talks to its host over an asynchronous, bidirectional message
channel. Inbound messages are validated here through a discriminated union on
``type``; outbound messages are pydantic models serialized with the host's
camelCase keys.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from interaction_engine.exceptions import ProtocolError
from interaction_engine.policy import AutoApprovalPolicy


class _Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# =============================================================================
# Inbound
# =============================================================================


class HostState(BaseModel):
    """Full state snapshot pushed by the host.

    Policy switches arrive flattened next to the log, under the host's
    camelCase names; ``policy`` extracts them.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    messages: list[dict[str, Any]] = Field(default_factory=list)
    task_id: str | None = Field(default=None, alias="taskId")
    shell_integration_disabled: bool = Field(default=False, alias="shellIntegrationDisabled")

    @property
    def policy(self) -> AutoApprovalPolicy:
        return AutoApprovalPolicy.model_validate(self.model_extra or {})


class StateMessage(_Message):
    type: Literal["state"] = "state"
    state: HostState


class MessageUpdated(_Message):
    """One log record, new or revised (possibly partial)."""

    type: Literal["messageUpdated"] = "messageUpdated"
    message: dict[str, Any]


class CommandExecutionStatusMessage(_Message):
    """Out-of-band command status; ``text`` is the JSON status payload."""

    type: Literal["commandExecutionStatus"] = "commandExecutionStatus"
    text: str = ""


class ActionMessage(_Message):
    type: Literal["action"] = "action"
    action: str


class InvokeMessage(_Message):
    type: Literal["invoke"] = "invoke"
    invoke: Literal["newChat", "sendMessage", "setChatBoxMessage", "primaryButtonClick", "secondaryButtonClick"]
    text: str | None = None
    images: list[str] | None = None


class SelectedImagesMessage(_Message):
    type: Literal["selectedImages"] = "selectedImages"
    images: list[str] = Field(default_factory=list)


class CondenseTaskContextResponse(_Message):
    type: Literal["condenseTaskContextResponse"] = "condenseTaskContextResponse"
    text: str | None = None


InboundMessage = Annotated[
    Union[
        StateMessage,
        MessageUpdated,
        CommandExecutionStatusMessage,
        ActionMessage,
        InvokeMessage,
        SelectedImagesMessage,
        CondenseTaskContextResponse,
    ],
    Field(discriminator="type"),
]

InboundMessageAdapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def parse_inbound(raw: Any) -> InboundMessage:
    """Validate one inbound message.

    Raises:
        ProtocolError: If the message is not a known, valid inbound message.
    """
    try:
        return InboundMessageAdapter.validate_python(raw)
    except ValidationError as e:
        kind = raw.get("type") if isinstance(raw, dict) else type(raw).__name__
        raise ProtocolError(f"Invalid inbound message {kind!r}: {e.error_count()} error(s)", payload=raw) from e


# =============================================================================
# Outbound
# =============================================================================

AskResponseKind = Literal["messageResponse", "yesButtonClicked", "noButtonClicked", "objectResponse"]


class _Outbound(_Message):
    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class AskResponse(_Outbound):
    """Synthesized user response to the pending ask."""

    type: Literal["askResponse"] = "askResponse"
    ask_response: AskResponseKind = Field(alias="askResponse")
    text: str | None = None
    images: list[str] | None = None


class NewTask(_Outbound):
    type: Literal["newTask"] = "newTask"
    text: str = ""
    images: list[str] = Field(default_factory=list)


class ClearTask(_Outbound):
    type: Literal["clearTask"] = "clearTask"


class CancelTask(_Outbound):
    type: Literal["cancelTask"] = "cancelTask"


class TerminateTask(_Outbound):
    type: Literal["terminateTask"] = "terminateTask"


class TerminalOperation(_Outbound):
    """Control for the one command currently awaiting a decision."""

    type: Literal["terminalOperation"] = "terminalOperation"
    terminal_operation: Literal["continue", "abort"] = Field(alias="terminalOperation")


class CondenseTaskContextRequest(_Outbound):
    type: Literal["condenseTaskContextRequest"] = "condenseTaskContextRequest"
    text: str


OutboundMessage = Union[
    AskResponse,
    NewTask,
    ClearTask,
    CancelTask,
    TerminateTask,
    TerminalOperation,
    CondenseTaskContextRequest,
]


@runtime_checkable
class HostChannel(Protocol):
    """Outbound half of the host channel."""

    async def post(self, message: OutboundMessage) -> None: ...


__all__ = [
    "ActionMessage",
    "AskResponse",
    "AskResponseKind",
    "CancelTask",
    "ClearTask",
    "CommandExecutionStatusMessage",
    "CondenseTaskContextRequest",
    "CondenseTaskContextResponse",
    "HostChannel",
    "HostState",
    "InboundMessage",
    "InboundMessageAdapter",
    "InvokeMessage",
    "MessageUpdated",
    "NewTask",
    "OutboundMessage",
    "SelectedImagesMessage",
    "StateMessage",
    "TerminalOperation",
    "TerminateTask",
    "parse_inbound",
]
