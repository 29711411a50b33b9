"""Structured payloads carried inside a TaskMessage's text.

Tool, MCP, browser and API-request records travel as JSON strings in
``TaskMessage.text``. They are parsed here, at the boundary, through pydantic
models. Nothing beyond the discriminant is trusted: any text that is empty,
not JSON, not an object, or does not fit its schema becomes an
``OpaquePayload`` carrying the raw text, and parsing never raises.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, ClassVar, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter, ValidationError

from interaction_engine._logger import get_logger
from interaction_engine.exceptions import PayloadError

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# Tool classification
# -----------------------------------------------------------------------------

READ_ONLY_TOOLS: frozenset[str] = frozenset({
    "readFile",
    "listFiles",
    "listFilesTopLevel",
    "listFilesRecursive",
    "listCodeDefinitionNames",
    "searchFiles",
    "codebaseSearch",
})

WRITE_TOOLS: frozenset[str] = frozenset({
    "editedExistingFile",
    "appliedDiff",
    "newFileCreated",
    "searchAndReplace",
    "insertContent",
})

MODE_SWITCH_TOOLS: frozenset[str] = frozenset({"switchMode"})

SUBTASK_TOOLS: frozenset[str] = frozenset({"newTask", "finishTask"})

FETCH_INSTRUCTIONS_TOOLS: frozenset[str] = frozenset({"fetchInstructions"})


# -----------------------------------------------------------------------------
# Opaque fallback
# -----------------------------------------------------------------------------


class OpaquePayload(BaseModel):
    """Text that could not be read as the expected structured payload."""

    model_config = ConfigDict(frozen=True)

    raw: str = ""


# -----------------------------------------------------------------------------
# Tool payloads
# -----------------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)


class ToolPayloadBase(_Payload):
    """Fields shared by every ``ask: tool`` payload."""

    category: ClassVar[str] = "generic"

    tool: str
    path: str | None = None
    content: str | None = None
    diff: str | None = None
    is_outside_workspace: bool = Field(default=False, alias="isOutsideWorkspace")

    @property
    def is_read_only(self) -> bool:
        return self.category == "read"

    @property
    def is_write(self) -> bool:
        return self.category == "write"


class ReadToolPayload(ToolPayloadBase):
    """File reads, listings and searches."""

    category: ClassVar[str] = "read"

    batch_files: list[dict[str, Any]] | None = Field(default=None, alias="batchFiles")

    @property
    def is_batch(self) -> bool:
        return isinstance(self.batch_files, list)


class WriteToolPayload(ToolPayloadBase):
    """Edits, diffs and new files."""

    category: ClassVar[str] = "write"


class ModeSwitchPayload(ToolPayloadBase):
    category: ClassVar[str] = "mode_switch"

    mode: str | None = None
    reason: str | None = None


class SubtaskPayload(ToolPayloadBase):
    category: ClassVar[str] = "subtask"

    mode: str | None = None


class FetchInstructionsPayload(ToolPayloadBase):
    category: ClassVar[str] = "fetch_instructions"


class GenericToolPayload(ToolPayloadBase):
    """Any other declared tool."""


def _tool_tag(value: Any) -> str | None:
    tool = value.get("tool") if isinstance(value, dict) else getattr(value, "tool", None)
    if not isinstance(tool, str):
        return None
    if tool in READ_ONLY_TOOLS:
        return "read"
    if tool in WRITE_TOOLS:
        return "write"
    if tool in MODE_SWITCH_TOOLS:
        return "mode_switch"
    if tool in SUBTASK_TOOLS:
        return "subtask"
    if tool in FETCH_INSTRUCTIONS_TOOLS:
        return "fetch_instructions"
    return "generic"


ToolPayload = Annotated[
    Union[
        Annotated[ReadToolPayload, Tag("read")],
        Annotated[WriteToolPayload, Tag("write")],
        Annotated[ModeSwitchPayload, Tag("mode_switch")],
        Annotated[SubtaskPayload, Tag("subtask")],
        Annotated[FetchInstructionsPayload, Tag("fetch_instructions")],
        Annotated[GenericToolPayload, Tag("generic")],
    ],
    Discriminator(_tool_tag),
]

ToolPayloadAdapter: TypeAdapter[ToolPayloadBase] = TypeAdapter(ToolPayload)


# -----------------------------------------------------------------------------
# Other payloads
# -----------------------------------------------------------------------------


class McpServerUsePayload(_Payload):
    """Payload of an ``ask: use_mcp_server`` record."""

    type: Literal["use_mcp_tool", "access_mcp_resource"]
    server_name: str = Field(alias="serverName")
    tool_name: str | None = Field(default=None, alias="toolName")
    uri: str | None = None
    arguments: str | None = None


class BrowserActionPayload(_Payload):
    """Payload of a ``say: browser_action`` record."""

    action: str
    coordinate: str | None = None
    size: str | None = None
    text: str | None = None

    @property
    def is_close(self) -> bool:
        return self.action == "close"


class ApiRequestInfo(_Payload):
    """Payload of a ``say: api_req_started`` record once combined with its outcome."""

    request: str | None = None
    tokens_in: int | None = Field(default=None, alias="tokensIn")
    tokens_out: int | None = Field(default=None, alias="tokensOut")
    cache_writes: int | None = Field(default=None, alias="cacheWrites")
    cache_reads: int | None = Field(default=None, alias="cacheReads")
    cost: float | None = None
    cancel_reason: str | None = Field(default=None, alias="cancelReason")
    streaming_failed_message: str | None = Field(default=None, alias="streamingFailedMessage")

    @property
    def is_finished(self) -> bool:
        """The cost materializing is the signal that the request is complete."""
        return self.cost is not None

    @property
    def is_cancelled(self) -> bool:
        return self.cancel_reason is not None


# -----------------------------------------------------------------------------
# Parsing
# -----------------------------------------------------------------------------

ModelT = TypeVar("ModelT", bound=BaseModel)


def load_json_object(text: str | None) -> dict[str, Any]:
    """Decode text as a JSON object.

    Raises:
        PayloadError: If the text is empty, not JSON, or not an object.
    """
    if not text:
        raise PayloadError("empty payload", raw=text)
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise PayloadError(f"payload is not JSON: {e}", raw=text) from e
    if not isinstance(data, dict):
        raise PayloadError(f"payload is a JSON {type(data).__name__}, expected object", raw=text)
    return data


def safe_json_object(text: str | None) -> dict[str, Any] | None:
    """Decode text as a JSON object, None when it is not one."""
    try:
        return load_json_object(text)
    except PayloadError:
        return None


def _parse(text: str | None, validate: Any, label: str) -> Any:
    try:
        return validate(load_json_object(text))
    except PayloadError as e:
        logger.debug("Opaque %s payload: %s", label, e)
    except ValidationError as e:
        logger.debug("Opaque %s payload: %d validation error(s)", label, e.error_count())
    return OpaquePayload(raw=text or "")


def parse_tool_payload(text: str | None) -> ToolPayloadBase | OpaquePayload:
    """Parse an ``ask: tool`` text into its tagged variant or an opaque payload."""
    return _parse(text, ToolPayloadAdapter.validate_python, "tool")


def parse_payload(text: str | None, model: type[ModelT]) -> ModelT | OpaquePayload:
    """Parse text into ``model`` or an opaque payload."""
    return _parse(text, model.model_validate, model.__name__)


def parse_api_request_info(text: str | None) -> ApiRequestInfo | None:
    """Parse an api request record; None when it is not readable."""
    result = parse_payload(text, ApiRequestInfo)
    return result if isinstance(result, ApiRequestInfo) else None


__all__ = [
    "FETCH_INSTRUCTIONS_TOOLS",
    "MODE_SWITCH_TOOLS",
    "READ_ONLY_TOOLS",
    "SUBTASK_TOOLS",
    "WRITE_TOOLS",
    "ApiRequestInfo",
    "BrowserActionPayload",
    "FetchInstructionsPayload",
    "GenericToolPayload",
    "McpServerUsePayload",
    "ModeSwitchPayload",
    "OpaquePayload",
    "ReadToolPayload",
    "SubtaskPayload",
    "ToolPayload",
    "ToolPayloadAdapter",
    "ToolPayloadBase",
    "WriteToolPayload",
    "load_json_object",
    "parse_api_request_info",
    "parse_payload",
    "parse_tool_payload",
    "safe_json_object",
]
