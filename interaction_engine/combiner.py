"""Message Combiner: folds the revised event log into the reduced log.

Two folds run in order:

1. Command sequences: an ``ask: command`` absorbs the text of every later
   ``command_output`` record (ask or say) up to the next command ask, so the
   command row shows both the invocation and its output. ``say:
   command_output`` records are then dropped. ``ask: command_output`` records
   stay in the reduced log as decision markers for the interaction state.
2. API requests: an ``api_req_started`` absorbs the outcome fields (cost,
   cancellation reason, token counts) of the next ``api_req_finished`` and the
   absorbed finished record is dropped.

Both folds are pure and total: a record with unreadable metadata is passed
through unchanged rather than dropped.
"""

from __future__ import annotations

import json
from collections.abc import Sequence

from interaction_engine._logger import get_logger
from interaction_engine.messages import AskKind, SayKind, TaskMessage
from interaction_engine.payloads import safe_json_object

logger = get_logger(__name__)

COMMAND_OUTPUT_STRING = "Output:"
"""Marker separating a command invocation from its folded output."""


def _is_command_output(message: TaskMessage) -> bool:
    return message.is_ask(AskKind.COMMAND_OUTPUT) or message.is_say(SayKind.COMMAND_OUTPUT)


def combine_command_sequences(messages: Sequence[TaskMessage]) -> list[TaskMessage]:
    """Fold command output records into their owning command ask."""
    combined: dict[int, TaskMessage] = {}

    for i, message in enumerate(messages):
        if not message.is_ask(AskKind.COMMAND):
            continue

        text = message.text or ""
        did_add_output = False
        for later in messages[i + 1 :]:
            if later.is_ask(AskKind.COMMAND):
                break
            if not _is_command_output(later):
                continue
            if not did_add_output:
                text += f"\n{COMMAND_OUTPUT_STRING}"
                did_add_output = True
            output = later.text or ""
            if output:
                text += f"\n{output}"

        if did_add_output:
            combined[message.ts] = message.model_copy(update={"text": text})

    return [
        combined.get(message.ts, message)
        for message in messages
        if not message.is_say(SayKind.COMMAND_OUTPUT)
    ]


def combine_api_requests(messages: Sequence[TaskMessage]) -> list[TaskMessage]:
    """Merge each ``api_req_finished`` into the preceding ``api_req_started``."""
    combined: dict[int, TaskMessage] = {}
    absorbed: set[int] = set()

    for i, message in enumerate(messages):
        if not message.is_say(SayKind.API_REQ_STARTED):
            continue

        for later in messages[i + 1 :]:
            if later.is_say(SayKind.API_REQ_STARTED):
                break
            if not later.is_say(SayKind.API_REQ_FINISHED):
                continue

            started = safe_json_object(message.text or "{}")
            finished = safe_json_object(later.text or "{}")
            if started is None or finished is None:
                logger.debug("Unreadable api request pair at ts=%s/%s, keeping started as-is", message.ts, later.ts)
                break
            merged = {**started, **finished}
            combined[message.ts] = message.model_copy(update={"text": json.dumps(merged)})
            absorbed.add(later.ts)
            break

    return [combined.get(message.ts, message) for message in messages if message.ts not in absorbed]


def combine_messages(messages: Sequence[TaskMessage]) -> list[TaskMessage]:
    """Produce the reduced log from a revised log (task message excluded)."""
    return combine_api_requests(combine_command_sequences(messages))


def parse_command_and_output(text: str | None) -> tuple[str, str]:
    """Split a combined command text into ``(command, output)``."""
    if not text:
        return "", ""

    index = text.find(COMMAND_OUTPUT_STRING)
    if index == -1:
        return text, ""

    command = text[:index]
    output = text[index + len(COMMAND_OUTPUT_STRING) :]
    return command.rstrip("\n"), output.lstrip("\n")


__all__ = [
    "COMMAND_OUTPUT_STRING",
    "combine_api_requests",
    "combine_command_sequences",
    "combine_messages",
    "parse_command_and_output",
]
