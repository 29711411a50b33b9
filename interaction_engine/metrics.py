"""API usage metrics over the reduced log."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from interaction_engine.messages import SayKind, TaskMessage
from interaction_engine.payloads import parse_api_request_info


@dataclass(frozen=True)
class ApiMetrics:
    """Totals for one task.

    Attributes:
        total_tokens_in: Sum of input tokens.
        total_tokens_out: Sum of output tokens.
        total_cache_writes: Sum of cache write tokens.
        total_cache_reads: Sum of cache read tokens.
        total_cost: Sum of request and condense costs.
        context_tokens: Size of the context as of the latest report.
    """

    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_cache_writes: int = 0
    total_cache_reads: int = 0
    total_cost: float = 0.0
    context_tokens: int = 0


def _condense_number(message: TaskMessage, key: str) -> float | None:
    value = (message.context_condense or {}).get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return None


def get_api_metrics(reduced: Sequence[TaskMessage]) -> ApiMetrics:
    """Aggregate request usage; unreadable entries contribute nothing."""
    tokens_in = tokens_out = cache_writes = cache_reads = 0
    cost = 0.0
    context_tokens = 0

    for message in reduced:
        if message.is_say(SayKind.API_REQ_STARTED):
            info = parse_api_request_info(message.text)
            if info is None:
                continue
            tokens_in += info.tokens_in or 0
            tokens_out += info.tokens_out or 0
            cache_writes += info.cache_writes or 0
            cache_reads += info.cache_reads or 0
            cost += info.cost or 0.0
            if info.tokens_in is not None or info.tokens_out is not None:
                context_tokens = (
                    (info.tokens_in or 0) + (info.tokens_out or 0) + (info.cache_writes or 0) + (info.cache_reads or 0)
                )
        elif message.is_say(SayKind.CONDENSE_CONTEXT):
            cost += _condense_number(message, "cost") or 0.0
            new_context = _condense_number(message, "newContextTokens")
            if new_context is not None:
                context_tokens = int(new_context)

    return ApiMetrics(
        total_tokens_in=tokens_in,
        total_tokens_out=tokens_out,
        total_cache_writes=cache_writes,
        total_cache_reads=cache_reads,
        total_cost=cost,
        context_tokens=context_tokens,
    )


__all__ = ["ApiMetrics", "get_api_metrics"]
