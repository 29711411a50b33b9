"""Tests for interaction_engine.metrics module."""

from __future__ import annotations

import pytest

from interaction_engine.messages import TaskMessage
from interaction_engine.metrics import ApiMetrics, get_api_metrics


def say(ts: int, kind: str, text: str | None = None, **kwargs) -> TaskMessage:
    return TaskMessage(ts=ts, type="say", say=kind, text=text, **kwargs)


def test_empty_log_metrics():
    """Test an empty log has zero totals."""
    assert get_api_metrics([]) == ApiMetrics()


def test_request_totals():
    """Test request usage is summed and unreadable entries are skipped."""
    metrics = get_api_metrics([
        say(1, "api_req_started", '{"tokensIn": 10, "tokensOut": 5, "cacheWrites": 1, "cacheReads": 2, "cost": 0.1}'),
        say(2, "text", "answer"),
        say(3, "api_req_started", '{"tokensIn": 20, "tokensOut": 10, "cost": 0.2}'),
        say(4, "api_req_started", "garbage"),
    ])

    assert metrics.total_tokens_in == 30
    assert metrics.total_tokens_out == 15
    assert metrics.total_cache_writes == 1
    assert metrics.total_cache_reads == 2
    assert metrics.total_cost == pytest.approx(0.3)
    assert metrics.context_tokens == 30


def test_condense_cost_and_context():
    """Test a condense report adds its cost and resets the context size."""
    metrics = get_api_metrics([
        say(1, "api_req_started", '{"tokensIn": 1000, "tokensOut": 50, "cost": 0.5}'),
        say(2, "condense_context", contextCondense={"cost": 0.05, "newContextTokens": 200, "prevContextTokens": 1050}),
    ])

    assert metrics.total_cost == pytest.approx(0.55)
    assert metrics.context_tokens == 200


def test_condense_with_unreadable_numbers():
    """Test non-numeric condense fields are ignored."""
    metrics = get_api_metrics([say(1, "condense_context", contextCondense={"cost": "free", "newContextTokens": True})])

    assert metrics == ApiMetrics()
