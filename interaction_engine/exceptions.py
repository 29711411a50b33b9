"""Exception taxonomy for the interaction engine.

No exception defined here is allowed to escape a log derivation: payload and
protocol errors are caught at the boundary and degraded, emission errors are
reported to observers and leave the decision pending.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base exception for interaction engine errors."""

    pass


class PayloadError(EngineError):
    """Raised when a structured payload inside an event's text cannot be parsed."""

    def __init__(self, message: str, raw: str | None = None):
        self.raw = raw
        super().__init__(message)


class ProtocolError(EngineError):
    """Raised when an inbound host message is not a known, valid message."""

    def __init__(self, message: str, payload: object | None = None):
        self.payload = payload
        super().__init__(message)


class EmissionError(EngineError):
    """Raised when a synthesized response could not be posted to the host."""

    def __init__(self, message: str, cause: Exception | None = None):
        self.cause = cause
        super().__init__(message)
