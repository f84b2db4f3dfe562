"""
Moat error taxonomy
-------------------
TransportError and ParseError are internal to the client; both are collapsed
into ProtocolError before they reach the state machine. StateError/BusyError
are raised back at whoever drives the state machine (UI, API route).
"""
from __future__ import annotations

from typing import Any, Optional


class MoatError(Exception):
    pass


class TransportError(MoatError):
    """Proxy unreachable, timeout, TLS failure or non-2xx status."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status_code = status_code
        # Decoded JSON of the response if the server sent one (may be an error envelope)
        self.body = body


class ParseError(MoatError):
    """Response (or request) envelope is not the shape we expect."""


class ProtocolError(MoatError):
    """The single user-facing failure of a fetch/check call."""

    def __init__(self, summary: str, detail: Optional[str] = None):
        super().__init__(summary)
        self.summary = summary
        self.detail = detail

    @property
    def message(self) -> str:
        return self.detail if self.detail else self.summary

    def __str__(self) -> str:
        return self.message


class StateError(MoatError):
    """Action not valid in the current state."""


class BusyError(StateError):
    """A network call is already in flight for this attempt."""
