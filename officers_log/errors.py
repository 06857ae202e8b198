"""Error taxonomy for the callback flow.

Orchestration entry points catch these and turn them into a single
user-facing notification; nothing here is meant to cross the WebSocket
boundary uncaught.
"""

from __future__ import annotations


class OfficersLogError(Exception):
    """Base class for all service errors."""


class CallbackRejected(OfficersLogError):
    """A callback choice failed re-validation against live data.

    ``message`` is shown to the acting user as-is.
    """

    def __init__(self, message: str, *, step: str = ""):
        super().__init__(message)
        self.message = message
        self.step = step


class TransportUnavailable(OfficersLogError):
    """No channel is registered to reach the target participant."""


class PersistenceError(OfficersLogError):
    """A document store write failed."""


class DocumentNotFound(OfficersLogError):
    def __init__(self, kind: str, doc_id: str):
        super().__init__(f"{kind} not found: {doc_id}")
        self.kind = kind
        self.doc_id = doc_id
