"""Domain-specific exceptions for the media bridge.

These exceptions are safe to import from API layers without pulling in numpy.
"""

from __future__ import annotations


class BridgeError(Exception):
    default_detail: str = "Bridge error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class MalformedMessageError(BridgeError):
    default_detail = "Malformed control message."


class RealtimeConnectError(BridgeError):
    default_detail = "Could not connect to the realtime speech service."
