from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from bridge.session import CallSession
from config.settings import Settings
from integrations.openai_realtime import RealtimeClient

if TYPE_CHECKING:  # pragma: no cover
    from fastapi import WebSocket

LOGGER = logging.getLogger(__name__)

RealtimeFactory = Callable[[Settings], RealtimeClient]


class SessionRegistry:
    """Live call sessions, keyed by their telephony connection.

    Every accepted media stream gets its own session and its own realtime
    connection; nothing is pooled or shared between calls.
    """

    def __init__(self, settings: Settings, *, realtime_factory: RealtimeFactory = RealtimeClient) -> None:
        self._settings = settings
        self._realtime_factory = realtime_factory
        self._sessions: dict[int, CallSession] = {}

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    def sessions(self) -> list[CallSession]:
        return list(self._sessions.values())

    async def serve(self, websocket: WebSocket) -> None:
        await websocket.accept()

        session = CallSession(websocket, self._realtime_factory(self._settings), self._settings)
        key = id(websocket)
        self._sessions[key] = session
        LOGGER.info("Media stream connected [%s] (%d active)", session.session_id, self.active_sessions)
        try:
            await session.run()
        finally:
            self._sessions.pop(key, None)
            LOGGER.info("Media stream finished [%s] (%d active)", session.session_id, self.active_sessions)

    async def close_all(self, reason: str = "server shutdown") -> None:
        for session in self.sessions():
            await session.close(reason)
