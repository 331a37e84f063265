"""Session rooms, ordered fan-out and typing presence.

A room is the set of connections currently joined to a session id. The
channel does no ordering of its own: callers publish from one place per
session (the coordinator's per-session lock), and broadcast() awaits each
send in turn, so every member sees events in publish order.
"""

from __future__ import annotations

import logging
from typing import Protocol

from payanaagent.scheduler import SchedulerProtocol, TimerHandle

logger = logging.getLogger(__name__)

TYPING_TIMEOUT = 3.0


class Connection(Protocol):
    connection_id: str

    async def send(self, event: dict) -> None: ...


def make_event(event_type: str, **payload) -> dict:
    return {"type": event_type, "payload": payload}


class RealtimeChannel:
    def __init__(self, scheduler: SchedulerProtocol, typing_timeout: float = TYPING_TIMEOUT):
        self._scheduler = scheduler
        self._typing_timeout = typing_timeout
        self._rooms: dict[str, dict[str, Connection]] = {}
        self._typing: dict[str, dict[str, TimerHandle]] = {}

    # -- membership -------------------------------------------------------

    def join(self, session_id: str, connection: Connection) -> None:
        room = self._rooms.setdefault(session_id, {})
        if connection.connection_id not in room:
            logger.info("Connection %s joined room %s", connection.connection_id, session_id)
        room[connection.connection_id] = connection

    def leave(self, session_id: str, connection_id: str) -> bool:
        self._clear_typing_timer(session_id, connection_id)
        room = self._rooms.get(session_id)
        if not room or connection_id not in room:
            return False
        del room[connection_id]
        if not room:
            del self._rooms[session_id]
        logger.info("Connection %s left room %s", connection_id, session_id)
        return True

    def leave_all(self, connection_id: str) -> list[str]:
        """Remove a connection from every room. Returns the rooms it left."""
        left = [sid for sid, room in self._rooms.items() if connection_id in room]
        for session_id in left:
            self.leave(session_id, connection_id)
        return left

    def members(self, session_id: str) -> list[str]:
        return list(self._rooms.get(session_id, {}))

    def rooms_for(self, connection_id: str) -> list[str]:
        return [sid for sid, room in self._rooms.items() if connection_id in room]

    @property
    def connection_count(self) -> int:
        return len({cid for room in self._rooms.values() for cid in room})

    # -- delivery ---------------------------------------------------------

    async def broadcast(self, session_id: str, event: dict, exclude: str | None = None) -> None:
        room = self._rooms.get(session_id)
        if not room:
            return
        stale = []
        for connection_id, connection in list(room.items()):
            if connection_id == exclude:
                continue
            try:
                await connection.send(event)
            except Exception:
                logger.warning(
                    "Dropping connection %s from room %s after failed send",
                    connection_id, session_id, exc_info=True,
                )
                stale.append(connection_id)
        for connection_id in stale:
            self.leave(session_id, connection_id)

    async def send(self, session_id: str, connection_id: str, event: dict) -> None:
        """Send to a single member of a room."""
        connection = self._rooms.get(session_id, {}).get(connection_id)
        if connection is None:
            return
        try:
            await connection.send(event)
        except Exception:
            logger.warning("Failed to send to connection %s", connection_id, exc_info=True)
            self.leave(session_id, connection_id)

    # -- typing presence --------------------------------------------------

    def typing(self, session_id: str) -> list[str]:
        return list(self._typing.get(session_id, {}))

    def _clear_typing_timer(self, session_id: str, connection_id: str) -> bool:
        timers = self._typing.get(session_id)
        if not timers or connection_id not in timers:
            return False
        timers.pop(connection_id).cancel()
        if not timers:
            del self._typing[session_id]
        return True

    async def set_typing(self, session_id: str, connection_id: str, is_typing: bool) -> None:
        """Record typing-start/stop and tell the other members of the room.

        A typing-start is cleared automatically after the silence window.
        """
        if connection_id not in self._rooms.get(session_id, {}):
            return

        was_typing = self._clear_typing_timer(session_id, connection_id)

        if is_typing:
            async def expire():
                await self.set_typing(session_id, connection_id, False)

            handle = self._scheduler.call_later(self._typing_timeout, expire)
            self._typing.setdefault(session_id, {})[connection_id] = handle
            if was_typing:
                return
        elif not was_typing:
            return

        await self.broadcast(
            session_id,
            make_event("typing", connectionId=connection_id, active=is_typing),
            exclude=connection_id,
        )
