"""Session coordinator: the single entry point for realtime and REST input.

Every mutating operation for a session id runs under that session's
asyncio.Lock, so evaluate -> persist -> dispatch never interleaves for one
session. Different sessions proceed independently.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from payanaagent.db import RepositoryError, RepositoryProtocol
from payanaagent.dispatcher import RETRY_TEXT, Dispatcher
from payanaagent.graph import (
    current_options,
    evaluate,
    evaluate_upload,
    greeting_directives,
    upload_text,
)
from payanaagent.realtime import Connection, RealtimeChannel, make_event
from payanaagent.state import MEETING_EMAIL, Message, Outcome, Session, SetProcessing, utcnow

logger = logging.getLogger(__name__)


@dataclass
class Replay:
    session: Session
    transcript: list[Message] = field(default_factory=list)
    options: tuple = ()

    def to_dict(self) -> dict:
        return {
            "session_id": self.session.session_id,
            "transcript": [m.to_dict() for m in self.transcript],
            "state": session_state(self.session),
        }


def session_state(session: Session) -> dict:
    return {
        "step": session.step,
        "status": session.status,
        "checkpointFlags": dict(session.checkpoint_flags),
        "processingFlags": dict(session.processing_flags),
        "options": [o.to_dict() for o in current_options(session)],
    }


def session_stats(session: Session, transcript: list[Message]) -> dict:
    """Message counts and progress for one session."""
    by_kind: dict[str, int] = {}
    for message in transcript:
        by_kind[message.kind] = by_kind.get(message.kind, 0) + 1

    meeting = None
    if session.answers.get("appointmentConfirmed") == "Yes":
        meeting = {
            "type": session.answers.get("appointmentType", ""),
            "time": session.answers.get("appointmentTime", ""),
            "date": session.answers.get("appointmentDate", ""),
            "confirmationSent": session.checkpoint_flags.get(MEETING_EMAIL, False),
        }

    return {
        "session_id": session.session_id,
        "step": session.step,
        "status": session.status,
        "totalMessages": len(transcript),
        "userMessages": sum(1 for m in transcript if m.sender == "user"),
        "botMessages": sum(1 for m in transcript if m.sender == "bot"),
        "messagesByKind": by_kind,
        "conversationStarted": transcript[0].created_at.isoformat() if transcript else None,
        "lastActivityAt": session.last_activity_at.isoformat(),
        "checkpointFlags": dict(session.checkpoint_flags),
        "meeting": meeting,
    }


class SessionCoordinator:
    def __init__(
        self,
        repository: RepositoryProtocol,
        dispatcher: Dispatcher,
        channel: RealtimeChannel,
        messaging: dict | None = None,
    ):
        self._repository = repository
        self._dispatcher = dispatcher
        self._channel = channel
        self._messaging = messaging
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        dispatcher.bind(self.run_locked)

    @property
    def channel(self) -> RealtimeChannel:
        return self._channel

    @property
    def active_locks(self) -> int:
        return len(self._locks)

    async def run_locked(self, session_id: str, fn: Callable[[], Awaitable]):
        """Run fn while holding the session's lock.

        A lock lives only while some caller holds or awaits it.
        """
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                return await fn()
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                del self._locks[session_id]

    # -- join / leave -----------------------------------------------------

    async def handle_join(self, session_id: str, connection: Connection) -> Replay:
        """Subscribe a connection and return the session's current state.

        Idempotent: joining an existing session never resets it, and a
        greeting is only emitted for an empty transcript.
        """
        async def join() -> Replay:
            session = await self._repository.get_or_create_session(session_id)
            self._channel.join(session_id, connection)

            if connection.connection_id not in session.participants:
                session.participants.append(connection.connection_id)
                await self._repository.update_session(session)

            transcript = await self._repository.list_messages(session_id)
            replay = Replay(session=session, transcript=transcript, options=current_options(session))
            await self._channel.send(session_id, connection.connection_id, make_event("replay", **replay.to_dict()))

            if not transcript:
                await self._dispatcher.dispatch(session, greeting_directives(self._messaging))

            await self._channel.broadcast(session_id, make_event("sessionState", **session_state(session)))
            return replay

        logger.info("Connection %s joining session %s", connection.connection_id, session_id)
        return await self.run_locked(session_id, join)

    async def open_session(self, session_id: str) -> Session:
        """Fetch or create a session without subscribing a connection."""
        async def open_():
            session = await self._repository.get_or_create_session(session_id)
            if not await self._repository.list_messages(session_id, limit=1):
                await self._dispatcher.dispatch(session, greeting_directives(self._messaging))
            return session

        return await self.run_locked(session_id, open_)

    async def handle_leave(self, session_id: str, connection_id: str) -> None:
        async def leave():
            self._channel.leave(session_id, connection_id)
            session = await self._repository.get_session(session_id)
            if session and connection_id in session.participants:
                session.participants.remove(connection_id)
                await self._repository.update_session(session)

        await self.run_locked(session_id, leave)

    async def handle_disconnect(self, connection_id: str) -> None:
        for session_id in self._channel.leave_all(connection_id):
            try:
                await self.handle_leave(session_id, connection_id)
            except RepositoryError:
                logger.exception("Failed to remove %s from session %s", connection_id, session_id)

    # -- input ------------------------------------------------------------

    async def handle_input(
        self,
        session_id: str,
        connection_id: str,
        raw_input: str,
        step: int | None = None,
    ) -> Outcome | None:
        """Record the visitor's input and apply the flow engine's outcome.

        When step is given it names the question the input answers. Input
        for any other step is stale (a duplicate submit or an old option
        button) and is dropped without touching the transcript.
        """
        async def apply_input():
            session = await self._repository.get_session(session_id)
            if session is None:
                await self._send_error(session_id, connection_id, "Please join the conversation first.")
                return None
            if step is not None and step != session.step:
                logger.info(
                    "Dropping input for step %d in session %s (now at step %d)",
                    step, session_id, session.step,
                )
                await self._channel.send(session_id, connection_id, make_event("sessionState", **session_state(session)))
                return None
            text = raw_input.strip()
            if not text:
                return None
            if await self._dispatcher.commit_message(session_id, "user", text) is None:
                return None
            outcome = evaluate(session, text, self._messaging)
            return await self._apply(session, outcome, connection_id)

        return await self.run_locked(session_id, apply_input)

    async def handle_option(
        self,
        session_id: str,
        connection_id: str,
        value: str,
        step: int | None = None,
    ) -> Outcome | None:
        return await self.handle_input(session_id, connection_id, value, step=step)

    async def handle_upload(self, session_id: str, connection_id: str, file_name: str, data: bytes | None = None) -> Outcome | None:
        """Accept a resume upload. Only the file name is recorded."""
        async def upload():
            session = await self._repository.get_session(session_id)
            if session is None:
                await self._send_error(session_id, connection_id, "Please join the conversation first.")
                return None
            outcome = evaluate_upload(session, file_name, self._messaging)
            if outcome.accepted:
                text = upload_text(outcome.mutation.answers["resume"])
                if await self._dispatcher.commit_message(session_id, "user", text) is None:
                    return None
            logger.info(
                "Upload for session %s at step %d: %s (%d bytes)",
                session_id, session.step, "accepted" if outcome.accepted else "rejected", len(data or b""),
            )
            return await self._apply(session, outcome, connection_id)

        return await self.run_locked(session_id, upload)

    async def _apply(self, session: Session, outcome: Outcome, connection_id: str) -> Outcome | None:
        if not outcome.accepted:
            logger.info("Rejected input for session %s at step %d", session.session_id, session.step)
            await self._dispatcher.dispatch(session, outcome.directives)
            return outcome

        if outcome.mutation is not None:
            updated = outcome.mutation.apply(session)
        else:
            updated = session
            updated.last_activity_at = utcnow()

        # Every dispatch clears its flags before releasing the lock, so a
        # raised flag here is left over from a clearing write that failed.
        for checkpoint, active in updated.processing_flags.items():
            if active:
                logger.warning("Clearing stale %s processing flag for session %s", checkpoint, session.session_id)
                updated.processing_flags[checkpoint] = False

        # Processing flags flip in the same write as the mutation, before
        # the notifier is called.
        for directive in outcome.directives:
            if isinstance(directive, SetProcessing) and directive.active:
                updated.processing_flags[directive.checkpoint] = True

        try:
            await self._repository.update_session(updated)
        except RepositoryError:
            logger.exception("Failed to persist session %s; outcome not applied", session.session_id)
            await self._send_error(session.session_id, connection_id, RETRY_TEXT)
            return None

        logger.info("Session %s: step %d -> %d", session.session_id, session.step, updated.step)

        updated = await self._dispatcher.dispatch(updated, outcome.directives)

        await self._channel.broadcast(session.session_id, make_event("sessionState", **session_state(updated)))
        return outcome

    async def _send_error(self, session_id: str, connection_id: str, reason: str) -> None:
        await self._channel.send(session_id, connection_id, make_event("error", reason=reason))
