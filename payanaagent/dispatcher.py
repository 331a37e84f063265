"""Executes flow-engine directives against the transcript, notifier and rooms.

Directives run in declared order. Immediate directives are awaited one after
another; a directive with delay_ms is handed to the scheduler, measured from
the moment the dispatcher reaches it, and commits only when its timer fires
(again under the session's serialization). Persistence always precedes
broadcast.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from payanaagent.db import RepositoryError, RepositoryProtocol
from payanaagent.nodes import NOTIFY_FAILURE, notify_success
from payanaagent.notifier import NotifierProtocol
from payanaagent.realtime import RealtimeChannel, make_event
from payanaagent.scheduler import SchedulerProtocol
from payanaagent.state import (
    EmitMessage,
    Message,
    OfferOptions,
    Option,
    RequestUpload,
    Session,
    SetProcessing,
    TriggerNotification,
)

logger = logging.getLogger(__name__)

RETRY_TEXT = "Something went wrong, please try again."

Serializer = Callable[[str, Callable[[], Awaitable]], Awaitable]


async def _run_now(session_id: str, fn: Callable[[], Awaitable]):
    return await fn()


class Dispatcher:
    def __init__(
        self,
        repository: RepositoryProtocol,
        notifier: NotifierProtocol,
        channel: RealtimeChannel,
        scheduler: SchedulerProtocol,
        notifier_timeout: float = 10.0,
        serialize: Serializer | None = None,
    ):
        self._repository = repository
        self._notifier = notifier
        self._channel = channel
        self._scheduler = scheduler
        self._notifier_timeout = notifier_timeout
        self._serialize = serialize or _run_now

    def bind(self, serialize: Serializer) -> None:
        """Route timer-fired directives through the given per-session lock."""
        self._serialize = serialize

    # -- transcript -------------------------------------------------------

    async def commit_message(
        self,
        session_id: str,
        sender: str,
        text: str,
        kind: str = "text",
        options: tuple[Option, ...] = (),
    ) -> Message | None:
        """Append to the transcript, then broadcast. Returns None on failure."""
        message = Message(
            session_id=session_id,
            sender=sender,
            text=text,
            kind=kind,
            options=list(options),
        )
        try:
            await self._repository.append_message(message)
        except RepositoryError:
            logger.exception("Failed to persist %s message for session %s", sender, session_id)
            await self._channel.broadcast(session_id, make_event("error", reason=RETRY_TEXT))
            return None

        event_type = "options" if kind == "options" else "message"
        await self._channel.broadcast(session_id, make_event(event_type, **message.to_dict()))
        return message

    # -- directives -------------------------------------------------------

    async def dispatch(self, session: Session, directives) -> Session:
        """Execute directives for a session whose lock the caller holds.

        Returns the session as updated by flag changes.
        """
        for directive in directives:
            delay_ms = getattr(directive, "delay_ms", 0)
            if delay_ms > 0:
                self._schedule(session.session_id, directive, delay_ms)
                continue
            if isinstance(directive, SetProcessing):
                session = await self._set_processing(session, directive)
            elif isinstance(directive, TriggerNotification):
                session = await self._notify(session, directive)
            else:
                await self._commit(session.session_id, directive)
        return session

    def _schedule(self, session_id: str, directive, delay_ms: int) -> None:
        async def fire():
            await self._serialize(session_id, lambda: self._commit(session_id, directive))

        self._scheduler.call_later(delay_ms / 1000.0, fire)

    async def _commit(self, session_id: str, directive) -> None:
        if isinstance(directive, EmitMessage):
            await self.commit_message(session_id, "bot", directive.text, kind=directive.kind)
        elif isinstance(directive, OfferOptions):
            text = " | ".join(o.label for o in directive.options)
            await self.commit_message(session_id, "bot", text, kind="options", options=directive.options)
        elif isinstance(directive, RequestUpload):
            await self._channel.broadcast(session_id, make_event("upload"))
        else:
            raise TypeError(f"Directive cannot be delayed: {directive!r}")

    async def _persist_flags(self, session: Session) -> bool:
        """Write flag changes. A failed write is logged and the flags stay on
        the in-memory session, so the next successful write carries them."""
        try:
            await self._repository.update_session(session)
        except RepositoryError:
            logger.exception("Failed to persist flags for session %s", session.session_id)
            return False
        return True

    async def _set_processing(self, session: Session, directive: SetProcessing) -> Session:
        if session.processing_flags.get(directive.checkpoint) != directive.active:
            session.processing_flags[directive.checkpoint] = directive.active
            await self._persist_flags(session)
        await self._channel.broadcast(
            session.session_id,
            make_event(
                "processing",
                checkpoint=directive.checkpoint,
                active=directive.active,
                message=directive.message,
            ),
        )
        return session

    async def _notify(self, session: Session, directive: TriggerNotification) -> Session:
        checkpoint = directive.checkpoint
        if session.checkpoint_flags.get(checkpoint):
            logger.info("Checkpoint %s already notified for session %s; skipping", checkpoint, session.session_id)
            return session

        try:
            sent = await asyncio.wait_for(
                self._notifier.send(checkpoint, directive.payload),
                timeout=self._notifier_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Notifier timed out for %s (session %s)", checkpoint, session.session_id)
            sent = False
        except Exception:
            # Non-critical; the conversation proceeds without the email
            logger.exception("Notifier failed for %s (session %s)", checkpoint, session.session_id)
            sent = False

        if sent:
            # The email is out; the flag is kept even if this write fails.
            session.checkpoint_flags[checkpoint] = True
            await self._persist_flags(session)
            logger.info("Checkpoint %s notified for session %s", checkpoint, session.session_id)
            await self.commit_message(session.session_id, "bot", notify_success(checkpoint))
        else:
            await self.commit_message(session.session_id, "bot", NOTIFY_FAILURE)
        return session
