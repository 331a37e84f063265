"""Session and transcript persistence.

Provides:
- RepositoryProtocol: the interface the coordinator and dispatcher depend on
- Database: PostgreSQL implementation on psycopg's async API
- MockDatabase: in-memory implementation for tests and local runs

Message sequence numbers are assigned here, at append time, never by the
caller.
"""

from __future__ import annotations

import logging
import os
from typing import Protocol

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from payanaagent.state import Message, Option, Session, utcnow

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when a session or transcript read/write fails."""


class RepositoryProtocol(Protocol):
    """Protocol defining the repository interface for dependency injection."""

    async def get_session(self, session_id: str) -> Session | None:
        """Return the session record, or None if it does not exist."""
        ...

    async def get_or_create_session(self, session_id: str) -> Session:
        """Return the session record, creating it at step 0 if absent."""
        ...

    async def update_session(self, session: Session) -> None:
        """Persist the full session record."""
        ...

    async def append_message(self, message: Message) -> Message:
        """Append to the transcript. Returns the message with its sequence set."""
        ...

    async def list_messages(self, session_id: str, limit: int | None = None) -> list[Message]:
        """Return the transcript in sequence order."""
        ...

    async def list_sessions(self, limit: int = 20) -> list[Session]:
        """Return the most recently active sessions."""
        ...

    async def ping(self) -> bool:
        """Return True if the store is reachable."""
        ...


def _get_connection_string() -> str:
    """Get database connection string from environment or default."""
    return os.environ.get(
        "DATABASE_URL",
        "postgresql://localhost/payanaagent"
    )


def _session_from_row(row: dict) -> Session:
    return Session(
        session_id=row["session_id"],
        step=row["step"],
        answers=row["answers"] or {},
        checkpoint_flags=row["checkpoint_flags"] or {},
        processing_flags=row["processing_flags"] or {},
        status=row["status"],
        participants=row["participants"] or [],
        created_at=row["created_at"],
        last_activity_at=row["last_activity_at"],
    )


def _message_from_row(row: dict) -> Message:
    return Message(
        id=row["message_id"],
        session_id=row["session_id"],
        sender=row["sender"],
        text=row["text"],
        kind=row["kind"],
        options=[Option(**o) for o in row["options"] or []],
        sequence=row["sequence"],
        created_at=row["created_at"],
    )


class Database:
    """PostgreSQL repository for sessions and transcripts."""

    def __init__(self, connection_string: str | None = None):
        """Initialize the repository.

        Args:
            connection_string: PostgreSQL connection string.
                Defaults to DATABASE_URL env var or localhost/payanaagent.
        """
        self._conninfo = connection_string or _get_connection_string()

    async def _connect(self) -> psycopg.AsyncConnection:
        """Create a new database connection."""
        return await psycopg.AsyncConnection.connect(self._conninfo, row_factory=dict_row)

    async def get_session(self, session_id: str) -> Session | None:
        try:
            async with await self._connect() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        "SELECT * FROM payana_sessions WHERE session_id = %s",
                        (session_id,)
                    )
                    row = await cur.fetchone()
        except psycopg.Error as e:
            raise RepositoryError(f"Failed to load session {session_id}") from e
        return _session_from_row(row) if row else None

    async def get_or_create_session(self, session_id: str) -> Session:
        """Fetch-or-create; concurrent callers converge on one record."""
        fresh = Session.new(session_id)
        try:
            async with await self._connect() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        INSERT INTO payana_sessions
                            (session_id, step, answers, checkpoint_flags,
                             processing_flags, status, participants)
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                        ON CONFLICT (session_id) DO NOTHING
                        """,
                        (
                            session_id,
                            fresh.step,
                            Jsonb(fresh.answers),
                            Jsonb(fresh.checkpoint_flags),
                            Jsonb(fresh.processing_flags),
                            fresh.status,
                            Jsonb(fresh.participants),
                        )
                    )
                    await cur.execute(
                        "SELECT * FROM payana_sessions WHERE session_id = %s",
                        (session_id,)
                    )
                    row = await cur.fetchone()
        except psycopg.Error as e:
            raise RepositoryError(f"Failed to create session {session_id}") from e
        return _session_from_row(row)

    async def update_session(self, session: Session) -> None:
        try:
            async with await self._connect() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        UPDATE payana_sessions
                        SET step = %s,
                            answers = %s,
                            checkpoint_flags = %s,
                            processing_flags = %s,
                            status = %s,
                            participants = %s,
                            last_activity_at = NOW()
                        WHERE session_id = %s
                        """,
                        (
                            session.step,
                            Jsonb(session.answers),
                            Jsonb(session.checkpoint_flags),
                            Jsonb(session.processing_flags),
                            session.status,
                            Jsonb(session.participants),
                            session.session_id,
                        )
                    )
                    if cur.rowcount == 0:
                        raise RepositoryError(f"Session not found: {session.session_id}")
        except psycopg.Error as e:
            raise RepositoryError(f"Failed to update session {session.session_id}") from e

    async def append_message(self, message: Message) -> Message:
        """Insert a message, taking the next sequence from the session row.

        The counter bump and the insert share one transaction, so the row
        lock orders concurrent appends for the same session.
        """
        try:
            async with await self._connect() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        UPDATE payana_sessions
                        SET last_sequence = last_sequence + 1
                        WHERE session_id = %s
                        RETURNING last_sequence
                        """,
                        (message.session_id,)
                    )
                    row = await cur.fetchone()
                    if row is None:
                        raise RepositoryError(f"Session not found: {message.session_id}")
                    message.sequence = row["last_sequence"]
                    await cur.execute(
                        """
                        INSERT INTO payana_messages
                            (message_id, session_id, sequence, sender, text, kind, options)
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                        RETURNING created_at
                        """,
                        (
                            message.id,
                            message.session_id,
                            message.sequence,
                            message.sender,
                            message.text,
                            message.kind,
                            Jsonb([o.to_dict() for o in message.options]),
                        )
                    )
                    created = await cur.fetchone()
                    message.created_at = created["created_at"]
        except psycopg.Error as e:
            message.sequence = 0
            raise RepositoryError(f"Failed to append message to {message.session_id}") from e
        return message

    async def list_messages(self, session_id: str, limit: int | None = None) -> list[Message]:
        query = "SELECT * FROM payana_messages WHERE session_id = %s ORDER BY sequence"
        params: tuple = (session_id,)
        if limit is not None:
            query += " LIMIT %s"
            params = (session_id, limit)
        try:
            async with await self._connect() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    rows = await cur.fetchall()
        except psycopg.Error as e:
            raise RepositoryError(f"Failed to load transcript for {session_id}") from e
        return [_message_from_row(r) for r in rows]

    async def list_sessions(self, limit: int = 20) -> list[Session]:
        try:
            async with await self._connect() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        SELECT * FROM payana_sessions
                        ORDER BY last_activity_at DESC
                        LIMIT %s
                        """,
                        (limit,)
                    )
                    rows = await cur.fetchall()
        except psycopg.Error as e:
            raise RepositoryError("Failed to list sessions") from e
        return [_session_from_row(r) for r in rows]

    async def ping(self) -> bool:
        try:
            async with await self._connect() as conn:
                await conn.execute("SELECT 1")
        except psycopg.Error:
            logger.warning("Database ping failed", exc_info=True)
            return False
        return True


def _copy(session: Session) -> Session:
    return Session.from_dict(session.to_dict())


class MockDatabase:
    """In-memory repository for tests and single-process local runs."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._messages: dict[str, list[Message]] = {}

    async def get_session(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        return _copy(session) if session else None

    async def get_or_create_session(self, session_id: str) -> Session:
        if session_id not in self._sessions:
            self._sessions[session_id] = Session.new(session_id)
            self._messages[session_id] = []
        return _copy(self._sessions[session_id])

    async def update_session(self, session: Session) -> None:
        if session.session_id not in self._sessions:
            raise RepositoryError(f"Session not found: {session.session_id}")
        stored = _copy(session)
        stored.last_activity_at = utcnow()
        self._sessions[session.session_id] = stored

    async def append_message(self, message: Message) -> Message:
        transcript = self._messages.get(message.session_id)
        if transcript is None:
            raise RepositoryError(f"Session not found: {message.session_id}")
        message.sequence = len(transcript) + 1
        transcript.append(Message.from_dict(message.to_dict()))
        return message

    async def list_messages(self, session_id: str, limit: int | None = None) -> list[Message]:
        transcript = self._messages.get(session_id, [])
        if limit is not None:
            transcript = transcript[:limit]
        return [Message.from_dict(m.to_dict()) for m in transcript]

    async def list_sessions(self, limit: int = 20) -> list[Session]:
        ordered = sorted(
            self._sessions.values(),
            key=lambda s: s.last_activity_at,
            reverse=True,
        )
        return [_copy(s) for s in ordered[:limit]]

    async def ping(self) -> bool:
        return True
