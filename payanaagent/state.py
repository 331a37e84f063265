"""Session, message and directive types for the conversation engine."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Union


# Checkpoints: named points at which staff are notified at most once.
GERMAN_EMAIL = "germanEmail"
UG_EMAIL = "ugEmail"
STUDY_EMAIL = "studyEmail"
MEETING_EMAIL = "meetingEmail"

CHECKPOINTS = (GERMAN_EMAIL, UG_EMAIL, STUDY_EMAIL, MEETING_EMAIL)

ACTIVE = "active"
CLOSED = "closed"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    return uuid.uuid4().hex


def _parse_dt(value) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        return datetime.fromisoformat(value)
    return utcnow()


@dataclass
class Session:
    session_id: str
    step: int = 0
    answers: dict[str, str] = field(default_factory=dict)
    checkpoint_flags: dict[str, bool] = field(default_factory=dict)
    processing_flags: dict[str, bool] = field(default_factory=dict)
    status: str = ACTIVE
    participants: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(cls, session_id: str) -> "Session":
        return cls(
            session_id=session_id,
            checkpoint_flags={cp: False for cp in CHECKPOINTS},
            processing_flags={cp: False for cp in CHECKPOINTS},
        )

    @property
    def closed(self) -> bool:
        return self.status == CLOSED

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "step": self.step,
            "answers": dict(self.answers),
            "checkpoint_flags": dict(self.checkpoint_flags),
            "processing_flags": dict(self.processing_flags),
            "status": self.status,
            "participants": list(self.participants),
            "created_at": self.created_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        return cls(
            session_id=data["session_id"],
            step=int(data.get("step", 0)),
            answers=dict(data.get("answers") or {}),
            checkpoint_flags=dict(data.get("checkpoint_flags") or {}),
            processing_flags=dict(data.get("processing_flags") or {}),
            status=data.get("status", ACTIVE),
            participants=list(data.get("participants") or []),
            created_at=_parse_dt(data.get("created_at")),
            last_activity_at=_parse_dt(data.get("last_activity_at")),
        )


@dataclass(frozen=True)
class Option:
    label: str
    value: str

    def to_dict(self) -> dict:
        return {"label": self.label, "value": self.value}


@dataclass
class Message:
    session_id: str
    sender: str          # "user" or "bot"
    text: str
    kind: str = "text"   # "text", "options", or "summary"
    options: list[Option] = field(default_factory=list)
    id: str = field(default_factory=new_message_id)
    sequence: int = 0
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "sender": self.sender,
            "text": self.text,
            "kind": self.kind,
            "options": [o.to_dict() for o in self.options],
            "sequence": self.sequence,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        return cls(
            id=data["id"],
            session_id=data["session_id"],
            sender=data["sender"],
            text=data["text"],
            kind=data.get("kind", "text"),
            options=[Option(**o) for o in data.get("options") or []],
            sequence=int(data.get("sequence", 0)),
            created_at=_parse_dt(data.get("created_at")),
        )


# ---------------------------------------------------------------------------
# Directives
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EmitMessage:
    text: str
    delay_ms: int = 0
    kind: str = "text"


@dataclass(frozen=True)
class OfferOptions:
    options: tuple[Option, ...]
    delay_ms: int = 0


@dataclass(frozen=True)
class SetProcessing:
    checkpoint: str
    active: bool
    message: str = ""


@dataclass(frozen=True)
class TriggerNotification:
    checkpoint: str
    payload: dict


@dataclass(frozen=True)
class RequestUpload:
    delay_ms: int = 0


Directive = Union[EmitMessage, OfferOptions, SetProcessing, TriggerNotification, RequestUpload]


@dataclass(frozen=True)
class Mutation:
    """State change produced by an accepted input.

    ``answers`` only ever adds or overwrites fields, never removes them.
    """

    step: int
    answers: dict = field(default_factory=dict)
    status: str | None = None

    def apply(self, session: Session) -> Session:
        return Session(
            session_id=session.session_id,
            step=self.step,
            answers={**session.answers, **self.answers},
            checkpoint_flags=dict(session.checkpoint_flags),
            processing_flags=dict(session.processing_flags),
            status=self.status or session.status,
            participants=list(session.participants),
            created_at=session.created_at,
            last_activity_at=utcnow(),
        )


@dataclass(frozen=True)
class Outcome:
    accepted: bool
    directives: tuple = ()
    error_text: str | None = None
    mutation: Mutation | None = None
