"""Staff notifications sent at conversation checkpoints.

The dispatcher only depends on NotifierProtocol.send(), which reports
success or failure and never raises for delivery problems.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol, runtime_checkable

from payanaagent.state import GERMAN_EMAIL, MEETING_EMAIL, STUDY_EMAIL, UG_EMAIL

logger = logging.getLogger(__name__)


class NotifierError(Exception):
    """Raised when a notification cannot be built or delivered."""


@runtime_checkable
class NotifierProtocol(Protocol):
    async def send(self, checkpoint: str, payload: dict) -> bool: ...


_DEFAULT_SUBJECTS = {
    GERMAN_EMAIL: "New German Program Inquiry - {name}",
    UG_EMAIL: "New UG Program Inquiry - {ugMajor} - {name}",
    STUDY_EMAIL: "New Study Abroad Inquiry - {studyLevel} - {name}",
    MEETING_EMAIL: "Meeting Scheduled - PayanaOverseas Consultation",
}

_HEADINGS = {
    GERMAN_EMAIL: "New German Program Application",
    UG_EMAIL: "New UG Program Application",
    STUDY_EMAIL: "New Study Abroad Application",
    MEETING_EMAIL: "Meeting Confirmation",
}

_LABELS = {
    "name": "Name",
    "age": "Age",
    "email": "Email",
    "purpose": "Purpose",
    "passport": "Passport",
    "resume": "Resume",
    "qualification": "Qualification",
    "experience": "Experience",
    "interestedInCategories": "Interested in Categories",
    "germanLanguage": "German Language",
    "ugMajor": "UG Major",
    "workExperience": "Work Experience",
    "experienceYears": "Experience Years",
    "germanLanguageUG": "German Language & Exam Readiness",
    "examReadiness": "Exam Readiness",
    "studyLevel": "Study Level",
    "destination": "Destination",
    "intakeYear": "Intake Year",
    "englishTest": "English Test",
    "funding": "Funding",
    "appointmentType": "Appointment",
    "appointmentTime": "Time",
    "appointmentDate": "Day",
}

# Sent to the applicant, with the admin inbox on copy
_APPLICANT_CHECKPOINTS = frozenset({MEETING_EMAIL})


class _Blank(dict):
    def __missing__(self, key):
        return ""


def render_subject(checkpoint: str, payload: dict, subjects: dict | None = None) -> str:
    template = (subjects or {}).get(checkpoint) or _DEFAULT_SUBJECTS.get(checkpoint)
    if template is None:
        raise NotifierError(f"Unknown checkpoint: {checkpoint}")
    return template.format_map(_Blank(payload)).strip(" -")


def render_body(checkpoint: str, payload: dict) -> str:
    """Plain-text email body listing the collected details."""
    if checkpoint in _APPLICANT_CHECKPOINTS:
        lines = [
            _HEADINGS[checkpoint], "",
            f"Dear {payload.get('name') or 'applicant'},",
            "Your consultation meeting has been scheduled:",
        ]
        closing = "Our team will contact you shortly to confirm the details."
    else:
        lines = [_HEADINGS.get(checkpoint, "New Inquiry"), "", "Student Details:"]
        closing = "Please contact the student for further processing."
    for key, value in payload.items():
        if value:
            lines.append(f"{_LABELS.get(key, key)}: {value}")
    lines += ["", closing]
    return "\n".join(lines)


class SmtpNotifier:
    """Sends checkpoint emails over SMTP.

    Staff notifications go to the admin inbox; meeting confirmations go to
    the applicant with the admin inbox on copy.

    smtplib is blocking, so delivery runs in a worker thread.
    """

    def __init__(
        self,
        host: str | None,
        port: int = 587,
        user: str | None = None,
        password: str | None = None,
        admin_email: str | None = None,
        subjects: dict | None = None,
        cc_applicant: bool = True,
        use_tls: bool = True,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.admin_email = admin_email
        self.subjects = subjects or {}
        self.cc_applicant = cc_applicant
        self.use_tls = use_tls

    def build_message(self, checkpoint: str, payload: dict) -> EmailMessage:
        if not self.admin_email:
            raise NotifierError("No admin email configured")
        msg = EmailMessage()
        msg["Subject"] = render_subject(checkpoint, payload, self.subjects)
        msg["From"] = self.user or self.admin_email
        if checkpoint in _APPLICANT_CHECKPOINTS:
            if not payload.get("email"):
                raise NotifierError(f"No applicant email for {checkpoint}")
            msg["To"] = payload["email"]
            msg["Cc"] = self.admin_email
        else:
            msg["To"] = self.admin_email
            if self.cc_applicant and payload.get("email"):
                msg["Cc"] = payload["email"]
        msg.set_content(render_body(checkpoint, payload))
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.user and self.password:
                smtp.login(self.user, self.password)
            smtp.send_message(msg)

    async def send(self, checkpoint: str, payload: dict) -> bool:
        if not self.host:
            logger.warning("SMTP host not configured; %s notification not sent", checkpoint)
            return False
        try:
            msg = self.build_message(checkpoint, payload)
            await asyncio.to_thread(self._deliver, msg)
        except (NotifierError, smtplib.SMTPException, OSError):
            logger.exception("Failed to send %s notification", checkpoint)
            return False
        logger.info("Sent %s notification", checkpoint)
        return True


class MockNotifier:
    """Records notifications instead of sending them (for testing)."""

    def __init__(self, result: bool = True, delay: float = 0.0):
        self.result = result
        self.delay = delay
        self.calls: list[tuple[str, dict]] = []

    async def send(self, checkpoint: str, payload: dict) -> bool:
        self.calls.append((checkpoint, dict(payload)))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result


class LogNotifier:
    """Logs checkpoint notifications when SMTP is not configured."""

    async def send(self, checkpoint: str, payload: dict) -> bool:
        logger.info("Notification %s: %s", checkpoint, render_subject(checkpoint, payload))
        return True
