"""Questionnaire content: validators, option sets, prompts and closing text.

Everything here is pure. Step wiring lives in graph.py, branching
decisions in routing.py.
"""

from __future__ import annotations

import re

from payanaagent.state import (
    EmitMessage,
    GERMAN_EMAIL,
    MEETING_EMAIL,
    Option,
    STUDY_EMAIL,
    UG_EMAIL,
)


# ---------------------------------------------------------------------------
# Messaging defaults (overridable through flows/<flow_id>/config.json)
# ---------------------------------------------------------------------------

DEFAULT_MESSAGING = {
    "company_name": "PayanaOverseas",
    "helpline": "+91 9003619777",
    "greeting": "Hi welcome to PayanaOverseas! How can I assist you today?",
}

# Stagger offsets (ms) for bot output, measured from the start of dispatch
MESSAGE_DELAY = 300
OPTIONS_DELAY = 500
SUMMARY_DELAY = 1300
CLOSING_DELAY = 2300


# ---------------------------------------------------------------------------
# Option sets
# ---------------------------------------------------------------------------

def _opts(*pairs: tuple[str, str]) -> tuple[Option, ...]:
    return tuple(Option(label=label, value=value) for label, value in pairs)


GET_STARTED = _opts(("🚀 Get Started", "Get Started"))
PURPOSES = _opts(("💼 Work", "Work"), ("📚 Study", "Study"))
YES_NO = _opts(("✅ Yes", "Yes"), ("❌ No", "No"))
JOURNEY_START = _opts(
    ("✅ Yes", "Yes"),
    ("📘 Claim Free Passport", "Claim Free Passport"),
    ("📝 Register Now", "Register Now"),
)
RESUME = _opts(("📄 Upload Resume", "Upload Resume"), ("🚫 No Resume", "No Resume"))
QUALIFICATIONS = _opts(
    ("🎓 12th Completed", "12th Completed"),
    ("🎓 UG Completed", "UG Completed"),
    ("🎓 PG Completed", "PG Completed"),
)
EXPERIENCE = _opts(
    ("🆕 No Experience", "No experience"),
    ("📈 1-2 Years", "1-2yr"),
    ("📊 2-3 Years", "2-3yr"),
    ("📈 3-5 Years", "3-5yr"),
    ("🏆 5+ Years", "5+yr"),
)
EXPERIENCE_YEARS = EXPERIENCE[1:]
UG_MAJORS = _opts(
    ("👩‍⚕️ Nurses", "Nurses"),
    ("🦷 Dentist", "Dentist"),
    ("⚙️ Engineering", "Engineering"),
    ("🎨 Arts Background", "Arts Background"),
    ("🩺 MBBS", "MBBS"),
)
START_TIMES = _opts(
    ("⚡ Immediately", "Immediately"),
    ("⏳ Need Time", "Need some time"),
    ("❓ Need Clarification", "Need more clarification"),
)
APPOINTMENT_TYPES = _opts(
    ("🏢 In-person", "In-person appointment"),
    ("💻 Google Meet", "Google Meet appointment"),
)
TIMES_OF_DAY = _opts(("🌅 Morning", "Morning"), ("🌞 Afternoon", "Afternoon"), ("🌆 Evening", "Evening"))
APPOINTMENT_DATES = _opts(
    ("📅 Tomorrow", "Tomorrow"),
    ("📅 This Weekend", "This Weekend"),
    ("📅 Next Week", "Next Week"),
)
ENTRY_YEARS = _opts(("📅 2026", "2026"), ("📅 2027", "2027"), ("📅 2028", "2028"))

STUDY_LEVELS = _opts(
    ("🎓 Bachelor's", "Bachelor's"),
    ("🎓 Master's", "Master's"),
    ("📜 Diploma", "Diploma"),
)
DESTINATIONS = _opts(
    ("🇩🇪 Germany", "Germany"),
    ("🇬🇧 UK", "UK"),
    ("🇨🇦 Canada", "Canada"),
    ("🇦🇺 Australia", "Australia"),
)
ENGLISH_TEST = _opts(
    ("✅ IELTS/TOEFL Completed", "Completed"),
    ("📖 Preparing", "Preparing"),
    ("🆕 Not Started", "Not started"),
)
FUNDING = _opts(
    ("💰 Self-funded", "Self-funded"),
    ("🏦 Education Loan", "Education Loan"),
    ("🏅 Scholarship", "Scholarship"),
)


# ---------------------------------------------------------------------------
# Free-text validators
#
# Each returns (value, error_text); error_text is None when the input is valid.
# ---------------------------------------------------------------------------

_NAME_RE = re.compile(r"^[a-zA-Z\s]+$")
_AGE_RE = re.compile(r"^\d+$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

NAME_ERROR = "Please enter a valid name (at least 2 letters, letters and spaces only)"
AGE_ERROR = "Please enter a valid age (between 16-65 years)"
EMAIL_ERROR = "Please enter a valid email address (e.g., example@gmail.com)"


def validate_name(text: str) -> tuple[str, str | None]:
    name = text.strip()
    if _NAME_RE.match(name) and len(name) >= 2:
        return name, None
    return name, NAME_ERROR


def validate_age(text: str) -> tuple[str, str | None]:
    age = text.strip()
    if _AGE_RE.match(age) and 16 <= int(age) <= 65:
        return str(int(age)), None
    return age, AGE_ERROR


def validate_email(text: str) -> tuple[str, str | None]:
    email = text.strip()
    if _EMAIL_RE.match(email):
        return email.lower(), None
    return email, EMAIL_ERROR


# ---------------------------------------------------------------------------
# Prompts (question asked when a step is entered)
# ---------------------------------------------------------------------------

def age_prompt(answers: dict) -> str:
    return f"Thanks {answers.get('name', '')}! What's your age?"


def german_ug_prompt(answers: dict) -> str:
    """German-language question for the UG-major sub-flow.

    Dentists must also clear the FSP and KP licensing exams.
    """
    if answers.get("ugMajor") == "Dentist":
        return "Are you willing to learn German language and ready to clear FSP and KP exams?"
    return "Are you willing to learn German language?"


# ---------------------------------------------------------------------------
# Acknowledgements emitted before the next prompt or closing
# ---------------------------------------------------------------------------

def passport_ack(value: str, answers: dict) -> str | None:
    if value == "No":
        return (
            "You have some time to make financial setups. "
            "Now you have to start learning German language now."
        )
    return None


def decline_ack(value: str, answers: dict) -> str | None:
    if value == "No":
        return "No problem! Our team will still contact you to discuss other opportunities that might interest you."
    return None


def start_time_ack(value: str, answers: dict) -> str | None:
    if value == "Immediately":
        return "Perfect! Our team will contact you soon to begin the process."
    return None


def consultation_ack(value: str, answers: dict) -> str | None:
    if value == "No":
        return "No problem! Our team will contact you via email and phone."
    return None


def appointment_ack(value: str, answers: dict) -> str:
    return (
        f"Perfect! We've scheduled your {answers.get('appointmentType', 'appointment')} "
        f"for {value} {answers.get('appointmentTime', '')}. "
        "Our team will contact you with the exact details."
    )


def entry_year_ack(value: str, answers: dict) -> str:
    return (
        f"Great! We've noted that you want to enter Germany in {value}. "
        "Our team will create a timeline for you and contact you accordingly."
    )


_JOURNEY_ACKS = {
    "Claim Free Passport": (
        "Great! We'll help you with the passport process. Our team will guide you "
        "through the documentation and application process."
    ),
    "Register Now": (
        "Excellent! Let's get you registered for our program. "
        "Our team will contact you with the registration details."
    ),
    "Yes": (
        "Perfect! You're ready to begin your journey to Germany. "
        "Our team will contact you with the next steps."
    ),
}


def journey_ack(value: str, answers: dict) -> str:
    return _JOURNEY_ACKS[value]


def ug_german_ack(value: str, answers: dict) -> str | None:
    if value == "No":
        return "No problem! Please enter your email correctly and we'll send you alternative opportunities."
    return None


def study_contact_ack(value: str, answers: dict) -> str | None:
    if value == "No":
        return "No problem! You can reach our study abroad counsellors whenever you're ready."
    return None


def call_time_ack(value: str, answers: dict) -> str:
    return f"Great! A counsellor will call you in the {value.lower()}."


# ---------------------------------------------------------------------------
# Checkpoint payloads
# ---------------------------------------------------------------------------

_IDENTITY_FIELDS = ("name", "age", "email")

CHECKPOINT_FIELDS = {
    GERMAN_EMAIL: _IDENTITY_FIELDS + (
        "purpose", "passport", "resume", "qualification", "experience",
        "interestedInCategories", "germanLanguage",
    ),
    UG_EMAIL: _IDENTITY_FIELDS + (
        "qualification", "ugMajor", "workExperience", "experienceYears",
        "germanLanguageUG", "examReadiness",
    ),
    STUDY_EMAIL: _IDENTITY_FIELDS + (
        "purpose", "studyLevel", "destination", "intakeYear",
        "englishTest", "funding",
    ),
    MEETING_EMAIL: _IDENTITY_FIELDS + ("appointmentType", "appointmentTime", "appointmentDate"),
}

PROCESSING_MESSAGES = {
    GERMAN_EMAIL: "📧 Sending your German Program details to our team...",
    UG_EMAIL: "📧 Sending your UG Program details to our team...",
    STUDY_EMAIL: "📧 Sending your Study Abroad details to our counsellors...",
    MEETING_EMAIL: "📧 Sending your appointment confirmation...",
}

NOTIFY_SUCCESS = "✅ Great! Your details have been sent to our team. You'll receive a confirmation email shortly!"
NOTIFY_FAILURE = (
    "⚠️ There was an issue sending your details, but don't worry - "
    "our team has your information and will contact you soon!"
)

NOTIFY_MESSAGES = {
    MEETING_EMAIL: "✅ Your appointment is confirmed. We've emailed the details to you!",
}


def notify_success(checkpoint: str) -> str:
    return NOTIFY_MESSAGES.get(checkpoint, NOTIFY_SUCCESS)


def checkpoint_payload(checkpoint: str, answers: dict) -> dict:
    return {f: answers.get(f, "") for f in CHECKPOINT_FIELDS[checkpoint]}


# ---------------------------------------------------------------------------
# Summary and closing
# ---------------------------------------------------------------------------

_COMMON_SUMMARY = [
    ("👤 Name", "name"),
    ("🎂 Age", "age"),
    ("📧 Email", "email"),
    ("🎯 Purpose", "purpose"),
]

_WORK_SUMMARY = [
    ("📘 Passport", "passport"),
    ("📄 Resume", "resume"),
    ("🎓 Qualification", "qualification"),
]

_UG_SUMMARY = [
    ("🎯 UG Major", "ugMajor"),
    ("💼 Work Experience", "workExperience"),
    ("📅 Experience Years", "experienceYears"),
    ("🇩🇪 German Language & Exam Readiness", "germanLanguageUG"),
    ("📋 Continue UG Program", "ugProgramContinue"),
    ("⏰ UG Program Start", "ugProgramStartTime"),
]

_STANDARD_SUMMARY = [
    ("💼 Experience", "experience"),
    ("📈 Interested in categories", "interestedInCategories"),
    ("🇩🇪 German language", "germanLanguage"),
    ("📋 Continue program", "continueProgram"),
    ("⏰ Program Start", "programStartTime"),
]

_APPOINTMENT_SUMMARY = [
    ("🗓️ Appointment", "appointmentType"),
    ("🕒 Time", "appointmentTime"),
    ("📅 Day", "appointmentDate"),
    ("✈️ Entry Year", "entryYear"),
    ("🧾 Journey Support", "financialJobSupport"),
]

_STUDY_SUMMARY = [
    ("🎓 Study Level", "studyLevel"),
    ("🌍 Destination", "destination"),
    ("📅 Intake", "intakeYear"),
    ("📝 English Test", "englishTest"),
    ("💰 Funding", "funding"),
    ("📞 Counsellor Contact", "counsellorContact"),
    ("🕒 Call Time", "callTime"),
]


def is_ug_flow(answers: dict) -> bool:
    return answers.get("currentFlow", "").startswith("ug_")


def build_summary(answers: dict) -> str:
    """Render collected answers as the end-of-conversation summary."""
    rows = list(_COMMON_SUMMARY)
    if answers.get("purpose") == "Study":
        rows += _STUDY_SUMMARY
    else:
        rows += _WORK_SUMMARY
        rows += _UG_SUMMARY if is_ug_flow(answers) else _STANDARD_SUMMARY
        rows += _APPOINTMENT_SUMMARY

    lines = ["📋 Summary of Your Information"]
    for label, key in rows:
        value = answers.get(key)
        if value:
            lines.append(f"{label}: {value}")
        elif key == "resume" and answers.get("purpose") == "Work":
            lines.append(f"{label}: Not provided")
    return "\n".join(lines)


def build_closing(answers: dict, messaging: dict) -> str:
    name = answers.get("name", "")
    helpline = messaging["helpline"]
    if answers.get("purpose") == "Study":
        dream = "studying abroad"
        detail = "Our study abroad counsellors will review your profile."
    elif is_ug_flow(answers):
        dream = f"working in Germany with your {answers.get('ugMajor', '')} background"
        detail = f"Our specialized team will review your {answers.get('ugMajor', '')} profile."
    else:
        dream = "working abroad"
        detail = "Our team will review your details."
    return (
        f"🎉 Thank you {name}! {detail}\n\n"
        f"📞 For immediate assistance: {helpline}\n\n"
        f"🌟 We're excited to help you achieve your dreams of {dream}!"
    )


def closing_directives(answers: dict, messaging: dict, ack: str | None = None) -> tuple:
    """Acknowledgement, summary and closing text for a finished conversation."""
    directives = []
    if ack:
        directives.append(EmitMessage(ack, delay_ms=MESSAGE_DELAY))
    directives.append(EmitMessage(build_summary(answers), delay_ms=SUMMARY_DELAY, kind="summary"))
    directives.append(EmitMessage(build_closing(answers, messaging), delay_ms=CLOSING_DELAY))
    return tuple(directives)


def closed_notice(messaging: dict) -> str:
    return (
        f"Thank you for your interest in {messaging['company_name']}! "
        f"Our team will contact you soon. For immediate assistance: {messaging['helpline']}"
    )
