"""Transition table and flow engine for the lead-qualification questionnaire.

evaluate() is the pure decision function: given a session snapshot and the
visitor's input it returns an Outcome (validation result, state mutation and
an ordered tuple of directives). It performs no I/O.

build_graph() compiles the same table into a LangGraph StateGraph, which is
useful for visualization and for validating that every edge in the table
points at a known step.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, TypedDict

from langgraph.graph import StateGraph, START, END

from payanaagent import nodes
from payanaagent import routing
from payanaagent.nodes import (
    DEFAULT_MESSAGING,
    MESSAGE_DELAY,
    OPTIONS_DELAY,
)
from payanaagent.state import (
    CLOSED,
    EmitMessage,
    GERMAN_EMAIL,
    MEETING_EMAIL,
    Mutation,
    OfferOptions,
    Option,
    Outcome,
    RequestUpload,
    STUDY_EMAIL,
    Session,
    SetProcessing,
    TriggerNotification,
    UG_EMAIL,
)


# ---------------------------------------------------------------------------
# Step specification
# ---------------------------------------------------------------------------

YES_NO_ERROR = "Please select either Yes or No"
OPTION_ERROR = "Please select an option"

# Extra pause between an acknowledgement and the following question
_ACK_GAP = 700


@dataclass(frozen=True)
class StepSpec:
    """One row of the transition table.

    ``prompt`` is the question asked when the step is entered. Enumerated
    steps accept exactly one of ``options`` values; free-text steps run
    ``validator`` instead. ``route`` is either a fixed next step or a routing
    function, in which case ``next_steps`` declares every step it can return.
    """

    name: str
    prompt: str | Callable[[dict], str] | None = None
    options: tuple[Option, ...] = ()
    field: str | None = None
    validator: Callable[[str], tuple[str, str | None]] | None = None
    route: int | Callable[[str, dict], int] | None = None
    next_steps: tuple[int, ...] = ()
    ack: Callable[[str, dict], str | None] | None = None
    extra: Callable[[str, dict], dict] | None = None
    error: str = OPTION_ERROR
    checkpoint: str | None = None
    notify_on: tuple[str, ...] = ()
    upload_value: str | None = None
    terminal: bool = False

    @property
    def edges(self) -> tuple[int, ...]:
        if isinstance(self.route, int):
            return (self.route,)
        return self.next_steps

    def prompt_text(self, answers: dict) -> str | None:
        if callable(self.prompt):
            return self.prompt(answers)
        return self.prompt

    def accepted_values(self) -> tuple[str, ...]:
        return tuple(o.value for o in self.options)


def _accept_any(text: str) -> tuple[str, str | None]:
    return text.strip(), None


def _ug_flow(value: str, answers: dict) -> dict:
    return {"currentFlow": "ug_" + value.lower().replace(" ", "_")}


STEP_TABLE: dict[int, StepSpec] = {
    # -- Identity-capture prefix ------------------------------------------
    0: StepSpec(
        name="greeting",
        options=nodes.GET_STARTED,
        validator=_accept_any,
        route=1,
    ),
    1: StepSpec(
        name="name",
        prompt="Great! Let's get started. Please enter your full name:",
        field="name",
        validator=nodes.validate_name,
        route=2,
    ),
    2: StepSpec(
        name="age",
        prompt=nodes.age_prompt,
        field="age",
        validator=nodes.validate_age,
        route=3,
    ),
    3: StepSpec(
        name="email",
        prompt="Please share your email address:",
        field="email",
        validator=nodes.validate_email,
        route=4,
    ),
    4: StepSpec(
        name="purpose",
        prompt="Are you looking to Study or Work abroad?",
        options=nodes.PURPOSES,
        field="purpose",
        route=routing.route_after_purpose,
        next_steps=(routing.WORK_START, routing.STUDY_START),
        error="Please select either Study or Work",
    ),

    # -- Work branch ------------------------------------------------------
    5: StepSpec(
        name="passport",
        prompt="Do you have a valid passport?",
        options=nodes.YES_NO,
        field="passport",
        route=routing.route_after_passport,
        next_steps=(6, routing.FINANCIAL_SETUP),
        ack=nodes.passport_ack,
        error=YES_NO_ERROR,
    ),
    6: StepSpec(
        name="resume",
        prompt="Do you have a resume to upload?",
        options=nodes.RESUME,
        extra=lambda value, answers: {"resume": "No resume"},
        route=7,
        upload_value="Upload Resume",
        error="Please upload your resume or select No Resume",
    ),
    7: StepSpec(
        name="qualification",
        prompt="What is your highest qualification?",
        options=nodes.QUALIFICATIONS,
        field="qualification",
        extra=lambda value, answers: {
            "currentFlow": "ug_selection" if value == "UG Completed" else "standard",
        },
        route=routing.route_after_qualification,
        next_steps=(routing.GENERIC_EXPERIENCE, routing.UG_MAJOR),
        error="Please select a qualification from the options",
    ),
    8: StepSpec(
        name="experience",
        prompt="How many years of work experience do you have?",
        options=nodes.EXPERIENCE,
        field="experience",
        route=9,
        error="Please select an experience level",
    ),
    9: StepSpec(
        name="categories",
        prompt="Are you interested in any of these categories?",
        options=nodes.YES_NO,
        field="interestedInCategories",
        route=10,
        error=YES_NO_ERROR,
    ),
    10: StepSpec(
        name="german_language",
        prompt="Are you ready to learn the German language?",
        options=nodes.YES_NO,
        field="germanLanguage",
        route=11,
        checkpoint=GERMAN_EMAIL,
        notify_on=("Yes", "No"),
        error=YES_NO_ERROR,
    ),
    11: StepSpec(
        name="continue_program",
        prompt="Can you continue with this program?",
        options=nodes.YES_NO,
        field="continueProgram",
        route=routing.route_after_continue,
        next_steps=(12, routing.CLOSED_WORK),
        ack=nodes.decline_ack,
        error=YES_NO_ERROR,
    ),
    12: StepSpec(
        name="program_start",
        prompt="When can you kick start your program?",
        options=nodes.START_TIMES,
        field="programStartTime",
        route=routing.route_after_start_time,
        next_steps=(routing.CONSULTATION, routing.ENTRY_YEAR, routing.CLOSED_WORK),
        ack=nodes.start_time_ack,
    ),
    13: StepSpec(
        name="consultation",
        prompt="Would you like to schedule a consultation call with our expert?",
        options=nodes.YES_NO,
        field="consultation",
        route=routing.route_after_consultation,
        next_steps=(14, routing.CLOSED_WORK),
        ack=nodes.consultation_ack,
        error=YES_NO_ERROR,
    ),
    14: StepSpec(
        name="appointment_type",
        prompt="How would you prefer to have your consultation?",
        options=nodes.APPOINTMENT_TYPES,
        field="appointmentType",
        route=15,
        error="Please select an appointment type",
    ),
    15: StepSpec(
        name="appointment_time",
        prompt="What time would be convenient for you?",
        options=nodes.TIMES_OF_DAY,
        field="appointmentTime",
        route=16,
        error="Please select a time preference",
    ),
    16: StepSpec(
        name="appointment_date",
        prompt="Which day would work best for you?",
        options=nodes.APPOINTMENT_DATES,
        field="appointmentDate",
        extra=lambda value, answers: {"appointmentConfirmed": "Yes"},
        route=17,
        checkpoint=MEETING_EMAIL,
        notify_on=tuple(o.value for o in nodes.APPOINTMENT_DATES),
        ack=nodes.appointment_ack,
        error="Please select a date preference",
    ),
    17: StepSpec(name="closed_appointment", terminal=True),
    18: StepSpec(
        name="entry_year",
        prompt="When do you want to enter into Germany?",
        options=nodes.ENTRY_YEARS,
        field="entryYear",
        route=routing.CLOSED_WORK,
        ack=nodes.entry_year_ack,
        error="Please select a year",
    ),
    19: StepSpec(
        name="journey_start",
        prompt="Ready to start your journey?",
        options=nodes.JOURNEY_START,
        field="financialJobSupport",
        route=20,
        ack=nodes.journey_ack,
    ),
    20: StepSpec(name="closed_journey", terminal=True),
    21: StepSpec(name="closed_work", terminal=True),

    # -- UG-major sub-flow ------------------------------------------------
    22: StepSpec(
        name="ug_major",
        prompt="What is your UG major?",
        options=nodes.UG_MAJORS,
        field="ugMajor",
        extra=_ug_flow,
        route=23,
        error="Please select a UG major from the options",
    ),
    23: StepSpec(
        name="ug_work_experience",
        prompt="Do you have any work experience?",
        options=nodes.YES_NO,
        field="workExperience",
        route=routing.route_after_ug_experience,
        next_steps=(24, 25),
        error=YES_NO_ERROR,
    ),
    24: StepSpec(
        name="ug_experience_years",
        prompt="How many years of experience?",
        options=nodes.EXPERIENCE_YEARS,
        field="experienceYears",
        route=25,
        error="Please select an experience level",
    ),
    25: StepSpec(
        name="ug_german_language",
        prompt=nodes.german_ug_prompt,
        options=nodes.YES_NO,
        field="germanLanguageUG",
        extra=lambda value, answers: {"examReadiness": value},
        route=routing.route_after_ug_german,
        next_steps=(27, routing.CLOSED_UG),
        checkpoint=UG_EMAIL,
        notify_on=("Yes",),
        ack=nodes.ug_german_ack,
        error=YES_NO_ERROR,
    ),
    27: StepSpec(
        name="ug_continue",
        prompt="Please kindly check your mail. Can you continue with this program?",
        options=nodes.YES_NO,
        field="ugProgramContinue",
        route=routing.route_after_ug_continue,
        next_steps=(28, routing.CLOSED_UG),
        ack=nodes.decline_ack,
        error=YES_NO_ERROR,
    ),
    28: StepSpec(
        name="ug_program_start",
        prompt="When can you kick start your program?",
        options=nodes.START_TIMES,
        field="ugProgramStartTime",
        route=routing.route_after_start_time,
        next_steps=(routing.CONSULTATION, routing.ENTRY_YEAR, routing.CLOSED_WORK),
        ack=nodes.start_time_ack,
    ),
    29: StepSpec(name="closed_ug", terminal=True),

    # -- Study branch -----------------------------------------------------
    40: StepSpec(
        name="study_level",
        prompt="Which level of study are you interested in?",
        options=nodes.STUDY_LEVELS,
        field="studyLevel",
        route=41,
    ),
    41: StepSpec(
        name="destination",
        prompt="Which country would you like to study in?",
        options=nodes.DESTINATIONS,
        field="destination",
        route=42,
    ),
    42: StepSpec(
        name="intake_year",
        prompt="Which intake year are you planning for?",
        options=nodes.ENTRY_YEARS,
        field="intakeYear",
        route=43,
        error="Please select a year",
    ),
    43: StepSpec(
        name="english_test",
        prompt="Have you taken an English proficiency test (IELTS/TOEFL)?",
        options=nodes.ENGLISH_TEST,
        field="englishTest",
        route=44,
    ),
    44: StepSpec(
        name="funding",
        prompt="How do you plan to fund your studies?",
        options=nodes.FUNDING,
        field="funding",
        route=45,
    ),
    45: StepSpec(
        name="counsellor_contact",
        prompt="Would you like our study abroad counsellor to contact you about admissions?",
        options=nodes.YES_NO,
        field="counsellorContact",
        route=routing.route_after_study_contact,
        next_steps=(46, routing.CLOSED_STUDY),
        checkpoint=STUDY_EMAIL,
        notify_on=("Yes",),
        ack=nodes.study_contact_ack,
        error=YES_NO_ERROR,
    ),
    46: StepSpec(
        name="call_time",
        prompt="When would you prefer the counsellor to call you?",
        options=nodes.TIMES_OF_DAY,
        field="callTime",
        route=routing.CLOSED_STUDY,
        ack=nodes.call_time_ack,
        error="Please select a time preference",
    ),
    47: StepSpec(name="closed_study", terminal=True),
}

UPLOAD_STEP = 6
QUALIFICATION_STEP = 7


# ---------------------------------------------------------------------------
# Outcome helpers
# ---------------------------------------------------------------------------

def _messaging(messaging: dict | None) -> dict:
    return {**DEFAULT_MESSAGING, **(messaging or {})}


def _reject(error_text: str) -> Outcome:
    return Outcome(
        accepted=False,
        error_text=error_text,
        directives=(EmitMessage(error_text, delay_ms=MESSAGE_DELAY),),
    )


def _prompt_directives(spec: StepSpec, answers: dict, delay: int = MESSAGE_DELAY) -> list:
    directives = []
    text = spec.prompt_text(answers)
    if text:
        directives.append(EmitMessage(text, delay_ms=delay))
    if spec.options:
        directives.append(OfferOptions(spec.options, delay_ms=delay + OPTIONS_DELAY - MESSAGE_DELAY))
    return directives


def _closing_outcome(session: Session, messaging: dict, step: int) -> Outcome:
    ack = f"Thank you for your interest in {messaging['company_name']}! Our team will contact you soon."
    return Outcome(
        accepted=True,
        mutation=Mutation(step=step, status=CLOSED),
        directives=nodes.closing_directives(session.answers, messaging, ack),
    )


def _next_step(spec: StepSpec, value: str, answers: dict) -> int:
    if callable(spec.route):
        return spec.route(value, answers)
    return spec.route


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def evaluate(session: Session, raw_input: str, messaging: dict | None = None) -> Outcome:
    """Decide what a visitor's input does to the session.

    Deterministic in (session.step, session.answers, raw_input). A rejected
    input carries only the re-prompt message and no mutation.
    """
    messaging = _messaging(messaging)

    if session.closed:
        return _reject(nodes.closed_notice(messaging))

    spec = STEP_TABLE.get(session.step)
    if spec is None:
        return _closing_outcome(session, messaging, routing.CLOSED_WORK)
    if spec.terminal:
        return _closing_outcome(session, messaging, session.step)

    if spec.validator is not None:
        value, error = spec.validator(raw_input)
        if error:
            return _reject(error)
    else:
        value = raw_input.strip()
        if value not in spec.accepted_values():
            return _reject(spec.error)

    if spec.upload_value is not None and value == spec.upload_value:
        return Outcome(accepted=True, directives=(RequestUpload(),))

    added = {}
    if spec.field:
        added[spec.field] = value
    if spec.extra:
        added.update(spec.extra(value, {**session.answers, **added}))
    answers = {**session.answers, **added}

    next_step = _next_step(spec, value, answers)
    target = STEP_TABLE[next_step]

    directives = []
    if spec.checkpoint and value in spec.notify_on:
        directives += [
            SetProcessing(spec.checkpoint, True, nodes.PROCESSING_MESSAGES[spec.checkpoint]),
            TriggerNotification(spec.checkpoint, nodes.checkpoint_payload(spec.checkpoint, answers)),
            SetProcessing(spec.checkpoint, False),
        ]

    ack = spec.ack(value, answers) if spec.ack else None

    if target.terminal:
        directives += nodes.closing_directives(answers, messaging, ack)
        return Outcome(
            accepted=True,
            mutation=Mutation(step=next_step, answers=added, status=CLOSED),
            directives=tuple(directives),
        )

    delay = MESSAGE_DELAY
    if ack:
        directives.append(EmitMessage(ack, delay_ms=MESSAGE_DELAY))
        delay += _ACK_GAP
    directives += _prompt_directives(target, answers, delay)

    return Outcome(
        accepted=True,
        mutation=Mutation(step=next_step, answers=added),
        directives=tuple(directives),
    )


def upload_text(file_name: str) -> str:
    return f"Resume uploaded: {file_name}"


def evaluate_upload(session: Session, file_name: str, messaging: dict | None = None) -> Outcome:
    """Accept a resume upload while the resume question is pending."""
    messaging = _messaging(messaging)
    if session.closed:
        return _reject(nodes.closed_notice(messaging))
    if session.step != UPLOAD_STEP:
        return _reject("Please answer the current question before uploading a file.")

    name = os.path.basename(file_name.replace("\\", "/")).strip()
    if not name:
        return _reject("Please choose a file to upload.")

    return Outcome(
        accepted=True,
        mutation=Mutation(step=QUALIFICATION_STEP, answers={"resume": name}),
        directives=tuple(_prompt_directives(STEP_TABLE[QUALIFICATION_STEP], session.answers, 500)),
    )


def greeting_directives(messaging: dict | None = None) -> tuple:
    """Welcome message for a session with an empty transcript."""
    messaging = _messaging(messaging)
    return (
        EmitMessage(messaging["greeting"]),
        OfferOptions(STEP_TABLE[0].options, delay_ms=1000),
    )


def current_options(session: Session) -> tuple[Option, ...]:
    """Options pending at the session's current step."""
    if session.closed:
        return ()
    spec = STEP_TABLE.get(session.step)
    if spec is None:
        return ()
    return spec.options


def check_table(table: dict[int, StepSpec] | None = None) -> list[str]:
    """Return a list of structural problems with the transition table."""
    table = STEP_TABLE if table is None else table
    problems = []

    names = [spec.name for spec in table.values()]
    for name in sorted({n for n in names if names.count(n) > 1}):
        problems.append(f"duplicate step name: {name}")

    for step, spec in table.items():
        if spec.terminal:
            continue
        if not spec.edges:
            problems.append(f"step {step} has no outgoing edges")
        for target in spec.edges:
            if target not in table:
                problems.append(f"step {step} routes to unknown step {target}")
        if spec.validator is None and not spec.options:
            problems.append(f"step {step} accepts no input")

    seen, frontier = set(), [0]
    while frontier:
        step = frontier.pop()
        if step in seen or step not in table:
            continue
        seen.add(step)
        frontier.extend(table[step].edges)
    for step in sorted(set(table) - seen):
        problems.append(f"step {step} is unreachable")

    return problems


class FlowState(TypedDict, total=False):
    step: int
    value: str
    answers: dict


def _enter(step: int):
    return lambda state: {"step": step}


def _edge_router(spec: StepSpec):
    """Pick the next node from the accepted value, as evaluate() does."""
    def route(state: FlowState) -> str:
        target = _next_step(spec, state.get("value", ""), state.get("answers", {}))
        return STEP_TABLE[target].name

    return route


def build_graph():
    """Build and compile the LangGraph StateGraph for the transition table.

    This is useful for visualization and edge validation. Conversations are
    driven by evaluate(), not by invoking the compiled graph. Invoking it
    with {"value": ..., "answers": ...} walks the path that answering every
    question with that value would take and ends on its terminal step.
    """
    builder = StateGraph(FlowState)

    for step, spec in STEP_TABLE.items():
        builder.add_node(spec.name, _enter(step))

    builder.add_edge(START, STEP_TABLE[0].name)

    for step, spec in STEP_TABLE.items():
        if spec.terminal:
            builder.add_edge(spec.name, END)
            continue
        targets = [STEP_TABLE[t].name for t in spec.edges]
        if len(targets) == 1:
            builder.add_edge(spec.name, targets[0])
        else:
            builder.add_conditional_edges(spec.name, _edge_router(spec), targets)

    return builder.compile()
