from __future__ import annotations

from payanaagent import nodes
from payanaagent.graph import (
    STEP_TABLE,
    StepSpec,
    build_graph,
    check_table,
    current_options,
    evaluate,
    evaluate_upload,
    greeting_directives,
)
from payanaagent.state import (
    CLOSED,
    EmitMessage,
    GERMAN_EMAIL,
    MEETING_EMAIL,
    OfferOptions,
    RequestUpload,
    STUDY_EMAIL,
    Session,
    SetProcessing,
    TriggerNotification,
    UG_EMAIL,
)

IDENTITY = {"name": "Priya Raman", "age": "27", "email": "priya@example.com"}


def session_at(step: int, **answers) -> Session:
    session = Session.new("s1")
    session.step = step
    session.answers = {**IDENTITY, **answers}
    return session


def run(session: Session, *inputs: str):
    outcomes = []
    for text in inputs:
        outcome = evaluate(session, text)
        assert outcome.accepted, (session.step, text, outcome.error_text)
        outcomes.append(outcome)
        if outcome.mutation is not None:
            session = outcome.mutation.apply(session)
    return session, outcomes


def emitted(outcome) -> list[str]:
    return [d.text for d in outcome.directives if isinstance(d, EmitMessage)]


def offered(outcome) -> list[str]:
    for d in outcome.directives:
        if isinstance(d, OfferOptions):
            return [o.value for o in d.options]
    return []


def test_get_started_asks_for_name():
    outcome = evaluate(Session.new("s1"), "Get Started")
    assert outcome.accepted
    assert outcome.mutation.step == 1
    assert emitted(outcome) == ["Great! Let's get started. Please enter your full name:"]


def test_greeting_accepts_any_text():
    outcome = evaluate(Session.new("s1"), "hello there")
    assert outcome.mutation.step == 1


def test_invalid_name_is_rejected_without_mutation():
    session = session_at(1)
    before = session.to_dict()
    outcome = evaluate(session, "John 123")
    assert not outcome.accepted
    assert outcome.mutation is None
    assert outcome.error_text == nodes.NAME_ERROR
    assert "valid name" in outcome.error_text
    assert emitted(outcome) == [nodes.NAME_ERROR]
    assert session.to_dict() == before


def test_name_is_used_in_age_prompt():
    session, (outcome,) = run(session_at(1), "  Priya Raman ")
    assert session.answers["name"] == "Priya Raman"
    assert emitted(outcome) == ["Thanks Priya Raman! What's your age?"]


def test_age_bounds():
    assert not evaluate(session_at(2), "15").accepted
    assert not evaluate(session_at(2), "66").accepted
    assert not evaluate(session_at(2), "twenty").accepted
    assert evaluate(session_at(2), "16").mutation.answers == {"age": "16"}
    assert evaluate(session_at(2), "65").accepted


def test_email_is_stored_lower_cased():
    outcome = evaluate(session_at(3), "Priya@Example.COM")
    assert outcome.mutation.answers == {"email": "priya@example.com"}
    assert not evaluate(session_at(3), "priya@example").accepted
    assert evaluate(session_at(3), "priya.example.com").error_text == nodes.EMAIL_ERROR


def test_work_purpose_asks_about_passport():
    outcome = evaluate(session_at(4), "Work")
    assert outcome.mutation.step == 5
    assert emitted(outcome) == ["Do you have a valid passport?"]
    assert offered(outcome) == ["Yes", "No"]


def test_enumerated_input_is_case_sensitive():
    outcome = evaluate(session_at(5), "yes")
    assert not outcome.accepted
    assert outcome.error_text == "Please select either Yes or No"
    assert evaluate(session_at(5), "  Yes ").mutation.step == 6


def test_ug_completed_enters_ug_major_branch():
    outcome = evaluate(session_at(7), "UG Completed")
    assert outcome.mutation.step == 22
    assert outcome.mutation.answers["currentFlow"] == "ug_selection"
    assert offered(outcome) == ["Nurses", "Dentist", "Engineering", "Arts Background", "MBBS"]


def test_other_qualifications_take_generic_experience_step():
    outcome = evaluate(session_at(7), "12th Completed")
    assert outcome.mutation.step == 8
    assert outcome.mutation.answers["currentFlow"] == "standard"


def test_evaluate_is_deterministic():
    session = session_at(10, purpose="Work", passport="Yes", experience="1-2yr")
    assert evaluate(session, "Yes") == evaluate(session, "Yes")
    assert evaluate(session, "Maybe") == evaluate(session, "Maybe")


def test_german_checkpoint_notifies_for_yes_and_no():
    for answer in ("Yes", "No"):
        outcome = evaluate(session_at(10, purpose="Work"), answer)
        assert outcome.mutation.step == 11
        first = outcome.directives[:3]
        assert first[0] == SetProcessing(GERMAN_EMAIL, True, nodes.PROCESSING_MESSAGES[GERMAN_EMAIL])
        assert isinstance(first[1], TriggerNotification)
        assert first[1].payload["germanLanguage"] == answer
        assert first[1].payload["email"] == "priya@example.com"
        assert first[2] == SetProcessing(GERMAN_EMAIL, False)


def test_passport_no_acknowledges_then_asks_journey():
    outcome = evaluate(session_at(5), "No")
    assert outcome.mutation.step == 19
    ack, prompt = [d for d in outcome.directives if isinstance(d, EmitMessage)]
    assert ack.text.startswith("You have some time")
    assert prompt.delay_ms > ack.delay_ms
    assert offered(outcome) == ["Yes", "Claim Free Passport", "Register Now"]


def test_upload_request_keeps_step():
    outcome = evaluate(session_at(6), "Upload Resume")
    assert outcome.accepted
    assert outcome.mutation is None
    assert outcome.directives == (RequestUpload(),)


def test_no_resume_moves_to_qualification():
    outcome = evaluate(session_at(6), "No Resume")
    assert outcome.mutation.step == 7
    assert outcome.mutation.answers == {"resume": "No resume"}


def test_upload_stores_file_name():
    outcome = evaluate_upload(session_at(6), "C:\\Users\\priya\\cv.pdf")
    assert outcome.mutation.step == 7
    assert outcome.mutation.answers == {"resume": "cv.pdf"}
    assert emitted(outcome) == ["What is your highest qualification?"]


def test_upload_outside_resume_step_is_rejected():
    outcome = evaluate_upload(session_at(5), "cv.pdf")
    assert not outcome.accepted
    assert outcome.mutation is None


def test_dentist_german_question_mentions_exams():
    outcome = evaluate(session_at(23, ugMajor="Dentist"), "No")
    assert outcome.mutation.step == 25
    assert emitted(outcome) == [
        "Are you willing to learn German language and ready to clear FSP and KP exams?"
    ]
    outcome = evaluate(session_at(23, ugMajor="Nurses"), "No")
    assert emitted(outcome) == ["Are you willing to learn German language?"]


def test_ug_german_no_closes_without_notification():
    outcome = evaluate(session_at(25, ugMajor="Nurses", currentFlow="ug_nurses"), "No")
    assert outcome.mutation.step == 29
    assert outcome.mutation.status == CLOSED
    assert not any(isinstance(d, TriggerNotification) for d in outcome.directives)
    ack, summary, closing = outcome.directives
    assert ack.delay_ms < summary.delay_ms < closing.delay_ms
    assert summary.kind == "summary"
    assert summary.text.startswith("📋 Summary of Your Information")
    assert "Nurses" in closing.text


def test_ug_german_yes_notifies():
    outcome = evaluate(session_at(25, ugMajor="MBBS"), "Yes")
    assert outcome.mutation.step == 27
    assert outcome.mutation.answers["examReadiness"] == "Yes"
    triggers = [d for d in outcome.directives if isinstance(d, TriggerNotification)]
    assert [t.checkpoint for t in triggers] == [UG_EMAIL]
    assert triggers[0].payload["ugMajor"] == "MBBS"


def test_work_path_to_appointment():
    session = session_at(4)
    session, outcomes = run(
        session,
        "Work", "Yes", "No Resume", "PG Completed", "3-5yr", "Yes", "Yes", "Yes",
        "Need more clarification", "Yes", "Google Meet appointment", "Evening", "Tomorrow",
    )
    assert session.step == 17
    assert session.status == CLOSED
    assert session.answers["appointmentConfirmed"] == "Yes"
    texts = emitted(outcomes[-1])
    assert texts[0].startswith("Perfect! We've scheduled your Google Meet appointment for Tomorrow Evening.")
    assert "Not provided" not in texts[1]
    assert "No resume" in texts[1]


def test_need_some_time_asks_entry_year():
    session, outcomes = run(session_at(12), "Need some time", "2027")
    assert session.step == 21
    assert offered(outcomes[0]) == ["2026", "2027", "2028"]
    assert emitted(outcomes[1])[0].startswith("Great! We've noted that you want to enter Germany in 2027.")


def test_study_branch():
    session, outcomes = run(
        session_at(4),
        "Study", "Master's", "Germany", "2026", "Preparing", "Education Loan", "Yes", "Morning",
    )
    assert session.step == 47
    assert session.status == CLOSED
    triggers = [d for d in outcomes[6].directives if isinstance(d, TriggerNotification)]
    assert triggers[0].checkpoint == STUDY_EMAIL
    assert triggers[0].payload["destination"] == "Germany"
    summary = [d for d in outcomes[-1].directives if getattr(d, "kind", "") == "summary"][0]
    assert "Master's" in summary.text
    assert "Passport" not in summary.text


def test_closed_session_rejects_input():
    session = session_at(21)
    session.status = CLOSED
    outcome = evaluate(session, "Yes")
    assert not outcome.accepted
    assert outcome.mutation is None
    assert emitted(outcome) == [nodes.closed_notice(nodes.DEFAULT_MESSAGING)]


def test_unknown_step_closes_conversation():
    outcome = evaluate(session_at(26), "anything")
    assert outcome.accepted
    assert outcome.mutation.step == 21
    assert outcome.mutation.status == CLOSED
    assert any(getattr(d, "kind", "") == "summary" for d in outcome.directives)


def test_messaging_overrides_company_text():
    session = session_at(21)
    session.status = CLOSED
    outcome = evaluate(session, "hi", {"company_name": "Acme", "helpline": "123"})
    assert emitted(outcome)[0].startswith("Thank you for your interest in Acme!")


def test_greeting_directives_offer_get_started():
    greeting, options = greeting_directives()
    assert greeting.text == nodes.DEFAULT_MESSAGING["greeting"]
    assert greeting.delay_ms == 0
    assert [o.value for o in options.options] == ["Get Started"]


def test_current_options():
    assert [o.value for o in current_options(session_at(5))] == ["Yes", "No"]
    assert current_options(session_at(1)) == ()
    closed = session_at(21)
    closed.status = CLOSED
    assert current_options(closed) == ()


def test_table_is_consistent():
    assert check_table() == []
    assert 26 not in STEP_TABLE


def test_check_table_reports_problems():
    table = {
        0: StepSpec(name="start", options=nodes.YES_NO, route=5),
        1: StepSpec(name="start", terminal=True),
    }
    problems = check_table(table)
    assert "duplicate step name: start" in problems
    assert "step 0 routes to unknown step 5" in problems
    assert "step 1 is unreachable" in problems


def test_build_graph_has_node_per_step():
    graph = build_graph()
    for spec in STEP_TABLE.values():
        assert spec.name in graph.nodes


def test_appointment_date_sends_meeting_confirmation():
    session = session_at(16, appointmentType="Google Meet appointment", appointmentTime="Evening")
    outcome = evaluate(session, "This Weekend")
    triggers = [d for d in outcome.directives if isinstance(d, TriggerNotification)]
    assert [t.checkpoint for t in triggers] == [MEETING_EMAIL]
    assert triggers[0].payload == {
        **IDENTITY,
        "appointmentType": "Google Meet appointment",
        "appointmentTime": "Evening",
        "appointmentDate": "This Weekend",
    }
    assert outcome.directives[0] == SetProcessing(MEETING_EMAIL, True, nodes.PROCESSING_MESSAGES[MEETING_EMAIL])


def test_graph_routes_on_the_accepted_value():
    graph = build_graph()
    assert graph.invoke({"value": "Yes", "answers": {}})["step"] == 21
    assert graph.invoke({"value": "No", "answers": {}})["step"] == 20
    assert graph.invoke({"value": "Study", "answers": {}})["step"] == 47
