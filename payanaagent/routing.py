"""Branch routing for the questionnaire.

Each function takes the accepted value and the answers collected so far
(including the value just accepted) and returns the next step number.
"""

from __future__ import annotations


# Step numbers that more than one route refers to
WORK_START = 5
STUDY_START = 40
UG_MAJOR = 22
GENERIC_EXPERIENCE = 8
CONSULTATION = 13
ENTRY_YEAR = 18
FINANCIAL_SETUP = 19
CLOSED_WORK = 21
CLOSED_UG = 29
CLOSED_STUDY = 47


def route_after_purpose(value: str, answers: dict) -> int:
    if value == "Study":
        return STUDY_START
    return WORK_START


def route_after_passport(value: str, answers: dict) -> int:
    if value == "No":
        return FINANCIAL_SETUP
    return 6


def route_after_qualification(value: str, answers: dict) -> int:
    if value == "UG Completed":
        return UG_MAJOR
    return GENERIC_EXPERIENCE


def route_after_continue(value: str, answers: dict) -> int:
    if value == "Yes":
        return 12
    return CLOSED_WORK


def route_after_start_time(value: str, answers: dict) -> int:
    if value == "Need more clarification":
        return CONSULTATION
    if value == "Need some time":
        return ENTRY_YEAR
    return CLOSED_WORK


def route_after_consultation(value: str, answers: dict) -> int:
    if value == "Yes":
        return 14
    return CLOSED_WORK


def route_after_ug_experience(value: str, answers: dict) -> int:
    if value == "Yes":
        return 24
    return 25


def route_after_ug_german(value: str, answers: dict) -> int:
    if value == "Yes":
        return 27
    return CLOSED_UG


def route_after_ug_continue(value: str, answers: dict) -> int:
    if value == "Yes":
        return 28
    return CLOSED_UG


def route_after_study_contact(value: str, answers: dict) -> int:
    if value == "Yes":
        return 46
    return CLOSED_STUDY
