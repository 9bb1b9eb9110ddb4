"""Keyword-driven disaster assistant."""
from typing import Callable, List, Tuple

GREETING = "Hello! I'm here to help with disaster-related questions. How can I assist you?"
DEFAULT_REPLY = "I'm not sure how to help with that. Could you provide more details?"


def _mentions(*keywords: str) -> Callable[[str], bool]:
    return lambda text: any(keyword in text for keyword in keywords)


# Evaluated in order, first match wins
RULES: List[Tuple[Callable[[str], bool], str]] = [
    (
        _mentions("flood"),
        "In case of flooding, move to higher ground immediately. Don't walk or drive "
        "through floodwaters. Six inches of water can knock you down, and one foot of "
        "moving water can sweep your vehicle away.",
    ),
    (
        _mentions("earthquake"),
        "During an earthquake, drop to the ground, take cover under a sturdy desk or "
        "table, and hold on until the shaking stops. Stay away from windows and "
        "exterior walls.",
    ),
    (
        _mentions("shelter", "camp"),
        "There are 38 active shelters in the area. The closest ones can be found on "
        "the map. Look for the home icons to locate them.",
    ),
    (
        _mentions("emergency", "help"),
        "For immediate emergency assistance, please use the SOS button at the top of "
        "the page or call 1-800-DISASTER.",
    ),
    (
        _mentions("volunteer"),
        "Thank you for your interest in volunteering! Please sign up or log in using "
        "the button in the header and select 'Volunteer' as your role.",
    ),
    (
        _mentions("donate"),
        "To make donations, please sign up or log in using the button in the header "
        "and select 'Donor' as your role.",
    ),
]


def respond(message: str) -> str:
    text = (message or "").strip().lower()
    if not text:
        return GREETING
    for matches, reply in RULES:
        if matches(text):
            return reply
    return DEFAULT_REPLY
