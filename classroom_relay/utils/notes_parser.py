"""Parser for the labelled fields embedded in calendar event notes.

Calendar notes are the only channel carrying student metadata, written by the
scheduling UI as lines such as::

    Student: Jane Doe #12
    Phone: 15145550199
    TruckClass: yes
    ClassNumber: 4
    Exam: Laval

Notes may arrive wrapped in HTML. Fields that are present but unreadable are
reported in ``problems`` so callers can flag the event instead of guessing.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional

_TAGS = re.compile(r"<[^>]+>")
_PHONE_LABEL = re.compile(r"Phone:[ \t]*([^\n\r]*)", re.IGNORECASE)
_STUDENT = re.compile(r"Student:[ \t]*([^\n\r]+)", re.IGNORECASE)
_TRUCK = re.compile(r"TruckClass:\s*yes", re.IGNORECASE)
_CLASS_NUMBER_LABEL = re.compile(r"ClassNumber:[ \t]*([^\n\r]*)", re.IGNORECASE)
_EXAM = re.compile(r"Exam:[ \t]*([^\n\r]*)", re.IGNORECASE)
_STUDENT_COUNTER = re.compile(r"\s*#\d+$")

MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15


@dataclass
class ParsedNotes:
    phone: Optional[str] = None
    student: Optional[str] = None
    is_truck: bool = False
    class_number: Optional[str] = None
    is_exam: bool = False
    exam_location: Optional[str] = None
    problems: List[str] = field(default_factory=list)

    @property
    def is_malformed(self) -> bool:
        return bool(self.problems)


def strip_html(notes: str) -> str:
    text = re.sub(r"<br\s*/?>|</p>", "\n", notes, flags=re.IGNORECASE)
    return _TAGS.sub("", text)


def _parse_phone(raw: str, problems: List[str]) -> Optional[str]:
    match = re.match(r"\+?(\d+)", raw.strip())
    if not match:
        problems.append(f"phone label has no digits: {raw.strip()!r}")
        return None
    digits = match.group(1)
    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        problems.append(f"phone has {len(digits)} digits: {digits!r}")
        return None
    return digits


def parse_notes(notes: Optional[str]) -> ParsedNotes:
    text = strip_html(notes or "")
    parsed = ParsedNotes()

    phone_match = _PHONE_LABEL.search(text)
    if phone_match:
        parsed.phone = _parse_phone(phone_match.group(1), parsed.problems)

    student_match = _STUDENT.search(text)
    if student_match:
        parsed.student = _STUDENT_COUNTER.sub("", student_match.group(1).strip()) or None

    parsed.is_truck = bool(_TRUCK.search(text))

    number_match = _CLASS_NUMBER_LABEL.search(text)
    if number_match:
        raw = number_match.group(1).strip()
        if raw.isdigit():
            parsed.class_number = raw
        else:
            parsed.problems.append(f"class number is not numeric: {raw!r}")

    exam_match = _EXAM.search(text)
    if exam_match:
        parsed.is_exam = True
        parsed.exam_location = exam_match.group(1).strip() or None

    return parsed
