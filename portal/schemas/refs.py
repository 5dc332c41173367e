from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class StudentById:
    id: int


@dataclass(frozen=True)
class StudentByEmail:
    email: str


StudentRef = Union[StudentById, StudentByEmail]


def parse_student_ref(value: str) -> StudentRef:
    """Interpret a path segment as a numeric student id or an e-mail address."""
    value = value.strip()
    if value.isdigit():
        return StudentById(int(value))
    return StudentByEmail(value.lower())
