"""
Inbound payload normalization.

The front end sends the same field in camelCase or snake_case and sometimes
puts an e-mail address in ``student_id``. Every body goes through
``normalize_keys`` (and, for requests, ``normalize_student_fields``) before it
is validated against the single snake_case schema.
"""
import re
from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel, ValidationError

from portal.core.exceptions import InvalidInputError

ModelT = TypeVar("ModelT", bound=BaseModel)

# Acronym runs stay together: studentID -> student_id, HTTPStatus -> http_status
_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def to_snake(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def normalize_keys(raw: Any) -> Dict[str, Any]:
    """Return a copy of ``raw`` with snake_case keys. Snake_case spellings win over camelCase ones."""
    if not isinstance(raw, dict):
        raise InvalidInputError("Request body must be a JSON object")
    normalized: Dict[str, Any] = {}
    for key, value in raw.items():
        if to_snake(key) != key:
            normalized[to_snake(key)] = value
    for key, value in raw.items():
        if to_snake(key) == key:
            normalized[key] = value
    return normalized


def normalize_student_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Split a legacy ``student_id`` into a numeric id or an e-mail."""
    data = dict(data)
    student_id = data.get("student_id")
    if isinstance(student_id, str):
        value = student_id.strip()
        if "@" in value:
            if not data.get("student_email"):
                data["student_email"] = value
            data["student_id"] = None
        elif value.isdigit():
            data["student_id"] = int(value)
        elif not value:
            data["student_id"] = None
    if isinstance(data.get("student_email"), str):
        data["student_email"] = data["student_email"].strip().lower() or None
    return data


def parse_body(model: Type[ModelT], raw: Any) -> ModelT:
    """Normalize ``raw`` and validate it against ``model``, raising InvalidInputError on failure."""
    data = normalize_keys(raw)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        problems = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        fields = ", ".join(p["field"] for p in problems if p["field"])
        raise InvalidInputError(f"Invalid request body: {fields or 'malformed payload'}", details={"errors": problems})
