"""Validation of task payloads before they touch local state.

The server validates every create and update request; validating the same
rules locally lets a rejected mutation fail at the point of the user action
instead of sitting in the operation queue until the next sync pass.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from .datetime import parse_iso, to_iso_string

logger = logging.getLogger(__name__)


TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 1000
TAG_MAX_LENGTH = 30

PRIORITY_VALUES = ("low", "medium", "high")
CATEGORY_VALUES = ("short-term", "long-term", "custom")
FREQUENCY_VALUES = ("daily", "weekly", "monthly", "once")

CREATE_FIELDS = frozenset(
    ["title", "description", "priority", "category", "frequency", "dueDate", "tags"]
)
UPDATE_FIELDS = CREATE_FIELDS | {"completed"}

# snake_case spellings accepted from Python callers
FIELD_ALIASES = {
    "due_date": "dueDate",
}


class TaskValidationError(ValueError):
    """Raised when a task payload would be rejected by the server."""
    
    def __init__(self, message: str, field_name: Optional[str] = None, value: Any = None):
        self.field_name = field_name
        self.value = value
        super().__init__(message)


def _check_choice(field_name: str, value: Any, choices: Iterable[str]) -> str:
    value = getattr(value, "value", value)
    if value not in choices:
        raise TaskValidationError(
            f"'{field_name}' must be one of {', '.join(choices)}, got {value!r}",
            field_name, value
        )
    return value


def _check_tags(value: Any) -> List[str]:
    if isinstance(value, str) or not isinstance(value, (list, tuple, set, frozenset)):
        raise TaskValidationError("'tags' must be a list of strings", "tags", value)
    
    tags: List[str] = []
    for tag in value:
        if not isinstance(tag, str):
            raise TaskValidationError("'tags' must be a list of strings", "tags", value)
        tag = tag.strip()
        if len(tag) > TAG_MAX_LENGTH:
            raise TaskValidationError(
                f"Tag cannot be more than {TAG_MAX_LENGTH} characters: {tag!r}", "tags", tag
            )
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def validate_task_payload(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """Validate and normalize a create or update payload.
    
    Args:
        data: Field values keyed by wire name (camelCase). A few snake_case
              aliases are accepted and translated.
        partial: True for updates, where every field is optional and the
                 completion flag may be changed.
                 
    Returns:
        A new payload dictionary with normalized values, ready to be queued
        and sent to the server.
        
    Raises:
        TaskValidationError: If any field is unknown or invalid.
    """
    allowed = UPDATE_FIELDS if partial else CREATE_FIELDS
    payload: Dict[str, Any] = {}
    
    for key, value in data.items():
        key = FIELD_ALIASES.get(key, key)
        if key not in allowed:
            raise TaskValidationError(f"'{key}' is not allowed", key, value)
        
        if key == "title":
            if not isinstance(value, str) or not value.strip():
                raise TaskValidationError("Task title is required", key, value)
            value = value.strip()
            if len(value) > TITLE_MAX_LENGTH:
                raise TaskValidationError(
                    f"Title cannot be more than {TITLE_MAX_LENGTH} characters", key, value
                )
        elif key == "description":
            if value is not None:
                if not isinstance(value, str):
                    raise TaskValidationError("'description' must be a string", key, value)
                value = value.strip()
                if len(value) > DESCRIPTION_MAX_LENGTH:
                    raise TaskValidationError(
                        f"Description cannot be more than {DESCRIPTION_MAX_LENGTH} characters",
                        key, value
                    )
        elif key == "priority":
            value = _check_choice(key, value, PRIORITY_VALUES)
        elif key == "category":
            value = _check_choice(key, value, CATEGORY_VALUES)
        elif key == "frequency":
            value = _check_choice(key, value, FREQUENCY_VALUES)
        elif key == "dueDate":
            if value is not None:
                parsed = value if isinstance(value, datetime) else parse_iso(value)
                if parsed is None:
                    raise TaskValidationError("'dueDate' must be a valid date", key, value)
                value = to_iso_string(parsed)
        elif key == "tags":
            value = _check_tags(value)
        elif key == "completed":
            if not isinstance(value, bool):
                raise TaskValidationError("'completed' must be a boolean", key, value)
        
        payload[key] = value
    
    if not partial and "title" not in payload:
        raise TaskValidationError("Task title is required", "title", None)
    
    if partial and not payload:
        logger.debug("Empty update payload")
    
    return payload
