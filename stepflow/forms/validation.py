"""Answer validation against a form definition, honoring conditional logic."""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional

from .definition import (
    Condition,
    ConditionMode,
    ConditionRule,
    FieldDefinition,
    FieldType,
    extract_file_object_ids,
    normalize_form_definition,
)

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def _to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value.strip():
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _rule_matches(rule: ConditionRule, values: Mapping[str, Any]) -> bool:
    actual = values.get(rule.field_key)
    expected = rule.value
    op = rule.operator

    if op == "EXISTS":
        return not _is_empty(actual)
    if op == "NOT_EXISTS":
        return _is_empty(actual)
    if op == "EQ":
        return actual == expected
    if op == "NEQ":
        return actual != expected
    if op == "IN":
        return isinstance(expected, list) and actual in expected
    if op == "NOT_IN":
        return isinstance(expected, list) and actual not in expected
    if op == "CONTAINS":
        if isinstance(actual, list):
            return expected in actual
        if isinstance(actual, str) and isinstance(expected, str):
            return expected in actual
        return False
    if op in ("GT", "LT"):
        left, right = _to_number(actual), _to_number(expected)
        if left is None or right is None:
            return False
        return left > right if op == "GT" else left < right
    return False


def evaluate_condition(condition: Condition, values: Mapping[str, Any]) -> bool:
    results = [_rule_matches(rule, values) for rule in condition.rules]
    if condition.mode == ConditionMode.ANY:
        return any(results)
    return all(results)


def is_field_visible(field: FieldDefinition, values: Mapping[str, Any]) -> bool:
    if field.logic is None or field.logic.show_when is None:
        return True
    return evaluate_condition(field.logic.show_when, values)


def is_field_required(field: FieldDefinition, values: Mapping[str, Any]) -> bool:
    if field.validation.required:
        return True
    if field.logic is not None and field.logic.require_when is not None:
        return evaluate_condition(field.logic.require_when, values)
    return False


def _is_date(text: str) -> bool:
    for parse in (date.fromisoformat, datetime.fromisoformat):
        try:
            parse(text)
            return True
        except ValueError:
            continue
    return False


def _check_field(
    field: FieldDefinition, value: Any, values: Mapping[str, Any]
) -> Optional[str]:
    if not is_field_visible(field, values):
        return None

    required = is_field_required(field, values)
    rules = field.validation

    if field.type == FieldType.CHECKBOX:
        if value is None:
            return "Required" if required else None
        if not isinstance(value, bool):
            return "Must be true or false"
        return "Required" if required and value is not True else None

    if field.type == FieldType.MULTISELECT:
        if value is None:
            return "Required" if required else None
        if not isinstance(value, list):
            return "Must be a list of values"
        entries = [v for v in value if isinstance(v, str) and v.strip()]
        if required and not entries:
            return "Required"
        if rules.min is not None and entries and len(entries) < rules.min:
            return f"Min {rules.min:g}"
        if rules.max is not None and entries and len(entries) > rules.max:
            return f"Max {rules.max:g}"
        return None

    if field.type == FieldType.NUMBER:
        if _is_empty(value):
            return "Required" if required else None
        number = _to_number(value)
        if number is None:
            return "Must be a number"
        if rules.min is not None and number < rules.min:
            return f"Min {rules.min:g}"
        if rules.max is not None and number > rules.max:
            return f"Max {rules.max:g}"
        return None

    if field.type == FieldType.FILE_UPLOAD:
        files = extract_file_object_ids(value)
        if not files:
            return "Required" if required else None
        max_files = field.ui.max_files
        if max_files is not None and len(files) > max_files:
            return f"Max {max_files} files"
        return None

    text = "" if value is None else value if isinstance(value, str) else str(value)
    if not text.strip():
        return "Required" if required else None

    if field.type == FieldType.EMAIL and not _EMAIL_RE.match(text.strip()):
        return "Invalid email address"
    if field.type in (FieldType.TEXT, FieldType.TEXTAREA):
        if rules.min is not None and len(text) < rules.min:
            return f"Min {rules.min:g} characters"
        if rules.max is not None and len(text) > rules.max:
            return f"Max {rules.max:g} characters"
    if field.type == FieldType.TEXT and rules.pattern:
        try:
            if not re.search(rules.pattern, text):
                return rules.custom_message or "Invalid format"
        except re.error:
            # legacy patterns that do not compile are not enforced
            logger.debug(f"Ignoring invalid pattern on field {field.answer_key}")
    if field.type == FieldType.SELECT and field.ui.options:
        if text not in {option.value for option in field.ui.options}:
            return "Select a valid option"
    if field.type == FieldType.DATE and not _is_date(text.strip()):
        return "Invalid date"
    return None


def validate_answers(raw_definition: Any, answers: Mapping[str, Any]) -> List[Dict[str, str]]:
    """Return one ``{"field", "message"}`` issue per invalid input field."""
    definition = normalize_form_definition(raw_definition)
    issues: List[Dict[str, str]] = []
    for field in definition.input_fields():
        message = _check_field(field, answers.get(field.answer_key), answers)
        if message:
            issues.append({"field": field.answer_key, "message": message})
    return issues
