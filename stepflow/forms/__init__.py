"""Form definitions, field dependency graphs and answer validation."""

from __future__ import annotations

from .definition import (
    Condition,
    ConditionMode,
    ConditionRule,
    FieldDefinition,
    FieldType,
    FormDefinition,
    extract_file_object_ids,
    get_form_fields,
    normalize_form_definition,
    required_file_refs,
)
from .graph import FieldGraph, build_field_graph
from .validation import is_field_required, is_field_visible, validate_answers

__all__ = [
    "Condition",
    "ConditionMode",
    "ConditionRule",
    "FieldDefinition",
    "FieldGraph",
    "FieldType",
    "FormDefinition",
    "build_field_graph",
    "extract_file_object_ids",
    "get_form_fields",
    "is_field_required",
    "is_field_visible",
    "normalize_form_definition",
    "required_file_refs",
    "validate_answers",
]
