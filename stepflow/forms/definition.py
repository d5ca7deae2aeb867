"""Form definition models and normalization of raw form payloads."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from ..contracts import FileRef


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    EMAIL = "email"
    DATE = "date"
    SELECT = "select"
    MULTISELECT = "multiselect"
    CHECKBOX = "checkbox"
    FILE_UPLOAD = "file_upload"
    INFO_TEXT = "info_text"


_FIELD_TYPE_ALIASES = {
    "multi_select": FieldType.MULTISELECT,
    "file": FieldType.FILE_UPLOAD,
}


class ConditionMode(str, Enum):
    ALL = "ALL"
    ANY = "ANY"


class ConditionRule(BaseModel):
    field_key: str
    operator: str = "EQ"
    value: Any = None


class Condition(BaseModel):
    mode: ConditionMode = ConditionMode.ALL
    rules: List[ConditionRule] = Field(default_factory=list)


class FieldLogic(BaseModel):
    show_when: Optional[Condition] = None
    require_when: Optional[Condition] = None

    def conditions(self) -> List[Condition]:
        return [c for c in (self.show_when, self.require_when) if c is not None]


class ValidationRules(BaseModel):
    required: Optional[bool] = None
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None
    custom_message: Optional[str] = None
    allowed_types: Optional[List[str]] = None


class SelectOption(BaseModel):
    label: str
    value: str


class UiOptions(BaseModel):
    placeholder: Optional[str] = None
    description: Optional[str] = None
    hidden: Optional[bool] = None
    options: Optional[List[SelectOption]] = None
    allowed_mime_types: Optional[List[str]] = None
    max_file_size_mb: Optional[float] = None
    max_files: Optional[int] = None


class FieldDefinition(BaseModel):
    id: str
    key: str
    type: FieldType = FieldType.TEXT
    label: str = ""
    validation: ValidationRules = Field(default_factory=ValidationRules)
    ui: UiOptions = Field(default_factory=UiOptions)
    logic: Optional[FieldLogic] = None
    default_value: Any = None

    @property
    def answer_key(self) -> str:
        return self.key or self.id

    @property
    def is_input(self) -> bool:
        return self.type != FieldType.INFO_TEXT


class SectionDefinition(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    fields: List[FieldDefinition] = Field(default_factory=list)


class FormDefinition(BaseModel):
    sections: List[SectionDefinition] = Field(default_factory=list)

    def fields(self) -> List[FieldDefinition]:
        return [field for section in self.sections for field in section.fields]

    def input_fields(self) -> List[FieldDefinition]:
        return [field for field in self.fields() if field.is_input]

    def alias_map(self) -> Dict[str, str]:
        """Map both field ids and answer keys to the canonical answer key."""
        aliases: Dict[str, str] = {}
        for field in self.input_fields():
            aliases.setdefault(field.answer_key, field.answer_key)
        for field in self.input_fields():
            aliases.setdefault(field.id, field.answer_key)
        return aliases


# ---------------------------------------------------------------------------
# Normalization helpers


def _opt_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value.strip() else None


def _opt_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    return value if isinstance(value, (int, float)) else None


def _opt_str_list(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    items = [v for v in value if isinstance(v, str) and v]
    return items or None


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _normalize_type(raw: Any) -> FieldType:
    name = raw.strip().lower() if isinstance(raw, str) else ""
    if name in _FIELD_TYPE_ALIASES:
        return _FIELD_TYPE_ALIASES[name]
    try:
        return FieldType(name)
    except ValueError:
        return FieldType.TEXT


def _normalize_options(raw: Any) -> Optional[List[SelectOption]]:
    if not isinstance(raw, list):
        return None
    options = []
    for item in raw:
        item = _as_mapping(item)
        label, value = _opt_str(item.get("label")), _opt_str(item.get("value"))
        if label and value:
            options.append(SelectOption(label=label, value=value))
    return options or None


def _normalize_condition(raw: Any) -> Optional[Condition]:
    raw = _as_mapping(raw)
    rules = []
    for rule in raw.get("rules") or []:
        rule = _as_mapping(rule)
        ref = (
            _opt_str(rule.get("fieldKey"))
            or _opt_str(rule.get("field_key"))
            or _opt_str(rule.get("fieldId"))
            or _opt_str(rule.get("field_id"))
        )
        if not ref:
            continue
        operator = _opt_str(rule.get("operator")) or "EQ"
        rules.append(
            ConditionRule(field_key=ref, operator=operator.upper(), value=rule.get("value"))
        )
    if not rules:
        return None
    mode = str(raw.get("mode") or "ALL").upper()
    return Condition(
        mode=ConditionMode.ANY if mode == "ANY" else ConditionMode.ALL,
        rules=rules,
    )


def _normalize_logic(raw: Any) -> Optional[FieldLogic]:
    raw = _as_mapping(raw)
    show_when = _normalize_condition(raw.get("showWhen") or raw.get("show_when"))
    require_when = _normalize_condition(raw.get("requireWhen") or raw.get("require_when"))
    if show_when is None and require_when is None:
        return None
    return FieldLogic(show_when=show_when, require_when=require_when)


def _normalize_field(raw: Any, index: int) -> FieldDefinition:
    f = _as_mapping(raw)
    raw_validation = _as_mapping(f.get("validation"))
    raw_ui = _as_mapping(f.get("ui"))

    field_id = (
        _opt_str(f.get("id"))
        or _opt_str(f.get("fieldId"))
        or _opt_str(f.get("key"))
        or f"field_{index + 1}"
    )
    key = _opt_str(f.get("key")) or field_id

    required = raw_validation.get("required", f.get("required"))
    max_files = _opt_number(raw_ui.get("maxFiles"))
    validation = ValidationRules(
        required=required if isinstance(required, bool) else None,
        min=_opt_number(raw_validation.get("min", f.get("min"))),
        max=_opt_number(raw_validation.get("max", f.get("max"))),
        pattern=_opt_str(raw_validation.get("pattern")) or _opt_str(f.get("pattern")),
        custom_message=_opt_str(raw_validation.get("customMessage"))
        or _opt_str(f.get("customMessage")),
        allowed_types=_opt_str_list(raw_validation.get("allowedTypes"))
        or _opt_str_list(f.get("allowedTypes")),
    )
    ui = UiOptions(
        placeholder=_opt_str(raw_ui.get("placeholder")) or _opt_str(f.get("placeholder")),
        description=_opt_str(raw_ui.get("description")) or _opt_str(f.get("description")),
        hidden=raw_ui.get("hidden") if isinstance(raw_ui.get("hidden"), bool) else None,
        options=_normalize_options(raw_ui.get("options", f.get("options"))),
        allowed_mime_types=_opt_str_list(raw_ui.get("allowedMimeTypes")),
        max_file_size_mb=_opt_number(raw_ui.get("maxFileSizeMB")),
        max_files=int(max_files) if max_files is not None else None,
    )

    return FieldDefinition(
        id=field_id,
        key=key,
        type=_normalize_type(f.get("type")),
        label=_opt_str(f.get("label")) or f"Field {index + 1}",
        validation=validation,
        ui=ui,
        logic=_normalize_logic(f.get("logic")),
        default_value=f.get("defaultValue"),
    )


def _canonicalize_rule_refs(definition: FormDefinition) -> None:
    aliases = definition.alias_map()
    for field in definition.fields():
        if field.logic is None:
            continue
        for condition in field.logic.conditions():
            for rule in condition.rules:
                rule.field_key = aliases.get(rule.field_key, rule.field_key)


def normalize_form_definition(raw: Any) -> FormDefinition:
    """Normalize a raw form payload to a :class:`FormDefinition`.

    Accepts legacy payloads that use ``pages`` instead of ``sections``.
    Condition rules are rewritten to reference canonical answer keys, so a
    rule authored against a field id and one authored against its key point
    at the same field.
    """
    if isinstance(raw, FormDefinition):
        return raw

    d = _as_mapping(raw)
    raw_sections = d.get("sections")
    if not isinstance(raw_sections, list):
        raw_sections = d.get("pages") if isinstance(d.get("pages"), list) else []

    sections = []
    for s_index, raw_section in enumerate(raw_sections):
        s = _as_mapping(raw_section)
        raw_fields = s.get("fields") if isinstance(s.get("fields"), list) else []
        sections.append(
            SectionDefinition(
                id=_opt_str(s.get("id")) or f"section_{s_index + 1}",
                title=_opt_str(s.get("title")) or f"Section {s_index + 1}",
                description=_opt_str(s.get("description")),
                fields=[_normalize_field(f, i) for i, f in enumerate(raw_fields)],
            )
        )

    definition = FormDefinition(sections=sections)
    _canonicalize_rule_refs(definition)
    return definition


def get_form_fields(raw: Any) -> List[FieldDefinition]:
    """Flatten all fields of a (possibly raw) form definition."""
    return normalize_form_definition(raw).fields()


# ---------------------------------------------------------------------------
# File references


def extract_file_object_ids(value: Any) -> List[str]:
    """Collect file object ids from a file-upload answer value."""
    if not value:
        return []
    if isinstance(value, list):
        return [fid for item in value for fid in extract_file_object_ids(item)]
    if isinstance(value, str):
        return [value]
    if isinstance(value, Mapping):
        if isinstance(value.get("fileObjectId"), str):
            return [value["fileObjectId"]]
        if isinstance(value.get("fileObjectIds"), list):
            return [v for v in value["fileObjectIds"] if isinstance(v, str)]
    return []


def required_file_refs(raw_definition: Any, answers: Mapping[str, Any]) -> List[FileRef]:
    """List every file referenced from a required file-upload field."""
    refs: List[FileRef] = []
    if raw_definition is None:
        return refs
    for field in get_form_fields(raw_definition):
        if field.type != FieldType.FILE_UPLOAD or not field.validation.required:
            continue
        for file_id in extract_file_object_ids(answers.get(field.answer_key)):
            refs.append(FileRef(field_id=field.answer_key, file_object_id=file_id))
    return refs
