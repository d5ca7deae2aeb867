import pytest

from stepflow.forms import required_file_refs, validate_answers


def _form(*fields):
    return {"sections": [{"id": "main", "title": "Main", "fields": list(fields)}]}


def _messages(form, answers):
    return {issue["field"]: issue["message"] for issue in validate_answers(form, answers)}


def test_required_fields_report_missing_values():
    form = _form(
        {"key": "name", "type": "text", "validation": {"required": True}},
        {"key": "bio", "type": "textarea"},
    )
    assert _messages(form, {"name": "  "}) == {"name": "Required"}
    assert _messages(form, {"name": "Ada"}) == {}


def test_hidden_fields_are_not_validated():
    form = _form(
        {"key": "attended", "type": "select"},
        {
            "key": "year",
            "type": "number",
            "required": True,
            "logic": {"showWhen": {"rules": [{"fieldKey": "attended", "value": "yes"}]}},
        },
    )
    assert _messages(form, {"attended": "no"}) == {}
    assert _messages(form, {"attended": "yes"}) == {"year": "Required"}


def test_require_when_makes_field_conditionally_required():
    form = _form(
        {"key": "diet", "type": "select"},
        {
            "key": "diet_details",
            "type": "text",
            "logic": {
                "requireWhen": {
                    "mode": "ANY",
                    "rules": [
                        {"fieldKey": "diet", "operator": "IN", "value": ["vegan", "other"]},
                    ],
                }
            },
        },
    )
    assert _messages(form, {"diet": "none"}) == {}
    assert _messages(form, {"diet": "other"}) == {"diet_details": "Required"}


@pytest.mark.parametrize(
    "field, value, message",
    [
        ({"type": "email"}, "not-an-email", "Invalid email address"),
        ({"type": "number"}, "abc", "Must be a number"),
        ({"type": "number", "validation": {"min": 18}}, 17, "Min 18"),
        ({"type": "number", "max": 5}, "6", "Max 5"),
        ({"type": "text", "validation": {"max": 3}}, "abcd", "Max 3 characters"),
        (
            {"type": "text", "validation": {"pattern": "^[A-Z]+$", "customMessage": "Caps only"}},
            "abc",
            "Caps only",
        ),
        (
            {"type": "select", "ui": {"options": [{"label": "Yes", "value": "yes"}]}},
            "maybe",
            "Select a valid option",
        ),
        ({"type": "date"}, "31/12/2024", "Invalid date"),
        ({"type": "checkbox", "required": True}, False, "Required"),
        ({"type": "checkbox"}, "yes", "Must be true or false"),
        ({"type": "multiselect"}, "a", "Must be a list of values"),
        ({"type": "multiselect", "validation": {"min": 2}}, ["a"], "Min 2"),
        ({"type": "file_upload", "ui": {"maxFiles": 1}}, ["f1", "f2"], "Max 1 files"),
    ],
)
def test_type_specific_rules(field, value, message):
    form = _form({"key": "answer", **field})
    assert _messages(form, {"answer": value}) == {"answer": message}


@pytest.mark.parametrize(
    "field, value",
    [
        ({"type": "email"}, "ada@example.com"),
        ({"type": "number", "validation": {"min": 1, "max": 10}}, "7"),
        ({"type": "date"}, "2024-12-31"),
        ({"type": "checkbox", "required": True}, True),
        ({"type": "multiselect", "required": True}, ["a", "b"]),
        ({"type": "file_upload", "required": True}, {"fileObjectId": "f1"}),
        ({"type": "text", "validation": {"pattern": "(["}}, "anything"),
    ],
)
def test_valid_values_pass(field, value):
    form = _form({"key": "answer", **field})
    assert validate_answers(form, {"answer": value}) == []


def test_info_text_is_never_validated():
    form = _form({"id": "intro", "type": "info_text", "required": True})
    assert validate_answers(form, {}) == []


def test_required_file_refs_only_lists_required_upload_fields():
    form = _form(
        {"key": "passport", "type": "file_upload", "required": True},
        {"key": "extra", "type": "file", "validation": {"required": False}},
    )
    answers = {
        "passport": [{"fileObjectId": "f1"}, "f2"],
        "extra": {"fileObjectIds": ["f3"]},
    }

    refs = required_file_refs(form, answers)

    assert [(ref.field_id, ref.file_object_id) for ref in refs] == [
        ("passport", "f1"),
        ("passport", "f2"),
    ]
    assert required_file_refs(None, answers) == []
