"""Tests for effective-answer composition and patch op validation."""

import pytest

from stepflow.answers import compute_effective, normalize_answers_shape, validate_patch_ops
from stepflow.contracts import AdminChangePatch
from stepflow.exceptions import BadRequestError


def _patch(ops, active=True):
    return AdminChangePatch(
        application_id="app-1",
        step_id="step-1",
        submission_version_id="v1",
        ops=ops,
        is_active=active,
    )


def test_normalize_unwraps_data_envelope():
    assert normalize_answers_shape({"data": {"a": 1, "b": 2}, "b": 0, "c": 3}) == {
        "a": 1,
        "b": 2,
        "c": 3,
    }


def test_normalize_keeps_lone_data_key_and_handles_non_mappings():
    assert normalize_answers_shape({"data": "raw"}) == {"data": "raw"}
    assert normalize_answers_shape(None) == {}
    assert normalize_answers_shape(["not", "a", "map"]) == {}


def test_compute_effective_applies_replace_ops_in_order():
    base = {"name": "Ada", "city": "London"}
    patches = [
        _patch([{"op": "replace", "path": "/city", "value": "Paris"}]),
        _patch([{"op": "replace", "path": "/city", "value": "Rome"}]),
        _patch([{"op": "replace", "path": "name", "value": "Grace"}]),
    ]

    effective = compute_effective(base, patches)

    assert effective == {"name": "Grace", "city": "Rome"}
    assert base == {"name": "Ada", "city": "London"}


def test_compute_effective_skips_inactive_patches_and_other_verbs():
    base = {"a": 1, "b": 2}
    patches = [
        _patch([{"op": "replace", "path": "/a", "value": 10}], active=False),
        _patch([{"op": "remove", "path": "/b"}, {"op": "add", "path": "/c", "value": 3}]),
    ]

    assert compute_effective(base, patches) == {"a": 1, "b": 2}


def test_compute_effective_is_deterministic_and_normalizes_base():
    base = {"data": {"x": [1, 2]}, "y": True}
    patches = [_patch([{"op": "replace", "path": "/x", "value": [3]}])]

    first = compute_effective(base, patches)
    second = compute_effective(base, patches)

    assert first == second == {"x": [3], "y": True}
    first["x"].append(4)
    assert patches[0].ops[0]["value"] == [3]


def test_validate_patch_ops_accepts_well_formed_ops():
    ops = [
        {"op": "replace", "path": "/a", "value": None},
        {"op": "remove", "path": "/b"},
        {"op": "move", "from": "/c", "path": "/d"},
    ]
    assert validate_patch_ops(ops) == ops


@pytest.mark.parametrize(
    "ops, message",
    [
        ({"op": "replace"}, "must be an array"),
        (["replace"], "Invalid patch operation"),
        ([{"op": "merge", "path": "/a"}], "Invalid patch op"),
        ([{"op": "replace", "path": "a", "value": 1}], "Invalid patch path"),
        ([{"op": "add", "path": "/a"}], "requires a 'value'"),
        ([{"op": "copy", "path": "/a", "from": "b"}], "valid 'from'"),
    ],
)
def test_validate_patch_ops_rejects_malformed_ops(ops, message):
    with pytest.raises(BadRequestError) as exc_info:
        validate_patch_ops(ops)
    assert message in exc_info.value.message
