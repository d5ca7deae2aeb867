"""Effective-answer composition.

A submission snapshot is never mutated. Staff corrections live in patches
that overlay the snapshot; the *effective* answers are the snapshot with
every active patch applied in creation order. The composition is pure so
exports, detail views and the review queue agree on the same bytes.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .contracts import AdminChangePatch
from .exceptions import BadRequestError

VALID_PATCH_OPS = ("replace", "add", "remove", "test", "move", "copy")


def normalize_answers_shape(answers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Unwrap the legacy ``{"data": {...}}`` answer envelope.

    Keys of a nested ``data`` object are merged upward (overriding outer keys)
    and ``data`` is dropped whenever other keys are present. Anything that is
    not a mapping normalizes to an empty dict.
    """
    if not isinstance(answers, Mapping):
        return {}

    normalized = dict(answers)
    nested = normalized.get("data")
    if isinstance(nested, Mapping):
        normalized.update(nested)
    if "data" in normalized and any(key != "data" for key in normalized):
        del normalized["data"]
    return normalized


def _field_path(path: str) -> str:
    return path[1:] if path.startswith("/") else path


def compute_effective(
    base_answers: Optional[Mapping[str, Any]],
    patches: Iterable[AdminChangePatch],
) -> Dict[str, Any]:
    """Apply active ``replace`` ops from ``patches`` on top of ``base_answers``.

    ``patches`` must already be in creation order. Inactive patches and op
    verbs other than ``replace`` are skipped.
    """
    effective = copy.deepcopy(normalize_answers_shape(base_answers))
    for patch in patches:
        if not patch.is_active:
            continue
        for op in patch.ops or []:
            if not isinstance(op, Mapping):
                continue
            if op.get("op") != "replace" or not op.get("path"):
                continue
            effective[_field_path(op["path"])] = copy.deepcopy(op.get("value"))
    return effective


def validate_patch_ops(ops: Any) -> List[Dict[str, Any]]:
    """Check the shape of JSON-patch style ops before they are stored."""
    if not isinstance(ops, list):
        raise BadRequestError("Patch ops must be an array")

    for op in ops:
        if not isinstance(op, Mapping):
            raise BadRequestError("Invalid patch operation")
        verb = op.get("op")
        if verb not in VALID_PATCH_OPS:
            raise BadRequestError(f"Invalid patch op: {verb}")
        path = op.get("path")
        if not isinstance(path, str) or not path.startswith("/"):
            raise BadRequestError(f"Invalid patch path: {path}")
        if verb in ("add", "replace", "test") and "value" not in op:
            raise BadRequestError(f"Patch op '{verb}' requires a 'value' field")
        if verb in ("move", "copy"):
            source = op.get("from")
            if not isinstance(source, str) or not source.startswith("/"):
                raise BadRequestError(f"Patch op '{verb}' requires a valid 'from' path")
    return [dict(op) for op in ops]
