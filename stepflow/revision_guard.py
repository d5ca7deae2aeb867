"""Targeted-revision guard.

While a step is in NEEDS_REVISION because a reviewer asked about specific
fields, the applicant may only change those fields and the fields that
conditionally depend on them. Everything else keeps its previously
submitted value.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Set

from .answers import normalize_answers_shape
from .contracts import NeedsInfoRequest, NeedsInfoStatus, StepStatus
from .exceptions import ValidationFailedError
from .forms import FieldGraph, build_field_graph
from .persistence import ApplicationRepository

logger = logging.getLogger(__name__)


def values_equal(left: Any, right: Any) -> bool:
    """Structural equality that does not treat ``True`` and ``1`` as equal."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        if set(left) != set(right):
            return False
        return all(values_equal(left[k], right[k]) for k in left)
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(
            values_equal(a, b) for a, b in zip(left, right)
        )
    if isinstance(left, (Mapping, list, tuple)) or isinstance(right, (Mapping, list, tuple)):
        return False
    return left == right


def allowed_fields(graph: FieldGraph, requests: Iterable[NeedsInfoRequest]) -> Set[str]:
    """Targets of the open requests plus every field reachable from them."""
    targets = [ref for request in requests for ref in request.target_field_ids]
    return graph.reachable_from(targets)


def changed_fields(
    graph: FieldGraph, submitted: Mapping[str, Any], previous: Mapping[str, Any]
) -> Set[str]:
    changed = set()
    for key, value in submitted.items():
        canonical = graph.canonical(key)
        if not values_equal(value, previous.get(canonical)):
            changed.add(canonical)
    return changed


def enforce_targeted_revision(
    graph: FieldGraph,
    requests: Iterable[NeedsInfoRequest],
    submitted: Mapping[str, Any],
    previous: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    """Reject edits outside the allowed set and merge the rest onto ``previous``.

    Raises :class:`ValidationFailedError` naming the allowed fields when a
    field outside the set changed.
    """
    previous = previous or {}
    allowed = allowed_fields(graph, requests)
    disallowed = changed_fields(graph, submitted, previous) - allowed
    if disallowed:
        raise ValidationFailedError(
            "Only the fields requested by the reviewer can be changed",
            issues=[
                {"field": field, "message": "Field is not open for revision"}
                for field in sorted(disallowed)
            ],
            allowed_fields=allowed,
        )

    merged = copy.deepcopy(dict(previous))
    for key, value in submitted.items():
        canonical = graph.canonical(key)
        if canonical in allowed:
            merged[canonical] = copy.deepcopy(value)
    return merged


class TargetedRevisionGuard:
    def __init__(self, repository: ApplicationRepository) -> None:
        self.repository = repository

    async def apply(
        self,
        application_id: str,
        step_id: str,
        status: StepStatus,
        form_definition: Any,
        submitted: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """Return the answers to persist for this submission.

        Outside a field-targeted revision the submitted answers pass through
        unchanged.
        """
        if status != StepStatus.NEEDS_REVISION:
            return dict(submitted)

        requests = [
            request
            for request in await self.repository.list_needs_info(
                application_id, step_id, NeedsInfoStatus.OPEN
            )
            if request.target_field_ids
        ]
        if not requests:
            return dict(submitted)

        previous = await self.repository.get_latest_submission(application_id, step_id)
        snapshot = (
            normalize_answers_shape(previous.answers_snapshot) if previous is not None else None
        )
        graph = build_field_graph(form_definition)
        merged = enforce_targeted_revision(graph, requests, submitted, snapshot)
        logger.debug(
            f"Targeted revision passed for application_id={application_id} step_id={step_id}"
        )
        return merged
