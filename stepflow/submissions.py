"""Draft autosave, step submission and submission history."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .answers import compute_effective, normalize_answers_shape
from .collaborators import AttendanceService, FormProvider
from .contracts import (
    Application,
    DecisionStatus,
    EffectiveData,
    StepDraft,
    StepStatus,
    StepSubmissionVersion,
    WorkflowStep,
    as_utc,
    utcnow,
)
from .exceptions import BadRequestError, ForbiddenError, NotFoundError, ValidationFailedError
from .forms import get_form_fields, validate_answers
from .persistence import ApplicationRepository
from .revision_guard import TargetedRevisionGuard
from .step_state import StepStateMachine

logger = logging.getLogger(__name__)

_OPEN_FOR_EDITING = {StepStatus.UNLOCKED, StepStatus.NEEDS_REVISION}


def _normalized(version: StepSubmissionVersion) -> StepSubmissionVersion:
    return version.model_copy(
        update={"answers_snapshot": normalize_answers_shape(version.answers_snapshot)}
    )


class SubmissionService:
    """Applicant-facing operations on one step's answers."""

    def __init__(
        self,
        repository: ApplicationRepository,
        state_machine: StepStateMachine,
        forms: FormProvider,
        attendance: Optional[AttendanceService] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.state_machine = state_machine
        self.forms = forms
        self.attendance = attendance
        self.clock = clock
        self.guard = TargetedRevisionGuard(repository)

    async def ensure_event_scope(
        self, event_id: str, application_id: str, step_id: str
    ) -> Tuple[Application, WorkflowStep]:
        """Load the application and step, both of which must belong to ``event_id``."""
        app = await self.repository.get_application(application_id)
        if app is None or app.event_id != event_id:
            raise NotFoundError("Application not found")
        step = await self.repository.get_workflow_step(step_id)
        if step is None or step.event_id != event_id:
            raise NotFoundError("Step not found")
        return app, step

    async def _open_state_status(self, application_id: str, step_id: str) -> StepStatus:
        state = await self.repository.get_step_state(application_id, step_id)
        if state is None:
            raise NotFoundError("Step state not found")
        if state.status not in _OPEN_FOR_EDITING:
            raise ForbiddenError("Step is not open for editing")
        return state.status

    # ------------------------------------------------------------------
    # Drafts
    async def save_draft(
        self, application_id: str, step_id: str, answers: Optional[Mapping[str, Any]]
    ) -> StepDraft:
        normalized = normalize_answers_shape(answers)
        await self._open_state_status(application_id, step_id)

        step = await self.repository.get_workflow_step(step_id)
        if step is None or not step.form_version_id:
            raise BadRequestError("Step has no form attached")

        draft = await self.repository.get_draft(application_id, step_id)
        if draft is None:
            draft = StepDraft(
                application_id=application_id,
                step_id=step_id,
                form_version_id=step.form_version_id,
            )
        draft.answers = normalized
        draft.form_version_id = step.form_version_id
        draft.updated_at = self.clock()
        await self.repository.save_draft(draft)
        return draft

    async def get_draft(self, application_id: str, step_id: str) -> Optional[Dict[str, Any]]:
        draft = await self.repository.get_draft(application_id, step_id)
        if draft is None or not draft.answers:
            return None
        return normalize_answers_shape(draft.answers)

    # ------------------------------------------------------------------
    # Submission
    async def submit(
        self,
        event_id: str,
        application_id: str,
        step_id: str,
        answers: Optional[Mapping[str, Any]],
        submitted_by: Optional[str] = None,
    ) -> StepSubmissionVersion:
        """Create the next immutable submission version for a step.

        Nothing is persisted when any check fails. On success the step moves
        to SUBMITTED (or straight to APPROVED when the step needs no review),
        open needs-info requests are resolved and all steps are recomputed.
        """
        normalized = normalize_answers_shape(answers)

        app, step = await self.ensure_event_scope(event_id, application_id, step_id)
        if submitted_by is not None and submitted_by != app.applicant_id:
            raise ForbiddenError("Cannot submit for another applicant")

        status = await self._open_state_status(application_id, step_id)

        if not step.form_version_id:
            raise BadRequestError("Step has no form attached")
        if step.deadline_at is not None and as_utc(self.clock()) > as_utc(step.deadline_at):
            raise ForbiddenError("Step deadline has passed")

        definition = await self.forms.get_form_definition(step.form_version_id)
        if definition is None:
            raise BadRequestError("Form version not found")
        if not [f for f in get_form_fields(definition) if f.is_input]:
            raise BadRequestError(
                "This step form has no input fields configured. Please contact the organizer."
            )

        to_persist = await self.guard.apply(
            application_id, step_id, status, definition, normalized
        )

        issues = validate_answers(definition, to_persist)
        if issues:
            raise ValidationFailedError(
                "Validation failed: " + ", ".join(i["message"] for i in issues),
                issues=issues,
            )

        target = StepStatus.SUBMITTED if step.review_required else StepStatus.APPROVED
        version = await self.repository.create_submission(
            application_id,
            step_id,
            step.form_version_id,
            to_persist,
            submitted_by,
            target,
            self.clock(),
        )
        logger.info(
            f"Submitted version {version.version_number} of step_id={step_id} "
            f"for application_id={application_id} -> {target.value}"
        )

        await self.state_machine.recompute_all_step_states(application_id)

        if step.is_confirmation:
            await self._confirm_attendance(event_id, application_id)

        return _normalized(version)

    async def _confirm_attendance(self, event_id: str, application_id: str) -> None:
        if self.attendance is None:
            return
        app = await self.repository.get_application(application_id)
        if app is None or app.decision_status != DecisionStatus.ACCEPTED:
            return
        if not app.decision_is_published:
            return
        try:
            await self.attendance.confirm_attendance(event_id, application_id)
        except Exception as exc:
            logger.warning(
                f"Attendance confirmation failed for application_id={application_id}: {exc}"
            )

    # ------------------------------------------------------------------
    # History
    async def get_versions(
        self, event_id: str, application_id: str, step_id: str
    ) -> List[StepSubmissionVersion]:
        """All versions of a step, newest first."""
        await self.ensure_event_scope(event_id, application_id, step_id)
        versions = await self.repository.list_submissions(application_id, step_id)
        return [_normalized(v) for v in versions]

    async def get_version(self, version_id: str) -> Optional[StepSubmissionVersion]:
        version = await self.repository.get_submission(version_id)
        return _normalized(version) if version is not None else None

    async def get_effective_data(
        self, event_id: str, application_id: str, step_id: str
    ) -> Optional[EffectiveData]:
        """Latest submission with its active patches applied, or ``None``."""
        await self.ensure_event_scope(event_id, application_id, step_id)
        latest = await self.repository.get_latest_submission(application_id, step_id)
        if latest is None:
            return None

        patches = await self.repository.list_patches(
            application_id, step_id, submission_version_id=latest.id, active_only=True
        )
        base = normalize_answers_shape(latest.answers_snapshot)
        return EffectiveData(
            step_id=step_id,
            submission_version_id=latest.id,
            form_version_id=latest.form_version_id,
            base_answers=base,
            patches=patches,
            effective_answers=compute_effective(base, patches),
        )
