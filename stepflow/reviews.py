"""Review outcome processing and needs-info requests."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .answers import normalize_answers_shape
from .collaborators import AttendanceService, FileVerifier, FormProvider
from .contracts import (
    NeedsInfoRequest,
    NeedsInfoStatus,
    RejectBehavior,
    ReviewOutcome,
    ReviewRecord,
    WorkflowStep,
    utcnow,
)
from .exceptions import BadRequestError, ConflictError, NotFoundError
from .forms import required_file_refs
from .persistence import ApplicationRepository
from .step_state import StepStateMachine

logger = logging.getLogger(__name__)


class ReviewService:
    """Apply reviewer decisions to a submitted step.

    Every outcome must target the latest submission version of the step; a
    stale version raises :class:`ConflictError` carrying the id of the
    current one.
    """

    def __init__(
        self,
        repository: ApplicationRepository,
        state_machine: StepStateMachine,
        forms: Optional[FormProvider] = None,
        files: Optional[FileVerifier] = None,
        attendance: Optional[AttendanceService] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.state_machine = state_machine
        self.forms = forms
        self.files = files
        self.attendance = attendance
        self.clock = clock

    async def _ensure_scope(
        self, event_id: str, application_id: str, step_id: str
    ) -> WorkflowStep:
        app = await self.repository.get_application(application_id)
        if app is None or app.event_id != event_id:
            raise NotFoundError("Application not found")
        step = await self.repository.get_workflow_step(step_id)
        if step is None or step.event_id != event_id:
            raise NotFoundError("Step not found")
        return step

    async def create_review(
        self,
        event_id: str,
        application_id: str,
        step_id: str,
        version_id: str,
        outcome: ReviewOutcome,
        reviewer_id: Optional[str] = None,
        checklist_result: Optional[Dict[str, bool]] = None,
        message_to_applicant: Optional[str] = None,
        notes_internal: Optional[str] = None,
        target_field_ids: Optional[List[str]] = None,
        deadline_at: Optional[datetime] = None,
    ) -> ReviewRecord:
        outcome = ReviewOutcome(outcome)
        step = await self._ensure_scope(event_id, application_id, step_id)

        version = await self.repository.get_submission(version_id)
        if (
            version is None
            or version.application_id != application_id
            or version.step_id != step_id
        ):
            raise NotFoundError("Submission version not found")

        latest = await self.repository.get_latest_submission(application_id, step_id)
        if latest is None or latest.id != version_id:
            raise ConflictError(
                "Cannot review old version. Applicant has resubmitted.",
                latest_version_id=latest.id if latest else None,
            )

        if outcome == ReviewOutcome.APPROVE:
            await self._ensure_files_verified(
                version.id,
                version.form_version_id,
                normalize_answers_shape(version.answers_snapshot),
            )

        record = ReviewRecord(
            submission_version_id=version_id,
            reviewer_id=reviewer_id,
            outcome=outcome,
            checklist_result=checklist_result or {},
            message_to_applicant=message_to_applicant,
            notes_internal=notes_internal,
            created_at=self.clock(),
        )
        await self.repository.save_review(record)
        logger.info(
            f"Review {outcome.value} on version {version_id} of step_id={step_id} "
            f"application_id={application_id}"
        )

        if outcome == ReviewOutcome.APPROVE:
            await self._handle_approve(event_id, application_id, step)
        elif outcome == ReviewOutcome.REJECT:
            await self._handle_reject(application_id, step)
        else:
            await self._request_info(
                application_id,
                step_id,
                version_id,
                target_field_ids or [],
                message_to_applicant or "",
                deadline_at,
                reviewer_id,
            )
        return record

    async def _ensure_files_verified(
        self, version_id: str, form_version_id: str, answers: Dict[str, Any]
    ) -> None:
        if self.forms is None:
            return
        definition = await self.forms.get_form_definition(form_version_id)
        refs = required_file_refs(definition, answers)
        if not refs:
            return
        if self.files is None:
            raise BadRequestError(
                "Required file uploads cannot be verified: no file verifier is configured."
            )
        if not await self.files.all_verified(version_id, refs):
            raise BadRequestError(
                "Required file uploads must be verified before approval. "
                "Please review file answers."
            )

    async def _handle_approve(
        self, event_id: str, application_id: str, step: WorkflowStep
    ) -> None:
        await self.state_machine.mark_approved(application_id, step.id)

        if step.is_confirmation and self.attendance is not None:
            try:
                await self.attendance.confirm_attendance(event_id, application_id)
            except Exception as exc:
                logger.warning(
                    f"Attendance confirmation skipped for application_id={application_id}: {exc}"
                )

        await self.repository.transition_needs_info(
            application_id,
            step.id,
            NeedsInfoStatus.OPEN,
            NeedsInfoStatus.CANCELED,
            self.clock(),
        )

    async def _handle_reject(self, application_id: str, step: WorkflowStep) -> None:
        if step.reject_behavior == RejectBehavior.FINAL:
            await self.state_machine.mark_rejected_final(application_id, step.id)
        else:
            await self.state_machine.mark_needs_revision(application_id, step.id)

    async def _request_info(
        self,
        application_id: str,
        step_id: str,
        version_id: str,
        target_field_ids: List[str],
        message: str,
        deadline_at: Optional[datetime],
        created_by: Optional[str],
    ) -> NeedsInfoRequest:
        request = NeedsInfoRequest(
            application_id=application_id,
            step_id=step_id,
            submission_version_id=version_id,
            target_field_ids=target_field_ids,
            message=message,
            deadline_at=deadline_at,
            created_by=created_by,
            created_at=self.clock(),
        )
        await self.repository.save_needs_info(request)
        await self.state_machine.mark_needs_revision(application_id, step_id)
        return request

    # ------------------------------------------------------------------
    async def get_version_reviews(
        self, event_id: str, application_id: str, step_id: str, version_id: str
    ) -> List[ReviewRecord]:
        """Reviews of one version, newest first."""
        app = await self.repository.get_application(application_id)
        version = await self.repository.get_submission(version_id)
        if (
            app is None
            or app.event_id != event_id
            or version is None
            or version.application_id != application_id
            or version.step_id != step_id
        ):
            raise NotFoundError("Submission version not found")
        return await self.repository.list_reviews(version_id)

    async def get_needs_info(
        self, event_id: str, application_id: str, step_id: Optional[str] = None
    ) -> List[NeedsInfoRequest]:
        app = await self.repository.get_application(application_id)
        if app is None or app.event_id != event_id:
            raise NotFoundError("Application not found")
        return await self.repository.list_needs_info(application_id, step_id)

    async def cancel_needs_info(self, event_id: str, needs_info_id: str) -> NeedsInfoRequest:
        request = await self.repository.get_needs_info(needs_info_id)
        app = await self.repository.get_application(request.application_id) if request else None
        if request is None or app is None or app.event_id != event_id:
            raise NotFoundError("Needs-info request not found")

        request.status = NeedsInfoStatus.CANCELED
        request.resolved_at = self.clock()
        await self.repository.save_needs_info(request)
        return request
