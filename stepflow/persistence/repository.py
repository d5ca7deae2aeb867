"""Repository abstraction for application workflow persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Protocol

from ..contracts import (
    AdminChangePatch,
    Application,
    ApplicationStepState,
    NeedsInfoRequest,
    NeedsInfoStatus,
    ReviewRecord,
    StepDraft,
    StepStatus,
    StepSubmissionVersion,
    WorkflowStep,
)


class ApplicationRepository(Protocol):
    """Protocol for application workflow persistence backends.

    Reads return detached copies; mutating a returned model never writes
    through to storage.
    """

    # -- workflow configuration -------------------------------------------
    async def save_workflow_step(self, step: WorkflowStep) -> None:
        """Insert or replace a workflow step."""

    async def get_workflow_step(self, step_id: str) -> WorkflowStep | None:
        """Return a workflow step by id."""

    async def list_workflow_steps(self, event_id: str) -> list[WorkflowStep]:
        """Return the event's steps ordered by ``step_index``."""

    # -- applications -----------------------------------------------------
    async def save_application(self, application: Application) -> None:
        """Insert or replace an application."""

    async def get_application(self, application_id: str) -> Application | None:
        """Return an application by id."""

    async def list_applications(
        self, event_id: str, application_ids: Optional[Iterable[str]] = None
    ) -> list[Application]:
        """Return the event's applications, optionally restricted to ids."""

    async def list_unpublished_decisions(
        self, event_id: str, application_ids: Optional[Iterable[str]] = None
    ) -> list[Application]:
        """Return applications with a decision set but not yet published."""

    async def mark_decisions_published(
        self, application_ids: Iterable[str], published_at: datetime
    ) -> int:
        """Stamp ``decision_published_at`` on the given applications."""

    async def delete_application(self, application_id: str) -> None:
        """Remove an application and every row it owns."""

    # -- step states ------------------------------------------------------
    async def create_step_states(self, states: Iterable[ApplicationStepState]) -> int:
        """Insert step states, skipping (application, step) pairs that exist."""

    async def list_step_states(self, application_id: str) -> list[ApplicationStepState]:
        """Return every step state of an application."""

    async def get_step_state(
        self, application_id: str, step_id: str
    ) -> ApplicationStepState | None:
        """Return the state row for one application step."""

    async def update_step_states(
        self,
        application_id: str,
        step_ids: Iterable[str],
        changes: Dict[str, Any],
        only_statuses: Optional[Iterable[StepStatus]] = None,
    ) -> int:
        """Apply ``changes`` to the listed step states in one write.

        When ``only_statuses`` is given, rows in any other status are left
        untouched. Returns the number of rows updated.
        """

    async def list_due_date_unlocks(
        self, now: datetime, limit: int, after_state_id: Optional[str] = None
    ) -> list[ApplicationStepState]:
        """Page through LOCKED states of DATE_BASED steps whose time has come."""

    # -- drafts -----------------------------------------------------------
    async def get_draft(self, application_id: str, step_id: str) -> StepDraft | None:
        """Return the current draft for an application step."""

    async def save_draft(self, draft: StepDraft) -> None:
        """Insert or replace a draft and link it from the step state."""

    # -- submissions ------------------------------------------------------
    async def create_submission(
        self,
        application_id: str,
        step_id: str,
        form_version_id: str,
        answers: Dict[str, Any],
        submitted_by: Optional[str],
        status: StepStatus,
        submitted_at: datetime,
    ) -> StepSubmissionVersion:
        """Atomically append a submission version and move the step state.

        The version number is assigned from the latest stored version inside
        the same unit of work, the step state moves to ``status`` with the
        draft cleared, and open needs-info requests for the step are
        resolved.
        """

    async def get_submission(self, version_id: str) -> StepSubmissionVersion | None:
        """Return a submission version by id."""

    async def get_latest_submission(
        self, application_id: str, step_id: str
    ) -> StepSubmissionVersion | None:
        """Return the version with the highest version number."""

    async def list_submissions(
        self, application_id: str, step_id: str
    ) -> list[StepSubmissionVersion]:
        """Return all versions, newest first."""

    # -- patches ----------------------------------------------------------
    async def save_patch(self, patch: AdminChangePatch) -> None:
        """Insert or replace an admin change patch."""

    async def get_patch(self, patch_id: str) -> AdminChangePatch | None:
        """Return a patch by id."""

    async def list_patches(
        self,
        application_id: str,
        step_id: str,
        submission_version_id: Optional[str] = None,
        active_only: bool = False,
    ) -> list[AdminChangePatch]:
        """Return patches in creation order."""

    # -- needs-info requests ----------------------------------------------
    async def save_needs_info(self, request: NeedsInfoRequest) -> None:
        """Insert or replace a needs-info request."""

    async def get_needs_info(self, request_id: str) -> NeedsInfoRequest | None:
        """Return a needs-info request by id."""

    async def list_needs_info(
        self,
        application_id: str,
        step_id: Optional[str] = None,
        status: Optional[NeedsInfoStatus] = None,
    ) -> list[NeedsInfoRequest]:
        """Return matching requests, newest first."""

    async def transition_needs_info(
        self,
        application_id: str,
        step_id: str,
        from_status: NeedsInfoStatus,
        to_status: NeedsInfoStatus,
        at: datetime,
    ) -> int:
        """Move every request of a step from one status to another."""

    # -- reviews ----------------------------------------------------------
    async def save_review(self, record: ReviewRecord) -> None:
        """Persist a review record."""

    async def list_reviews(self, submission_version_id: str) -> list[ReviewRecord]:
        """Return reviews of a version, newest first."""
