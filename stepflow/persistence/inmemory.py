"""In-memory implementation of the application repository."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Tuple

from ..contracts import (
    AdminChangePatch,
    Application,
    ApplicationStepState,
    DecisionStatus,
    NeedsInfoRequest,
    NeedsInfoStatus,
    ReviewRecord,
    StepDraft,
    StepStatus,
    StepSubmissionVersion,
    UnlockPolicy,
    WorkflowStep,
    as_utc,
)
from .repository import ApplicationRepository


class InMemoryApplicationRepository(ApplicationRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Every read and write copies models
    so callers cannot mutate stored rows by accident.
    """

    def __init__(self) -> None:
        self._steps: Dict[str, WorkflowStep] = {}
        self._applications: Dict[str, Application] = {}
        self._states: Dict[Tuple[str, str], ApplicationStepState] = {}
        self._drafts: Dict[Tuple[str, str], StepDraft] = {}
        self._submissions: Dict[str, StepSubmissionVersion] = {}
        self._patches: Dict[str, AdminChangePatch] = {}
        self._needs_info: Dict[str, NeedsInfoRequest] = {}
        self._reviews: Dict[str, ReviewRecord] = {}
        self._lock = asyncio.Lock()
        self.step_state_writes = 0

    # ------------------------------------------------------------------
    async def save_workflow_step(self, step: WorkflowStep) -> None:
        self._steps[step.id] = step.model_copy(deep=True)

    async def get_workflow_step(self, step_id: str) -> WorkflowStep | None:
        step = self._steps.get(step_id)
        return step.model_copy(deep=True) if step else None

    async def list_workflow_steps(self, event_id: str) -> list[WorkflowStep]:
        steps = [s for s in self._steps.values() if s.event_id == event_id]
        return [s.model_copy(deep=True) for s in sorted(steps, key=lambda s: s.step_index)]

    # ------------------------------------------------------------------
    async def save_application(self, application: Application) -> None:
        self._applications[application.id] = application.model_copy(deep=True)

    async def get_application(self, application_id: str) -> Application | None:
        app = self._applications.get(application_id)
        return app.model_copy(deep=True) if app else None

    async def list_applications(
        self, event_id: str, application_ids: Optional[Iterable[str]] = None
    ) -> list[Application]:
        wanted = set(application_ids) if application_ids is not None else None
        return [
            app.model_copy(deep=True)
            for app in self._applications.values()
            if app.event_id == event_id and (wanted is None or app.id in wanted)
        ]

    async def list_unpublished_decisions(
        self, event_id: str, application_ids: Optional[Iterable[str]] = None
    ) -> list[Application]:
        apps = await self.list_applications(event_id, application_ids)
        return [
            app
            for app in apps
            if app.decision_status != DecisionStatus.NONE
            and app.decision_published_at is None
        ]

    async def mark_decisions_published(
        self, application_ids: Iterable[str], published_at: datetime
    ) -> int:
        count = 0
        for app_id in application_ids:
            app = self._applications.get(app_id)
            if app is None:
                continue
            app.decision_published_at = published_at
            app.updated_at = published_at
            count += 1
        return count

    async def delete_application(self, application_id: str) -> None:
        self._applications.pop(application_id, None)
        for store in (self._states, self._drafts):
            for key in [k for k in store if k[0] == application_id]:
                del store[key]
        version_ids = {
            v.id for v in self._submissions.values() if v.application_id == application_id
        }
        for store in (self._submissions, self._patches, self._needs_info):
            for key in [k for k, v in store.items() if v.application_id == application_id]:
                del store[key]
        for key in [k for k, r in self._reviews.items() if r.submission_version_id in version_ids]:
            del self._reviews[key]

    # ------------------------------------------------------------------
    async def create_step_states(self, states: Iterable[ApplicationStepState]) -> int:
        created = 0
        for state in states:
            key = (state.application_id, state.step_id)
            if key in self._states:
                continue
            self._states[key] = state.model_copy(deep=True)
            created += 1
        return created

    async def list_step_states(self, application_id: str) -> list[ApplicationStepState]:
        return [
            s.model_copy(deep=True)
            for (app_id, _), s in self._states.items()
            if app_id == application_id
        ]

    async def get_step_state(
        self, application_id: str, step_id: str
    ) -> ApplicationStepState | None:
        state = self._states.get((application_id, step_id))
        return state.model_copy(deep=True) if state else None

    async def update_step_states(
        self,
        application_id: str,
        step_ids: Iterable[str],
        changes: Dict[str, Any],
        only_statuses: Optional[Iterable[StepStatus]] = None,
    ) -> int:
        allowed = set(only_statuses) if only_statuses is not None else None
        updated = 0
        for step_id in step_ids:
            state = self._states.get((application_id, step_id))
            if state is None or (allowed is not None and state.status not in allowed):
                continue
            for name, value in changes.items():
                setattr(state, name, value)
            updated += 1
        self.step_state_writes += 1
        return updated

    async def list_due_date_unlocks(
        self, now: datetime, limit: int, after_state_id: Optional[str] = None
    ) -> list[ApplicationStepState]:
        due = []
        for state in self._states.values():
            step = self._steps.get(state.step_id)
            if step is None or state.status != StepStatus.LOCKED:
                continue
            if step.unlock_policy != UnlockPolicy.DATE_BASED or step.unlock_at is None:
                continue
            if as_utc(step.unlock_at) > as_utc(now):
                continue
            if after_state_id is not None and state.id <= after_state_id:
                continue
            due.append(state)
        due.sort(key=lambda s: s.id)
        return [s.model_copy(deep=True) for s in due[:limit]]

    # ------------------------------------------------------------------
    async def get_draft(self, application_id: str, step_id: str) -> StepDraft | None:
        draft = self._drafts.get((application_id, step_id))
        return draft.model_copy(deep=True) if draft else None

    async def save_draft(self, draft: StepDraft) -> None:
        self._drafts[(draft.application_id, draft.step_id)] = draft.model_copy(deep=True)
        state = self._states.get((draft.application_id, draft.step_id))
        if state is not None:
            state.current_draft_id = draft.id

    # ------------------------------------------------------------------
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
        async with self._lock:
            latest = await self.get_latest_submission(application_id, step_id)
            version = StepSubmissionVersion(
                application_id=application_id,
                step_id=step_id,
                form_version_id=form_version_id,
                version_number=(latest.version_number if latest else 0) + 1,
                answers_snapshot=answers,
                submitted_by=submitted_by,
                submitted_at=submitted_at,
            )
            self._submissions[version.id] = version.model_copy(deep=True)

            state = self._states.get((application_id, step_id))
            if state is not None:
                state.status = status
                state.latest_submission_version_id = version.id
                state.current_draft_id = None
                state.last_activity_at = submitted_at
                self.step_state_writes += 1
            self._drafts.pop((application_id, step_id), None)

            await self.transition_needs_info(
                application_id,
                step_id,
                NeedsInfoStatus.OPEN,
                NeedsInfoStatus.RESOLVED,
                submitted_at,
            )
            return version

    async def get_submission(self, version_id: str) -> StepSubmissionVersion | None:
        version = self._submissions.get(version_id)
        return version.model_copy(deep=True) if version else None

    async def get_latest_submission(
        self, application_id: str, step_id: str
    ) -> StepSubmissionVersion | None:
        versions = await self.list_submissions(application_id, step_id)
        return versions[0] if versions else None

    async def list_submissions(
        self, application_id: str, step_id: str
    ) -> list[StepSubmissionVersion]:
        versions = [
            v
            for v in self._submissions.values()
            if v.application_id == application_id and v.step_id == step_id
        ]
        versions.sort(key=lambda v: v.version_number, reverse=True)
        return [v.model_copy(deep=True) for v in versions]

    # ------------------------------------------------------------------
    async def save_patch(self, patch: AdminChangePatch) -> None:
        self._patches[patch.id] = patch.model_copy(deep=True)

    async def get_patch(self, patch_id: str) -> AdminChangePatch | None:
        patch = self._patches.get(patch_id)
        return patch.model_copy(deep=True) if patch else None

    async def list_patches(
        self,
        application_id: str,
        step_id: str,
        submission_version_id: Optional[str] = None,
        active_only: bool = False,
    ) -> list[AdminChangePatch]:
        # dict preserves insertion order, which breaks created_at ties
        patches = [
            p
            for p in self._patches.values()
            if p.application_id == application_id
            and p.step_id == step_id
            and (submission_version_id is None or p.submission_version_id == submission_version_id)
            and (not active_only or p.is_active)
        ]
        patches.sort(key=lambda p: p.created_at)
        return [p.model_copy(deep=True) for p in patches]

    # ------------------------------------------------------------------
    async def save_needs_info(self, request: NeedsInfoRequest) -> None:
        self._needs_info[request.id] = request.model_copy(deep=True)

    async def get_needs_info(self, request_id: str) -> NeedsInfoRequest | None:
        request = self._needs_info.get(request_id)
        return request.model_copy(deep=True) if request else None

    async def list_needs_info(
        self,
        application_id: str,
        step_id: Optional[str] = None,
        status: Optional[NeedsInfoStatus] = None,
    ) -> list[NeedsInfoRequest]:
        requests = [
            r
            for r in self._needs_info.values()
            if r.application_id == application_id
            and (step_id is None or r.step_id == step_id)
            and (status is None or r.status == status)
        ]
        requests.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy(deep=True) for r in requests]

    async def transition_needs_info(
        self,
        application_id: str,
        step_id: str,
        from_status: NeedsInfoStatus,
        to_status: NeedsInfoStatus,
        at: datetime,
    ) -> int:
        count = 0
        for request in self._needs_info.values():
            if (
                request.application_id == application_id
                and request.step_id == step_id
                and request.status == from_status
            ):
                request.status = to_status
                request.resolved_at = at
                count += 1
        return count

    # ------------------------------------------------------------------
    async def save_review(self, record: ReviewRecord) -> None:
        self._reviews[record.id] = record.model_copy(deep=True)

    async def list_reviews(self, submission_version_id: str) -> list[ReviewRecord]:
        reviews = [
            r for r in self._reviews.values() if r.submission_version_id == submission_version_id
        ]
        reviews.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy(deep=True) for r in reviews]
