"""SQL implementation of the application repository (SQLite or PostgreSQL)."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy import delete, func, select, update
from sqlmodel import SQLModel

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
from ..db import (
    ApplicationDB,
    ApplicationRow,
    NeedsInfoRow,
    PatchRow,
    ReviewRow,
    StepDraftRow,
    StepStateRow,
    SubmissionVersionRow,
    WorkflowStepRow,
)
from .repository import ApplicationRepository

ModelT = TypeVar("ModelT", bound=BaseModel)


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _to_row(row_cls: Type[SQLModel], model: BaseModel) -> SQLModel:
    return row_cls(**{k: _plain(v) for k, v in model.model_dump().items()})


def _from_row(model_cls: Type[ModelT], row: SQLModel) -> ModelT:
    data = {
        k: as_utc(v) if isinstance(v, datetime) else v for k, v in row.model_dump().items()
    }
    return model_cls.model_validate(data)


class SQLApplicationRepository(ApplicationRepository):
    """Persist workflow state through SQLModel tables and an async engine."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self._db = ApplicationDB(database_url)

    async def close(self) -> None:
        await self._db.dispose()

    # ------------------------------------------------------------------
    # Helper methods
    async def _merge(self, row: SQLModel) -> None:
        async with self._db.session() as session:
            await session.merge(row)
            await session.commit()

    async def _get(
        self, row_cls: Type[SQLModel], model_cls: Type[ModelT], key: str
    ) -> ModelT | None:
        async with self._db.session() as session:
            row = await session.get(row_cls, key)
            return _from_row(model_cls, row) if row is not None else None

    async def _all(self, stmt: Any, model_cls: Type[ModelT]) -> list[ModelT]:
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return [_from_row(model_cls, row) for row in result.scalars().all()]

    async def _write(self, stmt: Any) -> int:
        async with self._db.session() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

    # ------------------------------------------------------------------
    # Workflow configuration
    async def save_workflow_step(self, step: WorkflowStep) -> None:
        await self._merge(_to_row(WorkflowStepRow, step))

    async def get_workflow_step(self, step_id: str) -> WorkflowStep | None:
        return await self._get(WorkflowStepRow, WorkflowStep, step_id)

    async def list_workflow_steps(self, event_id: str) -> list[WorkflowStep]:
        stmt = (
            select(WorkflowStepRow)
            .where(WorkflowStepRow.event_id == event_id)
            .order_by(WorkflowStepRow.step_index)
        )
        return await self._all(stmt, WorkflowStep)

    # ------------------------------------------------------------------
    # Applications
    async def save_application(self, application: Application) -> None:
        await self._merge(_to_row(ApplicationRow, application))

    async def get_application(self, application_id: str) -> Application | None:
        return await self._get(ApplicationRow, Application, application_id)

    async def list_applications(
        self, event_id: str, application_ids: Optional[Iterable[str]] = None
    ) -> list[Application]:
        stmt = select(ApplicationRow).where(ApplicationRow.event_id == event_id)
        if application_ids is not None:
            stmt = stmt.where(ApplicationRow.id.in_(list(application_ids)))
        return await self._all(stmt.order_by(ApplicationRow.id), Application)

    async def list_unpublished_decisions(
        self, event_id: str, application_ids: Optional[Iterable[str]] = None
    ) -> list[Application]:
        stmt = select(ApplicationRow).where(
            ApplicationRow.event_id == event_id,
            ApplicationRow.decision_status != DecisionStatus.NONE.value,
            ApplicationRow.decision_published_at.is_(None),
        )
        if application_ids is not None:
            stmt = stmt.where(ApplicationRow.id.in_(list(application_ids)))
        return await self._all(stmt.order_by(ApplicationRow.id), Application)

    async def mark_decisions_published(
        self, application_ids: Iterable[str], published_at: datetime
    ) -> int:
        ids = list(application_ids)
        if not ids:
            return 0
        return await self._write(
            update(ApplicationRow)
            .where(ApplicationRow.id.in_(ids))
            .values(decision_published_at=published_at, updated_at=published_at)
        )

    async def delete_application(self, application_id: str) -> None:
        async with self._db.session() as session:
            async with session.begin():
                version_ids = select(SubmissionVersionRow.id).where(
                    SubmissionVersionRow.application_id == application_id
                )
                await session.execute(
                    delete(ReviewRow).where(ReviewRow.submission_version_id.in_(version_ids))
                )
                for row_cls in (
                    NeedsInfoRow,
                    PatchRow,
                    SubmissionVersionRow,
                    StepDraftRow,
                    StepStateRow,
                ):
                    await session.execute(
                        delete(row_cls).where(row_cls.application_id == application_id)
                    )
                await session.execute(
                    delete(ApplicationRow).where(ApplicationRow.id == application_id)
                )

    # ------------------------------------------------------------------
    # Step states
    async def create_step_states(self, states: Iterable[ApplicationStepState]) -> int:
        states = list(states)
        if not states:
            return 0
        async with self._db.session() as session:
            async with session.begin():
                result = await session.execute(
                    select(StepStateRow.step_id).where(
                        StepStateRow.application_id == states[0].application_id
                    )
                )
                existing = {
                    (states[0].application_id, step_id) for step_id in result.scalars().all()
                }
                created = 0
                for state in states:
                    key = (state.application_id, state.step_id)
                    if key in existing:
                        continue
                    session.add(_to_row(StepStateRow, state))
                    existing.add(key)
                    created += 1
        return created

    async def list_step_states(self, application_id: str) -> list[ApplicationStepState]:
        stmt = select(StepStateRow).where(StepStateRow.application_id == application_id)
        return await self._all(stmt, ApplicationStepState)

    async def get_step_state(
        self, application_id: str, step_id: str
    ) -> ApplicationStepState | None:
        stmt = select(StepStateRow).where(
            StepStateRow.application_id == application_id,
            StepStateRow.step_id == step_id,
        )
        states = await self._all(stmt, ApplicationStepState)
        return states[0] if states else None

    async def update_step_states(
        self,
        application_id: str,
        step_ids: Iterable[str],
        changes: Dict[str, Any],
        only_statuses: Optional[Iterable[StepStatus]] = None,
    ) -> int:
        ids = list(step_ids)
        if not ids:
            return 0
        stmt = update(StepStateRow).where(
            StepStateRow.application_id == application_id,
            StepStateRow.step_id.in_(ids),
        )
        if only_statuses is not None:
            stmt = stmt.where(StepStateRow.status.in_([_plain(s) for s in only_statuses]))
        stmt = stmt.values(**{k: _plain(v) for k, v in changes.items()})
        return await self._write(stmt.execution_options(synchronize_session=False))

    async def list_due_date_unlocks(
        self, now: datetime, limit: int, after_state_id: Optional[str] = None
    ) -> list[ApplicationStepState]:
        stmt = (
            select(StepStateRow)
            .join(WorkflowStepRow, WorkflowStepRow.id == StepStateRow.step_id)
            .where(
                StepStateRow.status == StepStatus.LOCKED.value,
                WorkflowStepRow.unlock_policy == UnlockPolicy.DATE_BASED.value,
                WorkflowStepRow.unlock_at.is_not(None),
                WorkflowStepRow.unlock_at <= now,
            )
        )
        if after_state_id is not None:
            stmt = stmt.where(StepStateRow.id > after_state_id)
        return await self._all(stmt.order_by(StepStateRow.id).limit(limit), ApplicationStepState)

    # ------------------------------------------------------------------
    # Drafts
    async def get_draft(self, application_id: str, step_id: str) -> StepDraft | None:
        stmt = select(StepDraftRow).where(
            StepDraftRow.application_id == application_id,
            StepDraftRow.step_id == step_id,
        )
        drafts = await self._all(stmt, StepDraft)
        return drafts[0] if drafts else None

    async def save_draft(self, draft: StepDraft) -> None:
        async with self._db.session() as session:
            async with session.begin():
                await session.merge(_to_row(StepDraftRow, draft))
                await session.execute(
                    update(StepStateRow)
                    .where(
                        StepStateRow.application_id == draft.application_id,
                        StepStateRow.step_id == draft.step_id,
                    )
                    .values(current_draft_id=draft.id)
                    .execution_options(synchronize_session=False)
                )

    # ------------------------------------------------------------------
    # Submissions
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
        async with self._db.session() as session:
            async with session.begin():
                result = await session.execute(
                    select(func.max(SubmissionVersionRow.version_number)).where(
                        SubmissionVersionRow.application_id == application_id,
                        SubmissionVersionRow.step_id == step_id,
                    )
                )
                latest_number = result.scalar() or 0
                version = StepSubmissionVersion(
                    application_id=application_id,
                    step_id=step_id,
                    form_version_id=form_version_id,
                    version_number=latest_number + 1,
                    answers_snapshot=answers,
                    submitted_by=submitted_by,
                    submitted_at=submitted_at,
                )
                session.add(_to_row(SubmissionVersionRow, version))
                await session.execute(
                    update(StepStateRow)
                    .where(
                        StepStateRow.application_id == application_id,
                        StepStateRow.step_id == step_id,
                    )
                    .values(
                        status=_plain(status),
                        latest_submission_version_id=version.id,
                        current_draft_id=None,
                        last_activity_at=submitted_at,
                    )
                    .execution_options(synchronize_session=False)
                )
                await session.execute(
                    delete(StepDraftRow).where(
                        StepDraftRow.application_id == application_id,
                        StepDraftRow.step_id == step_id,
                    )
                )
                await session.execute(
                    update(NeedsInfoRow)
                    .where(
                        NeedsInfoRow.application_id == application_id,
                        NeedsInfoRow.step_id == step_id,
                        NeedsInfoRow.status == NeedsInfoStatus.OPEN.value,
                    )
                    .values(status=NeedsInfoStatus.RESOLVED.value, resolved_at=submitted_at)
                    .execution_options(synchronize_session=False)
                )
        return version

    async def get_submission(self, version_id: str) -> StepSubmissionVersion | None:
        return await self._get(SubmissionVersionRow, StepSubmissionVersion, version_id)

    async def get_latest_submission(
        self, application_id: str, step_id: str
    ) -> StepSubmissionVersion | None:
        stmt = (
            select(SubmissionVersionRow)
            .where(
                SubmissionVersionRow.application_id == application_id,
                SubmissionVersionRow.step_id == step_id,
            )
            .order_by(SubmissionVersionRow.version_number.desc())
            .limit(1)
        )
        versions = await self._all(stmt, StepSubmissionVersion)
        return versions[0] if versions else None

    async def list_submissions(
        self, application_id: str, step_id: str
    ) -> list[StepSubmissionVersion]:
        stmt = (
            select(SubmissionVersionRow)
            .where(
                SubmissionVersionRow.application_id == application_id,
                SubmissionVersionRow.step_id == step_id,
            )
            .order_by(SubmissionVersionRow.version_number.desc())
        )
        return await self._all(stmt, StepSubmissionVersion)

    # ------------------------------------------------------------------
    # Patches
    async def save_patch(self, patch: AdminChangePatch) -> None:
        await self._merge(_to_row(PatchRow, patch))

    async def get_patch(self, patch_id: str) -> AdminChangePatch | None:
        return await self._get(PatchRow, AdminChangePatch, patch_id)

    async def list_patches(
        self,
        application_id: str,
        step_id: str,
        submission_version_id: Optional[str] = None,
        active_only: bool = False,
    ) -> list[AdminChangePatch]:
        stmt = select(PatchRow).where(
            PatchRow.application_id == application_id,
            PatchRow.step_id == step_id,
        )
        if submission_version_id is not None:
            stmt = stmt.where(PatchRow.submission_version_id == submission_version_id)
        if active_only:
            stmt = stmt.where(PatchRow.is_active.is_(True))
        return await self._all(stmt.order_by(PatchRow.created_at), AdminChangePatch)

    # ------------------------------------------------------------------
    # Needs-info requests
    async def save_needs_info(self, request: NeedsInfoRequest) -> None:
        await self._merge(_to_row(NeedsInfoRow, request))

    async def get_needs_info(self, request_id: str) -> NeedsInfoRequest | None:
        return await self._get(NeedsInfoRow, NeedsInfoRequest, request_id)

    async def list_needs_info(
        self,
        application_id: str,
        step_id: Optional[str] = None,
        status: Optional[NeedsInfoStatus] = None,
    ) -> list[NeedsInfoRequest]:
        stmt = select(NeedsInfoRow).where(NeedsInfoRow.application_id == application_id)
        if step_id is not None:
            stmt = stmt.where(NeedsInfoRow.step_id == step_id)
        if status is not None:
            stmt = stmt.where(NeedsInfoRow.status == _plain(status))
        return await self._all(stmt.order_by(NeedsInfoRow.created_at.desc()), NeedsInfoRequest)

    async def transition_needs_info(
        self,
        application_id: str,
        step_id: str,
        from_status: NeedsInfoStatus,
        to_status: NeedsInfoStatus,
        at: datetime,
    ) -> int:
        return await self._write(
            update(NeedsInfoRow)
            .where(
                NeedsInfoRow.application_id == application_id,
                NeedsInfoRow.step_id == step_id,
                NeedsInfoRow.status == _plain(from_status),
            )
            .values(status=_plain(to_status), resolved_at=at)
            .execution_options(synchronize_session=False)
        )

    # ------------------------------------------------------------------
    # Reviews
    async def save_review(self, record: ReviewRecord) -> None:
        await self._merge(_to_row(ReviewRow, record))

    async def list_reviews(self, submission_version_id: str) -> list[ReviewRecord]:
        stmt = (
            select(ReviewRow)
            .where(ReviewRow.submission_version_id == submission_version_id)
            .order_by(ReviewRow.created_at.desc())
        )
        return await self._all(stmt, ReviewRecord)
