from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


def _timestamp(index: bool = False):
    return Field(default=None, sa_column=Column(DateTime(timezone=True), index=index))


class WorkflowStepRow(SQLModel, table=True):
    """Workflow step configuration for an event."""

    __tablename__ = "workflow_steps"

    id: str = Field(primary_key=True)
    event_id: str = Field(index=True)
    step_index: int
    title: str = ""
    category: str = "FORM"
    unlock_policy: str
    unlock_at: Optional[datetime] = _timestamp()
    strict_gating: bool = False
    review_required: bool = True
    reject_behavior: str = "RESUBMIT_ALLOWED"
    deadline_at: Optional[datetime] = _timestamp()
    form_version_id: Optional[str] = None


class ApplicationRow(SQLModel, table=True):
    __tablename__ = "applications"

    id: str = Field(primary_key=True)
    event_id: str = Field(index=True)
    applicant_id: str
    decision_status: str = "NONE"
    decision_published_at: Optional[datetime] = _timestamp()
    created_at: Optional[datetime] = _timestamp()
    updated_at: Optional[datetime] = _timestamp()


class StepStateRow(SQLModel, table=True):
    """One row per application x workflow step."""

    __tablename__ = "application_step_states"
    __table_args__ = (UniqueConstraint("application_id", "step_id"),)

    id: str = Field(primary_key=True)
    application_id: str = Field(index=True)
    step_id: str
    status: str = "LOCKED"
    current_draft_id: Optional[str] = None
    latest_submission_version_id: Optional[str] = None
    revision_cycle_count: int = 0
    unlocked_at: Optional[datetime] = _timestamp()
    last_activity_at: Optional[datetime] = _timestamp()


class StepDraftRow(SQLModel, table=True):
    __tablename__ = "step_drafts"
    __table_args__ = (UniqueConstraint("application_id", "step_id"),)

    id: str = Field(primary_key=True)
    application_id: str = Field(index=True)
    step_id: str
    form_version_id: str
    answers: dict = Field(default_factory=dict, sa_column=Column(JSON))
    updated_at: Optional[datetime] = _timestamp()


class SubmissionVersionRow(SQLModel, table=True):
    """Append-only submission snapshots."""

    __tablename__ = "step_submission_versions"
    __table_args__ = (UniqueConstraint("application_id", "step_id", "version_number"),)

    id: str = Field(primary_key=True)
    application_id: str = Field(index=True)
    step_id: str
    form_version_id: str
    version_number: int
    answers_snapshot: dict = Field(default_factory=dict, sa_column=Column(JSON))
    submitted_by: Optional[str] = None
    submitted_at: Optional[datetime] = _timestamp()


class PatchRow(SQLModel, table=True):
    __tablename__ = "admin_change_patches"

    id: str = Field(primary_key=True)
    application_id: str = Field(index=True)
    step_id: str
    submission_version_id: str
    ops: list = Field(default_factory=list, sa_column=Column(JSON))
    reason: str = ""
    visibility: str = "INTERNAL"
    is_active: bool = True
    created_by: Optional[str] = None
    created_at: Optional[datetime] = _timestamp(index=True)


class NeedsInfoRow(SQLModel, table=True):
    __tablename__ = "needs_info_requests"

    id: str = Field(primary_key=True)
    application_id: str = Field(index=True)
    step_id: str
    submission_version_id: str
    target_field_ids: list = Field(default_factory=list, sa_column=Column(JSON))
    message: str = ""
    status: str = "OPEN"
    deadline_at: Optional[datetime] = _timestamp()
    resolved_at: Optional[datetime] = _timestamp()
    created_by: Optional[str] = None
    created_at: Optional[datetime] = _timestamp()


class ReviewRow(SQLModel, table=True):
    __tablename__ = "review_records"

    id: str = Field(primary_key=True)
    submission_version_id: str = Field(index=True)
    reviewer_id: Optional[str] = None
    outcome: str
    checklist_result: dict = Field(default_factory=dict, sa_column=Column(JSON))
    message_to_applicant: Optional[str] = None
    notes_internal: Optional[str] = None
    created_at: Optional[datetime] = _timestamp()
