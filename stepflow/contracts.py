"""Core data contracts for the application workflow engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class StepStatus(str, Enum):
    LOCKED = "LOCKED"
    UNLOCKED = "UNLOCKED"
    SUBMITTED = "SUBMITTED"
    NEEDS_REVISION = "NEEDS_REVISION"
    APPROVED = "APPROVED"
    REJECTED_FINAL = "REJECTED_FINAL"


class UnlockPolicy(str, Enum):
    AUTO_AFTER_PREV_SUBMITTED = "AUTO_AFTER_PREV_SUBMITTED"
    AFTER_PREV_APPROVED = "AFTER_PREV_APPROVED"
    DATE_BASED = "DATE_BASED"
    AFTER_DECISION_ACCEPTED = "AFTER_DECISION_ACCEPTED"
    ADMIN_MANUAL = "ADMIN_MANUAL"


class RejectBehavior(str, Enum):
    FINAL = "FINAL"
    RESUBMIT_ALLOWED = "RESUBMIT_ALLOWED"


class StepCategory(str, Enum):
    FORM = "FORM"
    INFO_ONLY = "INFO_ONLY"
    CONFIRMATION = "CONFIRMATION"


class DecisionStatus(str, Enum):
    NONE = "NONE"
    ACCEPTED = "ACCEPTED"
    WAITLISTED = "WAITLISTED"
    REJECTED = "REJECTED"


class NeedsInfoStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    CANCELED = "CANCELED"


class ReviewOutcome(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    REQUEST_INFO = "REQUEST_INFO"


class PatchVisibility(str, Enum):
    INTERNAL = "INTERNAL"
    APPLICANT_VISIBLE = "APPLICANT_VISIBLE"


class BulkStepAction(str, Enum):
    UNLOCK = "UNLOCK"
    LOCK = "LOCK"
    APPROVE = "APPROVE"
    NEEDS_REVISION = "NEEDS_REVISION"


class WorkflowStep(BaseModel):
    """One ordered stage of an event's application workflow."""

    id: str = Field(default_factory=_new_id)
    event_id: str
    step_index: int
    title: str = ""
    category: StepCategory = StepCategory.FORM
    unlock_policy: str = UnlockPolicy.AUTO_AFTER_PREV_SUBMITTED.value
    unlock_at: Optional[datetime] = None
    strict_gating: bool = False
    review_required: bool = True
    reject_behavior: RejectBehavior = RejectBehavior.RESUBMIT_ALLOWED
    deadline_at: Optional[datetime] = None
    form_version_id: Optional[str] = None

    @property
    def is_confirmation(self) -> bool:
        return self.category == StepCategory.CONFIRMATION


class Application(BaseModel):
    """Parent aggregate holding the decision for one applicant."""

    id: str = Field(default_factory=_new_id)
    event_id: str
    applicant_id: str
    decision_status: DecisionStatus = DecisionStatus.NONE
    decision_published_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def decision_is_published(self) -> bool:
        return self.decision_published_at is not None


class ApplicationStepState(BaseModel):
    """Per application x step status row."""

    id: str = Field(default_factory=_new_id)
    application_id: str
    step_id: str
    status: StepStatus = StepStatus.LOCKED
    current_draft_id: Optional[str] = None
    latest_submission_version_id: Optional[str] = None
    revision_cycle_count: int = 0
    unlocked_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None


class StepStateView(BaseModel):
    """Step state joined with its workflow step, for display."""

    step_id: str
    step_title: str
    step_index: int
    status: StepStatus
    current_draft_id: Optional[str] = None
    latest_submission_version_id: Optional[str] = None
    revision_cycle_count: int = 0
    unlocked_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None


class StepDraft(BaseModel):
    id: str = Field(default_factory=_new_id)
    application_id: str
    step_id: str
    form_version_id: str
    answers: Dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=utcnow)


class StepSubmissionVersion(BaseModel):
    """Immutable snapshot of submitted answers."""

    id: str = Field(default_factory=_new_id)
    application_id: str
    step_id: str
    form_version_id: str
    version_number: int
    answers_snapshot: Dict[str, Any] = Field(default_factory=dict)
    submitted_by: Optional[str] = None
    submitted_at: datetime = Field(default_factory=utcnow)


class AdminChangePatch(BaseModel):
    """Staff-authored overlay on one submission version."""

    id: str = Field(default_factory=_new_id)
    application_id: str
    step_id: str
    submission_version_id: str
    ops: List[Dict[str, Any]] = Field(default_factory=list)
    reason: str = ""
    visibility: PatchVisibility = PatchVisibility.INTERNAL
    is_active: bool = True
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class NeedsInfoRequest(BaseModel):
    id: str = Field(default_factory=_new_id)
    application_id: str
    step_id: str
    submission_version_id: str
    target_field_ids: List[str] = Field(default_factory=list)
    message: str = ""
    status: NeedsInfoStatus = NeedsInfoStatus.OPEN
    deadline_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class ReviewRecord(BaseModel):
    id: str = Field(default_factory=_new_id)
    submission_version_id: str
    reviewer_id: Optional[str] = None
    outcome: ReviewOutcome
    checklist_result: Dict[str, bool] = Field(default_factory=dict)
    message_to_applicant: Optional[str] = None
    notes_internal: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class FileRef(BaseModel):
    """A file object referenced from a file-upload answer."""

    field_id: str
    file_object_id: str


class EffectiveData(BaseModel):
    """Latest submission with active staff patches applied."""

    step_id: str
    submission_version_id: str
    form_version_id: str
    base_answers: Dict[str, Any]
    patches: List[AdminChangePatch] = Field(default_factory=list)
    effective_answers: Dict[str, Any]


class DecisionPublishedEvent(BaseModel):
    """Notification emitted once per application on decision publication."""

    event_id: str
    application_id: str
    applicant_id: str
    decision_status: DecisionStatus
    published_at: datetime
