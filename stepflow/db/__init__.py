from .application_db import ApplicationDB
from .models import (
    ApplicationRow,
    NeedsInfoRow,
    PatchRow,
    ReviewRow,
    StepDraftRow,
    StepStateRow,
    SubmissionVersionRow,
    WorkflowStepRow,
)

__all__ = [
    "ApplicationDB",
    "ApplicationRow",
    "NeedsInfoRow",
    "PatchRow",
    "ReviewRow",
    "StepDraftRow",
    "StepStateRow",
    "SubmissionVersionRow",
    "WorkflowStepRow",
]
