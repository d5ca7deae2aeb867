"""stepflow: state engine for multi-step application workflows."""

from .answers import compute_effective, normalize_answers_shape
from .contracts import (
    Application,
    ApplicationStepState,
    DecisionStatus,
    RejectBehavior,
    ReviewOutcome,
    StepCategory,
    StepStatus,
    UnlockPolicy,
    WorkflowStep,
)
from .engine import WorkflowEngine
from .persistence import get_repository
from .step_state import StepStateMachine, evaluate_unlock_policy

__version__ = "0.1.0"
__all__ = [
    "Application",
    "ApplicationStepState",
    "DecisionStatus",
    "RejectBehavior",
    "ReviewOutcome",
    "StepCategory",
    "StepStateMachine",
    "StepStatus",
    "UnlockPolicy",
    "WorkflowEngine",
    "WorkflowStep",
    "compute_effective",
    "evaluate_unlock_policy",
    "get_repository",
    "normalize_answers_shape",
]
