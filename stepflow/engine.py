"""Wiring of the engine services around one repository."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from .applications import ApplicationService
from .collaborators import (
    AttendanceService,
    FileVerifier,
    FormProvider,
    InMemoryFormProvider,
    NotificationSink,
)
from .config import StepflowConfig, load_config
from .contracts import utcnow
from .decisions import DecisionService
from .patches import PatchService
from .persistence import ApplicationRepository, get_repository
from .reviews import ReviewService
from .scheduler import UnlockScheduler
from .step_state import StepStateMachine
from .submissions import SubmissionService


class WorkflowEngine:
    """All engine services sharing a repository, collaborators and clock."""

    def __init__(
        self,
        repository: ApplicationRepository,
        forms: Optional[FormProvider] = None,
        files: Optional[FileVerifier] = None,
        notifications: Optional[NotificationSink] = None,
        attendance: Optional[AttendanceService] = None,
        config: Optional[StepflowConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.config = config or StepflowConfig()
        self.forms = forms or InMemoryFormProvider()
        engine_config = self.config.engine

        self.state_machine = StepStateMachine(repository, clock)
        self.applications = ApplicationService(repository, self.state_machine, clock)
        self.submissions = SubmissionService(
            repository, self.state_machine, self.forms, attendance, clock
        )
        self.reviews = ReviewService(
            repository, self.state_machine, self.forms, files, attendance, clock
        )
        self.patches = PatchService(repository, clock)
        self.decisions = DecisionService(
            repository, self.state_machine, notifications, engine_config, clock
        )
        self.scheduler = UnlockScheduler(repository, self.state_machine, engine_config, clock)

    @classmethod
    def from_config(
        cls, config: Optional[StepflowConfig] = None, **collaborators
    ) -> "WorkflowEngine":
        """Build an engine on the repository selected by configuration."""
        config = config or load_config()
        repository = get_repository(config.database_url, config)
        return cls(repository, config=config, **collaborators)
