from datetime import datetime, timedelta, timezone

import pytest

from stepflow import WorkflowEngine, WorkflowStep
from stepflow.collaborators import (
    InMemoryAttendanceService,
    InMemoryFileVerifier,
    InMemoryFormProvider,
    InMemoryNotificationSink,
)
from stepflow.persistence import InMemoryApplicationRepository

SIMPLE_FORM = {
    "sections": [
        {
            "id": "main",
            "title": "Main",
            "fields": [{"id": "field-answer", "key": "answer", "type": "text", "label": "Answer"}],
        }
    ]
}


class FakeClock:
    def __init__(self, now: datetime = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repo():
    return InMemoryApplicationRepository()


@pytest.fixture
def forms():
    return InMemoryFormProvider({"form-simple": SIMPLE_FORM})


@pytest.fixture
def engine(repo, forms, clock):
    return WorkflowEngine(
        repo,
        forms=forms,
        files=InMemoryFileVerifier(),
        notifications=InMemoryNotificationSink(),
        attendance=InMemoryAttendanceService(repo),
        clock=clock,
    )


@pytest.fixture
def make_steps(repo):
    """Return a coroutine function that stores one workflow step per policy."""

    async def _make(policies, options=None, event_id="event-1", form_version_id="form-simple"):
        options = options or {}
        steps = []
        for index, policy in enumerate(policies):
            fields = {"title": f"Step {index}", "form_version_id": form_version_id}
            fields.update(options.get(index, {}))
            step = WorkflowStep(
                id=f"{event_id}-step-{index}",
                event_id=event_id,
                step_index=index,
                unlock_policy=policy,
                **fields,
            )
            await repo.save_workflow_step(step)
            steps.append(step)
        return steps

    return _make


@pytest.fixture
def statuses(engine):
    """Return a coroutine function listing step statuses in step order."""

    async def _statuses(application_id):
        views = await engine.applications.get_step_states(application_id)
        return [view.status.value for view in views]

    return _statuses
