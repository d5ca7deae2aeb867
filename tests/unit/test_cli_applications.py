import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from typer.testing import CliRunner

import stepflow.persistence as persistence
from stepflow import DecisionStatus, UnlockPolicy, WorkflowStep
from stepflow.applications import ApplicationService
from stepflow.cli import app
from stepflow.persistence import InMemoryApplicationRepository
from stepflow.step_state import StepStateMachine

runner = CliRunner()


def _setup_repo(monkeypatch) -> InMemoryApplicationRepository:
    repo = InMemoryApplicationRepository()
    monkeypatch.setattr(persistence, "_repository_instance", repo)
    return repo


def _create_application(repo, policies, options=None):
    async def _create():
        for index, policy in enumerate(policies):
            fields = {"title": f"Step {index}"}
            fields.update((options or {}).get(index, {}))
            await repo.save_workflow_step(
                WorkflowStep(
                    id=f"step-{index}",
                    event_id="event-1",
                    step_index=index,
                    unlock_policy=policy,
                    **fields,
                )
            )
        service = ApplicationService(repo, StepStateMachine(repo))
        return await service.create_application("event-1", "applicant-1")

    return asyncio.run(_create())


def test_application_show_lists_steps_and_missing(monkeypatch):
    repo = _setup_repo(monkeypatch)
    application = _create_application(
        repo, [UnlockPolicy.AUTO_AFTER_PREV_SUBMITTED, UnlockPolicy.ADMIN_MANUAL]
    )

    result = runner.invoke(app, ["application", "show", application.id])
    assert result.exit_code == 0, f"Command failed. Output: {result.output}"
    assert application.id in result.output
    assert "[0] Step 0: UNLOCKED (revisions: 0)" in result.output
    assert "[1] Step 1: LOCKED (revisions: 0)" in result.output

    missing = runner.invoke(app, ["application", "show", "missing-id"])
    assert missing.exit_code == 1, f"Expected exit code 1, got {missing.exit_code}"
    assert "Application not found" in missing.output


def test_application_recompute_reports_unlocked_steps(monkeypatch):
    repo = _setup_repo(monkeypatch)
    past = datetime.now(timezone.utc) - timedelta(days=1)
    application = _create_application(
        repo,
        [UnlockPolicy.AUTO_AFTER_PREV_SUBMITTED, UnlockPolicy.DATE_BASED],
        options={1: {"unlock_at": datetime.now(timezone.utc) + timedelta(days=1)}},
    )

    result = runner.invoke(app, ["application", "recompute", application.id])
    assert result.exit_code == 0, f"Command failed. Output: {result.output}"
    assert "No steps unlocked" in result.output

    step = asyncio.run(repo.get_workflow_step("step-1"))
    step.unlock_at = past
    asyncio.run(repo.save_workflow_step(step))

    result = runner.invoke(app, ["application", "recompute", application.id])
    assert result.exit_code == 0, f"Command failed. Output: {result.output}"
    assert "Unlocked 1 step(s): step-1" in result.output

    missing = runner.invoke(app, ["application", "recompute", "missing-id"])
    assert missing.exit_code == 1


def test_decisions_publish(monkeypatch):
    repo = _setup_repo(monkeypatch)
    application = _create_application(
        repo, [UnlockPolicy.AUTO_AFTER_PREV_SUBMITTED, UnlockPolicy.AFTER_DECISION_ACCEPTED]
    )
    stored = asyncio.run(repo.get_application(application.id))
    stored.decision_status = DecisionStatus.ACCEPTED
    asyncio.run(repo.save_application(stored))

    result = runner.invoke(
        app, ["decisions", "publish", "event-1", "--application-id", application.id]
    )
    assert result.exit_code == 0, f"Command failed. Output: {result.output}"
    assert "Published 1 decision(s)" in result.output

    states = asyncio.run(StepStateMachine(repo).get_step_states(application.id))
    assert [s.status.value for s in states] == ["UNLOCKED", "UNLOCKED"]


@pytest.mark.parametrize("due, expected", [(False, 0), (True, 1)])
def test_scheduler_run_once(monkeypatch, due, expected):
    repo = _setup_repo(monkeypatch)
    _create_application(
        repo,
        [UnlockPolicy.AUTO_AFTER_PREV_SUBMITTED, UnlockPolicy.DATE_BASED],
        options={1: {"unlock_at": datetime.now(timezone.utc) + timedelta(days=1)}},
    )
    if due:
        step = asyncio.run(repo.get_workflow_step("step-1"))
        step.unlock_at = datetime.now(timezone.utc) - timedelta(days=1)
        asyncio.run(repo.save_workflow_step(step))

    result = runner.invoke(app, ["scheduler", "run-once"])
    assert result.exit_code == 0, f"Command failed. Output: {result.output}"
    assert f"Recomputed {expected} application(s)" in result.output
