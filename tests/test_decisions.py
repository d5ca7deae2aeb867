"""Decision setting and publication tests."""

import pytest

from stepflow import DecisionStatus, UnlockPolicy, WorkflowEngine
from stepflow.collaborators import NotificationSink
from stepflow.config import EngineConfig, StepflowConfig
from stepflow.exceptions import NotFoundError

POLICIES = [UnlockPolicy.AUTO_AFTER_PREV_SUBMITTED, UnlockPolicy.AFTER_DECISION_ACCEPTED]


class FailingSink(NotificationSink):
    async def decision_published(self, event):
        raise RuntimeError("mail server down")


async def _applications(engine, count):
    apps = []
    for index in range(count):
        apps.append(await engine.applications.create_application("event-1", f"applicant-{index}"))
    return apps


@pytest.mark.asyncio
async def test_published_acceptance_unlocks_decision_step(engine, make_steps, statuses):
    """Publishing an acceptance immediately recomputes the application."""
    await make_steps(POLICIES)
    [app] = await _applications(engine, 1)

    updated = await engine.decisions.set_decision("event-1", app.id, DecisionStatus.ACCEPTED)

    assert updated.decision_published_at is not None
    assert await statuses(app.id) == ["UNLOCKED", "UNLOCKED"]
    [event] = engine.decisions.notifications.events
    assert (event.application_id, event.decision_status) == (app.id, DecisionStatus.ACCEPTED)


@pytest.mark.asyncio
async def test_draft_decision_stays_invisible(engine, make_steps, statuses):
    """A drafted acceptance unlocks nothing and notifies nobody."""
    await make_steps(POLICIES)
    [app] = await _applications(engine, 1)

    updated = await engine.decisions.set_decision(
        "event-1", app.id, DecisionStatus.ACCEPTED, draft=True
    )

    assert updated.decision_published_at is None
    assert await statuses(app.id) == ["UNLOCKED", "LOCKED"]
    assert engine.decisions.notifications.events == []


@pytest.mark.asyncio
async def test_auto_publish_overrides_draft(repo, forms, clock, make_steps):
    """With auto-publish configured, drafts are published right away."""
    config = StepflowConfig(engine=EngineConfig(auto_publish_decisions=True))
    engine = WorkflowEngine(repo, forms=forms, config=config, clock=clock)
    await make_steps(POLICIES)
    app = await engine.applications.create_application("event-1", "applicant-1")

    updated = await engine.decisions.set_decision(
        "event-1", app.id, DecisionStatus.ACCEPTED, draft=True
    )

    assert updated.decision_published_at == clock()
    views = await engine.applications.get_step_states(app.id)
    assert [v.status.value for v in views] == ["UNLOCKED", "UNLOCKED"]


@pytest.mark.asyncio
async def test_set_decision_outside_event_is_not_found(engine, make_steps):
    await make_steps(POLICIES)
    [app] = await _applications(engine, 1)

    with pytest.raises(NotFoundError):
        await engine.decisions.set_decision("event-2", app.id, DecisionStatus.REJECTED)


@pytest.mark.asyncio
async def test_publish_decisions_recomputes_each_application(
    engine, make_steps, statuses, monkeypatch
):
    """Bulk publication recomputes every published application once."""
    await make_steps(POLICIES)
    apps = await _applications(engine, 5)
    drafted = await engine.decisions.bulk_draft_decisions(
        "event-1", [a.id for a in apps[:4]], DecisionStatus.ACCEPTED
    )
    assert drafted == 4

    recomputed = []
    original = engine.state_machine.recompute_all_step_states

    async def _recording(application_id):
        recomputed.append(application_id)
        return await original(application_id)

    monkeypatch.setattr(engine.state_machine, "recompute_all_step_states", _recording)
    engine.decisions.config.recompute_batch_size = 3

    published = await engine.decisions.publish_decisions("event-1")

    assert published == 4
    assert sorted(recomputed) == sorted(a.id for a in apps[:4])
    for app in apps[:4]:
        assert await statuses(app.id) == ["UNLOCKED", "UNLOCKED"]
    assert await statuses(apps[4].id) == ["UNLOCKED", "LOCKED"]
    assert len(engine.decisions.notifications.events) == 4

    # nothing left to publish
    assert await engine.decisions.publish_decisions("event-1") == 0


@pytest.mark.asyncio
async def test_publish_only_selected_applications(engine, make_steps):
    """Publication can be limited to specific applications."""
    await make_steps(POLICIES)
    apps = await _applications(engine, 3)
    await engine.decisions.bulk_draft_decisions(
        "event-1", [a.id for a in apps], DecisionStatus.WAITLISTED
    )

    assert await engine.decisions.publish_decisions("event-1", [apps[0].id]) == 1
    assert await engine.decisions.publish_decisions("event-1", []) == 2


@pytest.mark.asyncio
async def test_notification_failures_do_not_block_publication(repo, forms, clock, make_steps):
    """A failing notification sink is logged and ignored."""
    engine = WorkflowEngine(repo, forms=forms, notifications=FailingSink(), clock=clock)
    await make_steps(POLICIES)
    app = await engine.applications.create_application("event-1", "applicant-1")

    await engine.decisions.set_decision("event-1", app.id, DecisionStatus.ACCEPTED)

    views = await engine.applications.get_step_states(app.id)
    assert [v.status.value for v in views] == ["UNLOCKED", "UNLOCKED"]
