"""Review outcome tests."""

import pytest

from stepflow import (
    DecisionStatus,
    RejectBehavior,
    ReviewOutcome,
    StepCategory,
    UnlockPolicy,
    WorkflowEngine,
)
from stepflow.exceptions import BadRequestError, ConflictError, NotFoundError

AUTO = UnlockPolicy.AUTO_AFTER_PREV_SUBMITTED

UPLOAD_FORM = {
    "sections": [
        {
            "id": "docs",
            "title": "Documents",
            "fields": [{"key": "passport", "type": "file_upload", "required": True}],
        }
    ]
}


async def _submitted(engine, make_steps, policies=(AUTO, AUTO), **kwargs):
    await make_steps(list(policies), **kwargs)
    app = await engine.applications.create_application("event-1", "applicant-1")
    answers = {"passport": {"fileObjectId": "file-1"}, "answer": "x"}
    version = await engine.submissions.submit("event-1", app.id, "event-1-step-0", answers)
    return app, version


@pytest.mark.asyncio
async def test_approve_records_review_and_unlocks(engine, make_steps, statuses):
    """Approving the latest version approves the step."""
    app, version = await _submitted(
        engine, make_steps, (AUTO, UnlockPolicy.AFTER_PREV_APPROVED)
    )

    record = await engine.reviews.create_review(
        "event-1",
        app.id,
        "event-1-step-0",
        version.id,
        ReviewOutcome.APPROVE,
        reviewer_id="reviewer-1",
        checklist_result={"identity": True},
    )

    assert await statuses(app.id) == ["APPROVED", "UNLOCKED"]
    reviews = await engine.reviews.get_version_reviews(
        "event-1", app.id, "event-1-step-0", version.id
    )
    assert [r.id for r in reviews] == [record.id]
    assert reviews[0].checklist_result == {"identity": True}


@pytest.mark.asyncio
async def test_reviewing_an_old_version_conflicts(engine, make_steps):
    """Only the latest version can be reviewed."""
    app, first = await _submitted(engine, make_steps)
    await engine.reviews.create_review(
        "event-1", app.id, "event-1-step-0", first.id, ReviewOutcome.REJECT
    )
    second = await engine.submissions.submit(
        "event-1", app.id, "event-1-step-0", {"answer": "again"}
    )

    with pytest.raises(ConflictError) as exc_info:
        await engine.reviews.create_review(
            "event-1", app.id, "event-1-step-0", first.id, ReviewOutcome.APPROVE
        )

    assert exc_info.value.latest_version_id == second.id
    assert exc_info.value.to_dict()["code"] == "VERSION_NOT_LATEST"


@pytest.mark.asyncio
async def test_version_from_another_step_is_not_found(engine, make_steps):
    """Review targets must belong to the reviewed step."""
    app, version = await _submitted(engine, make_steps)

    with pytest.raises(NotFoundError):
        await engine.reviews.create_review(
            "event-1", app.id, "event-1-step-1", version.id, ReviewOutcome.APPROVE
        )


@pytest.mark.asyncio
async def test_approval_requires_verified_required_files(engine, forms, make_steps, statuses):
    """Required uploads must be verified before approval."""
    forms.add("form-upload", UPLOAD_FORM)
    app, version = await _submitted(engine, make_steps, form_version_id="form-upload")

    with pytest.raises(BadRequestError, match="must be verified"):
        await engine.reviews.create_review(
            "event-1", app.id, "event-1-step-0", version.id, ReviewOutcome.APPROVE
        )
    assert await statuses(app.id) == ["SUBMITTED", "UNLOCKED"]

    engine.reviews.files.verify("passport", "file-1")
    await engine.reviews.create_review(
        "event-1", app.id, "event-1-step-0", version.id, ReviewOutcome.APPROVE
    )
    assert (await statuses(app.id))[0] == "APPROVED"


@pytest.mark.asyncio
async def test_approval_without_file_verifier_rejects_required_uploads(
    repo, forms, clock, make_steps
):
    """Without a file verifier, required uploads can never count as verified."""
    engine = WorkflowEngine(repo, forms=forms, clock=clock)
    forms.add("form-upload", UPLOAD_FORM)
    app, version = await _submitted(engine, make_steps, form_version_id="form-upload")

    with pytest.raises(BadRequestError, match="no file verifier"):
        await engine.reviews.create_review(
            "event-1", app.id, "event-1-step-0", version.id, ReviewOutcome.APPROVE
        )
    states = await engine.applications.get_step_states(app.id)
    assert states[0].status.value == "SUBMITTED"


@pytest.mark.asyncio
async def test_approval_checks_files_inside_legacy_envelope(engine, repo, forms, make_steps):
    """File answers wrapped in a ``data`` envelope still need verification."""
    forms.add("form-upload", UPLOAD_FORM)
    app, version = await _submitted(engine, make_steps, form_version_id="form-upload")
    repo._submissions[version.id].answers_snapshot = {
        "data": {"passport": {"fileObjectId": "file-1"}}
    }

    with pytest.raises(BadRequestError, match="must be verified"):
        await engine.reviews.create_review(
            "event-1", app.id, "event-1-step-0", version.id, ReviewOutcome.APPROVE
        )


@pytest.mark.asyncio
async def test_approval_without_file_verifier_passes_forms_without_uploads(
    repo, forms, clock, make_steps
):
    """Forms with no required uploads approve without a verifier."""
    engine = WorkflowEngine(repo, forms=forms, clock=clock)
    app, version = await _submitted(engine, make_steps)

    await engine.reviews.create_review(
        "event-1", app.id, "event-1-step-0", version.id, ReviewOutcome.APPROVE
    )
    states = await engine.applications.get_step_states(app.id)
    assert states[0].status.value == "APPROVED"


@pytest.mark.asyncio
async def test_request_info_opens_request_and_approve_cancels_it(engine, make_steps, statuses):
    """Approval cancels needs-info requests that are still open."""
    app, version = await _submitted(engine, make_steps)
    await engine.reviews.create_review(
        "event-1",
        app.id,
        "event-1-step-0",
        version.id,
        ReviewOutcome.REQUEST_INFO,
        message_to_applicant="Tell us more",
    )
    requests = await engine.reviews.get_needs_info("event-1", app.id)
    assert [(r.status.value, r.message) for r in requests] == [("OPEN", "Tell us more")]
    assert (await statuses(app.id))[0] == "NEEDS_REVISION"

    await engine.reviews.create_review(
        "event-1", app.id, "event-1-step-0", version.id, ReviewOutcome.APPROVE
    )

    requests = await engine.reviews.get_needs_info("event-1", app.id, "event-1-step-0")
    assert [r.status.value for r in requests] == ["CANCELED"]
    assert requests[0].resolved_at is not None


@pytest.mark.asyncio
async def test_cancel_needs_info(engine, make_steps):
    """Staff can cancel a single request."""
    app, version = await _submitted(engine, make_steps)
    await engine.reviews.create_review(
        "event-1", app.id, "event-1-step-0", version.id, ReviewOutcome.REQUEST_INFO
    )
    [request] = await engine.reviews.get_needs_info("event-1", app.id)

    canceled = await engine.reviews.cancel_needs_info("event-1", request.id)

    assert canceled.status.value == "CANCELED"
    with pytest.raises(NotFoundError):
        await engine.reviews.cancel_needs_info("event-2", request.id)


@pytest.mark.asyncio
async def test_reject_final_locks_downstream(engine, make_steps, statuses):
    """A FINAL reject ends the workflow for the application."""
    app, version = await _submitted(
        engine, make_steps, options={0: {"reject_behavior": RejectBehavior.FINAL}}
    )

    await engine.reviews.create_review(
        "event-1", app.id, "event-1-step-0", version.id, ReviewOutcome.REJECT
    )

    assert await statuses(app.id) == ["REJECTED_FINAL", "LOCKED"]


@pytest.mark.asyncio
async def test_reject_with_resubmission_sends_step_back(engine, make_steps, statuses):
    """Rejecting a resubmittable step reopens it for the applicant."""
    app, version = await _submitted(engine, make_steps)

    await engine.reviews.create_review(
        "event-1", app.id, "event-1-step-0", version.id, ReviewOutcome.REJECT
    )

    assert await statuses(app.id) == ["NEEDS_REVISION", "UNLOCKED"]


@pytest.mark.asyncio
async def test_confirmation_approval_records_attendance(engine, repo, make_steps):
    """Approving a confirmation step of an accepted applicant confirms attendance."""
    await make_steps([AUTO], options={0: {"category": StepCategory.CONFIRMATION}})
    app = await engine.applications.create_application("event-1", "applicant-1")
    await engine.decisions.set_decision("event-1", app.id, DecisionStatus.ACCEPTED)
    version = await engine.submissions.submit(
        "event-1", app.id, "event-1-step-0", {"answer": "yes"}
    )
    attendance = engine.reviews.attendance
    attendance.records.clear()

    await engine.reviews.create_review(
        "event-1", app.id, "event-1-step-0", version.id, ReviewOutcome.APPROVE
    )

    assert attendance.records == {app.id: "event-1"}


@pytest.mark.asyncio
async def test_attendance_failure_does_not_block_approval(engine, make_steps, statuses):
    """Attendance is best effort; the approval stands when it fails."""
    await make_steps([AUTO], options={0: {"category": StepCategory.CONFIRMATION}})
    app = await engine.applications.create_application("event-1", "applicant-1")
    version = await engine.submissions.submit(
        "event-1", app.id, "event-1-step-0", {"answer": "yes"}
    )

    await engine.reviews.create_review(
        "event-1", app.id, "event-1-step-0", version.id, ReviewOutcome.APPROVE
    )

    assert await statuses(app.id) == ["APPROVED"]
    assert engine.reviews.attendance.records == {}
