"""Simple example walking one application through a three-step workflow."""

import asyncio

from stepflow import ReviewOutcome, UnlockPolicy, WorkflowEngine, WorkflowStep
from stepflow.collaborators import InMemoryFormProvider
from stepflow.persistence import InMemoryApplicationRepository

PROFILE_FORM = {
    "sections": [
        {
            "id": "profile",
            "title": "Profile",
            "fields": [
                {"id": "name", "key": "name", "type": "text", "label": "Name", "required": True},
                {
                    "id": "attended",
                    "key": "attended_before",
                    "type": "select",
                    "label": "Attended before?",
                    "ui": {"options": [{"label": "Yes", "value": "yes"}, {"label": "No", "value": "no"}]},
                },
                {
                    "id": "year",
                    "key": "attended_year",
                    "type": "text",
                    "label": "Which year?",
                    "logic": {
                        "showWhen": {
                            "rules": [{"fieldKey": "attended_before", "operator": "EQ", "value": "yes"}]
                        }
                    },
                },
            ],
        }
    ]
}


async def main():
    """Basic application lifecycle example."""
    repository = InMemoryApplicationRepository()
    forms = InMemoryFormProvider({"form-profile": PROFILE_FORM})
    engine = WorkflowEngine(repository, forms=forms)

    # Define the event workflow
    for index, policy in enumerate(
        [
            UnlockPolicy.AUTO_AFTER_PREV_SUBMITTED,
            UnlockPolicy.AFTER_PREV_APPROVED,
            UnlockPolicy.AFTER_DECISION_ACCEPTED,
        ]
    ):
        await repository.save_workflow_step(
            WorkflowStep(
                id=f"step-{index}",
                event_id="event-1",
                step_index=index,
                title=f"Step {index}",
                unlock_policy=policy,
                form_version_id="form-profile",
            )
        )

    app = await engine.applications.create_application("event-1", "applicant-1")

    version = await engine.submissions.submit(
        "event-1", app.id, "step-0", {"name": "Ada", "attended_before": "no"}
    )
    print(f"✅ Submitted version {version.version_number}")

    await engine.reviews.create_review(
        "event-1",
        app.id,
        "step-0",
        version.id,
        ReviewOutcome.REQUEST_INFO,
        target_field_ids=["attended_before"],
        message_to_applicant="Please double-check your attendance answer.",
    )

    # Only the targeted field and the fields depending on it may change
    version = await engine.submissions.submit(
        "event-1",
        app.id,
        "step-0",
        {"name": "Ada", "attended_before": "yes", "attended_year": "2023"},
    )
    await engine.reviews.create_review(
        "event-1", app.id, "step-0", version.id, ReviewOutcome.APPROVE
    )

    for view in await engine.applications.get_step_states(app.id):
        print(f"🔗 [{view.step_index}] {view.step_title}: {view.status.value}")


if __name__ == "__main__":
    asyncio.run(main())
