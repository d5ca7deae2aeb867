"""Application lifecycle and staff bulk actions on step states."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, List, Tuple

from .contracts import Application, BulkStepAction, StepStateView, utcnow
from .exceptions import NotFoundError, StepflowError
from .persistence import ApplicationRepository
from .step_state import StepStateMachine

logger = logging.getLogger(__name__)


class ApplicationService:
    def __init__(
        self,
        repository: ApplicationRepository,
        state_machine: StepStateMachine,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.state_machine = state_machine
        self.clock = clock

    async def create_application(self, event_id: str, applicant_id: str) -> Application:
        """Create an application and its step states.

        An applicant holds at most one application per event; asking again
        returns the existing one.
        """
        for existing in await self.repository.list_applications(event_id):
            if existing.applicant_id == applicant_id:
                return existing

        now = self.clock()
        app = Application(
            event_id=event_id, applicant_id=applicant_id, created_at=now, updated_at=now
        )
        await self.repository.save_application(app)
        await self.state_machine.initialize_step_states(app.id)
        logger.info(f"Created application_id={app.id} for event {event_id}")
        return app

    async def get_application(self, event_id: str, application_id: str) -> Application:
        app = await self.repository.get_application(application_id)
        if app is None or app.event_id != event_id:
            raise NotFoundError("Application not found")
        return app

    async def get_step_states(self, application_id: str) -> List[StepStateView]:
        return await self.state_machine.get_step_states(application_id)

    async def delete_application(self, event_id: str, application_id: str) -> None:
        await self.get_application(event_id, application_id)
        await self.repository.delete_application(application_id)
        logger.info(f"Deleted application_id={application_id}")

    async def bulk_step_action(
        self,
        event_id: str,
        step_id: str,
        application_ids: Iterable[str],
        action: BulkStepAction,
    ) -> Tuple[int, int]:
        """Apply a staff override to one step across many applications.

        Returns ``(updated, skipped)``. An application that fails, or is not
        part of the event, is skipped and the rest still proceed.
        """
        action = BulkStepAction(action)
        step = await self.repository.get_workflow_step(step_id)
        if step is None or step.event_id != event_id:
            raise NotFoundError("Step not found in this event")

        ids = list(dict.fromkeys(application_ids))
        apps = await self.repository.list_applications(event_id, ids)
        updated = 0
        for app in apps:
            try:
                if action == BulkStepAction.UNLOCK:
                    await self.state_machine.manual_unlock(app.id, step_id)
                elif action == BulkStepAction.APPROVE:
                    await self.state_machine.mark_approved(app.id, step_id)
                elif action == BulkStepAction.NEEDS_REVISION:
                    await self.state_machine.mark_needs_revision(app.id, step_id)
                else:
                    await self.state_machine.manual_lock(app.id, step_id)
                updated += 1
            except StepflowError as exc:
                logger.warning(
                    f"Skipped {action.value} of step_id={step_id} "
                    f"for application_id={app.id}: {exc.message}"
                )
        return updated, len(ids) - updated
