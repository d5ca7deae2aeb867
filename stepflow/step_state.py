"""Per-application step state machine.

Every workflow step of an application has one :class:`ApplicationStepState`
row. Unlocking is decided by the step's unlock policy, evaluated against the
previous step's status and the application's published decision. A
recomputation pass walks the steps in index order and carries each
just-unlocked status forward, so one pass can cascade through several steps.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Tuple

from .contracts import (
    Application,
    ApplicationStepState,
    DecisionStatus,
    StepStateView,
    StepStatus,
    UnlockPolicy,
    WorkflowStep,
    as_utc,
    utcnow,
)
from .exceptions import NotFoundError
from .persistence import ApplicationRepository

logger = logging.getLogger(__name__)

# previous-step statuses that satisfy "previous step done"
_PREV_DONE = {StepStatus.SUBMITTED, StepStatus.APPROVED}

# statuses recomputation never touches
_SETTLED = {StepStatus.SUBMITTED, StepStatus.APPROVED, StepStatus.NEEDS_REVISION}


def evaluate_unlock_policy(
    step: WorkflowStep,
    prev_state: Optional[ApplicationStepState],
    application: Application,
    now: datetime,
) -> bool:
    """Return ``True`` if ``step`` may move from LOCKED to UNLOCKED.

    Strict gating is checked first and AND-combined with the policy: a gated
    step stays locked while the previous step is neither submitted nor
    approved. Unknown policies never unlock.
    """
    prev_done = prev_state is None or prev_state.status in _PREV_DONE
    if step.strict_gating and not prev_done:
        return False

    policy = step.unlock_policy
    if policy == UnlockPolicy.AUTO_AFTER_PREV_SUBMITTED:
        return prev_done
    if policy == UnlockPolicy.AFTER_PREV_APPROVED:
        return prev_state is None or prev_state.status == StepStatus.APPROVED
    if policy == UnlockPolicy.DATE_BASED:
        if step.unlock_at is None:
            return False
        return as_utc(now) >= as_utc(step.unlock_at)
    if policy == UnlockPolicy.AFTER_DECISION_ACCEPTED:
        return (
            application.decision_status == DecisionStatus.ACCEPTED
            and application.decision_published_at is not None
        )
    return False


def compute_initial_status(
    step: WorkflowStep, application: Application, now: datetime
) -> StepStatus:
    """Initial status of the first step, using the policy with no previous step."""
    if evaluate_unlock_policy(step, None, application, now):
        return StepStatus.UNLOCKED
    return StepStatus.LOCKED


def _to_view(step: WorkflowStep, state: ApplicationStepState) -> StepStateView:
    return StepStateView(
        step_id=step.id,
        step_title=step.title,
        step_index=step.step_index,
        status=state.status,
        current_draft_id=state.current_draft_id,
        latest_submission_version_id=state.latest_submission_version_id,
        revision_cycle_count=state.revision_cycle_count,
        unlocked_at=state.unlocked_at,
        last_activity_at=state.last_activity_at,
    )


class StepStateMachine:
    """Owns every status transition of application step states."""

    def __init__(
        self,
        repository: ApplicationRepository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.clock = clock

    async def _get_application(self, application_id: str) -> Application:
        app = await self.repository.get_application(application_id)
        if app is None:
            raise NotFoundError("Application not found")
        return app

    async def _ordered_states(
        self, application: Application
    ) -> List[Tuple[WorkflowStep, ApplicationStepState]]:
        steps = await self.repository.list_workflow_steps(application.event_id)
        states = {
            s.step_id: s for s in await self.repository.list_step_states(application.id)
        }
        return [(step, states[step.id]) for step in steps if step.id in states]

    # ------------------------------------------------------------------
    # Creation
    async def initialize_step_states(self, application_id: str) -> None:
        """Create the step states of a new application, then recompute."""
        app = await self._get_application(application_id)
        steps = await self.repository.list_workflow_steps(app.event_id)
        now = self.clock()

        states = []
        for position, step in enumerate(steps):
            status = StepStatus.LOCKED
            if position == 0:
                status = compute_initial_status(step, app, now)
            states.append(
                ApplicationStepState(
                    application_id=app.id,
                    step_id=step.id,
                    status=status,
                    unlocked_at=now if status == StepStatus.UNLOCKED else None,
                )
            )
        created = await self.repository.create_step_states(states)
        logger.info(f"Initialized {created} step states for application_id={app.id}")
        await self.recompute_all_step_states(app.id)

    async def ensure_step_states(self, application_id: str) -> bool:
        """Back-fill states for steps added after the application was created.

        Returns ``True`` when anything was created.
        """
        app = await self._get_application(application_id)
        steps = await self.repository.list_workflow_steps(app.event_id)
        existing = {s.step_id for s in await self.repository.list_step_states(app.id)}
        missing = [
            ApplicationStepState(application_id=app.id, step_id=step.id)
            for step in steps
            if step.id not in existing
        ]
        if not missing:
            return False

        created = await self.repository.create_step_states(missing)
        logger.info(f"Back-filled {created} step states for application_id={app.id}")
        await self.recompute_all_step_states(app.id)
        return True

    # ------------------------------------------------------------------
    # Recomputation
    async def recompute_all_step_states(self, application_id: str) -> List[str]:
        """Unlock every LOCKED step whose policy is now satisfied.

        Returns the ids of the steps that were unlocked. Calling it again
        without an intervening event performs no writes.
        """
        app = await self.repository.get_application(application_id)
        if app is None:
            return []

        now = self.clock()
        to_unlock: List[str] = []
        prev_state: Optional[ApplicationStepState] = None
        for step, state in await self._ordered_states(app):
            if state.status in _SETTLED:
                prev_state = state
                continue
            if state.status == StepStatus.LOCKED and evaluate_unlock_policy(
                step, prev_state, app, now
            ):
                to_unlock.append(step.id)
                # visible to the next step in this same pass
                state.status = StepStatus.UNLOCKED
            prev_state = state

        if not to_unlock:
            return []

        await self.repository.update_step_states(
            app.id,
            to_unlock,
            {
                "status": StepStatus.UNLOCKED,
                "unlocked_at": now,
                "last_activity_at": now,
            },
            only_statuses=[StepStatus.LOCKED],
        )
        logger.info(f"Unlocked steps {to_unlock} for application_id={app.id}")
        return to_unlock

    async def recompute_many(self, application_ids: Iterable[str], batch_size: int) -> int:
        """Recompute many applications in batches run concurrently with ``asyncio.gather``."""
        ids = list(application_ids)
        batch_size = max(1, batch_size)
        for start in range(0, len(ids), batch_size):
            batch = ids[start : start + batch_size]
            await asyncio.gather(*(self.recompute_all_step_states(app_id) for app_id in batch))
            logger.debug(f"Recomputed batch of {len(batch)} applications")
        return len(ids)

    # ------------------------------------------------------------------
    # Transitions
    async def _set_status(
        self, application_id: str, step_id: str, status: StepStatus, **extra
    ) -> None:
        changes = {"status": status, "last_activity_at": self.clock(), **extra}
        updated = await self.repository.update_step_states(application_id, [step_id], changes)
        if updated == 0:
            raise NotFoundError("Step state not found")

    async def mark_approved(self, application_id: str, step_id: str) -> None:
        await self._set_status(application_id, step_id, StepStatus.APPROVED)
        logger.info(f"Approved step_id={step_id} application_id={application_id}")
        await self.recompute_all_step_states(application_id)

    async def mark_needs_revision(
        self, application_id: str, step_id: str, lock_downstream: bool = True
    ) -> None:
        """Send a step back to the applicant.

        Bumps the revision cycle count. When the step is strictly gated, steps
        after it that are UNLOCKED are locked again, except ``ADMIN_MANUAL``
        steps.
        """
        state = await self.repository.get_step_state(application_id, step_id)
        if state is None:
            raise NotFoundError("Step state not found")

        await self._set_status(
            application_id,
            step_id,
            StepStatus.NEEDS_REVISION,
            revision_cycle_count=state.revision_cycle_count + 1,
        )
        logger.info(
            f"Step step_id={step_id} needs revision for application_id={application_id} "
            f"(cycle {state.revision_cycle_count + 1})"
        )

        step = await self.repository.get_workflow_step(step_id)
        if step is not None and step.strict_gating and lock_downstream:
            await self.lock_downstream_steps(application_id, step.step_index)

    async def lock_downstream_steps(self, application_id: str, after_index: int) -> List[str]:
        """Relock UNLOCKED steps after ``after_index`` that are not admin-managed."""
        app = await self._get_application(application_id)
        to_lock = [
            step.id
            for step, state in await self._ordered_states(app)
            if step.step_index > after_index
            and state.status == StepStatus.UNLOCKED
            and step.unlock_policy != UnlockPolicy.ADMIN_MANUAL
        ]
        if to_lock:
            await self.repository.update_step_states(
                application_id,
                to_lock,
                {"status": StepStatus.LOCKED},
                only_statuses=[StepStatus.UNLOCKED],
            )
            logger.info(f"Relocked steps {to_lock} for application_id={application_id}")
        return to_lock

    async def mark_rejected_final(self, application_id: str, step_id: str) -> List[str]:
        """Reject a step for good and lock every later step regardless of status."""
        step = await self.repository.get_workflow_step(step_id)
        if step is None:
            raise NotFoundError("Step not found")
        await self._set_status(application_id, step_id, StepStatus.REJECTED_FINAL)

        app = await self._get_application(application_id)
        downstream = [
            s.id for s, _ in await self._ordered_states(app) if s.step_index > step.step_index
        ]
        if downstream:
            await self.repository.update_step_states(
                application_id, downstream, {"status": StepStatus.LOCKED}
            )
        logger.info(
            f"Rejected step_id={step_id} for application_id={application_id}, "
            f"locked {len(downstream)} downstream steps"
        )
        return downstream

    async def manual_unlock(self, application_id: str, step_id: str) -> None:
        """Admin override: unlock regardless of policy, then recompute."""
        now = self.clock()
        await self._set_status(application_id, step_id, StepStatus.UNLOCKED, unlocked_at=now)
        logger.info(f"Manually unlocked step_id={step_id} application_id={application_id}")
        await self.recompute_all_step_states(application_id)

    async def manual_lock(self, application_id: str, step_id: str) -> None:
        # no recompute here, it would undo the lock for policy-driven steps
        await self._set_status(application_id, step_id, StepStatus.LOCKED)
        logger.info(f"Manually locked step_id={step_id} application_id={application_id}")

    # ------------------------------------------------------------------
    # Queries
    async def get_step_states(self, application_id: str) -> List[StepStateView]:
        app = await self._get_application(application_id)
        return [_to_view(step, state) for step, state in await self._ordered_states(app)]

    async def get_step_state(self, application_id: str, step_id: str) -> Optional[StepStateView]:
        state = await self.repository.get_step_state(application_id, step_id)
        if state is None:
            return None
        step = await self.repository.get_workflow_step(step_id)
        if step is None:
            return None
        return _to_view(step, state)
