"""Periodic sweep that unlocks date-based steps whose time has come."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from .config import EngineConfig
from .contracts import utcnow
from .persistence import ApplicationRepository
from .step_state import StepStateMachine

logger = logging.getLogger(__name__)


class UnlockScheduler:
    """Finds applications with due ``DATE_BASED`` steps and recomputes them.

    The final unlock decision stays with the state machine, so strict gating
    still applies to date-based steps.
    """

    def __init__(
        self,
        repository: ApplicationRepository,
        state_machine: StepStateMachine,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.state_machine = state_machine
        self.config = config or EngineConfig()
        self.clock = clock

    async def _due_application_ids(self, now: datetime) -> List[str]:
        page_size = max(1, self.config.scheduler_scan_batch_size)
        application_ids: List[str] = []
        seen = set()
        cursor: Optional[str] = None
        while True:
            page = await self.repository.list_due_date_unlocks(now, page_size, cursor)
            for state in page:
                if state.application_id not in seen:
                    seen.add(state.application_id)
                    application_ids.append(state.application_id)
            if len(page) < page_size:
                break
            cursor = page[-1].id
        return application_ids

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """Run one sweep; returns the number of applications recomputed."""
        logger.info("Checking for scheduled step unlocks...")
        try:
            application_ids = await self._due_application_ids(now or self.clock())
            if not application_ids:
                return 0
            logger.info(f"Found {len(application_ids)} applications with unlockable steps")
            await self.state_machine.recompute_many(
                application_ids, self.config.scheduler_recompute_batch_size
            )
            logger.info(f"Recomputed step states for {len(application_ids)} applications")
            return len(application_ids)
        except Exception:
            logger.exception("Error processing scheduled unlocks")
            return 0


async def run_scheduled_unlocks(
    repository: ApplicationRepository,
    now: Optional[datetime] = None,
    config: Optional[EngineConfig] = None,
) -> int:
    """Run a single sweep with a fresh state machine evaluated at ``now``."""
    clock = (lambda: now) if now is not None else utcnow
    machine = StepStateMachine(repository, clock)
    scheduler = UnlockScheduler(repository, machine, config, clock)
    return await scheduler.run_once()
