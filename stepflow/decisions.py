"""Decision setting and publication.

A decision becomes visible to the applicant, and can unlock
``AFTER_DECISION_ACCEPTED`` steps, only once ``decision_published_at`` is
set. Bulk publication recomputes affected applications in fixed-size
batches so the number of concurrent recomputations stays bounded.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from .collaborators import NotificationSink
from .config import EngineConfig
from .contracts import Application, DecisionPublishedEvent, DecisionStatus, utcnow
from .exceptions import NotFoundError
from .persistence import ApplicationRepository
from .step_state import StepStateMachine

logger = logging.getLogger(__name__)


class DecisionService:
    def __init__(
        self,
        repository: ApplicationRepository,
        state_machine: StepStateMachine,
        notifications: Optional[NotificationSink] = None,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.state_machine = state_machine
        self.notifications = notifications
        self.config = config or EngineConfig()
        self.clock = clock

    async def _notify(self, applications: Iterable[Application], published_at: datetime) -> None:
        if self.notifications is None:
            return
        for app in applications:
            event = DecisionPublishedEvent(
                event_id=app.event_id,
                application_id=app.id,
                applicant_id=app.applicant_id,
                decision_status=app.decision_status,
                published_at=published_at,
            )
            try:
                await self.notifications.decision_published(event)
            except Exception as exc:
                logger.warning(
                    f"Decision notification failed for application_id={app.id}: {exc}"
                )

    async def set_decision(
        self,
        event_id: str,
        application_id: str,
        status: DecisionStatus,
        draft: bool = False,
    ) -> Application:
        """Set one application's decision, publishing it unless drafted.

        ``engine.auto_publish_decisions`` publishes even when ``draft`` is
        requested. Drafting clears any earlier publication.
        """
        app = await self.repository.get_application(application_id)
        if app is None or app.event_id != event_id:
            raise NotFoundError("Application not found")

        publish = self.config.auto_publish_decisions or not draft
        now = self.clock()
        app.decision_status = DecisionStatus(status)
        app.decision_published_at = now if publish else None
        app.updated_at = now
        await self.repository.save_application(app)
        logger.info(
            f"Decision {app.decision_status.value} for application_id={app.id} "
            f"({'published' if publish else 'draft'})"
        )

        if publish:
            await self._notify([app], now)
            await self.state_machine.recompute_all_step_states(app.id)
        return app

    async def bulk_draft_decisions(
        self, event_id: str, application_ids: Iterable[str], status: DecisionStatus
    ) -> int:
        """Set a draft decision on many applications; returns how many were updated."""
        status = DecisionStatus(status)
        apps = await self.repository.list_applications(event_id, list(application_ids))
        now = self.clock()
        for app in apps:
            app.decision_status = status
            app.decision_published_at = None
            app.updated_at = now
            await self.repository.save_application(app)
        logger.info(f"Drafted {status.value} decisions for {len(apps)} applications of {event_id}")
        return len(apps)

    async def publish_decisions(
        self, event_id: str, application_ids: Optional[List[str]] = None
    ) -> int:
        """Publish every drafted decision of an event, or only of ``application_ids``.

        Returns the number of applications published.
        """
        to_publish = await self.repository.list_unpublished_decisions(
            event_id, application_ids or None
        )
        if not to_publish:
            return 0

        now = self.clock()
        await self.repository.mark_decisions_published([a.id for a in to_publish], now)
        await self._notify(to_publish, now)

        await self.state_machine.recompute_many(
            [a.id for a in to_publish], self.config.recompute_batch_size
        )
        logger.info(f"Published {len(to_publish)} decisions for event {event_id}")
        return len(to_publish)
