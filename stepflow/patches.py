"""Staff-authored patches over submitted answers."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, List, Optional

from .answers import validate_patch_ops
from .contracts import AdminChangePatch, PatchVisibility, utcnow
from .exceptions import BadRequestError, NotFoundError
from .persistence import ApplicationRepository

logger = logging.getLogger(__name__)


class PatchService:
    def __init__(
        self,
        repository: ApplicationRepository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.clock = clock

    async def _ensure_scope(self, event_id: str, application_id: str, step_id: str) -> None:
        app = await self.repository.get_application(application_id)
        if app is None or app.event_id != event_id:
            raise NotFoundError("Application not found")
        step = await self.repository.get_workflow_step(step_id)
        if step is None or step.event_id != event_id:
            raise NotFoundError("Step not found")

    async def _get_patch(self, event_id: str, patch_id: str) -> AdminChangePatch:
        patch = await self.repository.get_patch(patch_id)
        app = await self.repository.get_application(patch.application_id) if patch else None
        if patch is None or app is None or app.event_id != event_id:
            raise NotFoundError("Patch not found")
        return patch

    async def create_patch(
        self,
        event_id: str,
        application_id: str,
        step_id: str,
        base_version_id: str,
        ops: Any,
        reason: str = "",
        visibility: PatchVisibility = PatchVisibility.INTERNAL,
        created_by: Optional[str] = None,
    ) -> AdminChangePatch:
        """Anchor a new patch to the latest submission version of a step."""
        await self._ensure_scope(event_id, application_id, step_id)

        version = await self.repository.get_submission(base_version_id)
        if (
            version is None
            or version.application_id != application_id
            or version.step_id != step_id
        ):
            raise NotFoundError("Base submission version not found")

        latest = await self.repository.get_latest_submission(application_id, step_id)
        if latest is not None and latest.id != base_version_id:
            raise BadRequestError(
                "Cannot create patch on old version. Applicant has resubmitted.",
                code="PATCH_ON_OLD_VERSION",
                latest_version_id=latest.id,
            )

        patch = AdminChangePatch(
            application_id=application_id,
            step_id=step_id,
            submission_version_id=base_version_id,
            ops=validate_patch_ops(ops),
            reason=reason,
            visibility=PatchVisibility(visibility),
            created_by=created_by,
            created_at=self.clock(),
        )
        await self.repository.save_patch(patch)
        logger.info(f"Created patch {patch.id} on version {base_version_id}")
        return patch

    async def list_patches(
        self, event_id: str, application_id: str, step_id: str
    ) -> List[AdminChangePatch]:
        """All patches of a step, newest first."""
        await self._ensure_scope(event_id, application_id, step_id)
        patches = await self.repository.list_patches(application_id, step_id)
        return list(reversed(patches))

    async def list_active_patches(
        self, event_id: str, application_id: str, step_id: str, version_id: str
    ) -> List[AdminChangePatch]:
        """Active patches of one version in the order they apply."""
        await self._ensure_scope(event_id, application_id, step_id)
        return await self.repository.list_patches(
            application_id, step_id, submission_version_id=version_id, active_only=True
        )

    async def deactivate_patch(self, event_id: str, patch_id: str) -> AdminChangePatch:
        patch = await self._get_patch(event_id, patch_id)
        patch.is_active = False
        await self.repository.save_patch(patch)
        logger.info(f"Deactivated patch {patch_id}")
        return patch

    async def reapply_patch(
        self,
        event_id: str,
        patch_id: str,
        new_version_id: str,
        created_by: Optional[str] = None,
    ) -> AdminChangePatch:
        """Carry a patch over to a newer version of the same step.

        The old patch is deactivated and a copy anchored to ``new_version_id``
        is created.
        """
        old = await self._get_patch(event_id, patch_id)

        version = await self.repository.get_submission(new_version_id)
        app = await self.repository.get_application(version.application_id) if version else None
        if version is None or app is None or app.event_id != event_id:
            raise NotFoundError("New version not found")
        if version.application_id != old.application_id or version.step_id != old.step_id:
            raise BadRequestError("New version does not belong to the same application/step")

        old.is_active = False
        await self.repository.save_patch(old)

        patch = AdminChangePatch(
            application_id=old.application_id,
            step_id=old.step_id,
            submission_version_id=new_version_id,
            ops=old.ops,
            reason=f"Reapplied from patch {patch_id}: {old.reason}",
            visibility=old.visibility,
            created_by=created_by,
            created_at=self.clock(),
        )
        await self.repository.save_patch(patch)
        logger.info(f"Reapplied patch {patch_id} as {patch.id} on version {new_version_id}")
        return patch
