"""In-memory collaborators for testing and local use."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Set, Tuple

from ..contracts import DecisionPublishedEvent, DecisionStatus, FileRef
from ..exceptions import ForbiddenError, NotFoundError
from ..persistence import ApplicationRepository
from .base import AttendanceService, FileVerifier, FormProvider, NotificationSink


class InMemoryFormProvider(FormProvider):
    def __init__(self, definitions: Optional[Dict[str, Any]] = None) -> None:
        self._definitions: Dict[str, Any] = dict(definitions or {})

    def add(self, form_version_id: str, definition: Any) -> None:
        self._definitions[form_version_id] = definition

    async def get_form_definition(self, form_version_id: str) -> Optional[Any]:
        return self._definitions.get(form_version_id)


class InMemoryFileVerifier(FileVerifier):
    """Treats files as verified once :meth:`verify` was called for them."""

    def __init__(self) -> None:
        self._verified: Set[Tuple[str, str]] = set()

    def verify(self, field_id: str, file_object_id: str) -> None:
        self._verified.add((field_id, file_object_id))

    async def all_verified(self, submission_version_id: str, refs: List[FileRef]) -> bool:
        return all((ref.field_id, ref.file_object_id) in self._verified for ref in refs)


class InMemoryNotificationSink(NotificationSink):
    """Records published decisions in order."""

    def __init__(self) -> None:
        self.events: List[DecisionPublishedEvent] = []

    async def decision_published(self, event: DecisionPublishedEvent) -> None:
        self.events.append(event)


class InMemoryAttendanceService(AttendanceService):
    """Keeps attendance records for accepted applicants with a published decision."""

    def __init__(self, repository: ApplicationRepository) -> None:
        self._repository = repository
        self.records: Dict[str, str] = {}

    async def confirm_attendance(self, event_id: str, application_id: str) -> None:
        app = await self._repository.get_application(application_id)
        if app is None or app.event_id != event_id:
            raise NotFoundError("Application not found")
        if app.decision_status != DecisionStatus.ACCEPTED or not app.decision_is_published:
            raise ForbiddenError("Attendance requires a published acceptance")
        self.records[application_id] = event_id
