"""Interfaces for services the engine consults but does not own."""

from __future__ import annotations

import abc
from typing import Any, List, Optional

from ..contracts import DecisionPublishedEvent, FileRef


class FormProvider(metaclass=abc.ABCMeta):
    """Supplies form definitions by form version id."""

    @abc.abstractmethod
    async def get_form_definition(self, form_version_id: str) -> Optional[Any]:
        """Return the raw form definition, or ``None`` if the version is unknown."""
        raise NotImplementedError


class FileVerifier(metaclass=abc.ABCMeta):
    """Reports whether uploaded files have passed external verification."""

    @abc.abstractmethod
    async def all_verified(self, submission_version_id: str, refs: List[FileRef]) -> bool:
        raise NotImplementedError


class NotificationSink(metaclass=abc.ABCMeta):
    """Delivers decision notifications to applicants."""

    @abc.abstractmethod
    async def decision_published(self, event: DecisionPublishedEvent) -> None:
        raise NotImplementedError


class AttendanceService(metaclass=abc.ABCMeta):
    """Creates or refreshes the attendance record of a confirmed applicant."""

    @abc.abstractmethod
    async def confirm_attendance(self, event_id: str, application_id: str) -> None:
        raise NotImplementedError
