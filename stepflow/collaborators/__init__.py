from .base import AttendanceService, FileVerifier, FormProvider, NotificationSink
from .inmemory import (
    InMemoryAttendanceService,
    InMemoryFileVerifier,
    InMemoryFormProvider,
    InMemoryNotificationSink,
)

__all__ = [
    "AttendanceService",
    "FileVerifier",
    "FormProvider",
    "NotificationSink",
    "InMemoryAttendanceService",
    "InMemoryFileVerifier",
    "InMemoryFormProvider",
    "InMemoryNotificationSink",
]
