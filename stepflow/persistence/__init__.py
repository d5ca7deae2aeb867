"""Persistence layer for the application workflow engine."""

from __future__ import annotations

import os
from typing import Optional

from ..config import StepflowConfig, load_config
from .inmemory import InMemoryApplicationRepository
from .repository import ApplicationRepository
from .sql import SQLApplicationRepository

_repository_instance: ApplicationRepository | None = None

_SQL_PREFIXES = ("sqlite", "postgresql", "postgres")


def get_repository(
    database_url: Optional[str] = None, config: Optional[StepflowConfig] = None
) -> ApplicationRepository:
    """Factory function to obtain an application repository.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``STEPFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("STEPFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _repository_instance = InMemoryApplicationRepository()
        return _repository_instance

    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("sqlite://"):
        database_url = database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    if not database_url.startswith(_SQL_PREFIXES):
        raise ValueError(f"Unsupported database backend: {database_url}")

    _repository_instance = SQLApplicationRepository(database_url)
    return _repository_instance


__all__ = [
    "ApplicationRepository",
    "InMemoryApplicationRepository",
    "SQLApplicationRepository",
    "get_repository",
]
