from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class TaskSourceModel(StrEnum):
    """Backing change feed watched by a DatastoreHeadTaskSource."""

    PACKAGE = "package"
    SCORECARD = "scorecard"


class Task(BaseModel):
    """Package ``package`` may have changed, as of ``triggered_at``."""

    model_config = ConfigDict(frozen=True)

    package: str
    version: str | None = None
    triggered_at: datetime


class ChangeRecord(BaseModel):
    """Single row returned by a change feed poll."""

    package: str
    version: str | None = None
    updated: datetime
