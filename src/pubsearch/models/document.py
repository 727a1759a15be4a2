from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class PackageDocument(BaseModel):
    """Indexed representation of one package, as held in the search snapshot."""

    package: str
    version: str | None = None
    # "As of" logical clock of the last applied task. Authority for ordering.
    timestamp: datetime
    # Wall-clock time of the underlying analysis/content. Authority for age.
    updated: datetime | None = None
    description: str | None = None
    tags: list[str] = []
    minimal: bool = False  # Bootstrap document: name + minimal metadata only
