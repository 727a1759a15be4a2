from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from pubsearch.models.document import PackageDocument


class SearchSnapshot(BaseModel):
    """Package name → indexed document, serialized wholesale for warm starts.

    Entries are only ever replaced or removed as a whole, so readers never
    observe a partially written document. ``values()`` returns a copy that is
    safe to iterate while the updater keeps mutating the snapshot.
    """

    documents: dict[str, PackageDocument] = {}
    saved_at: datetime | None = None

    def get(self, package: str) -> PackageDocument | None:
        return self.documents.get(package)

    def add(self, doc: PackageDocument) -> None:
        self.documents[doc.package] = doc

    def remove(self, package: str) -> None:
        self.documents.pop(package, None)

    def values(self) -> list[PackageDocument]:
        return list(self.documents.values())

    def __len__(self) -> int:
        return len(self.documents)

    def __contains__(self, package: object) -> bool:
        return package in self.documents
