"""In-process package index.

Holds the latest document per package and a readiness flag. Query parsing and
ranking live with the query-serving code; this class only keeps contents.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from pubsearch.models import PackageDocument


@dataclass
class InMemoryPackageIndex:
    # package name → latest indexed document
    documents: dict[str, PackageDocument] = field(default_factory=dict)
    ready: bool = False

    async def add_package(self, doc: PackageDocument) -> None:
        self.documents[doc.package] = doc

    async def add_packages(self, docs: Iterable[PackageDocument]) -> None:
        for doc in docs:
            self.documents[doc.package] = doc

    async def remove_package(self, package: str) -> None:
        self.documents.pop(package, None)

    async def mark_ready(self) -> None:
        self.ready = True

    def get(self, package: str) -> PackageDocument | None:
        return self.documents.get(package)

    def __len__(self) -> int:
        return len(self.documents)
