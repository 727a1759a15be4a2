"""Error taxonomy for the index update engine.

``PackageRemovedError`` and ``AnalysisMissingError`` are control-flow
conditions consumed by ``IndexUpdater.run_task``; they are not failures.
Everything else surfaces as a plain ``PubSearchError`` and is left to the
scheduler's per-task isolation.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    PACKAGE_REMOVED = "PACKAGE_REMOVED"
    ANALYSIS_MISSING = "ANALYSIS_MISSING"
    FETCH_FAILED = "FETCH_FAILED"
    INVALID_RESPONSE = "INVALID_RESPONSE"


class PubSearchError(Exception):
    def __init__(self, code: ErrorCode, message: str, *, recoverable: bool = False) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.recoverable = recoverable


class PackageRemovedError(PubSearchError):
    """The package no longer exists in the canonical store."""

    def __init__(self, package: str) -> None:
        super().__init__(
            ErrorCode.PACKAGE_REMOVED,
            f"Package {package!r} has been removed",
            recoverable=False,
        )
        self.package = package


class AnalysisMissingError(PubSearchError):
    """Analysis results are not available yet and a partial document is not allowed."""

    def __init__(self, package: str) -> None:
        super().__init__(
            ErrorCode.ANALYSIS_MISSING,
            f"Analysis for package {package!r} is not available yet",
            recoverable=True,
        )
        self.package = package
