"""HTTP clients for the canonical package store.

``HttpDocumentBackend`` turns package metadata and analysis results into
indexable documents via the store's search API; ``HttpChangeFeed`` polls the
per-model change feeds. HTTP 404 on a document means the package is gone and
HTTP 409 means its analysis is not ready; every other failure is reported as a
recoverable ``FETCH_FAILED`` error.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import ValidationError

from pubsearch.errors import AnalysisMissingError, ErrorCode, PackageRemovedError, PubSearchError
from pubsearch.models import ChangeRecord, PackageDocument

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from pubsearch.config import BackendSettings
    from pubsearch.models import TaskSourceModel

log = structlog.get_logger()


def build_http_client(settings: BackendSettings | None = None) -> httpx.AsyncClient:
    timeout = settings.timeout_seconds if settings is not None else 30.0
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        headers={"User-Agent": "pubsearch-indexer/0.1"},
        follow_redirects=True,
    )


def _parse_document(data: Any, *, minimal: bool = False) -> PackageDocument:
    if not isinstance(data, dict):
        raise PubSearchError(
            ErrorCode.INVALID_RESPONSE, f"Expected a JSON object, got {type(data).__name__}"
        )
    payload = {"timestamp": datetime.now(UTC), **data}
    if minimal:
        payload["minimal"] = True
    try:
        return PackageDocument.model_validate(payload)
    except ValidationError as exc:
        raise PubSearchError(ErrorCode.INVALID_RESPONSE, f"Invalid document: {exc}") from exc


class _ApiClient:
    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def _get(self, path_or_url: str, params: dict[str, str] | None = None) -> httpx.Response:
        url = path_or_url if "://" in path_or_url else f"{self._base_url}{path_or_url}"
        try:
            return await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise PubSearchError(
                ErrorCode.FETCH_FAILED, f"Request to {url} failed: {exc}", recoverable=True
            ) from exc

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if response.status_code != 200:
            raise PubSearchError(
                ErrorCode.FETCH_FAILED,
                f"HTTP {response.status_code} from {response.request.url}",
                recoverable=True,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise PubSearchError(
                ErrorCode.INVALID_RESPONSE, f"Malformed JSON from {response.request.url}"
            ) from exc

    async def _paginate(self, path: str, key: str) -> AsyncIterator[Any]:
        page: int | None = 1
        while page is not None:
            body = self._json(await self._get(path, {"page": str(page)}))
            for item in body.get(key, []):
                yield item
            page = body.get("next_page")


class HttpDocumentBackend(_ApiClient):
    """DocumentBackend over the package store's search API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        *,
        sdk_docs_url: str | None = None,
    ) -> None:
        super().__init__(client, base_url)
        self._sdk_docs_url = sdk_docs_url

    async def fetch_document(self, package: str, *, require_analysis: bool) -> PackageDocument:
        response = await self._get(
            f"/api/search/documents/{package}",
            {"require_analysis": "true" if require_analysis else "false"},
        )
        if response.status_code == 404:
            raise PackageRemovedError(package)
        if response.status_code == 409:
            raise AnalysisMissingError(package)
        return _parse_document(self._json(response))

    async def load_minimal_documents(self) -> AsyncIterator[PackageDocument]:
        async for item in self._paginate("/api/search/minimal", "documents"):
            yield _parse_document(item, minimal=True)

    async def list_package_names(self) -> AsyncIterator[str]:
        async for name in self._paginate("/api/search/packages", "packages"):
            yield str(name)

    async def fetch_sdk_documents(self) -> list[PackageDocument] | None:
        """Return the SDK reference documents, or ``None`` if not published yet."""
        if self._sdk_docs_url is None:
            return None
        response = await self._get(self._sdk_docs_url)
        if response.status_code == 404:
            log.info("sdk_docs_not_found", url=self._sdk_docs_url)
            return None
        body = self._json(response)
        return [_parse_document(item) for item in body.get("documents", [])]


class HttpChangeFeed(_ApiClient):
    """ChangeFeed for one backing model."""

    def __init__(self, client: httpx.AsyncClient, base_url: str, model: TaskSourceModel) -> None:
        super().__init__(client, base_url)
        self._model = model

    async def records_changed_since(
        self, since: datetime | None
    ) -> tuple[list[ChangeRecord], datetime | None]:
        params = {"since": since.isoformat()} if since is not None else None
        body = self._json(await self._get(f"/api/search/changes/{self._model}", params))
        try:
            records = [ChangeRecord.model_validate(r) for r in body.get("records", [])]
        except ValidationError as exc:
            raise PubSearchError(
                ErrorCode.INVALID_RESPONSE, f"Invalid change record: {exc}"
            ) from exc
        marker = body.get("marker")
        return records, datetime.fromisoformat(marker) if marker else since
