"""Async ezyVet API client.

This module provides paginated, authenticated reads against the ezyVet REST
API with retry on transient transport errors, OpenTelemetry tracing and
per-item decoding into ExternalRecord.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

import httpx
from opentelemetry import trace
from pydantic import ValidationError

from app.core.retry import async_retry_with_backoff
from app.infrastructure.ezyvet.auth import TokenManager
from app.infrastructure.ezyvet.config import EzyVetSettings, ezyvet_settings
from app.infrastructure.ezyvet.exceptions import (
    DecodeFailure,
    FetchFailure,
    SyncCancelled,
)
from app.schemas.vms import ExternalRecord, Page

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

TRANSIENT_HTTP_EXCEPTIONS = (httpx.ConnectError, httpx.TimeoutException)


def decode_item(item: Any, resource: str, index: int) -> ExternalRecord:
    """Decode one element of the ``items`` array.

    ezyVet wraps each record under a key named after the resource and keeps
    the record identifier in a sibling ``id`` field, e.g.
    ``{"id": "42", "contact": {"first_name": "Ann", ...}}``.

    Raises:
        DecodeFailure: If the item does not have the expected shape.
    """
    if not isinstance(item, Mapping):
        raise DecodeFailure(f"Item {index} is not an object", index)

    external_id = item.get("id")
    if external_id is None or external_id == "":
        raise DecodeFailure(f"Item {index} has no 'id'", index)

    payload = item.get(resource)
    if not isinstance(payload, Mapping):
        raise DecodeFailure(
            f"Item {index} has no '{resource}' object", index, external_id=str(external_id)
        )

    # The payload may carry its own "id" (ezyVet mirrors it); the sibling wins.
    fields = {key: value for key, value in payload.items() if key != "id"}
    fields["external_id"] = external_id
    try:
        return ExternalRecord.model_validate(fields)
    except ValidationError as e:
        raise DecodeFailure(
            f"Item {index} failed validation: {e.error_count()} error(s)",
            index,
            external_id=str(external_id),
        ) from e


class EzyVetClient:
    """Async ezyVet client with token management, retry and tracing.

    Example:
        ```python
        client = EzyVetClient()
        contacts = await client.fetch_all("contact", {"is_customer": "1"})
        await client.close()
        ```
    """

    def __init__(
        self,
        config: EzyVetSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        token_manager: TokenManager | None = None,
    ):
        """Initialize the ezyVet client.

        Args:
            config: Connection settings. Defaults to environment settings.
            transport: Optional httpx transport (used by tests).
            token_manager: Optional token manager. Created on the HTTP client otherwise.
        """
        self.config = config or ezyvet_settings
        self.base_url = str(self.config.EZYVET_BASE_URL).rstrip("/")
        self.timeout = self.config.EZYVET_TIMEOUT
        self.page_size = self.config.EZYVET_PAGE_SIZE
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        self.tokens = token_manager or TokenManager(self._http, self.config)

    async def ensure_valid_credential(self):
        return await self.tokens.ensure_valid_credential()

    async def _get(self, path: str, params: dict[str, Any]) -> httpx.Response:
        """Authenticated GET with retry on transient errors and one re-auth on 401."""

        @async_retry_with_backoff(
            max_attempts=self.config.EZYVET_RETRY_ATTEMPTS,
            min_wait_seconds=self.config.EZYVET_RETRY_DELAY,
            max_wait_seconds=10,
            multiplier=self.config.EZYVET_RETRY_DELAY,
            exceptions=TRANSIENT_HTTP_EXCEPTIONS,
        )
        async def send() -> httpx.Response:
            credential = await self.tokens.ensure_valid_credential()
            return await self._http.get(
                path, params=params, headers=credential.authorization_header
            )

        response = await send()
        if response.status_code == 401:
            # Token revoked server side before its expiry
            logger.warning("ezyVet rejected the bearer token, re-authenticating once")
            self.tokens.invalidate()
            response = await send()
        return response

    async def fetch_page(
        self,
        resource: str,
        limit: int | None = None,
        filters: Mapping[str, str] | None = None,
        page: int = 1,
    ) -> Page:
        """Fetch and decode one page of a resource.

        Args:
            resource: Resource path, e.g. "contact"
            limit: Page size. Defaults to EZYVET_PAGE_SIZE.
            filters: Additional query filters, e.g. {"is_customer": "1"}
            page: 1-based page number

        Returns:
            Page with the decoded records; undecodable items are counted and skipped.

        Raises:
            AuthenticationFailure: If no credential can be obtained
            FetchFailure: On transport error, non-2xx status or unreadable body
        """
        limit = limit or self.page_size
        path = f"/{resource.strip('/')}"
        params: dict[str, Any] = {"limit": limit, "page": page, **(filters or {})}

        with tracer.start_as_current_span(f"ezyvet_fetch_{resource}") as span:
            span.set_attribute("ezyvet.resource", resource)
            span.set_attribute("ezyvet.page", page)
            span.set_attribute("ezyvet.limit", limit)

            try:
                response = await self._get(path, params)
            except httpx.HTTPError as e:
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                raise FetchFailure(f"ezyVet API unreachable for {path} page {page}: {e}") from e

            span.set_attribute("http.status_code", response.status_code)
            if not response.is_success:
                span.set_status(
                    trace.Status(trace.StatusCode.ERROR, f"status {response.status_code}")
                )
                raise FetchFailure(
                    f"ezyVet request {path} page {page} failed with status {response.status_code}",
                    status_code=response.status_code,
                )

            try:
                body = response.json()
            except ValueError as e:
                span.record_exception(e)
                raise FetchFailure(
                    f"ezyVet returned a non-JSON body for {path} page {page}",
                    status_code=response.status_code,
                ) from e

            items = body.get("items") if isinstance(body, Mapping) else None
            if not isinstance(items, list):
                raise FetchFailure(
                    f"ezyVet response for {path} page {page} has no 'items' array",
                    status_code=response.status_code,
                )

            result = Page(number=page, limit=limit, raw_count=len(items))
            for index, item in enumerate(items):
                try:
                    result.records.append(decode_item(item, resource, index))
                except DecodeFailure as e:
                    result.undecodable += 1
                    logger.warning(f"Skipping {resource} item on page {page}: {e.message}")
                    span.add_event("Item skipped", {"item_index": index})

            span.set_attribute("ezyvet.items", result.raw_count)
            span.set_attribute("ezyvet.undecodable", result.undecodable)
            return result

    async def iter_pages(
        self,
        resource: str,
        filters: Mapping[str, str] | None = None,
        limit: int | None = None,
        max_pages: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[Page]:
        """Yield pages from page 1 until a page is shorter than the limit.

        The cancel event is checked before every request after the first page.

        Raises:
            SyncCancelled: If cancel_event is set between two pages
        """
        limit = limit or self.page_size
        max_pages = max_pages if max_pages is not None else self.config.EZYVET_MAX_PAGES
        number = 1
        while True:
            if number > 1 and cancel_event is not None and cancel_event.is_set():
                raise SyncCancelled(
                    f"Fetch of {resource} cancelled before page {number}",
                    {"resource": resource, "page": number},
                )

            page = await self.fetch_page(resource, limit=limit, filters=filters, page=number)
            yield page

            if page.is_last:
                return
            if max_pages is not None and number >= max_pages:
                logger.warning(f"Stopping {resource} fetch at max_pages={max_pages}")
                return
            number += 1

    async def fetch_all(
        self,
        resource: str,
        filters: Mapping[str, str] | None = None,
        limit: int | None = None,
        max_pages: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[ExternalRecord]:
        """Fetch every page of a resource and return the records in page order."""
        records: list[ExternalRecord] = []
        async for page in self.iter_pages(
            resource, filters, limit=limit, max_pages=max_pages, cancel_event=cancel_event
        ):
            records.extend(page.records)
        return records

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        await self._http.aclose()
