"""
Bulk artifact fetcher with discovery, retry logic and transparent gunzip.

This module provides:
- Discovery of the current download location of a dataset kind
- Streamed downloads to a temporary file (never buffered in memory)
- Compression detection by magic bytes rather than by content-type
- Exponential backoff with jitter on connection errors, HTTP 5xx and 429,
  honoring ``Retry-After``
"""

import asyncio
import email.utils
import gzip
import json
import logging
import os
import shutil
import zlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx

from core.config import settings
from core.exceptions import (
    ETLException,
    FetchError,
    FetchExhaustedError,
    FetchTransientError,
    NotFoundError,
)
from core.retry import RetryPolicy, retry_async
from schemas.catalog import DatasetDescriptor

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
COPY_CHUNK_SIZE = 1024 * 1024
USER_AGENT = "catalog-ingest/1.0"


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds to wait from a ``Retry-After`` header (delta-seconds or HTTP date)."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        retry_at = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())


def check_response(response: httpx.Response, url: str) -> None:
    """
    Map HTTP error statuses onto the fetch taxonomy.

    Raises:
        FetchTransientError: HTTP 429 and 5xx (retryable)
        FetchError: Any other 4xx (not retryable)
    """
    status = response.status_code
    if status == 429 or status >= 500:
        raise FetchTransientError(
            f"HTTP {status} from {url}",
            context={"url": url, "status_code": status},
            retry_after=parse_retry_after(response.headers.get("Retry-After"))
        )
    if status >= 400:
        raise FetchError(
            f"HTTP {status} from {url}",
            context={"url": url, "status_code": status}
        )


def classify_http_error(exc: Exception) -> Exception:
    """Connection-level httpx failures become ``FetchTransientError``."""
    if isinstance(exc, ETLException):
        return exc
    if isinstance(exc, httpx.TransportError):
        return FetchTransientError(
            f"Connection failure: {type(exc).__name__}",
            context={"error_type": type(exc).__name__, "detail": str(exc)},
            original_exception=exc
        )
    return exc


class CatalogFetcher:
    """
    Resolve and download dataset artifacts from the catalog service.

    Attributes:
        api_url: Base URL of the catalog service
        data_dir: Directory holding the local artifacts (one file per kind)
        retry_policy: Retry ceiling and backoff for every network call
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        api_url: str = None,
        data_dir: Union[str, Path] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep=asyncio.sleep,
        catalog_pause: float = 0.12
    ):
        self.api_url = (api_url or settings.CATALOG_API_URL).rstrip("/")
        self.data_dir = Path(data_dir or settings.DATA_DIR)
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=settings.FETCH_MAX_RETRIES,
            base_delay=settings.FETCH_RETRY_BASE_DELAY,
            max_delay=settings.FETCH_RETRY_MAX_DELAY,
            jitter=settings.RETRY_JITTER
        )
        self.timeout = timeout or settings.HTTP_TIMEOUT
        self.transport = transport
        self.catalog_pause = catalog_pause
        self._sleep = sleep

    @property
    def discovery_url(self) -> str:
        return f"{self.api_url}/bulk-data"

    def artifact_path(self, name: str) -> Path:
        """Canonical local path of an artifact; latest download wins."""
        return self.data_dir / f"{name}.json"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            follow_redirects=True,
            headers={"Accept": "application/json", "User-Agent": USER_AGENT}
        )

    async def _with_retry(self, operation, label: str) -> Any:
        def exhausted(error: Exception, attempts: int) -> FetchExhaustedError:
            return FetchExhaustedError(
                f"{label}: retries exhausted",
                context={"attempts": attempts, "last_error": str(error)},
                original_exception=error
            )

        return await retry_async(
            operation,
            policy=self.retry_policy,
            classify=classify_http_error,
            on_exhausted=exhausted,
            label=label,
            sleep=self._sleep
        )

    async def fetch_json(self, url: str, label: str) -> Any:
        """GET a JSON document with retries."""
        async with self._client() as client:
            async def attempt():
                response = await client.get(url)
                check_response(response, url)
                try:
                    return response.json()
                except ValueError as e:
                    raise FetchError(
                        "Failed to parse JSON response",
                        context={"url": url, "response_body": response.text[:500]},
                        original_exception=e
                    )

            return await self._with_retry(attempt, label)

    async def discover(self) -> List[DatasetDescriptor]:
        """List the datasets currently published by the discovery endpoint."""
        payload = await self.fetch_json(self.discovery_url, "bulk list")
        items = payload.get("data", []) if isinstance(payload, dict) else payload or []
        return [
            DatasetDescriptor.model_validate(item)
            for item in items
            if isinstance(item, dict) and item.get("type") and item.get("download_uri")
        ]

    async def resolve(self, kind: str) -> DatasetDescriptor:
        """
        Find the descriptor of ``kind``.

        Raises:
            NotFoundError: If the discovery listing has no such kind
        """
        descriptors = await self.discover()
        for descriptor in descriptors:
            if descriptor.kind == kind:
                return descriptor
        raise NotFoundError(
            f"Bulk item {kind} not found",
            context={
                "dataset_kind": kind,
                "url": self.discovery_url,
                "available": [d.kind for d in descriptors]
            }
        )

    async def fetch(self, kind: str) -> Path:
        """Resolve ``kind`` and download it, returning the decompressed artifact path."""
        descriptor = await self.resolve(kind)
        logger.info(f"[download] {kind}: {descriptor.download_uri}")
        return await self.download(descriptor.download_uri, self.artifact_path(kind), label=f"{kind} file")

    async def download(self, url: str, dest: Path, label: str) -> Path:
        """
        Stream ``url`` into ``dest``, gunzipping it if the payload is gzip.

        The payload lands in ``<dest>.tmp`` first; its first two bytes decide
        between a streaming gunzip into ``dest`` and a plain rename.
        """
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = dest.with_name(dest.name + ".tmp")

        try:
            async with self._client() as client:
                async def attempt():
                    async with client.stream("GET", url) as response:
                        check_response(response, url)
                        with open(tmp_path, "wb") as f:
                            async for chunk in response.aiter_bytes():
                                f.write(chunk)

                await self._with_retry(attempt, f"{label} download")

            with open(tmp_path, "rb") as f:
                magic = f.read(2)

            if magic == GZIP_MAGIC:
                try:
                    with gzip.open(tmp_path, "rb") as src, open(dest, "wb") as out:
                        shutil.copyfileobj(src, out, COPY_CHUNK_SIZE)
                except (OSError, EOFError, zlib.error) as e:
                    raise FetchError(
                        "Corrupt gzip artifact",
                        context={"url": url, "file_path": str(dest)},
                        original_exception=e
                    )
            else:
                os.replace(tmp_path, dest)
        finally:
            tmp_path.unlink(missing_ok=True)

        logger.info(f"[download] {label}: wrote {dest.stat().st_size:,} bytes -> {dest}")
        return dest

    async def download_json(self, url: str, dest: Path, label: str) -> Path:
        """Fetch a small reference document and store it as ``dest``."""
        payload = await self.fetch_json(url, label)
        return self._write_json(payload, dest, label)

    async def download_catalogs(self, names: List[str], dest: Path) -> Path:
        """
        Fetch every ``/catalog/<name>`` into one ``[{name, data}]`` document.

        Catalogs answering with a client error are skipped with a warning;
        transient failures still go through the retry policy.
        """
        packs: List[Dict[str, Any]] = []
        for name in names:
            try:
                payload = await self.fetch_json(f"{self.api_url}/catalog/{name}", f"catalog:{name}")
            except FetchExhaustedError:
                raise
            except FetchError as e:
                logger.warning(f"[skip] catalog:{name}: {e.message}")
                continue

            data = payload.get("data", []) if isinstance(payload, dict) else []
            packs.append({"name": name, "data": data})
            if self.catalog_pause:
                await self._sleep(self.catalog_pause)

        return self._write_json(packs, dest, "catalogs")

    @staticmethod
    def _write_json(payload: Any, dest: Path, label: str) -> Path:
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = dest.with_name(dest.name + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f)
        os.replace(tmp_path, dest)
        logger.info(f"[download] {label}: wrote {dest.stat().st_size:,} bytes -> {dest}")
        return dest
