"""
Source video retrieval.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import httpx

from .config import FetchConfig, LimitsConfig
from .errors import FetchError

logger = logging.getLogger(__name__)


class _Retryable(Exception):
    """Internal marker for failures worth another attempt."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SourceFetcher:
    """
    Streams a remote source file to disk.

    Transport errors, timeouts, 429 and 5xx responses are retried with
    exponential backoff; any other non-2xx status fails at once. The body is
    never held in memory and is capped at ``limits.max_source_bytes``.
    """

    def __init__(
        self,
        fetch_config: Optional[FetchConfig] = None,
        limits_config: Optional[LimitsConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = fetch_config or FetchConfig()
        self.limits = limits_config or LimitsConfig()
        self._client = client

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            self.config.read_timeout,
            connect=self.config.connect_timeout,
        )

    def backoff_delay(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (1-based)."""
        return self.config.backoff_base * (2 ** retry_number)

    async def fetch(self, source_url: str, destination: Path) -> int:
        """
        Download ``source_url`` to ``destination``.

        Returns:
            Number of bytes written.

        Raises:
            FetchError: permanent HTTP error, size limit exceeded, or retries
                exhausted. A partial file is never left behind.
        """
        destination.parent.mkdir(parents=True, exist_ok=True)

        if self._client is not None:
            return await self._fetch_with_retries(self._client, source_url, destination)

        async with httpx.AsyncClient(timeout=self._timeout(), follow_redirects=True) as client:
            return await self._fetch_with_retries(client, source_url, destination)

    async def _fetch_with_retries(self, client: httpx.AsyncClient, source_url: str, destination: Path) -> int:
        attempts = self.config.max_retries + 1
        last_error: Optional[_Retryable] = None

        for attempt in range(attempts):
            if attempt > 0:
                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"[Fetch] Attempt {attempt}/{attempts - 1} failed ({last_error}), "
                    f"retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

            try:
                size = await self._download(client, source_url, destination)
                logger.info(f"[Fetch] Downloaded {size} bytes from {source_url}")
                return size
            except _Retryable as e:
                destination.unlink(missing_ok=True)
                last_error = e
            except FetchError:
                destination.unlink(missing_ok=True)
                raise

        logger.error(f"[Fetch] Giving up on {source_url} after {attempts} attempts: {last_error}")
        raise FetchError(
            f"Failed to fetch source after {attempts} attempts: {last_error}",
            status_code=last_error.status_code if last_error else None,
            code=None if last_error and last_error.status_code else "network_error",
        )

    async def _download(self, client: httpx.AsyncClient, source_url: str, destination: Path) -> int:
        max_bytes = self.limits.max_source_bytes
        try:
            async with client.stream("GET", source_url, timeout=self._timeout()) as response:
                status = response.status_code
                if status == 429 or status >= 500:
                    raise _Retryable(f"HTTP {status}", status_code=status)
                if not response.is_success:
                    raise FetchError(f"Source returned HTTP {status}", status_code=status)

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > max_bytes:
                    raise FetchError(
                        f"Source is {declared} bytes, limit is {max_bytes}",
                        code="source_too_large",
                    )

                written = 0
                with open(destination, "wb") as f:
                    async for chunk in response.aiter_bytes(self.config.chunk_size):
                        written += len(chunk)
                        if written > max_bytes:
                            raise FetchError(
                                f"Source exceeded {max_bytes} bytes while streaming",
                                code="source_too_large",
                            )
                        f.write(chunk)
        except httpx.TransportError as e:
            raise _Retryable(f"{type(e).__name__}: {e}")

        if written == 0:
            raise FetchError("Source returned an empty body", code="empty_source")
        return written
