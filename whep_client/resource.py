"""Server-side session resource created by a successful WHEP offer."""

import asyncio
from typing import Optional, Set
from urllib.parse import urljoin, urlsplit

import httpx
from loguru import logger


def endpoint_origin(endpoint: str) -> str:
    parts = urlsplit(endpoint)
    return f"{parts.scheme}://{parts.netloc}"


class ResourceTracker:
    """
    Records the ``Location`` of the WHEP resource and releases it with DELETE.

    Release is best-effort: the DELETE runs as a detached task, its failures
    are logged, and the local teardown never waits on it.
    """

    def __init__(
        self,
        endpoint: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        request_timeout: float = 10.0,
    ):
        self.endpoint = endpoint
        self._transport = transport
        self._request_timeout = request_timeout
        self._location: Optional[str] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def location(self) -> Optional[str]:
        return self._location

    @property
    def url(self) -> Optional[str]:
        if self._location is None:
            return None
        return self.resolve(self._location)

    @property
    def releasing(self) -> bool:
        """True while a DELETE is still in flight."""
        return bool(self._pending)

    def record(self, location: str) -> None:
        self._location = location
        logger.debug(f"WHEP resource recorded: {location}")

    def resolve(self, location: str) -> str:
        """Resolve an origin-relative location against the endpoint's origin."""
        if location.startswith("/"):
            return urljoin(endpoint_origin(self.endpoint), location)
        return location

    def release(self) -> Optional[asyncio.Task]:
        """Spawn the DELETE for the recorded resource, if any, and forget it."""
        location, self._location = self._location, None
        if not location:
            return None

        task = asyncio.ensure_future(self._delete(self.resolve(location)))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def wait_released(self) -> None:
        """Wait for in-flight DELETE requests to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _delete(self, url: str) -> None:
        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self._request_timeout
            ) as client:
                response = await client.delete(url)
            if response.is_success:
                logger.info(f"🗑️  WHEP resource released: {url}")
            else:
                logger.warning(f"⚠️  WHEP DELETE {url} returned {response.status_code}")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"⚠️  WHEP DELETE failed: {e}")
