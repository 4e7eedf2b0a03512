"""
WHEP offer/answer exchange.

Negotiation flow:
1. Create an SDP offer and set it as the local description
2. Wait (bounded) for ICE gathering to complete
3. POST the offer to the WHEP endpoint, retrying with exponential backoff
4. Apply the 201 answer and record the resource Location
"""

import asyncio
import enum
from typing import Awaitable, Callable, Optional

import httpx
from aiortc import RTCSessionDescription
from aiortc.exceptions import InvalidStateError
from loguru import logger

from .config import WHEPClientConfig
from .connection import ConnectionManager
from .errors import (
    IceGatheringError,
    InvalidAnswerError,
    MaxRetriesExceededError,
    PeerConnectionNotInitializedError,
    UnauthorizedError,
)
from .resource import ResourceTracker

SDP_CONTENT_TYPE = "application/sdp"

SleepFunc = Callable[[float], Awaitable[None]]


class NegotiationState(enum.Enum):
    IDLE = "idle"
    OFFER_CREATED = "offer-created"
    GATHERING_ICE = "gathering-ice"
    OFFER_READY = "offer-ready"
    SENDING = "sending"
    NEGOTIATED = "negotiated"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OfferAnswerNegotiator:
    """
    Runs one end-to-end WHEP negotiation for a connection manager.

    Args:
        endpoint: URL the offer is POSTed to
        config: Session configuration (timeouts, retry interval)
        connection: Owner of the peer connection
        resources: Tracker that receives the answer's Location
        transport: Optional httpx transport (tests inject a MockTransport)
        sleep: Backoff delay primitive taking seconds (default: asyncio.sleep)
    """

    def __init__(
        self,
        endpoint: str,
        config: WHEPClientConfig,
        connection: ConnectionManager,
        resources: ResourceTracker,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        self.endpoint = endpoint
        self.config = config
        self.connection = connection
        self.resources = resources
        self._transport = transport
        self._sleep = sleep or asyncio.sleep
        self.state = NegotiationState.IDLE

    async def negotiate(self, max_retries: Optional[int] = None) -> Optional[str]:
        """
        Negotiate the session.

        Returns:
            The resource Location, or None when the peer connection was closed
            while retrying.

        Raises:
            NegotiationError: On negotiation failure. Any error, including
                engine errors, leaves the state at FAILED.
        """
        if max_retries is None:
            max_retries = self.config.max_retries

        try:
            return await self._negotiate(max_retries)
        except Exception:
            self.state = NegotiationState.FAILED
            raise

    async def _negotiate(self, max_retries: int) -> Optional[str]:
        pc = self._require_peer_connection()

        offer = await pc.createOffer()
        await pc.setLocalDescription(offer)
        self.state = NegotiationState.OFFER_CREATED

        local_description = await self._wait_for_local_description()
        self.state = NegotiationState.OFFER_READY

        attempt = 0
        retry_interval = self.config.retry_interval
        last_error: Optional[str] = None

        self.state = NegotiationState.SENDING
        async with httpx.AsyncClient(
            transport=self._transport, timeout=self.config.request_timeout
        ) as client:
            while True:
                try:
                    response = await self._send_offer(client, local_description.sdp)
                except (httpx.HTTPError, httpx.InvalidURL) as e:
                    last_error = f"network error: {e}"
                    logger.error(f"❌ Network error on attempt {attempt + 1}: {e}")
                else:
                    if self.connection.is_closed:
                        if response.status_code == 201:
                            self._release_orphan(response.headers.get("Location"))
                        break

                    if response.status_code == 201:
                        return await self._accept_answer(response)

                    if response.status_code == 403:
                        raise UnauthorizedError(403, response.text)

                    if response.status_code == 405:
                        last_error = "405 Method Not Allowed"
                        logger.warning("⚠️  URL must be updated (WHEP endpoint returned 405)")
                    else:
                        last_error = f"status {response.status_code}: {response.text}"
                        logger.error(
                            f"❌ WHEP request failed with status {response.status_code}: {response.text}"
                        )

                if attempt < max_retries - 1 and not self.connection.is_closed:
                    logger.info(f"🔄 Retrying WHEP offer in {retry_interval}ms...")
                    await self._sleep(retry_interval / 1000)
                    retry_interval *= 2

                attempt += 1
                if attempt >= max_retries or self.connection.is_closed:
                    break

        if attempt >= max_retries:
            raise MaxRetriesExceededError(attempt, last_error)

        logger.info("Peer connection closed during negotiation, giving up")
        self.state = NegotiationState.CANCELLED
        return None

    def _require_peer_connection(self):
        pc = self.connection.peer_connection
        if pc is None:
            raise PeerConnectionNotInitializedError()
        return pc

    async def _wait_for_local_description(self) -> RTCSessionDescription:
        self.state = NegotiationState.GATHERING_ICE
        await self.connection.wait_for_ice_gathering(self.config.ice_gathering_timeout)

        pc = self.connection.peer_connection
        if pc is None:
            raise IceGatheringError("peer connection closed while gathering ICE candidates")
        if pc.localDescription is None:
            raise IceGatheringError()
        return pc.localDescription

    async def _send_offer(self, client: httpx.AsyncClient, sdp: str) -> httpx.Response:
        logger.debug(f"POST offer to {self.endpoint}")
        return await client.post(
            self.endpoint,
            content=sdp,
            headers={"Content-Type": SDP_CONTENT_TYPE},
        )

    def _release_orphan(self, location: Optional[str]) -> None:
        """Release a resource the server created after the session was closed."""
        if not location:
            return
        logger.info(f"WHEP answer arrived after close, releasing {location}")
        self.resources.record(location)
        self.resources.release()

    def _cancel_with_orphan(self, location: str) -> None:
        self._release_orphan(location)
        self.state = NegotiationState.CANCELLED
        return None

    async def _accept_answer(self, response: httpx.Response) -> Optional[str]:
        location = response.headers.get("Location")
        if not location:
            raise InvalidAnswerError("WHEP answer is missing the Location header")

        pc = self._require_peer_connection()
        answer_sdp = response.text
        self.connection.note_remote_description(answer_sdp)
        try:
            await pc.setRemoteDescription(RTCSessionDescription(sdp=answer_sdp, type="answer"))
        except (ValueError, InvalidStateError) as e:
            if self.connection.is_closed:
                return self._cancel_with_orphan(location)
            raise InvalidAnswerError(f"answer rejected by peer connection: {e}")

        if self.connection.is_closed:
            return self._cancel_with_orphan(location)

        self.resources.record(location)
        self.state = NegotiationState.NEGOTIATED
        logger.info("✓ WHEP offer/answer exchange complete")
        return location
