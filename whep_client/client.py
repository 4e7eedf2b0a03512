"""
WHEP client: pulls a WebRTC stream from a WHEP endpoint using aiortc.

Connection flow:
1. Create a peer connection with recvonly transceivers
2. Create an SDP offer and wait for ICE gathering
3. POST the offer to the WHEP endpoint (application/sdp)
4. Apply the 201 answer, remember the resource Location
5. Remote tracks arrive through the peer connection
6. close() DELETEs the resource and closes the peer connection
"""

from typing import Any, Callable, Optional

import httpx
from loguru import logger

from .config import WHEPClientConfig
from .connection import ConnectionManager, StateCallback, StreamCallback
from .errors import (
    AlreadyNegotiatedError,
    ConfigurationError,
    NegotiationInProgressError,
    PeerConnectionNotInitializedError,
    SessionFailedError,
)
from .negotiator import NegotiationState, OfferAnswerNegotiator, SleepFunc
from .resource import ResourceTracker


class WHEPClient:
    """
    One WHEP playback session.

    A client negotiates once. After a failed negotiation the caller is
    expected to close it and build a new one.
    """

    def __init__(
        self,
        endpoint: str,
        config: Optional[WHEPClientConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[SleepFunc] = None,
        peer_connection_factory: Optional[Callable[..., Any]] = None,
    ):
        """
        Initialize the client and its peer connection.

        Args:
            endpoint: WHEP endpoint URL the offer is POSTed to
            config: Session configuration (default: WHEPClientConfig())
            transport: httpx transport used for POST and DELETE requests
            sleep: Backoff delay primitive, in seconds
            peer_connection_factory: Replaces aiortc's RTCPeerConnection
        """
        if not endpoint:
            raise ConfigurationError("endpoint is required")

        self._endpoint = endpoint
        self._config = config or WHEPClientConfig()
        self._config.validate()

        self._negotiating = False
        self._failed = False
        self._closed = False

        self._connection = ConnectionManager(self._config, peer_connection_factory)
        self._resources = ResourceTracker(
            endpoint, transport=transport, request_timeout=self._config.request_timeout
        )
        self._negotiator = OfferAnswerNegotiator(
            endpoint,
            self._config,
            self._connection,
            self._resources,
            transport=transport,
            sleep=sleep,
        )

        self._connection.initialize()

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def config(self) -> WHEPClientConfig:
        return self._config

    @property
    def peer_connection(self) -> Optional[Any]:
        return self._connection.peer_connection

    @property
    def resources(self) -> ResourceTracker:
        return self._resources

    @property
    def resource_location(self) -> Optional[str]:
        return self._resources.location

    @property
    def resource_url(self) -> Optional[str]:
        """Absolute URL of the session resource, if negotiated."""
        return self._resources.url

    @property
    def negotiation_state(self) -> NegotiationState:
        return self._negotiator.state

    @property
    def state(self) -> str:
        if self._closed:
            return "closed"
        if self._failed:
            return "failed"
        if self._negotiating:
            return "negotiating"
        pc = self._connection.peer_connection
        return pc.connectionState if pc is not None else "closed"

    def on_stream_ready(self, callback: StreamCallback) -> StreamCallback:
        """Register the callback for a new remote stream (replaces the previous one)."""
        self._connection.set_stream_ready_callback(callback)
        return callback

    def on_connection_state_change(self, callback: StateCallback) -> StateCallback:
        """Register the callback for connection state changes (replaces the previous one)."""
        self._connection.set_state_change_callback(callback)
        return callback

    async def connect(self) -> Optional[str]:
        """
        Negotiate the session with the WHEP endpoint.

        Returns:
            The resource Location, or None if the client was closed while
            negotiating.

        Raises:
            NegotiationError: Negotiation failed; a "failed" state is emitted
                too unless the client was already closed
            NegotiationInProgressError: Another connect() is still running
        """
        if self._negotiating:
            raise NegotiationInProgressError()
        if self._closed or self._connection.peer_connection is None:
            raise PeerConnectionNotInitializedError()
        if self._failed:
            raise SessionFailedError()
        if self._negotiator.state is NegotiationState.NEGOTIATED:
            raise AlreadyNegotiatedError()

        logger.info(f"🔌 Connecting to WHEP endpoint {self._endpoint}...")
        self._negotiating = True
        try:
            return await self._negotiator.negotiate(self._config.max_retries)
        except Exception as e:
            logger.error(f"❌ WHEP negotiation failed: {e}")
            self._failed = True
            if not self._closed:
                await self._connection.notify_state("failed")
            raise
        finally:
            self._negotiating = False

    async def close(self) -> None:
        """Release the WHEP resource and close the peer connection. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True

        self._resources.release()
        await self._connection.teardown()
        logger.info("🔌 WHEP session closed")

    async def __aenter__(self) -> "WHEPClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
