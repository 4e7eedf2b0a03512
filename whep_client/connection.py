"""
Peer connection ownership for a WHEP session.

Manages:
- Creating and configuring the aiortc RTCPeerConnection
- One receive-only transceiver per enabled media kind
- Translating engine events (track, connection state, ICE gathering) into
  client callbacks
- Unsubscribing and closing on teardown
"""

import asyncio
import inspect
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from aiortc import (
    MediaStreamTrack,
    RTCBundlePolicy,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
)
from loguru import logger

from .config import WHEPClientConfig

_MID_RE = re.compile(r"^a=mid:(\S+)")
_MSID_RE = re.compile(r"^a=msid:(\S+)")


@dataclass
class RemoteStream:
    """Remote media stream: the tracks an answer groups under one msid."""

    id: str
    tracks: List[MediaStreamTrack] = field(default_factory=list)

    def get_audio_tracks(self) -> List[MediaStreamTrack]:
        return [t for t in self.tracks if t.kind == "audio"]

    def get_video_tracks(self) -> List[MediaStreamTrack]:
        return [t for t in self.tracks if t.kind == "video"]


StreamCallback = Callable[[RemoteStream], Union[None, Awaitable[None]]]
StateCallback = Callable[[str], Union[None, Awaitable[None]]]


def parse_stream_ids(sdp: str) -> Dict[str, str]:
    """Map each media section's mid to the stream id of its a=msid line."""
    streams: Dict[str, str] = {}
    mid: Optional[str] = None
    msid: Optional[str] = None

    def flush():
        if mid is not None and msid and msid != "-":
            streams[mid] = msid

    for line in sdp.splitlines():
        line = line.strip()
        if line.startswith("m="):
            flush()
            mid, msid = None, None
            continue
        mid_match = _MID_RE.match(line)
        if mid_match:
            mid = mid_match.group(1)
            continue
        msid_match = _MSID_RE.match(line)
        if msid_match:
            msid = msid_match.group(1)
    flush()
    return streams


def _to_rtc_configuration(config: WHEPClientConfig) -> RTCConfiguration:
    return RTCConfiguration(
        iceServers=[
            RTCIceServer(
                urls=server.urls,
                username=server.username,
                credential=server.credential,
            )
            for server in config.ice_servers
        ],
        bundlePolicy=RTCBundlePolicy(config.bundle_policy),
    )


async def _noop(*args) -> None:
    return None


class ConnectionManager:
    """
    Owns the single peer connection of a WHEP session.

    Engine events are subscribed with pyee's ``on`` / ``remove_listener`` so
    teardown can detach them before the handle is closed; no callback fires
    for a session that has already been torn down.
    """

    def __init__(
        self,
        config: WHEPClientConfig,
        peer_connection_factory: Optional[Callable[..., Any]] = None,
    ):
        """
        Args:
            config: Validated session configuration
            peer_connection_factory: Builds the peer connection from a
                ``configuration`` keyword (default: aiortc RTCPeerConnection)
        """
        self.config = config
        self._factory = peer_connection_factory or RTCPeerConnection
        self._pc: Optional[Any] = None
        self._subscriptions: List[tuple] = []
        self._stream_ids: Dict[str, str] = {}
        self._streams: Dict[str, RemoteStream] = {}
        self._gathering_waiters: List[asyncio.Event] = []

        self._on_stream_ready: StreamCallback = _noop
        self._on_state_change: StateCallback = _noop

    @property
    def peer_connection(self) -> Optional[Any]:
        return self._pc

    @property
    def is_closed(self) -> bool:
        return self._pc is None or self._pc.connectionState == "closed"

    @property
    def streams(self) -> List[RemoteStream]:
        return list(self._streams.values())

    def set_stream_ready_callback(self, callback: Optional[StreamCallback]) -> None:
        self._on_stream_ready = callback or _noop

    def set_state_change_callback(self, callback: Optional[StateCallback]) -> None:
        self._on_state_change = callback or _noop

    def initialize(self) -> Any:
        """Create the peer connection, add transceivers and subscribe to its events."""
        if self._pc is not None:
            return self._pc

        pc = self._factory(configuration=_to_rtc_configuration(self.config))
        for kind in self.config.media_kinds:
            pc.addTransceiver(kind, direction="recvonly")

        self._pc = pc
        self._subscribe("track", self._handle_track)
        self._subscribe("connectionstatechange", self._handle_connection_state)
        self._subscribe("icegatheringstatechange", self._handle_ice_gathering_state)

        logger.debug(
            f"Peer connection ready (kinds={','.join(self.config.media_kinds)}, "
            f"bundle={self.config.bundle_policy})"
        )
        return pc

    def _subscribe(self, event: str, handler: Callable) -> None:
        self._pc.on(event, handler)
        self._subscriptions.append((event, handler))

    def note_remote_description(self, sdp: str) -> None:
        """Remember the answer's stream grouping before it is applied."""
        self._stream_ids = parse_stream_ids(sdp)

    async def notify_state(self, state: str) -> None:
        """Deliver a connection state to the registered observer."""
        await self._dispatch(self._on_state_change, state)

    async def wait_for_ice_gathering(self, timeout_ms: int) -> None:
        """
        Wait until ICE gathering completes or ``timeout_ms`` elapses.

        Always returns; callers inspect the local description afterwards.
        """
        if self._pc is None or self._pc.iceGatheringState == "complete":
            return
        if timeout_ms <= 0:
            return

        done = asyncio.Event()
        self._gathering_waiters.append(done)
        try:
            await asyncio.wait_for(done.wait(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.debug(f"ICE gathering still in progress after {timeout_ms}ms, sending offer anyway")
        finally:
            self._gathering_waiters.remove(done)

    async def teardown(self) -> None:
        """Unsubscribe from and close the peer connection. No-op once torn down."""
        pc, self._pc = self._pc, None
        if pc is None:
            return

        for event, handler in self._subscriptions:
            pc.remove_listener(event, handler)
        self._subscriptions.clear()

        # Wake pending ICE waits; they observe the missing handle
        for waiter in self._gathering_waiters:
            waiter.set()

        try:
            await pc.close()
        except Exception as e:
            logger.warning(f"⚠️  Error while closing peer connection: {e}")

        self._streams.clear()
        self._stream_ids.clear()
        logger.debug("Peer connection closed")

    # ========== Engine event handlers ==========

    async def _handle_track(self, track: MediaStreamTrack) -> None:
        if self._pc is None:
            return
        logger.info(f"📻 Received {track.kind} track")
        stream_id = self._stream_id_for(track)

        stream = self._streams.get(stream_id)
        if stream is not None:
            stream.tracks.append(track)
            return

        stream = RemoteStream(id=stream_id, tracks=[track])
        self._streams[stream_id] = stream
        await self._dispatch(self._on_stream_ready, stream)

    async def _handle_connection_state(self) -> None:
        if self._pc is None:
            return
        state = self._pc.connectionState
        logger.info(f"🔗 WebRTC connection state: {state}")
        await self._dispatch(self._on_state_change, state)

    def _handle_ice_gathering_state(self) -> None:
        if self._pc is None:
            return
        state = self._pc.iceGatheringState
        logger.debug(f"ICE gathering state: {state}")
        if state == "complete":
            for waiter in self._gathering_waiters:
                waiter.set()

    def _stream_id_for(self, track: MediaStreamTrack) -> str:
        for transceiver in self._pc.getTransceivers():
            if transceiver.receiver.track is track and transceiver.mid in self._stream_ids:
                return self._stream_ids[transceiver.mid]
        return track.id

    async def _dispatch(self, callback: Callable, value: Any) -> None:
        try:
            result = callback(value)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"❌ Error in WHEP client callback: {e}")
