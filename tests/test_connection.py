"""ConnectionManager: peer connection setup, stream grouping, ICE wait, teardown."""

import asyncio

import pytest
from aiortc import RTCBundlePolicy, RTCConfiguration

from whep_client import ConnectionManager, IceServer, WHEPClientConfig
from whep_client.connection import parse_stream_ids

from fakes import FakePeerConnection, FakeTrack, flush


def _manager(config=None, complete_gathering=True):
    created = []

    def factory(configuration=None):
        pc = FakePeerConnection(configuration, complete_gathering=complete_gathering)
        created.append(pc)
        return pc

    manager = ConnectionManager(config or WHEPClientConfig(), factory)
    return manager, created


def test_initialize_adds_recvonly_video_then_audio():
    manager, created = _manager()
    manager.initialize()

    pc = created[0]
    assert [(t.kind, t.direction) for t in pc.transceivers] == [
        ("video", "recvonly"),
        ("audio", "recvonly"),
    ]


def test_initialize_skips_disabled_kind():
    manager, created = _manager(WHEPClientConfig(disable_video=True))
    manager.initialize()

    assert [t.kind for t in created[0].transceivers] == ["audio"]


def test_initialize_applies_ice_servers_and_bundle_policy():
    config = WHEPClientConfig(
        ice_servers=(IceServer("turn:turn.example.com", "user", "secret"),),
        bundle_policy="max-bundle",
    )
    manager, created = _manager(config)
    manager.initialize()

    rtc_config = created[0].configuration
    assert isinstance(rtc_config, RTCConfiguration)
    assert rtc_config.bundlePolicy == RTCBundlePolicy.MAX_BUNDLE
    assert rtc_config.iceServers[0].urls == "turn:turn.example.com"
    assert rtc_config.iceServers[0].username == "user"
    assert rtc_config.iceServers[0].credential == "secret"


def test_default_configuration_uses_public_stun_and_balanced():
    manager, created = _manager()
    manager.initialize()

    rtc_config = created[0].configuration
    assert rtc_config.bundlePolicy == RTCBundlePolicy.BALANCED
    assert [s.urls for s in rtc_config.iceServers] == ["stun:stun.cloudflare.com:3478"]


def test_initialize_is_idempotent():
    manager, created = _manager()
    first = manager.initialize()
    second = manager.initialize()

    assert first is second
    assert len(created) == 1


@pytest.mark.asyncio
async def test_distinct_streams_are_announced_separately():
    manager, created = _manager()
    manager.initialize()
    pc = created[0]
    streams = []
    manager.set_stream_ready_callback(streams.append)

    manager.note_remote_description(
        "m=video 9 RTP/SAVPF 96\r\na=mid:0\r\na=msid:cam v\r\n"
        "m=audio 9 RTP/SAVPF 111\r\na=mid:1\r\na=msid:mic a\r\n"
    )
    for transceiver in pc.transceivers:
        transceiver.receiver.track = FakeTrack(transceiver.kind, f"{transceiver.kind}-id")
        pc.emit("track", transceiver.receiver.track)
    await flush()

    assert [s.id for s in streams] == ["cam", "mic"]


@pytest.mark.asyncio
async def test_track_without_msid_uses_track_id():
    manager, created = _manager()
    manager.initialize()
    pc = created[0]
    streams = []
    manager.set_stream_ready_callback(streams.append)

    track = FakeTrack("video", "lonely-track")
    pc.transceivers[0].receiver.track = track
    pc.emit("track", track)
    await flush()

    assert streams[0].id == "lonely-track"
    assert streams[0].get_video_tracks() == [track]
    assert streams[0].get_audio_tracks() == []


@pytest.mark.asyncio
async def test_ice_wait_returns_on_timeout():
    manager, _ = _manager(complete_gathering=False)
    manager.initialize()

    loop = asyncio.get_running_loop()
    started = loop.time()
    await asyncio.wait_for(manager.wait_for_ice_gathering(50), timeout=2.0)

    assert loop.time() - started < 1.0


@pytest.mark.asyncio
async def test_ice_wait_returns_when_gathering_completes():
    manager, created = _manager(complete_gathering=False)
    manager.initialize()

    loop = asyncio.get_running_loop()
    loop.call_later(0.01, created[0].complete_ice_gathering)
    started = loop.time()
    await asyncio.wait_for(manager.wait_for_ice_gathering(10_000), timeout=2.0)

    assert loop.time() - started < 1.0


@pytest.mark.asyncio
async def test_ice_wait_with_zero_timeout_returns_at_once():
    manager, _ = _manager(complete_gathering=False)
    manager.initialize()

    await asyncio.wait_for(manager.wait_for_ice_gathering(0), timeout=0.5)


@pytest.mark.asyncio
async def test_teardown_unsubscribes_and_is_idempotent():
    manager, created = _manager()
    manager.initialize()
    pc = created[0]

    await manager.teardown()
    await manager.teardown()

    assert pc.close_calls == 1
    assert manager.peer_connection is None
    assert manager.is_closed
    for event in ("track", "connectionstatechange", "icegatheringstatechange"):
        assert pc.listeners(event) == []


def test_parse_stream_ids():
    sdp = (
        "v=0\r\n"
        "m=video 9 RTP/SAVPF 96\r\n"
        "a=mid:v0\r\n"
        "a=msid:main track-v\r\n"
        "m=audio 9 RTP/SAVPF 111\r\n"
        "a=msid:- track-a\r\n"
        "a=mid:a1\r\n"
        "m=application 9 DTLS/SCTP 5000\r\n"
        "a=mid:data\r\n"
    )

    assert parse_stream_ids(sdp) == {"v0": "main"}
