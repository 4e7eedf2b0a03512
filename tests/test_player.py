"""Command-line player: argument handling and play/stop lifecycle."""

import asyncio

import httpx
import pytest

from whep_client.player import build_parser, config_from_args, main, play

from fakes import ENDPOINT, ScriptedServer, created


def test_config_from_args():
    args = build_parser().parse_args(
        [
            ENDPOINT,
            "--no-audio",
            "--max-retries", "5",
            "--ice-timeout", "100",
            "--bundle-policy", "max-compat",
            "--ice-server", "stun:a.example.com",
            "--ice-server", "stun:b.example.com",
        ]
    )

    config = config_from_args(args)

    assert args.url == ENDPOINT
    assert config.media_kinds == ("video",)
    assert config.max_retries == 5
    assert config.ice_gathering_timeout == 100
    assert config.bundle_policy == "max-compat"
    assert [s.urls for s in config.ice_servers] == ["stun:a.example.com", "stun:b.example.com"]


def test_main_requires_url():
    assert main([""]) == 2


def test_main_rejects_disabling_both_kinds():
    assert main([ENDPOINT, "--no-audio", "--no-video"]) == 2


@pytest.mark.asyncio
async def test_play_returns_1_when_negotiation_fails(make_client):
    server = ScriptedServer(httpx.Response(403))
    client = make_client(server)

    code = await play(ENDPOINT, client=client)

    assert code == 1
    assert client.state == "closed"
    assert server.deletes == []


@pytest.mark.asyncio
async def test_play_until_disconnected(make_client, peer_connections):
    server = ScriptedServer(created("/s/1"))
    client = make_client(server)

    loop = asyncio.get_running_loop()
    loop.call_later(0.05, peer_connections[0].set_connection_state, "disconnected")

    code = await asyncio.wait_for(play(ENDPOINT, client=client), timeout=2.0)

    assert code == 0
    assert client.state == "closed"
    assert [str(r.url) for r in server.deletes] == ["https://example.com/s/1"]
