"""
Command-line WHEP player.

Connects to a WHEP endpoint, plays the remote stream into a file (--record)
or a blackhole, and stops on Ctrl-C or when the connection drops.

Usage:
    python -m whep_client https://example.com/whep --record out.mp4
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from aiortc.contrib.media import MediaBlackhole, MediaRecorder
from loguru import logger

from .client import WHEPClient
from .config import BUNDLE_POLICIES, WHEP_URL, IceServer, WHEPClientConfig
from .connection import RemoteStream
from .errors import ConfigurationError, WHEPError
from .logging import configure_logging

STOP_STATES = ("failed", "disconnected", "closed")


async def play(
    endpoint: str,
    config: Optional[WHEPClientConfig] = None,
    record: Optional[str] = None,
    client: Optional[WHEPClient] = None,
) -> int:
    """
    Play a WHEP stream until interrupted.

    Returns:
        Process exit code: 0 on a clean stop, 1 if negotiation failed
    """
    client = client or WHEPClient(endpoint, config)
    stop = asyncio.Event()
    ready = asyncio.Event()
    streams: List[RemoteStream] = []

    @client.on_stream_ready
    def on_stream_ready(stream: RemoteStream):
        logger.info(f"▶️  Stream is ready: {stream.id}")
        streams.append(stream)
        ready.set()

    @client.on_connection_state_change
    def on_connection_state_change(state: str):
        logger.info(f"WHEP client connection state: {state}")
        if state in STOP_STATES:
            stop.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform/loop
            pass

    sink = MediaRecorder(record) if record else MediaBlackhole()
    sink_started = False

    try:
        try:
            location = await client.connect()
        except WHEPError as e:
            logger.error(f"WHEP Connection Error: {e}")
            return 1

        if location is None:
            logger.warning("Connection closed before the stream was negotiated")
            return 1

        waiters = [
            asyncio.ensure_future(ready.wait()),
            asyncio.ensure_future(stop.wait()),
        ]
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for waiter in waiters:
            waiter.cancel()

        if ready.is_set() and not stop.is_set():
            for stream in streams:
                for track in stream.tracks:
                    sink.addTrack(track)
            await sink.start()
            sink_started = True
            logger.info("🎧 Playing, press Ctrl-C to stop")
            await stop.wait()

        return 0
    finally:
        if sink_started:
            await sink.stop()
        await client.close()
        await client.resources.wait_released()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="whep_client",
        description="Play a WebRTC stream from a WHEP endpoint",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "url",
        nargs="?",
        default=WHEP_URL,
        help="WHEP endpoint URL (default: $WHEP_URL)",
    )
    parser.add_argument("--record", metavar="FILE", help="Record the stream to FILE")
    parser.add_argument("--no-audio", action="store_true", help="Do not request audio")
    parser.add_argument("--no-video", action="store_true", help="Do not request video")
    parser.add_argument("--max-retries", type=int, help="Offer POST attempts (default: 3)")
    parser.add_argument(
        "--ice-timeout", type=int, metavar="MS", help="ICE gathering timeout in ms (default: 300)"
    )
    parser.add_argument("--bundle-policy", choices=BUNDLE_POLICIES, help="Bundle policy")
    parser.add_argument(
        "--ice-server",
        action="append",
        metavar="URL",
        help="STUN/TURN server URL, may be repeated",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def config_from_args(args: argparse.Namespace) -> WHEPClientConfig:
    overrides = {
        "max_retries": args.max_retries,
        "ice_gathering_timeout": args.ice_timeout,
        "bundle_policy": args.bundle_policy,
    }
    if args.no_audio:
        overrides["disable_audio"] = True
    if args.no_video:
        overrides["disable_video"] = True
    if args.ice_server:
        overrides["ice_servers"] = tuple(IceServer(urls=url) for url in args.ice_server)
    return WHEPClientConfig.from_env(**overrides)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging("DEBUG" if args.debug else None)

    if not args.url:
        logger.error("No WHEP endpoint given (pass a URL or set WHEP_URL)")
        return 2

    try:
        config = config_from_args(args)
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    try:
        return asyncio.run(play(args.url, config, record=args.record))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        return 0


if __name__ == "__main__":
    sys.exit(main())
