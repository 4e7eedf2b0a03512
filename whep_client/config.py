"""Configuration and defaults for the WHEP client."""

import os
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigurationError

# Load environment variables from .env.local first, then .env
load_dotenv('.env.local')
load_dotenv()

BUNDLE_POLICIES = ("max-bundle", "balanced", "max-compat")

DEFAULT_STUN_SERVER = "stun:stun.cloudflare.com:3478"
DEFAULT_BUNDLE_POLICY = "balanced"
DEFAULT_MAX_RETRIES = 3
DEFAULT_ICE_GATHERING_TIMEOUT_MS = 300
DEFAULT_RETRY_INTERVAL_MS = 1000
DEFAULT_REQUEST_TIMEOUT = 10.0

# Environment
WHEP_URL = os.getenv("WHEP_URL", "")
WHEP_LOG_LEVEL = os.getenv("WHEP_LOG_LEVEL", "INFO")


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default, cast):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return cast(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


@dataclass(frozen=True)
class IceServer:
    """A STUN or TURN server handed to the peer connection."""

    urls: str
    username: Optional[str] = None
    credential: Optional[str] = None


@dataclass(frozen=True)
class WHEPClientConfig:
    """
    Immutable WHEP session configuration.

    Args:
        ice_servers: STUN/TURN servers (default: one public STUN server)
        bundle_policy: "max-bundle", "balanced" or "max-compat"
        disable_audio: Do not request an audio track
        disable_video: Do not request a video track
        max_retries: Maximum number of offer POST attempts (>= 1)
        ice_gathering_timeout: Max wait for ICE gathering, in milliseconds (>= 0)
        retry_interval: First backoff delay in milliseconds, doubled after each wait
        request_timeout: Timeout of a single HTTP request, in seconds
    """

    ice_servers: Tuple[IceServer, ...] = field(
        default_factory=lambda: (IceServer(urls=DEFAULT_STUN_SERVER),)
    )
    bundle_policy: str = DEFAULT_BUNDLE_POLICY
    disable_audio: bool = False
    disable_video: bool = False
    max_retries: int = DEFAULT_MAX_RETRIES
    ice_gathering_timeout: int = DEFAULT_ICE_GATHERING_TIMEOUT_MS
    retry_interval: int = DEFAULT_RETRY_INTERVAL_MS
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    def __post_init__(self):
        # Accept lists and bare URL strings for convenience
        servers = tuple(
            server if isinstance(server, IceServer) else IceServer(urls=server)
            for server in self.ice_servers
        )
        object.__setattr__(self, "ice_servers", servers)
        self.validate()

    def validate(self) -> None:
        if self.disable_audio and self.disable_video:
            raise ConfigurationError("cannot disable both audio and video")
        if self.bundle_policy not in BUNDLE_POLICIES:
            raise ConfigurationError(
                f"bundle_policy must be one of {', '.join(BUNDLE_POLICIES)}, "
                f"got {self.bundle_policy!r}"
            )
        if self.max_retries < 1:
            raise ConfigurationError("max_retries must be at least 1")
        if self.ice_gathering_timeout < 0:
            raise ConfigurationError("ice_gathering_timeout must not be negative")
        if self.retry_interval <= 0:
            raise ConfigurationError("retry_interval must be positive")
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")

    @property
    def media_kinds(self) -> Tuple[str, ...]:
        """Enabled media kinds, in transceiver order."""
        kinds = []
        if not self.disable_video:
            kinds.append("video")
        if not self.disable_audio:
            kinds.append("audio")
        return tuple(kinds)

    def with_overrides(self, **overrides) -> "WHEPClientConfig":
        return replace(self, **overrides)

    @classmethod
    def from_env(cls, **overrides) -> "WHEPClientConfig":
        """
        Build a config from WHEP_* environment variables.

        Variables are read at call time, so changes made after import are
        honoured. Keyword overrides take precedence over the environment.
        """
        values = {
            "bundle_policy": os.getenv("WHEP_BUNDLE_POLICY", DEFAULT_BUNDLE_POLICY),
            "disable_audio": _env_bool("WHEP_DISABLE_AUDIO"),
            "disable_video": _env_bool("WHEP_DISABLE_VIDEO"),
            "max_retries": _env_number("WHEP_MAX_RETRIES", DEFAULT_MAX_RETRIES, int),
            "ice_gathering_timeout": _env_number(
                "WHEP_ICE_GATHERING_TIMEOUT_MS", DEFAULT_ICE_GATHERING_TIMEOUT_MS, int
            ),
            "retry_interval": _env_number(
                "WHEP_RETRY_INTERVAL_MS", DEFAULT_RETRY_INTERVAL_MS, int
            ),
            "request_timeout": _env_number(
                "WHEP_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT, float
            ),
        }

        ice_servers = os.getenv("WHEP_ICE_SERVERS")
        if ice_servers is not None:
            values["ice_servers"] = tuple(
                IceServer(urls=url.strip())
                for url in ice_servers.split(",")
                if url.strip()
            )

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


__all__ = [
    "BUNDLE_POLICIES",
    "DEFAULT_STUN_SERVER",
    "IceServer",
    "WHEPClientConfig",
    "WHEP_URL",
    "WHEP_LOG_LEVEL",
]
