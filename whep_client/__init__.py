"""WHEP (WebRTC-HTTP Egress Protocol) client built on aiortc and httpx."""

from .client import WHEPClient
from .config import IceServer, WHEPClientConfig
from .connection import ConnectionManager, RemoteStream
from .errors import (
    AlreadyNegotiatedError,
    ConfigurationError,
    IceGatheringError,
    InvalidAnswerError,
    MaxRetriesExceededError,
    NegotiationError,
    NegotiationInProgressError,
    PeerConnectionNotInitializedError,
    SessionFailedError,
    UnauthorizedError,
    WHEPError,
)
from .negotiator import NegotiationState, OfferAnswerNegotiator
from .resource import ResourceTracker

__all__ = [
    "WHEPClient",
    "WHEPClientConfig",
    "IceServer",
    "ConnectionManager",
    "RemoteStream",
    "OfferAnswerNegotiator",
    "NegotiationState",
    "ResourceTracker",
    "WHEPError",
    "ConfigurationError",
    "PeerConnectionNotInitializedError",
    "NegotiationInProgressError",
    "AlreadyNegotiatedError",
    "SessionFailedError",
    "NegotiationError",
    "IceGatheringError",
    "UnauthorizedError",
    "InvalidAnswerError",
    "MaxRetriesExceededError",
]
