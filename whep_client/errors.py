"""Exception taxonomy for the WHEP client.

Precondition errors fail fast at construction or first use. Negotiation errors
surface from ``WHEPClient.connect()``. Cleanup failures are never raised.
"""

from typing import Optional


class WHEPError(Exception):
    """Base class for every error raised by the WHEP client."""


class ConfigurationError(WHEPError, ValueError):
    """Invalid endpoint or configuration, raised before any network activity."""


class PeerConnectionNotInitializedError(WHEPError):
    """The peer connection is missing (never created or already closed)."""

    def __init__(self, message: str = "peer connection is not initialized"):
        super().__init__(message)


class NegotiationInProgressError(WHEPError):
    """``connect()`` was called while another negotiation is still running."""

    def __init__(self, message: str = "a negotiation is already in progress"):
        super().__init__(message)


class AlreadyNegotiatedError(WHEPError):
    """The session already holds a negotiated resource; renegotiation is unsupported."""

    def __init__(self, message: str = "session is already negotiated"):
        super().__init__(message)


class SessionFailedError(WHEPError):
    """The previous negotiation failed; discard the session and build a new one."""

    def __init__(self, message: str = "session failed, create a new client"):
        super().__init__(message)


class NegotiationError(WHEPError):
    """Base class for failures of the offer/answer exchange."""


class IceGatheringError(NegotiationError):
    """No usable local description after the ICE gathering wait."""

    def __init__(self, message: str = "failed to gather ICE candidates for offer"):
        super().__init__(message)


class UnauthorizedError(NegotiationError):
    """The WHEP endpoint rejected the offer with 403 Forbidden."""

    def __init__(self, status_code: int = 403, detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        message = f"Unauthorized (HTTP {status_code})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class InvalidAnswerError(NegotiationError):
    """The endpoint answered 201 but the answer could not be used."""


class MaxRetriesExceededError(NegotiationError):
    """Every attempt was used without receiving a 201 answer."""

    def __init__(self, attempts: int, last_error: Optional[str] = None):
        self.attempts = attempts
        self.last_error = last_error
        message = f"Max retry attempts reached ({attempts})"
        if last_error:
            message = f"{message}: {last_error}"
        super().__init__(message)


__all__ = [
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
