"""Exception hierarchy shared by the client, relay and coordinator."""

from __future__ import annotations


class PlatformError(Exception):
    """Base class for failures talking to the remote platform."""

    kind = "PlatformError"
    retryable = False

    def __init__(self, message: str, *, status: int | None = None, endpoint: str | None = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.endpoint = endpoint


class Unauthenticated(PlatformError):
    """No session secret, or the platform rejected the session."""

    kind = "Unauthenticated"


class RateLimited(PlatformError):
    """The platform kept answering 429 after all retries."""

    kind = "RateLimited"
    retryable = True


class ServerError(PlatformError):
    """5xx responses, transport failures and unreadable bodies."""

    kind = "ServerError"
    retryable = True


class ClientError(PlatformError):
    """Non-retryable 4xx responses."""

    kind = "ClientError"


class AmbiguousConflict(ClientError):
    """HTTP 409 from a mutation endpoint.

    The platform frequently answers 409 even though the change was applied.
    The transport reports it as-is; each mutation caller decides whether it
    counts as success.
    """

    kind = "AmbiguousConflict"


class DeliveryError(Exception):
    """The relay could not reach the executor after its bounded attempts."""

    kind = "DeliveryError"

    def __init__(self, message: str, *, attempts: int = 0):
        super().__init__(message)
        self.message = message
        self.attempts = attempts


class ExecutorUnreachable(Exception):
    """Raised by executor hosts when a delivery cannot be made."""


class UnsupportedMessage(ValueError):
    """A relay payload did not match any known request shape."""


AUTH_REQUIRED_MESSAGE = (
    "Not signed in to YouTube. Sign in at youtube.com and export fresh cookies."
)
AUTH_EXPIRED_MESSAGE = (
    "YouTube authentication expired. Sign in at youtube.com again and retry."
)
