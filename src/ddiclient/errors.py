"""Exception taxonomy for the DDI client.

ConfigurationError is the only error fatal at startup. Transport errors are
retried inside the services, except permanent 4xx answers; integrity and
protocol errors (and a permanent 4xx on the deployment descriptor) end the
current action with failure feedback.
"""

from typing import Optional

# Request Timeout and Too Many Requests are worth retrying
RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


class DDIError(Exception):
    """Base class for all DDI client errors."""


class ConfigurationError(DDIError):
    """Invalid or missing client configuration (malformed URL, no token)."""


class TransportError(DDIError):
    """Network or HTTP level failure, generally retryable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def permanent(self) -> bool:
        """True for client errors that will not change on retry (404, 401, 410...)."""
        return (
            self.status_code is not None
            and 400 <= self.status_code < 500
            and self.status_code not in RETRYABLE_CLIENT_STATUSES
        )


class ProtocolError(DDIError):
    """Malformed or unexpected server response."""


class IntegrityError(DDIError):
    """Downloaded artifact does not match its description."""


class SizeMismatchError(IntegrityError):
    """Number of bytes received differs from the declared artifact size."""

    def __init__(self, filename: str, expected: int, actual: int):
        super().__init__(
            f"SIZE_MISMATCH: {filename}: expected {expected} bytes, got {actual}"
        )
        self.filename = filename
        self.expected = expected
        self.actual = actual


class HashMismatchError(IntegrityError):
    """Computed digest differs from the digest declared by the server."""

    def __init__(self, algorithm: str, expected: str, actual: str, filename: str = ""):
        prefix = f"{filename}: " if filename else ""
        super().__init__(
            f"HASH_MISMATCH: {prefix}{algorithm} expected {expected}, got {actual}"
        )
        self.algorithm = algorithm
        self.expected = expected
        self.actual = actual
        self.filename = filename


class ExternalStepError(DDIError):
    """The install collaborator reported a failure."""
