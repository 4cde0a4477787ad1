"""
Exceptions for the gasless relay.

Every failure the relay reports maps onto one ``ErrorKind``. The kind decides
the HTTP status returned to callers and whether the same signed request may
be submitted again.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """
    Failure classes reported by the relay.

    The string values are the short codes sent in the ``error`` field of a
    failure response.
    """
    MALFORMED_INPUT = "MalformedInput"
    VERIFICATION_FAILED = "VerificationFailed"
    SIMULATION_REVERTED = "SimulationReverted"
    SUBMISSION_FAILED = "SubmissionFailed"
    TIMEOUT = "Timeout"
    UNEXPECTED = "Unexpected"

    @property
    def http_status(self) -> int:
        """HTTP status used when this kind is returned over the wire."""
        if self in (ErrorKind.MALFORMED_INPUT, ErrorKind.VERIFICATION_FAILED,
                    ErrorKind.SIMULATION_REVERTED):
            return 400
        return 500

    @property
    def retryable(self) -> bool:
        """
        Whether resubmitting the same request and signature can succeed.

        Only transport level failures qualify: the nonce was never consumed.
        """
        return self in (ErrorKind.SUBMISSION_FAILED, ErrorKind.TIMEOUT)


class RelayError(Exception):
    """Base exception for relay failures."""

    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(self, details: str, kind: Optional[ErrorKind] = None):
        if kind is not None:
            self.kind = kind
        self.details = details
        super().__init__(details)

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.details}"


class MalformedInputError(RelayError):
    """Raised when a request or signature is absent or badly shaped."""
    kind = ErrorKind.MALFORMED_INPUT


class VerificationFailedError(RelayError):
    """Raised when the signature, nonce or domain do not match."""
    kind = ErrorKind.VERIFICATION_FAILED


class SimulationRevertedError(RelayError):
    """Raised when the forwarded call would be rejected by the target."""
    kind = ErrorKind.SIMULATION_REVERTED


class SubmissionFailedError(RelayError):
    """Raised when the node is unreachable or rejects the transaction."""
    kind = ErrorKind.SUBMISSION_FAILED


class RelayTimeoutError(RelayError):
    """Raised when an outbound call exceeds its timeout."""
    kind = ErrorKind.TIMEOUT


class SignatureRecoveryError(ValueError):
    """Raised when no signer can be recovered from a signature."""
    pass


class RelayRequestError(Exception):
    """
    Raised by ``RelayClient`` when the relay answers with a failure.

    Attributes:
        kind: Parsed ``ErrorKind`` (``UNEXPECTED`` if the code is unknown)
        details: Human readable details from the relay
        status_code: HTTP status of the response, if one was received
    """

    def __init__(self, kind: ErrorKind, details: str, status_code: Optional[int] = None):
        self.kind = kind
        self.details = details
        self.status_code = status_code
        super().__init__(f"{kind.value}: {details}")


_ERRORS_BY_KIND = {
    cls.kind: cls for cls in (
        MalformedInputError, VerificationFailedError, SimulationRevertedError,
        SubmissionFailedError, RelayTimeoutError,
    )
}


def error_for_kind(kind: ErrorKind, details: str) -> RelayError:
    """Build the ``RelayError`` subclass matching ``kind``."""
    return _ERRORS_BY_KIND.get(kind, RelayError)(details, kind)
