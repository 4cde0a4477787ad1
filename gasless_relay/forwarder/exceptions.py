"""
Exceptions for the forwarder transports.
"""
from typing import Optional


class ForwarderError(Exception):
    """Base exception for forwarder-related errors."""
    pass


class ForwarderConnectionError(ForwarderError):
    """Raised when the ledger node cannot be reached."""
    pass


class ForwarderTimeoutError(ForwarderError):
    """Raised when a forwarder call exceeds its timeout."""
    pass


class ForwarderResponseError(ForwarderError):
    """Raised when the node rejects a call or transaction."""
    pass


class ForwarderConfigError(ForwarderError):
    """Raised when the transport is misconfigured (chain id, missing key)."""
    pass


class ForwarderRevertError(ForwarderError):
    """Raised when a forwarder call reverts."""

    def __init__(self, reason: str, data: Optional[bytes] = None):
        self.reason = reason
        self.data = data
        super().__init__(f"execution reverted: {reason}" if reason else "execution reverted")
