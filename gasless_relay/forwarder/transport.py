"""
Transport layer for the forwarder contract.

This module defines the interface the relay uses to reach the forwarder,
whatever sits behind it: a deployed contract reached over JSON-RPC or the
in-memory ledger used for local development and tests.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from eth_abi import decode as abi_decode

from ..models import ForwardRequest

logger = logging.getLogger(__name__)

# Selector of Solidity's Error(string)
ERROR_STRING_SELECTOR = bytes.fromhex("08c379a0")


def decode_revert_reason(return_data: bytes) -> Optional[str]:
    """
    Decode an ``Error(string)`` revert payload.

    Returns:
        The revert string, or None if the payload is empty or not Error(string)
    """
    if not return_data or return_data[:4] != ERROR_STRING_SELECTOR:
        return None
    try:
        (reason,) = abi_decode(["string"], return_data[4:])
    except Exception as e:
        logger.debug(f"Could not decode revert payload: {e}")
        return None
    return reason


@dataclass
class ExecutionResult:
    """
    Outcome of a forwarded call, as returned by ``execute``.

    The forwarder does not revert when the target call fails: it returns
    ``success=False`` and the target's revert data.
    """
    success: bool
    return_data: bytes = b""

    @property
    def revert_reason(self) -> Optional[str]:
        """Decoded revert string of a failed call, if any."""
        if self.success:
            return None
        return decode_revert_reason(self.return_data)


class ForwarderTransport(ABC):
    """
    Abstract base class for forwarder transports.

    ``read_*`` and ``simulate_execute`` never change ledger state, so the
    relay may call them speculatively. ``submit_execute`` is the only call
    that spends fees and consumes a nonce.

    Every method may raise ``ForwarderError`` subclasses:
    ``ForwarderRevertError`` when the call reverts,
    ``ForwarderTimeoutError`` / ``ForwarderConnectionError`` for transport
    failures, ``ForwarderResponseError`` when the node rejects the call.
    """

    @abstractmethod
    def read_nonce(self, account: str) -> int:
        """
        Current forwarder nonce of ``account``.

        Used by originators before signing, never by the relay itself.
        """
        pass

    @abstractmethod
    def read_verify(self, request: ForwardRequest, signature: bytes) -> bool:
        """
        Ask the forwarder whether ``signature`` authorises ``request`` now.

        Returns:
            True if the signer and nonce match current ledger state
        """
        pass

    @abstractmethod
    def simulate_execute(self, request: ForwardRequest, signature: bytes) -> ExecutionResult:
        """
        Dry-run ``execute`` against current state without submitting anything.

        Raises:
            ForwarderRevertError: If ``execute`` itself would revert
        """
        pass

    @abstractmethod
    def submit_execute(self, request: ForwardRequest, signature: bytes) -> str:
        """
        Submit the fee-paying ``execute`` transaction.

        Returns:
            Transaction hash as 0x hex; the call does not wait for inclusion
        """
        pass

    @property
    @abstractmethod
    def relayer_address(self) -> Optional[str]:
        """Address paying for submitted transactions, if one is configured."""
        pass

    def close(self) -> None:
        """Close any open connections or resources."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
