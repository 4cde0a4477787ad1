"""
In-memory forwarder ledger.

This transport keeps the forwarder's state in process and reproduces the
MinimalForwarder contract rules: one nonce per account starting at zero,
``verify`` as a pure check of signer and nonce, and ``execute`` consuming the
nonce before calling the target. It backs local development (``gasless-relay
serve --in-memory``) and the test suite.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from eth_abi import encode as abi_encode
from eth_utils import keccak

from ..codec import recover_digest_signer, typed_data_digest
from ..exceptions import SignatureRecoveryError
from ..models import EIP712Domain, ForwardRequest, to_checksum
from .exceptions import ForwarderRevertError
from .transport import ERROR_STRING_SELECTOR, ExecutionResult, ForwarderTransport

logger = logging.getLogger(__name__)

SIGNATURE_MISMATCH_REASON = "MinimalForwarder: signature does not match request"

# Anvil's second default account, used as the relayer in local setups
DEFAULT_RELAYER_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"


class TargetReverted(Exception):
    """Raised by a target to reject a forwarded call."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)

    def revert_data(self) -> bytes:
        """ABI ``Error(string)`` payload carrying the reason."""
        return ERROR_STRING_SELECTOR + abi_encode(["string"], [self.reason])


class ForwardTarget(Protocol):
    """Contract reachable through the forwarder."""

    def __call__(self, sender: str, data: bytes, value: int, *, commit: bool) -> bytes:
        """
        Handle a forwarded call from ``sender``.

        Must only change state when ``commit`` is True, and raise
        ``TargetReverted`` to reject the call.
        """
        ...


@dataclass
class SubmittedTransaction:
    """Record of an ``execute`` accepted by the in-memory ledger."""
    tx_hash: str
    request: ForwardRequest
    result: ExecutionResult


class InMemoryForwarder(ForwarderTransport):
    """
    Forwarder ledger held in process memory.

    ``transactions`` records every accepted ``execute`` and is never pruned,
    so a long-running ``serve --in-memory`` grows without bound.
    """

    def __init__(
        self,
        domain: EIP712Domain,
        targets: Optional[Dict[str, ForwardTarget]] = None,
        relayer_address: str = DEFAULT_RELAYER_ADDRESS,
        logger: Optional[logging.Logger] = None
    ):
        self.domain = domain
        self.logger = logger or logging.getLogger(__name__)
        self._relayer_address = to_checksum(relayer_address, "relayer_address")
        self._targets: Dict[str, ForwardTarget] = {}
        for address, target in (targets or {}).items():
            self.register_target(address, target)

        self._nonces: Dict[str, int] = {}
        self._lock = threading.RLock()
        self.transactions: List[SubmittedTransaction] = []

    @property
    def relayer_address(self) -> Optional[str]:
        return self._relayer_address

    def register_target(self, address: str, target: ForwardTarget) -> None:
        """Make ``target`` reachable at ``address``."""
        self._targets[to_checksum(address, "target")] = target

    def read_nonce(self, account: str) -> int:
        account = to_checksum(account, "account")
        with self._lock:
            return self._nonces.get(account, 0)

    def _verify_locked(self, request: ForwardRequest, signature: bytes) -> bool:
        digest = typed_data_digest(self.domain, request)
        try:
            signer = recover_digest_signer(digest, signature)
        except SignatureRecoveryError as e:
            raise ForwarderRevertError(str(e)) from e
        return self._nonces.get(request.from_address, 0) == request.nonce and signer == request.from_address

    def read_verify(self, request: ForwardRequest, signature: bytes) -> bool:
        with self._lock:
            return self._verify_locked(request, signature)

    def _call_target(self, request: ForwardRequest, commit: bool) -> ExecutionResult:
        target = self._targets.get(request.to)
        if target is None:
            # A call to an address without code succeeds and returns nothing
            return ExecutionResult(success=True)
        try:
            return_data = target(request.from_address, request.data, request.value, commit=commit)
        except TargetReverted as e:
            return ExecutionResult(success=False, return_data=e.revert_data())
        return ExecutionResult(success=True, return_data=return_data or b"")

    def simulate_execute(self, request: ForwardRequest, signature: bytes) -> ExecutionResult:
        with self._lock:
            if not self._verify_locked(request, signature):
                raise ForwarderRevertError(SIGNATURE_MISMATCH_REASON)
            return self._call_target(request, commit=False)

    def submit_execute(self, request: ForwardRequest, signature: bytes) -> str:
        with self._lock:
            if not self._verify_locked(request, signature):
                raise ForwarderRevertError(SIGNATURE_MISMATCH_REASON)

            # The nonce is consumed even if the target call fails
            self._nonces[request.from_address] = request.nonce + 1
            result = self._call_target(request, commit=True)

            tx_hash = "0x" + keccak(abi_encode(
                ["uint256", "uint256", "bytes32"],
                [self.domain.chain_id, len(self.transactions), typed_data_digest(self.domain, request)],
            )).hex()
            self.transactions.append(SubmittedTransaction(tx_hash, request, result))

        if not result.success:
            self.logger.warning(f"Forwarded call in {tx_hash} failed: {result.revert_reason}")
        self.logger.info(f"Transaction sent: {tx_hash}")
        return tx_hash
