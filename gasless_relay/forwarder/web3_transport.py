"""
Web3-based transport for a deployed MinimalForwarder contract.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Optional

import requests
from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from ..models import ForwardRequest, to_checksum
from .exceptions import (
    ForwarderError, ForwarderConnectionError, ForwarderTimeoutError,
    ForwarderResponseError, ForwarderConfigError, ForwarderRevertError
)
from .transport import ExecutionResult, ForwarderTransport

logger = logging.getLogger(__name__)

_REQUEST_COMPONENTS = [
    {"internalType": "address", "name": "from", "type": "address"},
    {"internalType": "address", "name": "to", "type": "address"},
    {"internalType": "uint256", "name": "value", "type": "uint256"},
    {"internalType": "uint256", "name": "gas", "type": "uint256"},
    {"internalType": "uint256", "name": "nonce", "type": "uint256"},
    {"internalType": "bytes", "name": "data", "type": "bytes"},
]

_REQUEST_INPUT = {
    "components": _REQUEST_COMPONENTS,
    "internalType": "struct MinimalForwarder.ForwardRequest",
    "name": "req",
    "type": "tuple",
}

# Subset of the MinimalForwarder ABI used by the relay
FORWARDER_ABI = [
    {
        "inputs": [{"internalType": "address", "name": "from", "type": "address"}],
        "name": "getNonce",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            _REQUEST_INPUT,
            {"internalType": "bytes", "name": "signature", "type": "bytes"}
        ],
        "name": "verify",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            _REQUEST_INPUT,
            {"internalType": "bytes", "name": "signature", "type": "bytes"}
        ],
        "name": "execute",
        "outputs": [
            {"internalType": "bool", "name": "", "type": "bool"},
            {"internalType": "bytes", "name": "", "type": "bytes"}
        ],
        "stateMutability": "payable",
        "type": "function"
    },
]

GAS_BUFFER = 1.1


def _revert_reason(error: ContractLogicError) -> str:
    message = getattr(error, "message", None) or str(error)
    prefix = "execution reverted: "
    if message.startswith(prefix):
        message = message[len(prefix):]
    return message


class Web3Forwarder(ForwarderTransport):
    """
    Forwarder transport speaking JSON-RPC to a node through web3.py.

    Reads go through ``eth_call``. Submission signs a transaction with the
    relayer's key, so the relayer pays the fee, and returns as soon as the
    node accepts it.
    """

    def __init__(
        self,
        rpc_url: str,
        forwarder_address: str,
        relayer_key: Optional[str] = None,
        chain_id: Optional[int] = None,
        timeout: float = 10,
        w3: Optional[Web3] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Args:
            rpc_url: JSON-RPC endpoint of the node
            forwarder_address: Address of the deployed forwarder
            relayer_key: Private key paying for ``execute`` (read-only if None)
            chain_id: Expected chain id, added to submitted transactions
            timeout: Timeout of each outbound RPC call in seconds
            w3: Preconfigured Web3 instance (tests, custom providers)
            logger: Optional logger instance
        """
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.chain_id = chain_id
        self.logger = logger or logging.getLogger(__name__)

        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.forwarder_address = to_checksum(forwarder_address, "forwarder_address")
        self.contract = self.w3.eth.contract(address=self.forwarder_address, abi=FORWARDER_ABI)

        self._relayer: Optional[LocalAccount] = Account.from_key(relayer_key) if relayer_key else None
        # Serialises relayer transaction nonce allocation across concurrent submissions
        self._submit_lock = threading.Lock()

    @property
    def relayer_address(self) -> Optional[str]:
        return self._relayer.address if self._relayer else None

    @contextmanager
    def _rpc(self, operation: str):
        """Translate web3 and HTTP failures into ``ForwarderError`` subclasses."""
        try:
            yield
        except ForwarderError:
            raise
        except ContractLogicError as e:
            data = getattr(e, "data", None)
            raise ForwarderRevertError(_revert_reason(e), data if isinstance(data, bytes) else None) from e
        except (requests.Timeout, TimeExhausted) as e:
            raise ForwarderTimeoutError(f"{operation} timed out after {self.timeout}s") from e
        except requests.ConnectionError as e:
            raise ForwarderConnectionError(f"{operation}: node unreachable") from e
        except (Web3Exception, ValueError) as e:
            raise ForwarderResponseError(f"{operation} rejected by node: {e}") from e

    def check_chain_id(self) -> int:
        """
        Compare the node's chain id with the configured one.

        Returns:
            The node's chain id

        Raises:
            ForwarderConfigError: If the ids differ
        """
        with self._rpc("eth_chainId"):
            actual = self.w3.eth.chain_id
        if self.chain_id is not None and actual != self.chain_id:
            raise ForwarderConfigError(
                f"Node at {self.rpc_url} reports chain id {actual}, expected {self.chain_id}"
            )
        return actual

    def read_nonce(self, account: str) -> int:
        account = to_checksum(account, "account")
        with self._rpc("getNonce"):
            return int(self.contract.functions.getNonce(account).call())

    def read_verify(self, request: ForwardRequest, signature: bytes) -> bool:
        with self._rpc("verify"):
            return bool(self.contract.functions.verify(request.as_tuple(), signature).call())

    def simulate_execute(self, request: ForwardRequest, signature: bytes) -> ExecutionResult:
        call_params = {"from": self.relayer_address} if self._relayer else {}
        with self._rpc("execute (simulation)"):
            success, return_data = self.contract.functions.execute(
                request.as_tuple(), signature
            ).call(call_params)
        return ExecutionResult(success=bool(success), return_data=bytes(return_data))

    def submit_execute(self, request: ForwardRequest, signature: bytes) -> str:
        if not self._relayer:
            raise ForwarderConfigError("No relayer key configured; cannot submit transactions")

        relayer = self._relayer.address
        with self._submit_lock, self._rpc("execute"):
            fn = self.contract.functions.execute(request.as_tuple(), signature)

            gas = int(fn.estimate_gas({"from": relayer}) * GAS_BUFFER)
            self.logger.debug(f"Estimated gas with buffer: {gas}")

            tx_params = {
                "from": relayer,
                "nonce": self.w3.eth.get_transaction_count(relayer, "pending"),
                "gas": gas,
                "gasPrice": self.w3.eth.gas_price,
            }
            if self.chain_id is not None:
                tx_params["chainId"] = self.chain_id

            tx = fn.build_transaction(tx_params)
            signed_tx = self._relayer.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)

        tx_hash_hex = "0x" + bytes(tx_hash).hex()
        self.logger.info(f"Transaction sent: {tx_hash_hex}")
        return tx_hash_hex
