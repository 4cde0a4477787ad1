"""
Forwarder transports for the gasless relay.

The relay talks to the forwarder contract only through ``ForwarderTransport``.
``Web3Forwarder`` reaches a deployed contract over JSON-RPC;
``InMemoryForwarder`` keeps an equivalent ledger in process.
"""
import logging
from typing import TYPE_CHECKING, Dict, Optional

from .exceptions import (
    ForwarderError, ForwarderConnectionError, ForwarderTimeoutError,
    ForwarderResponseError, ForwarderConfigError, ForwarderRevertError
)
from .transport import ExecutionResult, ForwarderTransport, decode_revert_reason
from .memory_transport import InMemoryForwarder, ForwardTarget, TargetReverted
from .web3_transport import Web3Forwarder

if TYPE_CHECKING:
    from ..config import RelayConfig

__all__ = [
    'ForwarderTransport', 'ExecutionResult', 'decode_revert_reason',
    'Web3Forwarder', 'InMemoryForwarder', 'ForwardTarget', 'TargetReverted',
    'ForwarderError', 'ForwarderConnectionError', 'ForwarderTimeoutError',
    'ForwarderResponseError', 'ForwarderConfigError', 'ForwarderRevertError',
    'create_forwarder',
]

logger = logging.getLogger(__name__)


def create_forwarder(
    config: "RelayConfig",
    in_memory: bool = False,
    targets: Optional[Dict[str, ForwardTarget]] = None
) -> ForwarderTransport:
    """
    Build the forwarder transport described by ``config``.

    Args:
        config: Relay configuration
        in_memory: Use the in-process ledger instead of the configured node
        targets: Targets to register on the in-memory ledger

    Returns:
        Forwarder transport
    """
    if in_memory:
        logger.info("Using in-memory forwarder ledger")
        return InMemoryForwarder(config.domain, targets=targets)

    relayer_key = config.relayer_key.get_secret_value() if config.relayer_key else None
    if relayer_key is None:
        logger.warning("RELAY_PRIVATE_KEY is not set; the relay can verify but not submit")
    logger.info(f"Using web3 forwarder at {config.forwarder_address} via {config.rpc_url}")
    return Web3Forwarder(
        rpc_url=config.rpc_url,
        forwarder_address=config.forwarder_address,
        relayer_key=relayer_key,
        chain_id=config.chain_id,
        timeout=config.call_timeout,
    )
