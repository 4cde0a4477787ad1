"""
Signers producing forward request signatures.

The relay never signs requests: signing belongs to the originator. ``Signer``
describes what an originator-side signing capability must provide, and
``LocalSigner`` implements it with an in-process private key.
"""
import logging
from typing import Protocol

from eth_account import Account
from eth_account.signers.local import LocalAccount

from .codec import encode_request
from .models import EIP712Domain, ForwardRequest

logger = logging.getLogger(__name__)


class Signer(Protocol):
    """Protocol for forward request signers"""
    address: str

    def sign_request(self, domain: EIP712Domain, request: ForwardRequest) -> str:
        """Sign the EIP-712 encoding of ``request`` and return 0x hex"""
        ...


class LocalSigner:
    """
    Signer backed by a private key held in memory.

    Produces the same signature a wallet returns from
    ``eth_signTypedData_v4`` for the same domain and request.
    """

    def __init__(self, private_key: str):
        """
        Args:
            private_key: Hex-encoded secp256k1 private key

        Raises:
            ValueError: If the key cannot be parsed
        """
        self._account: LocalAccount = Account.from_key(private_key)
        self.address = self._account.address

    def sign_request(self, domain: EIP712Domain, request: ForwardRequest) -> str:
        """
        Sign a forward request.

        Raises:
            ValueError: If ``request.from`` is not this signer's address
        """
        if request.from_address != self.address:
            raise ValueError(
                f"Request originator {request.from_address} does not match signer {self.address}"
            )
        signed = self._account.sign_message(encode_request(domain, request))
        signature = "0x" + bytes(signed.signature).hex()
        logger.debug("Signed request nonce=%s for %s… with %s…",
                     request.nonce, self.address[:10], signature[:10])
        return signature

    def __repr__(self) -> str:
        return f"LocalSigner(address={self.address!r})"
