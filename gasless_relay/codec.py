"""
Typed-message codec for forwarder requests.

A ``ForwardRequest`` is signed as EIP-712 typed data under an
``EIP712Domain``. Two encoders live here:

- ``encode_request`` builds the message through eth-account, the same path
  wallets use when signing. The relay uses it for diagnostic recovery.
- ``typed_data_digest`` rebuilds the digest field by field with ``eth_abi``
  and ``keccak``, the way the forwarder contract hashes it on-chain. The
  in-memory forwarder verifies against it.

Both must produce the same 32-byte digest for every (domain, request) pair.
"""
import logging
from typing import Any, Dict, Sequence, Tuple, Union

from eth_abi import encode as abi_encode
from eth_account import Account
from eth_account.messages import SignableMessage, encode_typed_data
from eth_keys import keys
from eth_utils import function_signature_to_4byte_selector, keccak

from .exceptions import SignatureRecoveryError
from .models import EIP712Domain, ForwardRequest, parse_hex_bytes

logger = logging.getLogger(__name__)

EIP712_DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

FORWARD_REQUEST_FIELDS = [
    {"name": "from", "type": "address"},
    {"name": "to", "type": "address"},
    {"name": "value", "type": "uint256"},
    {"name": "gas", "type": "uint256"},
    {"name": "nonce", "type": "uint256"},
    {"name": "data", "type": "bytes"},
]

PRIMARY_TYPE = "ForwardRequest"

DOMAIN_TYPE = "EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
FORWARD_REQUEST_TYPE = (
    "ForwardRequest(address from,address to,uint256 value,uint256 gas,uint256 nonce,bytes data)"
)
DOMAIN_TYPEHASH = keccak(text=DOMAIN_TYPE)
FORWARD_REQUEST_TYPEHASH = keccak(text=FORWARD_REQUEST_TYPE)

# secp256k1 group order; signatures with s above half of it are malleable
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
SECP256K1_HALF_N = SECP256K1_N // 2

SIGNATURE_LENGTH = 65

SignatureLike = Union[str, bytes]


def build_typed_data(domain: EIP712Domain, request: ForwardRequest) -> Dict[str, Any]:
    """
    Build the full EIP-712 message for a forward request.

    Args:
        domain: Signing domain
        request: Request to sign

    Returns:
        Dictionary with ``types``, ``primaryType``, ``domain`` and ``message``
    """
    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_FIELDS,
            PRIMARY_TYPE: FORWARD_REQUEST_FIELDS,
        },
        "primaryType": PRIMARY_TYPE,
        "domain": domain.to_dict(),
        "message": request.to_message(),
    }


def encode_request(domain: EIP712Domain, request: ForwardRequest) -> SignableMessage:
    """Encode a request as an eth-account ``SignableMessage``."""
    return encode_typed_data(full_message=build_typed_data(domain, request))


def signable_digest(signable: SignableMessage) -> bytes:
    """Hash a ``SignableMessage`` the way ``Account.sign_message`` does."""
    return keccak(b"\x19" + signable.version + signable.header + signable.body)


def domain_separator(domain: EIP712Domain) -> bytes:
    """EIP-712 domain separator, as computed by the forwarder contract."""
    return keccak(abi_encode(
        ["bytes32", "bytes32", "bytes32", "uint256", "address"],
        [
            DOMAIN_TYPEHASH,
            keccak(text=domain.name),
            keccak(text=domain.version),
            domain.chain_id,
            domain.verifying_contract,
        ],
    ))


def struct_hash(request: ForwardRequest) -> bytes:
    """``hashStruct(ForwardRequest)``; dynamic ``data`` is hashed first."""
    return keccak(abi_encode(
        ["bytes32", "address", "address", "uint256", "uint256", "uint256", "bytes32"],
        [
            FORWARD_REQUEST_TYPEHASH,
            request.from_address,
            request.to,
            request.value,
            request.gas,
            request.nonce,
            keccak(request.data),
        ],
    ))


def typed_data_digest(domain: EIP712Domain, request: ForwardRequest) -> bytes:
    """32-byte digest the signature covers: ``keccak(0x1901 || separator || structHash)``."""
    return keccak(b"\x19\x01" + domain_separator(domain) + struct_hash(request))


def signature_to_bytes(signature: SignatureLike) -> bytes:
    """
    Normalise a signature to raw bytes.

    Raises:
        SignatureRecoveryError: If the signature is not hex or not 65 bytes long
    """
    if isinstance(signature, str):
        try:
            raw = parse_hex_bytes(signature, "signature")
        except ValueError as e:
            raise SignatureRecoveryError(str(e)) from e
    elif isinstance(signature, (bytes, bytearray)):
        raw = bytes(signature)
    else:
        raise SignatureRecoveryError(f"Unsupported signature type: {type(signature).__name__}")

    if len(raw) != SIGNATURE_LENGTH:
        raise SignatureRecoveryError(
            f"Signature must be {SIGNATURE_LENGTH} bytes, got {len(raw)}"
        )
    return raw


def split_signature(signature: SignatureLike) -> Tuple[int, int, int]:
    """Split a 65-byte ``r || s || v`` signature into ``(v, r, s)``."""
    raw = signature_to_bytes(signature)
    r = int.from_bytes(raw[:32], "big")
    s = int.from_bytes(raw[32:64], "big")
    return raw[64], r, s


def recover_signer(domain: EIP712Domain, request: ForwardRequest, signature: SignatureLike) -> str:
    """
    Recover the account that signed ``request`` under ``domain``.

    Args:
        domain: Signing domain
        request: Signed request
        signature: 65-byte signature, raw or 0x hex

    Returns:
        Checksummed address of the signer

    Raises:
        SignatureRecoveryError: If the signature is malformed or no public
            key can be recovered from it
    """
    raw = signature_to_bytes(signature)
    signable = encode_request(domain, request)
    try:
        return Account.recover_message(signable, signature=raw)
    except Exception as e:
        raise SignatureRecoveryError(f"Signature recovery failed: {e}") from e


def recover_digest_signer(digest: bytes, signature: SignatureLike) -> str:
    """
    Recover a signer from a raw digest with the contract's ECDSA rules.

    Rejects high-``s`` signatures and ``v`` outside ``{27, 28}`` the way
    OpenZeppelin's ``ECDSA.recover`` does, so the in-memory forwarder refuses
    the same signatures the deployed forwarder refuses.

    Raises:
        SignatureRecoveryError: With the revert reason the contract would give
    """
    try:
        v, r, s = split_signature(signature)
    except SignatureRecoveryError as e:
        raise SignatureRecoveryError("ECDSA: invalid signature length") from e

    if s > SECP256K1_HALF_N:
        raise SignatureRecoveryError("ECDSA: invalid signature 's' value")
    if v not in (27, 28) or not (0 < r < SECP256K1_N) or s == 0:
        raise SignatureRecoveryError("ECDSA: invalid signature")

    try:
        public_key = keys.Signature(vrs=(v - 27, r, s)).recover_public_key_from_msg_hash(digest)
    except Exception as e:
        raise SignatureRecoveryError("ECDSA: invalid signature") from e
    return public_key.to_checksum_address()


def encode_function_call(signature_text: str, args: Sequence[Any] = ()) -> bytes:
    """
    ABI-encode a call to a target contract function.

    Args:
        signature_text: Canonical signature such as ``"vote(uint256,uint8)"``.
            Tuple parameters are not supported.
        args: Positional arguments matching the parameter types

    Returns:
        4-byte selector followed by the encoded arguments
    """
    open_paren = signature_text.find("(")
    if open_paren <= 0 or not signature_text.endswith(")"):
        raise ValueError(f"Invalid function signature: {signature_text!r}")

    params = signature_text[open_paren + 1:-1]
    types = [t.strip() for t in params.split(",")] if params else []
    if len(types) != len(args):
        raise ValueError(
            f"{signature_text} takes {len(types)} arguments, got {len(args)}"
        )

    selector = function_signature_to_4byte_selector(signature_text)
    return selector + abi_encode(types, list(args))
