"""
Data models for the gasless relay.
"""
import re
from typing import Dict, Any, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator
from web3 import Web3

UINT256_MAX = 2 ** 256 - 1

_DECIMAL_RE = re.compile(r"[0-9]+")
_HEX_RE = re.compile(r"0x(?:[0-9a-fA-F]{2})*")


def parse_uint256(value: Any, field_name: str = "value") -> int:
    """
    Parse a non-negative integer that must fit in ``uint256``.

    Decimal strings are the wire format; plain ``int`` is accepted for
    in-process callers. Booleans, floats and hex strings are rejected so that
    no value ever goes through a lossy conversion.

    Raises:
        ValueError: If the value is not a well-formed non-negative integer
    """
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be a decimal string, got a boolean")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        if not _DECIMAL_RE.fullmatch(value):
            raise ValueError(f"{field_name} must be a non-negative decimal string, got {value!r}")
        number = int(value)
    else:
        raise ValueError(f"{field_name} must be a decimal string, got {type(value).__name__}")

    if number < 0:
        raise ValueError(f"{field_name} must be non-negative")
    if number > UINT256_MAX:
        raise ValueError(f"{field_name} does not fit in uint256")
    return number


def parse_hex_bytes(value: Any, field_name: str = "data") -> bytes:
    """
    Parse a ``0x``-prefixed hex string into bytes.

    Raises:
        ValueError: If the value is not an even-length 0x hex string
    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if not isinstance(value, str) or not _HEX_RE.fullmatch(value):
        raise ValueError(f"{field_name} must be a 0x-prefixed hex string")
    return bytes.fromhex(value[2:])


def to_checksum(value: Any, field_name: str = "address") -> str:
    """
    Normalise an account identifier to its EIP-55 checksum form.

    Raises:
        ValueError: If the value is not a 20-byte hex address or carries a
            wrong mixed-case checksum
    """
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValueError(f"{field_name} must be a 20-byte hex address, got {value!r}")
    digits = value[2:] if value[:2].lower() == "0x" else value
    if digits != digits.lower() and digits != digits.upper() and not Web3.is_checksum_address(value):
        raise ValueError(f"{field_name} has an invalid EIP-55 checksum: {value!r}")
    return Web3.to_checksum_address(value)


def describe_validation_error(exc: ValidationError) -> str:
    """Flatten a pydantic ``ValidationError`` into one readable line."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ())) or "body"
        parts.append(f"{location}: {error.get('msg', 'invalid')}")
    return "; ".join(parts)


class EIP712Domain(BaseModel):
    """Signing domain scoping every signature to one forwarder deployment."""
    name: str
    version: str
    chain_id: int = Field(..., alias="chainId")
    verifying_contract: str = Field(..., alias="verifyingContract")

    class Config:
        populate_by_name = True
        frozen = True

    @field_validator("chain_id", mode="before")
    @classmethod
    def _check_chain_id(cls, v):
        return parse_uint256(v, "chainId")

    @field_validator("verifying_contract", mode="before")
    @classmethod
    def _check_contract(cls, v):
        return to_checksum(v, "verifyingContract")

    def to_dict(self) -> Dict[str, Any]:
        """EIP-712 domain dictionary as expected by eth-account."""
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }


class ForwardRequest(BaseModel):
    """A single delegated call, authorised by the signature of ``from``."""
    from_address: str = Field(..., alias="from")
    to: str
    value: int
    gas: int
    nonce: int
    data: bytes = b""

    class Config:
        populate_by_name = True
        frozen = True

    @field_validator("from_address", "to", mode="before")
    @classmethod
    def _check_address(cls, v, info):
        name = "from" if info.field_name == "from_address" else info.field_name
        return to_checksum(v, name)

    @field_validator("value", "gas", "nonce", mode="before")
    @classmethod
    def _check_uint(cls, v, info):
        return parse_uint256(v, info.field_name)

    @field_validator("data", mode="before")
    @classmethod
    def _check_data(cls, v):
        return parse_hex_bytes(v, "data")

    def to_message(self) -> Dict[str, Any]:
        """Message dictionary for EIP-712 encoding."""
        return {
            "from": self.from_address,
            "to": self.to,
            "value": self.value,
            "gas": self.gas,
            "nonce": self.nonce,
            "data": self.data,
        }

    def to_wire(self) -> Dict[str, str]:
        """JSON form with numbers as decimal strings and data as 0x hex."""
        return {
            "from": self.from_address,
            "to": self.to,
            "value": str(self.value),
            "gas": str(self.gas),
            "nonce": str(self.nonce),
            "data": "0x" + self.data.hex(),
        }

    def as_tuple(self) -> Tuple[str, str, int, int, int, bytes]:
        """Positional form matching the forwarder's ``ForwardRequest`` struct."""
        return (self.from_address, self.to, self.value, self.gas, self.nonce, self.data)


class RelayPayload(BaseModel):
    """Inbound relay body: ``{request, signature}``."""
    request: ForwardRequest
    signature: str

    @field_validator("signature", mode="before")
    @classmethod
    def _check_signature(cls, v):
        if not isinstance(v, str) or not _HEX_RE.fullmatch(v) or len(v) <= 2:
            raise ValueError("signature must be a non-empty 0x-prefixed hex string")
        return v


class RelayReceipt(BaseModel):
    """Successful relay response as seen by an originator."""
    success: bool
    tx_hash: str = Field(..., alias="txHash")

    class Config:
        populate_by_name = True


class NonceResponse(BaseModel):
    """Forwarder nonce for an account, numbers as decimal strings."""
    account: str
    nonce: str
