"""
Gasless relay: submit EIP-712 signed forward requests and pay their fees.
"""
from .version import __version__
from .exceptions import (
    ErrorKind, RelayError, MalformedInputError, VerificationFailedError,
    SimulationRevertedError, SubmissionFailedError, RelayTimeoutError,
    SignatureRecoveryError, RelayRequestError
)
from .models import EIP712Domain, ForwardRequest, RelayPayload, RelayReceipt
from .codec import (
    build_typed_data, encode_request, typed_data_digest, recover_signer,
    encode_function_call
)
from .signer import Signer, LocalSigner
from .config import NetworkConfig, RelayConfig
from .relay import RelayService, RelayResult, DiagnosticReport
from .client import RelayClient

__all__ = [
    "__version__",
    "ErrorKind",
    "RelayError",
    "MalformedInputError",
    "VerificationFailedError",
    "SimulationRevertedError",
    "SubmissionFailedError",
    "RelayTimeoutError",
    "SignatureRecoveryError",
    "RelayRequestError",
    "EIP712Domain",
    "ForwardRequest",
    "RelayPayload",
    "RelayReceipt",
    "build_typed_data",
    "encode_request",
    "typed_data_digest",
    "recover_signer",
    "encode_function_call",
    "Signer",
    "LocalSigner",
    "NetworkConfig",
    "RelayConfig",
    "RelayService",
    "RelayResult",
    "DiagnosticReport",
    "RelayClient",
]
