"""
RelayService - submits signed forward requests and pays their fees.

A relay call runs five steps, each of which may end it:

1. structural validation of the request and signature
2. diagnostic signer recovery (logged only, never decides the outcome)
3. pre-flight: ``verify`` on the forwarder, then a dry run of ``execute``
4. submission of the fee-paying ``execute`` transaction
5. return of the transaction hash

Failures come back as ``RelayResult`` values classified by ``ErrorKind``.
The service keeps no per-request state, so one instance can serve
concurrent calls.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from ._rate_limited_log import rate_limited_log
from .codec import recover_signer
from .exceptions import (
    ErrorKind, RelayError, VerificationFailedError, SimulationRevertedError,
    SubmissionFailedError, RelayTimeoutError, SignatureRecoveryError,
    error_for_kind
)
from .forwarder import (
    ForwarderTransport, ForwarderError, ForwarderRevertError,
    ForwarderTimeoutError, ForwarderConfigError
)
from .models import EIP712Domain, ForwardRequest, RelayPayload, describe_validation_error

logger = logging.getLogger(__name__)

# Revert reasons raised by the forwarder and OpenZeppelin ECDSA when the
# request is not authorised in its current form
VERIFICATION_REVERT_PREFIXES = (
    "MinimalForwarder: signature does not match",
    "ECDSA:",
)

INTERNAL_ERROR_DETAILS = "Internal relay error"


def classify_revert(reason: Optional[str]) -> ErrorKind:
    """
    Classify a forwarder revert reason.

    Returns:
        ``VERIFICATION_FAILED`` for signature and nonce problems,
        ``SIMULATION_REVERTED`` for everything else
    """
    text = (reason or "").strip()
    if text.startswith(VERIFICATION_REVERT_PREFIXES):
        return ErrorKind.VERIFICATION_FAILED
    return ErrorKind.SIMULATION_REVERTED


@dataclass
class RelayResult:
    """
    Outcome of one relay call.

    Either ``success`` is True and ``tx_hash`` is set, or ``error`` carries
    the failure kind and ``details`` a human readable explanation.
    """
    success: bool
    tx_hash: Optional[str] = None
    error: Optional[ErrorKind] = None
    details: str = ""

    @classmethod
    def ok(cls, tx_hash: str) -> "RelayResult":
        return cls(success=True, tx_hash=tx_hash)

    @classmethod
    def failure(cls, kind: ErrorKind, details: str) -> "RelayResult":
        return cls(success=False, error=kind, details=details)

    @property
    def http_status(self) -> int:
        if self.success:
            return 200
        return (self.error or ErrorKind.UNEXPECTED).http_status

    def to_response(self) -> Dict[str, Any]:
        """JSON body sent back to the caller."""
        if self.success:
            return {"success": True, "txHash": self.tx_hash}
        return {"error": (self.error or ErrorKind.UNEXPECTED).value, "details": self.details}

    def raise_for_error(self) -> "RelayResult":
        """Raise the matching ``RelayError`` if this result is a failure."""
        if not self.success:
            raise error_for_kind(self.error or ErrorKind.UNEXPECTED, self.details)
        return self


@dataclass
class DiagnosticReport:
    """Result of the off-chain signer recovery."""
    claimed: str
    recovered: Optional[str] = None
    error: Optional[str] = None

    @property
    def matches(self) -> bool:
        return self.recovered is not None and self.recovered == self.claimed


class RelayService:
    """
    Trust boundary between unauthenticated callers and fee-paying submission.

    The forwarder's ``verify`` is the authoritative check. The off-chain
    recovery in ``diagnose`` only helps operators spot signature construction
    bugs: a mismatch is logged and the request still goes to ``verify``.
    """

    def __init__(
        self,
        forwarder: ForwarderTransport,
        domain: EIP712Domain,
        logger: Optional[logging.Logger] = None,
        mismatch_log_interval: int = 60
    ):
        """
        Args:
            forwarder: Transport to the forwarder contract
            domain: Signing domain requests must be signed under
            logger: Optional logger instance
            mismatch_log_interval: Seconds between two logs of the same
                diagnostic mismatch
        """
        self.forwarder = forwarder
        self.domain = domain
        self.logger = logger or logging.getLogger(__name__)
        self.mismatch_log_interval = mismatch_log_interval

    def relay_payload(self, body: Any) -> RelayResult:
        """
        Relay a raw JSON body of the form ``{request, signature}``.
        """
        if not isinstance(body, dict):
            return self._reject(ErrorKind.MALFORMED_INPUT, "Request body must be a JSON object")
        return self.relay(body.get("request"), body.get("signature"))

    def relay(
        self,
        request: Union[ForwardRequest, Dict[str, Any], None],
        signature: Optional[str]
    ) -> RelayResult:
        """
        Verify and submit a signed forward request.

        Args:
            request: ``ForwardRequest`` or its wire dictionary
            signature: 0x hex signature of the originator

        Returns:
            ``RelayResult`` with the transaction hash or a classified failure
        """
        if request is None or signature is None:
            return self._reject(ErrorKind.MALFORMED_INPUT, "Missing request or signature")

        try:
            payload = RelayPayload.model_validate({"request": request, "signature": signature})
        except ValidationError as e:
            return self._reject(ErrorKind.MALFORMED_INPUT, describe_validation_error(e))

        try:
            tx_hash = self._relay(payload.request, bytes.fromhex(payload.signature[2:]))
        except RelayError as e:
            return self._reject(e.kind, e.details)
        except Exception:
            self.logger.exception("Unexpected error while relaying request")
            return RelayResult.failure(ErrorKind.UNEXPECTED, INTERNAL_ERROR_DETAILS)

        return RelayResult.ok(tx_hash)

    def _reject(self, kind: ErrorKind, details: str) -> RelayResult:
        self.logger.warning(f"Relay rejected request ({kind.value}): {details}")
        return RelayResult.failure(kind, details)

    def _relay(self, request: ForwardRequest, signature: bytes) -> str:
        self.logger.info(
            f"Relaying request from {request.from_address[:10]}… to {request.to[:10]}… "
            f"nonce={request.nonce} sig=0x{signature[:4].hex()}…"
        )
        self.diagnose(request, signature)
        self.preflight(request, signature)
        return self.submit(request, signature)

    def diagnose(self, request: ForwardRequest, signature: bytes) -> DiagnosticReport:
        """
        Recover the signer off-chain and compare it with ``request.from``.

        Never raises and never affects the relay outcome.
        """
        claimed = request.from_address
        try:
            recovered = recover_signer(self.domain, request, signature)
        except SignatureRecoveryError as e:
            rate_limited_log(
                f"Diagnostic recovery failed for request from {claimed}: {e}",
                level="warning",
                interval=self.mismatch_log_interval,
                logger_instance=self.logger,
            )
            return DiagnosticReport(claimed=claimed, error=str(e))
        except Exception as e:
            self.logger.warning(f"Diagnostic recovery raised unexpectedly: {e}")
            return DiagnosticReport(claimed=claimed, error=str(e))

        report = DiagnosticReport(claimed=claimed, recovered=recovered)
        if report.matches:
            self.logger.debug(f"Off-chain recovery matches request.from {claimed[:10]}…")
        else:
            rate_limited_log(
                f"Signer mismatch: request.from={claimed} recovered={recovered} "
                f"(domain chainId={self.domain.chain_id} verifyingContract={self.domain.verifying_contract})",
                level="warning",
                interval=self.mismatch_log_interval,
                logger_instance=self.logger,
            )
        return report

    def preflight(self, request: ForwardRequest, signature: bytes) -> None:
        """
        Check that submitting would succeed, without spending any fee.

        Raises:
            VerificationFailedError: If the forwarder rejects the signature or nonce
            SimulationRevertedError: If the forwarded call itself would fail
            SubmissionFailedError: If the forwarder cannot be reached
            RelayTimeoutError: If a call times out
        """
        try:
            valid = self.forwarder.read_verify(request, signature)
        except ForwarderRevertError as e:
            raise error_for_kind(classify_revert(e.reason), f"Verification reverted: {e.reason}") from e
        except ForwarderTimeoutError as e:
            raise RelayTimeoutError(str(e)) from e
        except ForwarderError as e:
            raise SubmissionFailedError(f"Verification call failed: {e}") from e

        if not valid:
            raise VerificationFailedError("Invalid signature or request")

        try:
            result = self.forwarder.simulate_execute(request, signature)
        except ForwarderRevertError as e:
            raise error_for_kind(classify_revert(e.reason), f"Simulation reverted: {e.reason}") from e
        except ForwarderTimeoutError as e:
            raise RelayTimeoutError(str(e)) from e
        except ForwarderError as e:
            raise SubmissionFailedError(f"Simulation call failed: {e}") from e

        if not result.success:
            reason = result.revert_reason or "target call failed without a reason"
            raise SimulationRevertedError(f"Forwarded call would revert: {reason}")

    def submit(self, request: ForwardRequest, signature: bytes) -> str:
        """
        Submit ``execute`` once. Never retried.

        Raises:
            VerificationFailedError: If the nonce was consumed since pre-flight
            SubmissionFailedError: If the node is unreachable or rejects the transaction
            RelayTimeoutError: If submission times out
            RelayError: If the relay has no key to pay with
        """
        try:
            tx_hash = self.forwarder.submit_execute(request, signature)
        except ForwarderRevertError as e:
            if classify_revert(e.reason) is ErrorKind.VERIFICATION_FAILED:
                raise VerificationFailedError(
                    f"Request was invalidated before submission: {e.reason}"
                ) from e
            raise SubmissionFailedError(f"Transaction rejected: {e}") from e
        except ForwarderTimeoutError as e:
            raise RelayTimeoutError(
                f"{e}; the transaction may still be pending"
            ) from e
        except ForwarderConfigError as e:
            self.logger.error(f"Relay cannot submit: {e}")
            raise RelayError("Relay is not configured to submit transactions") from e
        except ForwarderError as e:
            raise SubmissionFailedError(f"Transaction submission failed: {e}") from e

        self.logger.info(f"Relayed request from {request.from_address[:10]}… in {tx_hash}")
        return tx_hash
