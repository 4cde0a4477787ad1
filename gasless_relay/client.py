"""
RelayClient - originator side of the gasless relay.

The client builds a forward request, signs it with the originator's signer
and posts it to a relay, which pays the fee.
"""
import logging
import urllib.parse
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import is_local_url
from .exceptions import ErrorKind, RelayRequestError
from .forwarder import ForwarderTransport
from .models import EIP712Domain, ForwardRequest, NonceResponse, RelayReceipt
from .signer import Signer

DEFAULT_GAS = 2_000_000


class RelayClient:
    """
    Client for submitting gasless requests to a relay.

    To use this client, you'll need:
    - The relay's base URL
    - A signer for the originating account
    - The signing domain the relay verifies against
    - Optionally, a forwarder transport to read nonces directly from the
      ledger instead of asking the relay
    """

    def __init__(
        self,
        relay_url: str,
        signer: Signer,
        domain: EIP712Domain,
        forwarder: Optional[ForwarderTransport] = None,
        retry_count: int = 3,
        timeout: int = 30,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the RelayClient

        Args:
            relay_url: Base URL of the relay (e.g., "https://relay.example.com")
            signer: Signer of the originating account
            domain: EIP-712 domain of the target forwarder
            forwarder: Optional transport for nonce lookups
            retry_count: Retries for connection errors and gateway statuses
            timeout: Timeout for HTTP requests in seconds
            logger: Optional logger instance

        Raises:
            ValueError: If the URL doesn't use https (unless it's local)
        """
        parsed = urllib.parse.urlparse(relay_url)
        if parsed.scheme != "https" and not is_local_url(relay_url):
            raise ValueError(f"relay_url must use https:// for security (got: {parsed.scheme}://)")

        self.relay_url = relay_url.rstrip("/")
        self.signer = signer
        self.domain = domain
        self.forwarder = forwarder
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

        # Statuses a proxy returns when the relay never saw the request; relay
        # answers (400/500) are final and are not retried
        self.session = requests.Session()
        retries = Retry(
            total=retry_count,
            connect=retry_count,
            read=0,
            backoff_factor=0.5,
            status_forcelist=[502, 503, 504],
            allowed_methods=["GET", "POST"],
            raise_on_status=False,
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

    @property
    def address(self) -> str:
        """Address of the originating account"""
        return self.signer.address

    def get_nonce(self, account: Optional[str] = None) -> int:
        """
        Read the current forwarder nonce of ``account`` (defaults to the signer).

        Reads from the forwarder transport when one was given, otherwise asks
        the relay. Never cached: a stale nonce makes the signature useless.
        """
        account = account or self.address
        if self.forwarder is not None:
            return self.forwarder.read_nonce(account)

        body = self._request("GET", f"/api/nonce/{account}")
        return int(NonceResponse.model_validate(body).nonce)

    def build_request(
        self,
        to: str,
        data: bytes = b"",
        value: int = 0,
        gas: int = DEFAULT_GAS,
        nonce: Optional[int] = None
    ) -> ForwardRequest:
        """
        Build a forward request from the signer's account.

        Args:
            to: Target contract address
            data: Encoded call (see ``codec.encode_function_call``)
            value: Native currency to attach
            gas: Gas ceiling for the forwarded call
            nonce: Forwarder nonce; fetched when omitted
        """
        if nonce is None:
            nonce = self.get_nonce()
        return ForwardRequest(
            from_address=self.address,
            to=to,
            value=value,
            gas=gas,
            nonce=nonce,
            data=data,
        )

    def sign_request(self, request: ForwardRequest) -> str:
        """Sign ``request`` under the client's domain."""
        return self.signer.sign_request(self.domain, request)

    def submit(self, request: ForwardRequest, signature: str) -> RelayReceipt:
        """
        Post a signed request to the relay.

        Returns:
            Receipt holding the transaction hash

        Raises:
            RelayRequestError: If the relay reports a failure or cannot be reached
        """
        payload = {"request": request.to_wire(), "signature": signature}
        body = self._request("POST", "/api/relay", json=payload)
        receipt = RelayReceipt.model_validate(body)
        self.logger.info(f"Relay accepted request nonce={request.nonce}: {receipt.tx_hash}")
        return receipt

    def send(
        self,
        to: str,
        data: bytes = b"",
        value: int = 0,
        gas: int = DEFAULT_GAS
    ) -> RelayReceipt:
        """Build, sign and submit a request in one go."""
        request = self.build_request(to, data=data, value=value, gas=gas)
        signature = self.sign_request(request)
        return self.submit(request, signature)

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.relay_url}{path}"
        try:
            response = self.session.request(method, url, json=json, timeout=self.timeout)
        except requests.Timeout as e:
            raise RelayRequestError(ErrorKind.TIMEOUT, f"Relay did not answer in {self.timeout}s") from e
        except requests.RequestException as e:
            self.logger.error(f"Relay request failed: {e}")
            raise RelayRequestError(ErrorKind.SUBMISSION_FAILED, f"Relay unreachable: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise RelayRequestError(
                ErrorKind.UNEXPECTED,
                f"Invalid JSON response from relay (HTTP {response.status_code})",
                response.status_code,
            ) from e

        if response.status_code >= 400 or not isinstance(body, dict) or "error" in body:
            code = body.get("error") if isinstance(body, dict) else None
            details = body.get("details", "") if isinstance(body, dict) else str(body)
            try:
                kind = ErrorKind(code)
            except ValueError:
                kind = ErrorKind.UNEXPECTED
            raise RelayRequestError(kind, details or str(code), response.status_code)

        return body
