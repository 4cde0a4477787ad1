"""
Pytest fixtures for the gasless relay tests.
"""
import pytest
from unittest.mock import MagicMock

from gasless_relay._rate_limited_log import reset_rate_limits
from gasless_relay.forwarder import ForwarderTransport, InMemoryForwarder
from gasless_relay.models import ForwardRequest
from gasless_relay.relay import RelayService
from gasless_relay.signer import LocalSigner

from tests.helpers import (
    TEST_DOMAIN, TEST_ORIGINATOR_KEY, TEST_OTHER_KEY, TEST_TARGET,
    VotingTarget, vote_data
)


@pytest.fixture(autouse=True)
def _reset_log_rate_limits():
    """Each test starts with an empty rate-limit cache."""
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture
def domain():
    return TEST_DOMAIN


@pytest.fixture
def signer():
    """Deterministic originator signer"""
    return LocalSigner(TEST_ORIGINATOR_KEY)


@pytest.fixture
def other_signer():
    return LocalSigner(TEST_OTHER_KEY)


@pytest.fixture
def voting_target():
    return VotingTarget()


@pytest.fixture
def ledger(domain, voting_target):
    """In-memory forwarder with the voting target deployed"""
    return InMemoryForwarder(domain, targets={TEST_TARGET: voting_target})


@pytest.fixture
def service(ledger, domain):
    return RelayService(ledger, domain)


@pytest.fixture
def make_request(signer):
    """Factory for vote requests from the default originator"""
    def _make(nonce=0, proposal_id=5, vote_type=1, **overrides):
        fields = {
            "from": signer.address,
            "to": TEST_TARGET,
            "value": 0,
            "gas": 500000,
            "nonce": nonce,
            "data": vote_data(proposal_id, vote_type),
        }
        fields.update(overrides)
        return ForwardRequest.model_validate(fields)
    return _make


@pytest.fixture
def mock_forwarder():
    """Forwarder mock that accepts everything unless told otherwise"""
    forwarder = MagicMock(spec=ForwarderTransport)
    forwarder.read_verify.return_value = True
    forwarder.simulate_execute.return_value = MagicMock(success=True, return_data=b"", revert_reason=None)
    forwarder.submit_execute.return_value = "0x" + "ab" * 32
    forwarder.relayer_address = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
    return forwarder
