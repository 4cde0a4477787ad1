"""
Tests for the in-memory forwarder ledger.
"""
import pytest

from gasless_relay.forwarder import (
    ExecutionResult, ForwarderRevertError, InMemoryForwarder, TargetReverted,
    decode_revert_reason
)
from gasless_relay.forwarder.memory_transport import SIGNATURE_MISMATCH_REASON

from tests.helpers import TEST_TARGET


def _sig(signer, domain, request) -> bytes:
    return bytes.fromhex(signer.sign_request(domain, request)[2:])


class TestNonces:

    def test_unknown_account_starts_at_zero(self, ledger, signer):
        assert ledger.read_nonce(signer.address) == 0
        assert ledger.read_nonce(signer.address.lower()) == 0

    def test_invalid_account_rejected(self, ledger):
        with pytest.raises(ValueError):
            ledger.read_nonce("0x1234")


class TestVerify:

    def test_valid_request_verifies(self, ledger, domain, signer, make_request):
        request = make_request()
        assert ledger.read_verify(request, _sig(signer, domain, request)) is True

    def test_wrong_nonce_fails(self, ledger, domain, signer, make_request):
        request = make_request(nonce=1)
        assert ledger.read_verify(request, _sig(signer, domain, request)) is False

    def test_wrong_signer_fails(self, ledger, domain, signer, other_signer, make_request):
        request = make_request()
        # A valid signature from a different account over the same request
        signature = bytes.fromhex(
            other_signer.sign_request(domain, request.model_copy(update={"from_address": other_signer.address}))[2:]
        )
        assert ledger.read_verify(request, signature) is False

    def test_malformed_signature_reverts(self, ledger, make_request):
        with pytest.raises(ForwarderRevertError, match="invalid signature length"):
            ledger.read_verify(make_request(), b"\x01" * 10)

    def test_verify_is_read_only(self, ledger, domain, signer, make_request):
        request = make_request()
        signature = _sig(signer, domain, request)
        ledger.read_verify(request, signature)
        ledger.read_verify(request, signature)
        assert ledger.read_nonce(signer.address) == 0
        assert ledger.transactions == []


class TestSimulate:

    def test_successful_simulation_changes_nothing(self, ledger, voting_target, domain, signer, make_request):
        request = make_request()
        result = ledger.simulate_execute(request, _sig(signer, domain, request))
        assert result.success is True
        assert voting_target.votes == {}
        assert ledger.read_nonce(signer.address) == 0

    def test_target_revert_is_reported(self, ledger, domain, signer, make_request):
        request = make_request(proposal_id=9)
        result = ledger.simulate_execute(request, _sig(signer, domain, request))
        assert result.success is False
        assert result.revert_reason == "DAOVoting: proposal not active"

    def test_bad_signature_reverts(self, ledger, domain, signer, make_request):
        request = make_request(nonce=2)
        with pytest.raises(ForwarderRevertError) as exc_info:
            ledger.simulate_execute(request, _sig(signer, domain, request))
        assert exc_info.value.reason == SIGNATURE_MISMATCH_REASON


class TestSubmit:

    def test_submit_consumes_nonce_and_calls_target(self, ledger, voting_target, domain, signer, make_request):
        request = make_request(vote_type=0)
        tx_hash = ledger.submit_execute(request, _sig(signer, domain, request))

        assert tx_hash.startswith("0x") and len(tx_hash) == 66
        assert ledger.read_nonce(signer.address) == 1
        assert voting_target.votes == {(5, signer.address): 0}
        assert ledger.transactions[0].tx_hash == tx_hash
        assert ledger.transactions[0].result.success is True

    def test_replay_reverts(self, ledger, domain, signer, make_request):
        request = make_request()
        signature = _sig(signer, domain, request)
        ledger.submit_execute(request, signature)
        with pytest.raises(ForwarderRevertError, match="signature does not match"):
            ledger.submit_execute(request, signature)
        assert ledger.read_nonce(signer.address) == 1
        assert len(ledger.transactions) == 1

    def test_failed_target_still_consumes_nonce(self, ledger, voting_target, domain, signer, make_request):
        request = make_request(proposal_id=9)
        ledger.submit_execute(request, _sig(signer, domain, request))
        assert ledger.read_nonce(signer.address) == 1
        assert ledger.transactions[0].result.success is False
        assert voting_target.votes == {}

    def test_history_keeps_every_transaction(self, ledger, voting_target, domain, signer, make_request):
        voting_target.open_proposals.update(range(6, 10))
        hashes = []
        for nonce, proposal_id in enumerate(range(5, 10)):
            request = make_request(nonce=nonce, proposal_id=proposal_id)
            hashes.append(ledger.submit_execute(request, _sig(signer, domain, request)))
        assert [tx.tx_hash for tx in ledger.transactions] == hashes

    def test_transaction_hashes_are_distinct(self, ledger, domain, signer, make_request):
        first = make_request(nonce=0)
        second = make_request(nonce=1, proposal_id=5, vote_type=0)
        h1 = ledger.submit_execute(first, _sig(signer, domain, first))
        h2 = ledger.submit_execute(second, _sig(signer, domain, second))
        assert h1 != h2

    def test_call_without_target_succeeds(self, domain, signer, make_request):
        ledger = InMemoryForwarder(domain)
        request = make_request()
        ledger.submit_execute(request, _sig(signer, domain, request))
        assert ledger.transactions[0].result == ExecutionResult(success=True)

    def test_registered_target_receives_call(self, domain, signer, make_request):
        seen = []

        def echo(sender, data, value, *, commit):
            seen.append((sender, data, value, commit))
            return b"\x01"

        ledger = InMemoryForwarder(domain)
        ledger.register_target(TEST_TARGET.lower(), echo)
        request = make_request(data="0xbeef")
        ledger.simulate_execute(request, _sig(signer, domain, request))
        ledger.submit_execute(request, _sig(signer, domain, request))
        assert seen == [
            (signer.address, b"\xbe\xef", 0, False),
            (signer.address, b"\xbe\xef", 0, True),
        ]
        assert ledger.transactions[0].result.return_data == b"\x01"


class TestRevertData:

    def test_target_reverted_round_trip(self):
        assert decode_revert_reason(TargetReverted("nope").revert_data()) == "nope"

    @pytest.mark.parametrize("data", [b"", b"\x00\x01", bytes.fromhex("08c379a0") + b"\x00"])
    def test_undecodable_payloads(self, data):
        assert decode_revert_reason(data) is None

    def test_successful_result_has_no_reason(self):
        assert ExecutionResult(success=True, return_data=TargetReverted("x").revert_data()).revert_reason is None


def test_usable_as_context_manager(domain):
    with InMemoryForwarder(domain) as ledger:
        assert ledger.relayer_address is not None
