"""
Tests for the web3 forwarder transport, with a mocked Web3 instance.
"""
import pytest
import requests
from unittest.mock import MagicMock
from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3RPCError

from gasless_relay.forwarder import (
    ForwarderConfigError, ForwarderConnectionError, ForwarderResponseError,
    ForwarderRevertError, ForwarderTimeoutError, TargetReverted, Web3Forwarder
)

from tests.helpers import TEST_CHAIN_ID, TEST_FORWARDER, TEST_RPC_URL

# Anvil's second default account
RELAYER_KEY = "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d"
RELAYER = Account.from_key(RELAYER_KEY).address


@pytest.fixture
def w3():
    mock_w3 = MagicMock()
    mock_w3.eth.chain_id = TEST_CHAIN_ID
    mock_w3.eth.gas_price = 2_000_000_000
    mock_w3.eth.get_transaction_count.return_value = 7
    mock_w3.eth.send_raw_transaction.return_value = bytes.fromhex("cd" * 32)
    return mock_w3


@pytest.fixture
def contract(w3):
    return w3.eth.contract.return_value


@pytest.fixture
def forwarder(w3):
    return Web3Forwarder(
        TEST_RPC_URL, TEST_FORWARDER.lower(), relayer_key=RELAYER_KEY,
        chain_id=TEST_CHAIN_ID, timeout=5, w3=w3,
    )


@pytest.fixture
def signed(domain, signer, make_request):
    request = make_request()
    return request, bytes.fromhex(signer.sign_request(domain, request)[2:])


class TestConstruction:

    def test_contract_bound_to_checksummed_address(self, forwarder, w3):
        assert forwarder.forwarder_address == TEST_FORWARDER
        assert w3.eth.contract.call_args.kwargs["address"] == TEST_FORWARDER
        assert forwarder.relayer_address == RELAYER

    def test_default_provider_is_http(self):
        forwarder = Web3Forwarder(TEST_RPC_URL, TEST_FORWARDER, timeout=3)
        assert isinstance(forwarder.w3.provider, Web3.HTTPProvider)
        assert forwarder.relayer_address is None

    def test_invalid_forwarder_address(self, w3):
        with pytest.raises(ValueError, match="forwarder_address"):
            Web3Forwarder(TEST_RPC_URL, "0x1234", w3=w3)


class TestReads:

    def test_read_nonce(self, forwarder, contract, signer):
        contract.functions.getNonce.return_value.call.return_value = 4
        assert forwarder.read_nonce(signer.address.lower()) == 4
        contract.functions.getNonce.assert_called_once_with(signer.address)

    def test_read_verify_passes_struct(self, forwarder, contract, signed):
        request, signature = signed
        contract.functions.verify.return_value.call.return_value = True
        assert forwarder.read_verify(request, signature) is True
        contract.functions.verify.assert_called_once_with(request.as_tuple(), signature)

    def test_simulate_execute_from_relayer(self, forwarder, contract, signed):
        request, signature = signed
        revert_data = TargetReverted("DAOVoting: already voted").revert_data()
        contract.functions.execute.return_value.call.return_value = (False, revert_data)

        result = forwarder.simulate_execute(request, signature)

        assert result.success is False
        assert result.revert_reason == "DAOVoting: already voted"
        contract.functions.execute.return_value.call.assert_called_once_with({"from": RELAYER})

    def test_simulate_without_key_uses_default_sender(self, w3, contract, signed):
        forwarder = Web3Forwarder(TEST_RPC_URL, TEST_FORWARDER, w3=w3)
        contract.functions.execute.return_value.call.return_value = (True, b"")
        assert forwarder.simulate_execute(*signed).success is True
        contract.functions.execute.return_value.call.assert_called_once_with({})


class TestErrorMapping:

    @pytest.mark.parametrize("error, expected", [
        (ContractLogicError("execution reverted: MinimalForwarder: signature does not match request"),
         ForwarderRevertError),
        (requests.Timeout("read timed out"), ForwarderTimeoutError),
        (TimeExhausted("too slow"), ForwarderTimeoutError),
        (requests.ConnectionError("refused"), ForwarderConnectionError),
        (Web3RPCError("header not found"), ForwarderResponseError),
        (ValueError("bad"), ForwarderResponseError),
    ])
    def test_verify_errors(self, forwarder, contract, signed, error, expected):
        contract.functions.verify.return_value.call.side_effect = error
        with pytest.raises(expected):
            forwarder.read_verify(*signed)

    def test_revert_reason_is_stripped(self, forwarder, contract, signed):
        contract.functions.verify.return_value.call.side_effect = ContractLogicError(
            "execution reverted: ECDSA: invalid signature"
        )
        with pytest.raises(ForwarderRevertError) as exc_info:
            forwarder.read_verify(*signed)
        assert exc_info.value.reason == "ECDSA: invalid signature"

    def test_timeout_message_names_operation(self, forwarder, contract, signer):
        contract.functions.getNonce.return_value.call.side_effect = requests.Timeout()
        with pytest.raises(ForwarderTimeoutError, match="getNonce timed out after 5s"):
            forwarder.read_nonce(signer.address)


class TestSubmit:

    @pytest.fixture
    def execute_fn(self, contract):
        fn = contract.functions.execute.return_value
        fn.estimate_gas.return_value = 100_000
        fn.build_transaction.side_effect = lambda params: {
            **params, "to": TEST_FORWARDER, "data": "0x1234", "value": 0,
        }
        return fn

    def test_submit_signs_and_sends(self, forwarder, w3, execute_fn, signed):
        tx_hash = forwarder.submit_execute(*signed)

        assert tx_hash == "0x" + "cd" * 32
        execute_fn.estimate_gas.assert_called_once_with({"from": RELAYER})
        assert execute_fn.build_transaction.call_args.args[0] == {
            "from": RELAYER,
            "nonce": 7,
            "gas": 110_000,
            "gasPrice": 2_000_000_000,
            "chainId": TEST_CHAIN_ID,
        }
        w3.eth.get_transaction_count.assert_called_once_with(RELAYER, "pending")

        raw = w3.eth.send_raw_transaction.call_args.args[0]
        expected = Account.sign_transaction(
            {"to": TEST_FORWARDER, "data": "0x1234", "value": 0, "nonce": 7,
             "gas": 110_000, "gasPrice": 2_000_000_000, "chainId": TEST_CHAIN_ID},
            RELAYER_KEY,
        )
        assert raw == expected.raw_transaction

    def test_submit_without_key(self, w3, signed):
        forwarder = Web3Forwarder(TEST_RPC_URL, TEST_FORWARDER, w3=w3)
        with pytest.raises(ForwarderConfigError, match="No relayer key"):
            forwarder.submit_execute(*signed)
        w3.eth.send_raw_transaction.assert_not_called()

    def test_estimate_revert(self, forwarder, w3, execute_fn, signed):
        execute_fn.estimate_gas.side_effect = ContractLogicError(
            "execution reverted: MinimalForwarder: signature does not match request"
        )
        with pytest.raises(ForwarderRevertError, match="signature does not match"):
            forwarder.submit_execute(*signed)
        w3.eth.send_raw_transaction.assert_not_called()

    def test_send_rejected(self, forwarder, w3, execute_fn, signed):
        w3.eth.send_raw_transaction.side_effect = Web3RPCError("nonce too low")
        with pytest.raises(ForwarderResponseError, match="nonce too low"):
            forwarder.submit_execute(*signed)

    def test_send_timeout(self, forwarder, w3, execute_fn, signed):
        w3.eth.send_raw_transaction.side_effect = requests.Timeout()
        with pytest.raises(ForwarderTimeoutError):
            forwarder.submit_execute(*signed)


class TestChainId:

    def test_matching_chain_id(self, forwarder):
        assert forwarder.check_chain_id() == TEST_CHAIN_ID

    def test_mismatched_chain_id(self, forwarder, w3):
        w3.eth.chain_id = 1
        with pytest.raises(ForwarderConfigError, match="reports chain id 1, expected 31337"):
            forwarder.check_chain_id()

    def test_unknown_expected_chain_id(self, w3):
        w3.eth.chain_id = 5
        forwarder = Web3Forwarder(TEST_RPC_URL, TEST_FORWARDER, w3=w3)
        assert forwarder.check_chain_id() == 5
