"""
Shared constants and a voting target for the gasless relay tests.
"""
from typing import Dict, Set, Tuple

from eth_abi import decode as abi_decode

from gasless_relay.codec import encode_function_call
from gasless_relay.forwarder import TargetReverted
from gasless_relay.models import EIP712Domain

# Test constants used throughout tests
TEST_ORIGINATOR_KEY = "0x0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
TEST_OTHER_KEY = "0x" + "22" * 32
TEST_FORWARDER = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
TEST_TARGET = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"
TEST_CHAIN_ID = 31337
TEST_RPC_URL = "http://127.0.0.1:8545"
TEST_RELAY_URL = "https://relay.example.com"

TEST_DOMAIN = EIP712Domain(
    name="MinimalForwarder",
    version="0.0.1",
    chain_id=TEST_CHAIN_ID,
    verifying_contract=TEST_FORWARDER,
)

VOTE_SIGNATURE = "vote(uint256,uint8)"
VOTE_FOR = 1
VOTE_AGAINST = 0


def vote_data(proposal_id: int, vote_type: int = VOTE_FOR) -> bytes:
    """Encoded ``vote(proposal_id, vote_type)`` call."""
    return encode_function_call(VOTE_SIGNATURE, [proposal_id, vote_type])


class VotingTarget:
    """
    Minimal stand-in for the DAO voting contract behind the forwarder.

    Only ``vote(uint256,uint8)`` is supported; a second vote by the same
    account on the same proposal reverts.
    """

    def __init__(self, open_proposals=(5,)):
        self.open_proposals: Set[int] = set(open_proposals)
        self.votes: Dict[Tuple[int, str], int] = {}
        self.calls = 0

    def __call__(self, sender: str, data: bytes, value: int, *, commit: bool) -> bytes:
        self.calls += 1
        if data[:4] != vote_data(0)[:4]:
            raise TargetReverted("DAOVoting: unknown function")
        proposal_id, vote_type = abi_decode(["uint256", "uint8"], data[4:])
        if proposal_id not in self.open_proposals:
            raise TargetReverted("DAOVoting: proposal not active")
        if (proposal_id, sender) in self.votes:
            raise TargetReverted("DAOVoting: already voted")
        if commit:
            self.votes[(proposal_id, sender)] = vote_type
        return b""
