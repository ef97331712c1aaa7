import hashlib

import pytest
from eth_utils import to_checksum_address

from deployplan.client import ChainClient
from deployplan.exceptions import ChainSubmissionError
from deployplan.ledger import StepLedger
from deployplan.steps import Call, Deploy, DeployProxy, Outcome, TransactionReceipt

DEPLOYER = to_checksum_address("0x" + "d" * 40)
APPROVAL_AMOUNT = 1_000_000


def address_for(name: str) -> str:
    return to_checksum_address("0x" + hashlib.sha256(name.encode()).hexdigest()[:40])


class FakeChainClient(ChainClient):
    """
    Records every submission. Addresses depend only on the contract name,
    so separate runs of the same plan agree on them.
    """

    def __init__(self, fail_on=(), revert_on=(), error_on=()):
        self.submissions = []
        self.fail_on = set(fail_on)
        self.revert_on = set(revert_on)
        self.error_on = set(error_on)

    @property
    def address(self):
        return DEPLOYER

    def _submit(self, kind, *details):
        self.submissions.append((kind, *details))
        if kind in self.fail_on:
            raise ChainSubmissionError("execution reverted")
        if kind in self.error_on:
            raise TypeError("Unsupported type for uint256: 'abc'")
        status = Outcome.FAILURE if kind in self.revert_on else Outcome.SUCCESS
        number = len(self.submissions)
        return TransactionReceipt(tx_hash=f"0x{number:064x}", status=status, block_number=number)

    @property
    def kinds(self):
        return [submission[0] for submission in self.submissions]

    def deploy_contract(self, name, args, alias=None):
        receipt = self._submit("deploy", name, list(args))
        return address_for(name), receipt

    def deploy_proxy(self, name, init_args, initializer="initialize", alias=None):
        receipt = self._submit("deploy_proxy", name, list(init_args), initializer)
        return address_for(f"proxy:{name}"), receipt

    def upgrade_proxy(self, proxy_address, name):
        receipt = self._submit("upgrade_proxy", proxy_address, name)
        return proxy_address, receipt

    def call(self, address, method, args):
        return self._submit("call", address, method, list(args))


@pytest.fixture
def client():
    return FakeChainClient()


@pytest.fixture
def ledger_filepath(tmp_path):
    return tmp_path / "deployment.ledger.jsonl"


@pytest.fixture
def ledger(ledger_filepath):
    return StepLedger(ledger_filepath)


@pytest.fixture
def token_locker_plan():
    return [
        Deploy("Token", args=["AOCTOKEN", "AOC"]),
        DeployProxy("Locker"),
        Call("$Locker", "approve", args=["$Token", APPROVAL_AMOUNT]),
    ]


@pytest.fixture
def plan_config():
    return {
        "deployment": {"name": "token-locker", "chain_id": 11155111},
        "constants": {"TOKEN_NAME": "AOCTOKEN", "APPROVAL_AMOUNT": "1000000 ether"},
        "steps": [
            {"deploy": "ERC20Token", "constructor": {"name_": "$TOKEN_NAME", "symbol_": "AOC"}},
            {"deploy_proxy": "TokenLocker", "initializer": "initialize", "args": []},
            {"call": "$ERC20Token", "method": "approve", "args": ["$TokenLocker", "$APPROVAL_AMOUNT"]},
        ],
    }
