from types import SimpleNamespace

import pytest

pytest.importorskip("ape")

from ape.utils import ZERO_ADDRESS  # noqa: E402

from deployplan.confirm import _confirm_resolution  # noqa: E402
from deployplan.exceptions import ChainSubmissionError  # noqa: E402
from deployplan.steps import Outcome  # noqa: E402
from deployplan.transactor import _submission, _to_receipt, _validate_method_args  # noqa: E402


def _abi(name, *inputs):
    return SimpleNamespace(
        name=name, inputs=[SimpleNamespace(name=n, type=t) for n, t in inputs]
    )


def test_validate_method_args():
    approve = _abi("approve", ("spender", "address"), ("value", "uint256"))
    spender = "0x04F64f32C4185556397dC4f66B84572C44094812"

    assert _validate_method_args([approve], [spender, 10**24]) == {
        "spender": spender,
        "value": 10**24,
    }
    with pytest.raises(ValueError, match="approve"):
        _validate_method_args([approve], [spender])
    with pytest.raises(ValueError, match="approve"):
        _validate_method_args([approve], [spender, -1])


def test_to_receipt():
    mined = SimpleNamespace(txn_hash="0xabc", failed=False, block_number=12)
    reverted = SimpleNamespace(txn_hash="0xdef", failed=True, block_number=13)

    assert _to_receipt(mined).status == Outcome.SUCCESS
    assert _to_receipt(mined).block_number == 12
    assert _to_receipt(reverted).status == Outcome.FAILURE


def test_declining_a_deployment_aborts(monkeypatch, capsys):
    prompts = []

    def decline(prompt):
        prompts.append(prompt)
        return "n"

    monkeypatch.setattr("builtins.input", decline)
    with pytest.raises(SystemExit):
        _confirm_resolution(["AOCTOKEN", "AOC"], "ERC20Token as Token")

    out = capsys.readouterr().out
    assert "Constructor parameters for ERC20Token as Token" in out
    assert "\t[1]=AOC" in out
    assert "Aborting deployment!" in out
    assert prompts == ["Deploy ERC20Token as Token Y/N? "]


def test_zero_address_asks_again(monkeypatch):
    prompts = []

    def accept(prompt):
        prompts.append(prompt)
        return "y"

    monkeypatch.setattr("builtins.input", accept)
    _confirm_resolution(
        [ZERO_ADDRESS, b""], "TransparentUpgradeableProxy for TokenLocker", "Proxy parameters"
    )

    assert prompts[0] == "Deploy TransparentUpgradeableProxy for TokenLocker Y/N? "
    assert prompts[1].startswith("Zero address passed to TransparentUpgradeableProxy")


@pytest.mark.parametrize("error", [TypeError("bad uint256"), ValueError("bad abi")])
def test_submission_errors_become_chain_submission_errors(error):
    @_submission
    def submit():
        raise error

    with pytest.raises(ChainSubmissionError) as raised:
        submit()
    assert raised.value.reason == f"{type(error).__name__}: {error}"
    assert raised.value.__cause__ is error
