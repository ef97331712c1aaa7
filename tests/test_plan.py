import json

import pytest
from eth_utils import to_checksum_address
from web3 import Web3

from tests.conftest import address_for
from deployplan.constants import PLANS_DIR
from deployplan.exceptions import DependencyOrderError, PlanConfigError
from deployplan.plan import DeploymentPlan, parse_amount, validate_plan
from deployplan.steps import Call, Deploy, DeployedContract, DeployProxy, UpgradeProxy


def test_plan_from_config(plan_config):
    plan = DeploymentPlan.from_config(plan_config)

    assert plan.name == "token-locker"
    assert plan.chain_id == 11155111
    assert plan.registry_filepath is None
    assert plan.steps == [
        Deploy("ERC20Token", args=["AOCTOKEN", "AOC"]),
        DeployProxy("TokenLocker", initializer="initialize"),
        Call("$ERC20Token", "approve", args=["$TokenLocker", Web3.to_wei(1_000_000, "ether")]),
    ]


def test_parse_amount():
    assert parse_amount("1000000 ether") == 10**24
    assert parse_amount("1.5 gwei") == 1_500_000_000
    assert parse_amount("3 AOC") == "3 AOC"
    assert parse_amount("AOCTOKEN") == "AOCTOKEN"
    assert parse_amount(42) == 42


def test_unknown_constant(plan_config):
    plan_config["steps"][0]["constructor"]["symbol_"] = "$TOKEN_SYMBOL"
    with pytest.raises(PlanConfigError, match="TOKEN_SYMBOL"):
        DeploymentPlan.from_config(plan_config)


@pytest.mark.parametrize(
    "step",
    [
        {"deploy": "Token", "call": "$Token"},
        {"deploy": "Token", "initializer": "initialize"},
        {"upgrade_proxy": "$Token"},
        {"call": "$Token", "args": []},
        {"deploy": ""},
        "Token",
    ],
)
def test_malformed_steps(plan_config, step):
    plan_config["steps"].append(step)
    with pytest.raises(PlanConfigError):
        DeploymentPlan.from_config(plan_config)


def test_non_json_values_are_rejected(tmp_path):
    plan_file = tmp_path / "plan.yml"
    plan_file.write_text(
        "deployment:\n"
        "  name: vesting\n"
        "steps:\n"
        "  - deploy: Vesting\n"
        "    constructor: [2024-01-01]\n"
    )
    with pytest.raises(PlanConfigError, match="date"):
        DeploymentPlan.from_yaml(plan_file)

    # quoted, the same value is a plain string
    plan_file.write_text(plan_file.read_text().replace("[2024-01-01]", "['2024-01-01']"))
    assert DeploymentPlan.from_yaml(plan_file).steps[0].args == ("2024-01-01",)


def test_non_json_constants_are_rejected(plan_config):
    plan_config["constants"]["TOKEN_NAME"] = {"name": "AOCTOKEN"}
    with pytest.raises(PlanConfigError, match="dict"):
        DeploymentPlan.from_config(plan_config)


def test_existing_contract_type(plan_config):
    plan_config["existing"] = [
        {"Vault": {"address": address_for("Vault"), "contract": "SimpleVault"}},
        {"Faucet": {"address": address_for("Faucet")}},
    ]
    plan = DeploymentPlan.from_config(plan_config)

    assert plan.existing["Vault"].contract_type == "SimpleVault"
    assert not plan.existing["Vault"].is_proxy
    assert plan.existing["Faucet"].contract_type == "Faucet"


def test_missing_sections(plan_config):
    del plan_config["steps"]
    with pytest.raises(PlanConfigError, match="steps"):
        DeploymentPlan.from_config(plan_config)

    with pytest.raises(PlanConfigError, match="name"):
        DeploymentPlan.from_config({"deployment": {}, "steps": [{"deploy": "Token"}]})


def test_plan_validation_runs_at_load(plan_config):
    plan_config["steps"].insert(0, {"upgrade_proxy": "$TokenLocker", "contract": "TokenLockerV2"})
    with pytest.raises(DependencyOrderError, match="TokenLocker"):
        DeploymentPlan.from_config(plan_config)


def test_validate_plan():
    validate_plan([Deploy("Token"), Call("$Token", "approve", args=["$deployer", 1])])

    with pytest.raises(DependencyOrderError, match="not a proxy"):
        validate_plan([Deploy("Token"), UpgradeProxy(proxy="$Token", contract="TokenV2")])

    with pytest.raises(DependencyOrderError, match="already bound"):
        validate_plan([Deploy("Token"), DeployProxy("Locker", name="Token")])

    existing = {
        "Locker": DeployedContract(
            name="Locker", address=address_for("Locker"), is_proxy=True, implementation_history=["Locker"]
        )
    }
    validate_plan([UpgradeProxy(proxy="$Locker", contract="LockerV2")], existing)


def test_existing_contracts(plan_config):
    plan_config["existing"] = [
        {"OldLocker": {"address": "0x04f64f32c4185556397dc4f66b84572c44094812", "proxy": True}}
    ]
    plan_config["steps"].append({"upgrade_proxy": "$OldLocker", "contract": "TokenLockerV2"})
    plan = DeploymentPlan.from_config(plan_config)

    old_locker = plan.existing["OldLocker"]
    assert old_locker.address == to_checksum_address("0x04f64f32c4185556397dc4f66b84572c44094812")
    assert old_locker.implementation_history == ["OldLocker"]

    plan_config["existing"] = [{"OldLocker": {"address": "not-an-address"}}]
    with pytest.raises(PlanConfigError, match="invalid address"):
        DeploymentPlan.from_config(plan_config)


def test_existing_contracts_from_registry(tmp_path, plan_config):
    locker_address = address_for("locker")
    registry = {
        "11155111": {
            "Locker": {
                "address": locker_address,
                "abi": [],
                "tx_hash": "0x01",
                "block_number": 5,
                "deployer": address_for("deployer"),
                "is_proxy": True,
                "implementation_history": ["TokenLocker"],
            }
        },
        "1": {"Locker": {"address": address_for("mainnet"), "abi": []}},
    }
    (tmp_path / "registry.json").write_text(json.dumps(registry))
    plan_config["registry"] = "registry.json"
    plan_config["steps"].append({"upgrade_proxy": "$Locker", "contract": "TokenLockerV2"})

    plan = DeploymentPlan.from_config(plan_config, path=tmp_path / "plan.yml")

    assert plan.existing["Locker"].address == locker_address
    assert plan.existing["Locker"].implementation == "TokenLocker"


def test_packaged_token_locker_plans():
    deploy = DeploymentPlan.from_yaml(PLANS_DIR / "token_locker" / "deploy.yml")
    assert [type(step) for step in deploy] == [Deploy, DeployProxy, Call]
    assert deploy.steps[0].args == ("AOCTOKEN", "AOC")
    assert deploy.steps[2].args == ("$TokenLocker", 10**24)
    assert deploy.registry_filepath.name == "token-locker.json"

    upgrade = DeploymentPlan.from_yaml(PLANS_DIR / "token_locker" / "upgrade.yml")
    assert upgrade.steps == [UpgradeProxy(proxy="$TokenLocker", contract="TokenLockerV2")]
    assert upgrade.existing["TokenLocker"].address == to_checksum_address(
        "0x04F64f32C4185556397dC4f66B84572C44094812"
    )
