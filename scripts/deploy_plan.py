#!/usr/bin/python3
import sys
from pathlib import Path

import click
from ape import networks
from ape.cli import ConnectedProviderCommand, account_option, network_option

from deployplan.cli import execute
from deployplan.networks import check_plugins, get_contract_container, validate_chain_id
from deployplan.plan import DeploymentPlan
from deployplan.transactor import ApeChainClient
from deployplan.utils import get_ledger_filepath


def contract_abi(contract_name: str) -> list:
    container = get_contract_container(contract_name)
    return [entry.model_dump(mode="json") for entry in container.contract_type.abi]


def print_deployment_info(client, plan, ledger):
    print(
        f"Account: {client.address}",
        f"Plan: {plan.path} ({len(plan)} steps)",
        f"Ledger: {ledger}",
        f"Registry: {plan.registry_filepath}",
        f"Verify: {client.verify}",
        f"Ecosystem: {networks.provider.network.ecosystem.name}",
        f"Network: {networks.provider.network.name}",
        f"Chain ID: {networks.provider.network.chain_id}",
        sep="\n",
    )


@click.command(cls=ConnectedProviderCommand)
@network_option(required=True)
@account_option()
@click.option(
    "--plan",
    "-p",
    "plan_filepath",
    help="Filepath of the deployment plan (YAML)",
    type=click.Path(dir_okay=False, exists=True, path_type=Path),
    required=True,
)
@click.option(
    "--ledger",
    "-l",
    "ledger_filepath",
    help="Filepath of the step ledger; defaults to the artifacts directory",
    type=click.Path(dir_okay=False, path_type=Path),
    required=False,
)
@click.option("--autosign", help="Sign transactions without prompting", is_flag=True)
@click.option("--verify", help="Publish contract sources to the block explorer", is_flag=True)
def cli(network, account, plan_filepath, ledger_filepath, autosign, verify):
    """Run (or resume) a deployment plan."""
    check_plugins(verify=verify)
    plan = DeploymentPlan.from_yaml(filepath=plan_filepath)
    validate_chain_id(plan.chain_id)

    ledger_filepath = ledger_filepath or get_ledger_filepath(plan.name)
    client = ApeChainClient(account=account, autosign=autosign, verify=verify)
    print_deployment_info(client, plan, ledger_filepath)

    sys.exit(execute(plan, ledger_filepath, client, abi_lookup=contract_abi))


if __name__ == "__main__":
    cli()
