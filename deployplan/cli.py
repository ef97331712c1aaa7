from pathlib import Path
from typing import Callable, Dict, Optional

import click

from deployplan.client import ChainClient
from deployplan.exceptions import OrchestratorError
from deployplan.ledger import StepLedger
from deployplan.orchestrator import DeploymentOrchestrator
from deployplan.plan import DeploymentPlan
from deployplan.registry import ABI, registry_from_artifacts
from deployplan.steps import DeployedContract, Outcome


def print_artifacts(artifacts: Dict[str, DeployedContract], err: bool = False) -> None:
    if not artifacts:
        click.echo("\t(no contracts)", err=err)
    for name, contract in artifacts.items():
        line = f"\t{name}: {contract.address}"
        if contract.is_proxy:
            line += f" (proxy -> {' -> '.join(contract.implementation_history)})"
        click.echo(line, err=err)


def execute(
    plan: DeploymentPlan,
    ledger_filepath: Path,
    client: ChainClient,
    abi_lookup: Optional[Callable[[str], ABI]] = None,
) -> int:
    """
    Runs a plan against its ledger and publishes the resulting registry.
    Returns the process exit code: 0 when every step is confirmed, 1 otherwise.
    """
    try:
        ledger = StepLedger(ledger_filepath)
        orchestrator = DeploymentOrchestrator(client=client, ledger=ledger, existing=plan.existing)
        artifacts = orchestrator.run(plan.steps)
    except OrchestratorError as e:
        click.echo(f"\n(!) Deployment '{plan.name}' halted.", err=True)
        if e.step is not None:
            click.echo(f"Failed step: {e.step}", err=True)
        click.echo(f"Reason: {e}", err=True)
        click.echo("Contracts so far:", err=True)
        print_artifacts(e.artifacts, err=True)
        return 1

    print(f"\nDeployment '{plan.name}' complete:")
    print_artifacts(artifacts)
    if plan.registry_filepath is not None and plan.chain_id is not None:
        try:
            registry_from_artifacts(
                artifacts=artifacts,
                chain_id=plan.chain_id,
                deployer=client.address,
                output_filepath=plan.registry_filepath,
                abi_lookup=abi_lookup,
            )
        except (OSError, ValueError) as e:
            # every step is confirmed; rerunning the plan only republishes
            click.echo(f"\n(!) Registry {plan.registry_filepath} not written: {e}", err=True)
            return 1
    return 0


@click.command()
@click.argument("ledger", type=click.Path(dir_okay=False, exists=True, path_type=Path))
def status(ledger):
    """Print the resolved steps recorded in a deployment LEDGER."""
    records = StepLedger(ledger).records
    if not records:
        click.echo(f"No steps recorded in {ledger}.")
        return

    for position, record in enumerate(records, start=1):
        click.echo(f"{position:>3}. [{record.outcome.value}] {record.step}  ({record.timestamp})")
        if record.outcome == Outcome.FAILURE:
            click.echo(f"\t\treason: {record.reason}")
        elif "contract" in (record.result or {}):
            click.echo(f"\t\taddress: {record.result['contract']['address']}")


if __name__ == "__main__":
    status()
