#!/usr/bin/python3
import sys

from deployplan.cli import execute
from deployplan.constants import PLANS_DIR
from deployplan.networks import check_plugins, validate_chain_id
from deployplan.plan import DeploymentPlan
from deployplan.transactor import ApeChainClient
from deployplan.utils import get_ledger_filepath

VERIFY = False
PLAN_FILEPATH = PLANS_DIR / "token_locker" / "upgrade.yml"


def main():
    """
    This script upgrades the deployed TokenLocker proxy to TokenLockerV2.
    """
    check_plugins(verify=VERIFY)
    plan = DeploymentPlan.from_yaml(filepath=PLAN_FILEPATH)
    validate_chain_id(plan.chain_id)

    client = ApeChainClient(verify=VERIFY)
    sys.exit(execute(plan, get_ledger_filepath(plan.name), client))
