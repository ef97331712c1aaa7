import os
from typing import Optional

from ape import networks, project
from ape.contracts import ContractContainer

from deployplan.constants import LOCAL_NETWORKS, OZ_DEPENDENCY_NAME, OZ_DEPENDENCY_VERSION
from deployplan.exceptions import PlanConfigError


def is_local_network() -> bool:
    return networks.provider.network.name in LOCAL_NETWORKS


def validate_chain_id(chain_id: Optional[int]) -> None:
    """Checks that a live deployment targets the chain the plan was written for."""
    if chain_id is None:
        if not is_local_network():
            raise PlanConfigError("chain_id is not set in plan file.")
        return

    current_chain_id = networks.provider.network.chain_id
    if chain_id != current_chain_id and not is_local_network():
        raise PlanConfigError(
            f"chain_id in plan file ({chain_id}) does not match "
            f"chain_id of current network ({current_chain_id})."
        )


def check_etherscan_plugin() -> None:
    """
    Checks that the ape-etherscan plugin is installed and that
    the appropriate API key environment variable is set.
    """
    if is_local_network():
        # unnecessary for local deployment
        return
    try:
        from ape_etherscan.utils import API_KEY_ENV_KEY_MAP
    except ImportError:
        raise ImportError("Please install the ape-etherscan plugin to verify contracts.")
    ecosystem_name = networks.provider.network.ecosystem.name
    explorer_envvar = API_KEY_ENV_KEY_MAP.get(ecosystem_name)
    api_key = os.environ.get(explorer_envvar)
    if not api_key:
        raise ValueError(f"{explorer_envvar} is not set.")


def check_infura_plugin() -> None:
    """Checks that the ape-infura plugin is installed."""
    if is_local_network():
        return  # unnecessary for local deployment
    if networks.provider.name != "infura":
        return  # unnecessary when using a provider different than infura
    try:
        from ape_infura.provider import _ENVIRONMENT_VARIABLE_NAMES
    except ImportError:
        raise ImportError("Please install the ape-infura plugin to use this script.")
    for envvar in _ENVIRONMENT_VARIABLE_NAMES:
        api_key = os.environ.get(envvar)
        if api_key:
            break
    else:
        raise ValueError(
            f"No Infura API key found in "
            f"environment variables: {', '.join(_ENVIRONMENT_VARIABLE_NAMES)}"
        )


def check_plugins(verify: bool = False) -> None:
    print("Checking plugins...")
    if verify:
        check_etherscan_plugin()
    check_infura_plugin()


def get_oz_dependency():
    return project.dependencies[OZ_DEPENDENCY_NAME][OZ_DEPENDENCY_VERSION]


def _get_dependency_contract_container(contract: str) -> ContractContainer:
    for dependency_name, dependency_versions in project.dependencies.items():
        if len(dependency_versions) > 1:
            raise ValueError(f"Ambiguous {dependency_name} dependency for {contract}")
        try:
            dependency_api = list(dependency_versions.values())[0]
            contract_container = getattr(dependency_api, contract)
            return contract_container
        except AttributeError:
            continue
    raise ValueError(f"No contract found with name '{contract}'.")


def get_contract_container(contract: str) -> ContractContainer:
    try:
        contract_container = getattr(project, contract)
    except AttributeError:
        # not in root project; check dependencies
        contract_container = _get_dependency_contract_container(contract)

    return contract_container
