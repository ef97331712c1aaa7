import re
import typing
from collections import OrderedDict
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

from eth_utils import to_checksum_address
from eth_utils.currency import units
from web3 import Web3

from deployplan.constants import DEFAULT_INITIALIZER
from deployplan.exceptions import DependencyOrderError, PlanConfigError
from deployplan.registry import artifacts_from_registry
from deployplan.steps import (
    Call,
    Deploy,
    DeployedContract,
    DeployProxy,
    Step,
    UpgradeProxy,
    is_variable,
    reference_name,
    variable_name,
)
from deployplan.utils import _load_yaml, get_artifact_filepath

STEP_KEYS = {
    Deploy.KIND: ("constructor", "name"),
    DeployProxy.KIND: ("args", "initializer", "name"),
    UpgradeProxy.KIND: ("contract",),
    Call.KIND: ("method", "args"),
}

UNIT_AMOUNT = re.compile(r"^(\d+(?:\.\d+)?)\s+([a-zA-Z]+)$")
JSON_SCALARS = (str, int, float, bool, type(None))


#
# Values
#


def is_constant(value: str) -> bool:
    """Returns True if the variable names a plan constant."""
    return value.isupper()


def parse_amount(value: Any) -> Any:
    """Converts '1000000 ether' style amounts to integers; anything else is returned as is."""
    if not isinstance(value, str):
        return value
    match = UNIT_AMOUNT.match(value.strip())
    if not match:
        return value
    amount, unit = match.groups()
    if unit.lower() not in units:
        return value
    return Web3.to_wei(Decimal(amount), unit.lower())


def _check_json_value(value: Any) -> Any:
    # step hashes are computed over the JSON form of the arguments
    if isinstance(value, list):
        return [_check_json_value(v) for v in value]
    if not isinstance(value, JSON_SCALARS):
        raise PlanConfigError(
            f"Unsupported value {value!r} ({type(value).__name__}); quote it to pass it as a string."
        )
    return value


def _process_raw_value(value: Any, constants: Dict[str, Any]) -> Any:
    if isinstance(value, list):
        return [_process_raw_value(v, constants) for v in value]

    if is_variable(value) and is_constant(variable_name(value)):
        name = variable_name(value)
        try:
            return _check_json_value(constants[name])
        except KeyError:
            raise PlanConfigError(f"Constant '{name}' not found in plan file.")

    return parse_amount(_check_json_value(value))


def _process_arguments(raw: Any, constants: Dict[str, Any], description: str) -> List[Any]:
    if raw is None:
        return []
    if isinstance(raw, dict):
        # named parameters are passed positionally, in file order
        raw = list(raw.values())
    if not isinstance(raw, list):
        raise PlanConfigError(f"Malformed arguments for {description}: expected a list or mapping.")
    return [_process_raw_value(value, constants) for value in raw]


#
# Steps
#


def _step_from_config(entry: Any, constants: Dict[str, Any], position: int) -> Step:
    if not isinstance(entry, dict):
        raise PlanConfigError(f"Malformed step #{position}: expected a mapping.")

    kinds = [key for key in entry if key in STEP_KEYS]
    if len(kinds) != 1:
        raise PlanConfigError(
            f"Step #{position} must declare exactly one of {', '.join(STEP_KEYS)}; got {list(entry)}."
        )
    kind = kinds[0]
    unexpected = set(entry) - {kind, *STEP_KEYS[kind]}
    if unexpected:
        raise PlanConfigError(f"Unexpected keys for {kind} step #{position}: {sorted(unexpected)}")

    subject = entry[kind]
    if not isinstance(subject, str) or not subject:
        raise PlanConfigError(f"Step #{position} ({kind}) needs a contract name or reference.")

    description = f"{kind} step #{position}"
    if kind == Deploy.KIND:
        return Deploy(
            contract=subject,
            args=_process_arguments(entry.get("constructor"), constants, description),
            name=entry.get("name"),
        )
    if kind == DeployProxy.KIND:
        return DeployProxy(
            contract=subject,
            args=_process_arguments(entry.get("args"), constants, description),
            initializer=entry.get("initializer", DEFAULT_INITIALIZER),
            name=entry.get("name"),
        )
    if kind == UpgradeProxy.KIND:
        if "contract" not in entry:
            raise PlanConfigError(f"Missing new implementation 'contract' for {description}.")
        return UpgradeProxy(proxy=subject, contract=entry["contract"])

    if "method" not in entry:
        raise PlanConfigError(f"Missing 'method' for {description}.")
    return Call(
        target=subject,
        method=entry["method"],
        args=_process_arguments(entry.get("args"), constants, description),
    )


def _existing_from_config(entries: Any) -> "OrderedDict[str, DeployedContract]":
    existing = OrderedDict()
    for contract_info in entries or []:
        if not isinstance(contract_info, dict) or len(contract_info) != 1:
            raise PlanConfigError("Malformed 'existing' contracts entry.")

        name = list(contract_info.keys())[0]  # only one entry
        data = contract_info[name] or dict()
        if "address" not in data:
            raise PlanConfigError(f"Existing contract '{name}' has no address.")
        try:
            address = to_checksum_address(data["address"])
        except ValueError:
            raise PlanConfigError(f"Existing contract '{name}' has an invalid address.")

        is_proxy = bool(data.get("proxy", False))
        contract_type = data.get("contract", name)
        existing[name] = DeployedContract(
            name=name,
            address=address,
            contract_type=contract_type,
            is_proxy=is_proxy,
            implementation_history=[contract_type] if is_proxy else [],
        )
    return existing


#
# Validation
#


def validate_plan(
    steps: typing.Sequence[Step], existing: Optional[Dict[str, DeployedContract]] = None
) -> None:
    """
    Checks, without touching the network, that every step only references
    artifacts produced by earlier steps (or already deployed).
    """
    existing = existing or dict()
    available = set(existing)
    proxies = {name for name, contract in existing.items() if contract.is_proxy}

    for position, step in enumerate(steps, start=1):
        for name in step.references():
            if name not in available:
                raise DependencyOrderError(
                    f"Step #{position} ({step}) references '{name}', "
                    "which is not produced by any earlier step.",
                    step=step,
                )

        if isinstance(step, UpgradeProxy) and reference_name(step.proxy) not in proxies:
            raise DependencyOrderError(
                f"Step #{position} ({step}) targets '{reference_name(step.proxy)}', "
                "which is not a proxy.",
                step=step,
            )

        produced = step.produces
        if produced is None:
            continue
        if produced in available:
            raise DependencyOrderError(
                f"Step #{position} ({step}) produces '{produced}', "
                "which is already bound by an earlier step.",
                step=step,
            )
        available.add(produced)
        if isinstance(step, DeployProxy):
            proxies.add(produced)


#
# Plans
#


class DeploymentPlan:
    """An ordered list of steps plus the context needed to execute and publish them."""

    def __init__(
        self,
        name: str,
        steps: List[Step],
        chain_id: Optional[int] = None,
        constants: Optional[Dict[str, Any]] = None,
        existing: Optional[Dict[str, DeployedContract]] = None,
        registry_filepath: Optional[Path] = None,
        path: Optional[Path] = None,
    ):
        self.name = name
        self.steps = steps
        self.chain_id = chain_id
        self.constants = constants or dict()
        self.existing = existing or OrderedDict()
        self.registry_filepath = registry_filepath
        self.path = path
        validate_plan(self.steps, self.existing)

    def __len__(self) -> int:
        return len(self.steps)

    def __iter__(self) -> typing.Iterator[Step]:
        return iter(self.steps)

    @classmethod
    def from_yaml(cls, filepath: Path) -> "DeploymentPlan":
        config = _load_yaml(filepath)
        return cls.from_config(config=config, path=filepath)

    @classmethod
    def from_config(cls, config: Dict, path: Optional[Path] = None) -> "DeploymentPlan":
        print("Processing deployment plan...")
        if not isinstance(config, dict):
            raise PlanConfigError("Malformed plan file.")

        deployment = config.get("deployment")
        if not deployment or not deployment.get("name"):
            raise PlanConfigError("deployment name is not set in plan file.")
        chain_id = deployment.get("chain_id")
        if chain_id is not None:
            chain_id = int(chain_id)

        raw_steps = config.get("steps")
        if not raw_steps:
            raise PlanConfigError("Plan file missing 'steps' field.")

        constants = {
            name: parse_amount(value) for name, value in (config.get("constants") or {}).items()
        }
        steps = [
            _step_from_config(entry, constants, position)
            for position, entry in enumerate(raw_steps, start=1)
        ]

        existing = OrderedDict()
        registry = config.get("registry")
        if registry:
            if chain_id is None:
                raise PlanConfigError("chain_id is required to import contracts from a registry.")
            registry_path = Path(registry)
            if path is not None and not registry_path.is_absolute():
                registry_path = Path(path).parent / registry_path
            existing.update(artifacts_from_registry(filepath=registry_path, chain_id=chain_id))
        existing.update(_existing_from_config(config.get("existing")))

        try:
            registry_filepath = get_artifact_filepath(config)
        except ValueError as e:
            raise PlanConfigError(str(e))

        return cls(
            name=deployment["name"],
            steps=steps,
            chain_id=chain_id,
            constants=constants,
            existing=existing,
            registry_filepath=registry_filepath,
            path=path,
        )
