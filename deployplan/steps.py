import hashlib
import json
import typing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

VARIABLE_PREFIX = "$"
DEPLOYER_INDICATOR = "deployer"


class Outcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class TransactionReceipt(NamedTuple):
    """Chain-agnostic summary of a mined transaction."""

    tx_hash: str
    status: Outcome = Outcome.SUCCESS
    block_number: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == Outcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "status": self.status.value,
            "block_number": self.block_number,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransactionReceipt":
        return cls(
            tx_hash=data["tx_hash"],
            status=Outcome(data.get("status", Outcome.SUCCESS.value)),
            block_number=data.get("block_number"),
        )


@dataclass
class DeployedContract:
    """
    A contract produced by a plan (or declared as already deployed).
    The address never changes; proxies accumulate implementation contract names.
    `contract_type` is the contract it was deployed from, which may differ from its name.
    """

    name: str
    address: str
    contract_type: Optional[str] = None
    is_proxy: bool = False
    implementation_history: List[str] = field(default_factory=list)
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None

    @property
    def implementation(self) -> Optional[str]:
        if not self.implementation_history:
            return None
        return self.implementation_history[-1]

    def record_upgrade(self, contract_name: str) -> None:
        if not self.is_proxy:
            raise ValueError(f"{self.name} at {self.address} is not a proxy")
        self.implementation_history.append(contract_name)

    @property
    def abi_contract(self) -> str:
        """Contract whose ABI describes this address; proxies use their current implementation."""
        return self.implementation or self.contract_type or self.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "address": self.address,
            "contract_type": self.contract_type,
            "is_proxy": self.is_proxy,
            "implementation_history": list(self.implementation_history),
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeployedContract":
        return cls(
            name=data["name"],
            address=data["address"],
            contract_type=data.get("contract_type"),
            is_proxy=bool(data.get("is_proxy", False)),
            implementation_history=list(data.get("implementation_history", [])),
            tx_hash=data.get("tx_hash"),
            block_number=data.get("block_number"),
        )


#
# Variables
#


def is_variable(param: Any) -> bool:
    """Returns True if the param is a '$' variable."""
    return isinstance(param, str) and param.startswith(VARIABLE_PREFIX)


def variable_name(param: str) -> str:
    return param[len(VARIABLE_PREFIX) :]


def is_deployer(param: Any) -> bool:
    return is_variable(param) and variable_name(param) == DEPLOYER_INDICATOR


def reference_name(param: str) -> str:
    """Logical artifact name of a step target, with or without the '$' prefix."""
    return variable_name(param) if is_variable(param) else param


def _freeze(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    if isinstance(value, bytes):
        return "0x" + value.hex()
    return value


def _collect_references(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        references = list()
        for item in value:
            references.extend(_collect_references(item))
        return references
    if is_variable(value) and not is_deployer(value):
        return [variable_name(value)]
    return []


def resolve_param(value: Any, artifacts: Dict[str, DeployedContract], deployer: str) -> Any:
    """Resolves a single parameter value or a (nested) sequence of parameter values."""
    if isinstance(value, (list, tuple)):
        return [resolve_param(v, artifacts, deployer) for v in value]

    if not is_variable(value):
        return value  # literally a value

    if is_deployer(value):
        return deployer

    name = variable_name(value)
    try:
        return artifacts[name].address
    except KeyError:
        raise KeyError(f"Contract '{name}' has not been deployed")


def resolve_params(
    values: typing.Sequence[Any], artifacts: Dict[str, DeployedContract], deployer: str
) -> List[Any]:
    return [resolve_param(value, artifacts, deployer) for value in values]


#
# Steps
#


@dataclass(frozen=True)
class Step:
    KIND: typing.ClassVar[str] = ""

    def payload(self) -> Dict[str, Any]:
        raise NotImplementedError

    def references(self) -> List[str]:
        """Logical names of the artifacts this step depends on."""
        raise NotImplementedError

    @property
    def produces(self) -> Optional[str]:
        """Logical name of the artifact created by this step, if any."""
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = {"kind": self.KIND}
        data.update(self.payload())
        return data

    def describe(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.describe()


@dataclass(frozen=True)
class Deploy(Step):
    KIND: typing.ClassVar[str] = "deploy"

    contract: str
    args: Tuple[Any, ...] = ()
    name: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "args", _freeze(self.args))
        object.__setattr__(self, "name", self.name or self.contract)

    @property
    def produces(self) -> str:
        return self.name

    def payload(self) -> Dict[str, Any]:
        return {"contract": self.contract, "args": _thaw(self.args), "name": self.produces}

    def references(self) -> List[str]:
        return _collect_references(self.args)

    def describe(self) -> str:
        return f"deploy {self.contract} as {self.produces}"


@dataclass(frozen=True)
class DeployProxy(Step):
    KIND: typing.ClassVar[str] = "deploy_proxy"

    contract: str
    args: Tuple[Any, ...] = ()
    initializer: str = "initialize"
    name: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "args", _freeze(self.args))
        object.__setattr__(self, "name", self.name or self.contract)

    @property
    def produces(self) -> str:
        return self.name

    def payload(self) -> Dict[str, Any]:
        return {
            "contract": self.contract,
            "args": _thaw(self.args),
            "initializer": self.initializer,
            "name": self.produces,
        }

    def references(self) -> List[str]:
        return _collect_references(self.args)

    def describe(self) -> str:
        return f"deploy {self.contract} behind a proxy as {self.produces}"


@dataclass(frozen=True)
class UpgradeProxy(Step):
    KIND: typing.ClassVar[str] = "upgrade_proxy"

    proxy: str
    contract: str

    def payload(self) -> Dict[str, Any]:
        return {"proxy": self.proxy, "contract": self.contract}

    def references(self) -> List[str]:
        return [reference_name(self.proxy)]

    def describe(self) -> str:
        return f"upgrade {self.proxy} to {self.contract}"


@dataclass(frozen=True)
class Call(Step):
    KIND: typing.ClassVar[str] = "call"

    target: str
    method: str
    args: Tuple[Any, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "args", _freeze(self.args))

    def payload(self) -> Dict[str, Any]:
        return {"target": self.target, "method": self.method, "args": _thaw(self.args)}

    def references(self) -> List[str]:
        return [reference_name(self.target)] + _collect_references(self.args)

    def describe(self) -> str:
        return f"call {self.target}.{self.method}({', '.join(map(str, _thaw(self.args)))})"


STEP_TYPES = {step_type.KIND: step_type for step_type in (Deploy, DeployProxy, UpgradeProxy, Call)}


def step_from_dict(data: Dict[str, Any]) -> Step:
    """Rebuilds a step from its ledger (or JSON) representation."""
    data = dict(data)
    kind = data.pop("kind", None)
    try:
        step_type = STEP_TYPES[kind]
    except KeyError:
        raise ValueError(f"Unknown step kind '{kind}'")
    return step_type(**data)


def step_hash(step: Step, occurrence: int = 0) -> str:
    """
    Canonical identity of a step: a sha256 over its sorted JSON form.
    Repeated identical steps in one plan are told apart by their occurrence count.
    """
    canonical = step.to_dict()
    if occurrence:
        canonical["occurrence"] = occurrence
    encoded = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
