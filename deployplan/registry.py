import json
from collections import OrderedDict, defaultdict
from pathlib import Path
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

from eth_utils import is_same_address, to_checksum_address

from deployplan.steps import DeployedContract
from deployplan.utils import _load_json

ChainId = int
ContractName = str
ABI = List[Dict[str, Any]]


STANDARD_REGISTRY_JSON_FORMAT = {"indent": 4, "separators": (",", ": ")}


class RegistryEntry(NamedTuple):
    """Represents a single entry in a nucypher-style contract registry."""

    chain_id: ChainId
    name: ContractName
    address: str
    abi: ABI
    tx_hash: Optional[str]
    block_number: Optional[int]
    deployer: str
    contract_type: Optional[str] = None
    is_proxy: bool = False
    implementation_history: Tuple[str, ...] = ()


def _get_entry(
    contract: DeployedContract,
    chain_id: ChainId,
    deployer: str,
    abi_lookup: Optional[Callable[[str], ABI]] = None,
) -> RegistryEntry:
    # proxies are published with the ABI of their current implementation
    abi = abi_lookup(contract.abi_contract) if abi_lookup else list()
    return RegistryEntry(
        chain_id=chain_id,
        name=contract.name,
        address=to_checksum_address(contract.address),
        abi=abi,
        tx_hash=contract.tx_hash,
        block_number=contract.block_number,
        deployer=deployer,
        contract_type=contract.contract_type,
        is_proxy=contract.is_proxy,
        implementation_history=tuple(contract.implementation_history),
    )


def read_registry(filepath: Path) -> List[RegistryEntry]:
    data = _load_json(filepath)
    registry_entries = list()
    for chain_id, entries in data.items():
        for contract_name, artifacts in entries.items():
            registry_entry = RegistryEntry(
                chain_id=int(chain_id),
                name=contract_name,
                address=artifacts["address"],
                abi=artifacts.get("abi", []),
                tx_hash=artifacts.get("tx_hash"),
                block_number=artifacts.get("block_number"),
                deployer=artifacts.get("deployer", ""),
                contract_type=artifacts.get("contract_type"),
                is_proxy=bool(artifacts.get("is_proxy", False)),
                implementation_history=tuple(artifacts.get("implementation_history", ())),
            )
            registry_entries.append(registry_entry)
    return registry_entries


def write_registry(entries: List[RegistryEntry], filepath: Path, silent: bool = False) -> Path:
    """
    Writes a nucypher-style contract registry to a file.
    Entries replace same-named entries for their chain; everything else already
    in the file is kept.
    """

    if not entries:
        print("No entries provided.")
        return filepath

    # Sort registry entries to enforce common order
    entries = sorted(entries, key=lambda entry: (str(entry.chain_id), entry.name))

    data = defaultdict(dict)
    for entry in entries:
        entry_abi = list(entry.abi)
        entry_abi.sort(key=lambda d: (d["type"], d.get("name", "")))

        record = {
            "address": entry.address,
            "abi": entry_abi,
            "tx_hash": entry.tx_hash,
            "block_number": None if entry.block_number is None else int(entry.block_number),
            "deployer": entry.deployer,
        }
        if entry.contract_type and entry.contract_type != entry.name:
            record["contract_type"] = entry.contract_type
        if entry.is_proxy:
            record["is_proxy"] = True
            record["implementation_history"] = list(entry.implementation_history)
        data[str(entry.chain_id)][entry.name] = record

    # Create the parent directory if it does not exist
    filepath.parent.mkdir(parents=True, exist_ok=True)

    if filepath.exists():
        if not silent:
            print(f"Updating existing registry at {filepath}.")
        existing_data = _load_json(filepath)
        for chain_id, chain_entries in data.items():
            merged = OrderedDict(existing_data.get(chain_id, {}))
            for name, record in chain_entries.items():
                previous = merged.get(name) or dict()
                previous_address = previous.get("address")
                if previous_address and is_same_address(previous_address, record["address"]):
                    # existing contracts are republished without their deployment receipt
                    for field in ("tx_hash", "block_number"):
                        if record[field] is None:
                            record[field] = previous.get(field)
                merged[name] = record
            existing_data[chain_id] = OrderedDict(sorted(merged.items()))
        data = existing_data
    elif not silent:
        print(f"Creating new registry at {filepath}.")

    with open(filepath, "w") as file:
        json.dump(data, file, **STANDARD_REGISTRY_JSON_FORMAT)

    return filepath


def registry_from_artifacts(
    artifacts: Dict[ContractName, DeployedContract],
    chain_id: ChainId,
    deployer: str,
    output_filepath: Path,
    abi_lookup: Optional[Callable[[str], ABI]] = None,
) -> Path:
    """Creates (or updates) a nucypher-style contract registry from plan artifacts."""
    entries = [
        _get_entry(contract, chain_id=chain_id, deployer=deployer, abi_lookup=abi_lookup)
        for contract in artifacts.values()
    ]
    output_filepath = write_registry(entries=entries, filepath=output_filepath)
    print(f"(i) Registry written to {output_filepath}!")
    return output_filepath


def artifacts_from_registry(filepath: Path, chain_id: ChainId) -> Dict[str, DeployedContract]:
    """Returns the contracts recorded in a nucypher-style registry for a single chain."""
    artifacts = OrderedDict()
    for registry_entry in read_registry(filepath=filepath):
        if registry_entry.chain_id != chain_id:
            continue
        artifacts[registry_entry.name] = DeployedContract(
            name=registry_entry.name,
            address=registry_entry.address,
            contract_type=registry_entry.contract_type or registry_entry.name,
            is_proxy=registry_entry.is_proxy,
            implementation_history=list(registry_entry.implementation_history),
            tx_hash=registry_entry.tx_hash,
            block_number=registry_entry.block_number,
        )
    return artifacts
