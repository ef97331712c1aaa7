import functools
import typing
from typing import Any, List, Optional, Tuple

from ape import Contract, chain
from ape.api import AccountAPI, ReceiptAPI
from ape.cli.choices import select_account
from ape.contracts.base import ContractContainer, ContractInstance, ContractTransactionHandler
from ape.exceptions import ApeException
from ape.utils import EMPTY_BYTES32
from eth_utils import to_checksum_address
from ethpm_types import MethodABI
from web3 import Web3

from deployplan.client import ChainClient
from deployplan.confirm import _confirm_resolution, _continue
from deployplan.constants import (
    DEFAULT_INITIALIZER,
    EIP1967_ADMIN_SLOT,
    PROXY_ADMIN_CONTRACT_NAME,
    PROXY_CONTRACT_NAME,
)
from deployplan.exceptions import ChainSubmissionError
from deployplan.networks import get_contract_container, get_oz_dependency
from deployplan.steps import Outcome, TransactionReceipt


def _to_receipt(receipt: ReceiptAPI) -> TransactionReceipt:
    return TransactionReceipt(
        tx_hash=str(receipt.txn_hash),
        status=Outcome.FAILURE if receipt.failed else Outcome.SUCCESS,
        block_number=receipt.block_number,
    )


def _validate_method_args(
    method_abis: List[MethodABI], args: typing.Sequence[Any]
) -> typing.Dict[str, Any]:
    """Validates the transaction arguments against the function ABI."""
    if len(method_abis) == 0:
        raise ValueError("No method abis provided for validation of args")

    w3 = Web3()
    abis_matching_args_length = [abi for abi in method_abis if len(abi.inputs) == len(args)]
    for abi in abis_matching_args_length:
        named_args = {}
        for arg, abi_input in zip(args, abi.inputs):
            if not w3.is_encodable(abi_input.type, arg):
                break
            named_args[abi_input.name] = arg
        else:
            return named_args
    raise ValueError(
        f"Could not find ABI for '{method_abis[0].name}' with {len(args)} arg(s) and given type(s)"
    )


def _submission(func):
    """Surfaces ape and validation failures as ChainSubmissionError."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ChainSubmissionError:
            raise
        except (ApeException, TypeError, ValueError) as e:
            raise ChainSubmissionError(f"{type(e).__name__}: {e}") from e

    return wrapper


class ApeChainClient(ChainClient):
    """
    Represents an ape account plus validated/annotated deployments and transactions.
    """

    def __init__(
        self,
        account: Optional[AccountAPI] = None,
        autosign: bool = False,
        verify: bool = False,
    ):
        if account is None:
            self._account = select_account()
        else:
            self._account = account
        if autosign:
            print("WARNING: Autosign is enabled. Transactions will be signed automatically.")
        self._autosign = autosign
        self._account.set_autosign(autosign)
        self.verify = verify

    @property
    def address(self) -> str:
        return self._account.address

    def _get_kwargs(self) -> typing.Dict[str, Any]:
        """Returns the deployment kwargs."""
        return {"publish": self.verify}

    def _deploy(
        self,
        container: ContractContainer,
        args: typing.Sequence[Any],
        description: Optional[str] = None,
        parameters: str = "Constructor parameters",
    ) -> ContractInstance:
        description = description or container.contract_type.name
        if not self._autosign:
            _confirm_resolution(args, description, parameters=parameters)
        return self._account.deploy(container, *args, **self._get_kwargs())

    def transact(self, method: ContractTransactionHandler, *args) -> ReceiptAPI:
        named_args = _validate_method_args(method_abis=method.abis, args=args)
        base_message = (
            f"\nTransacting {method.contract.contract_type.name}"
            f"[{method.contract.address[:10]}].{method}"
        )
        if named_args:
            pretty_args = "\n\t".join(f"{k}={v}" for k, v in named_args.items())
            message = f"{base_message} with arguments:\n\t{pretty_args}"
        else:
            message = f"{base_message} with no arguments"
        print(message)
        if not self._autosign:
            _continue()

        return method(*args, sender=self._account)

    @_submission
    def deploy_contract(
        self, name: str, args: List[Any], alias: Optional[str] = None
    ) -> Tuple[str, TransactionReceipt]:
        description = f"{name} as {alias}" if alias else name
        instance = self._deploy(get_contract_container(name), args, description=description)
        return instance.address, _to_receipt(instance.receipt)

    @_submission
    def deploy_proxy(
        self,
        name: str,
        init_args: List[Any],
        initializer: str = DEFAULT_INITIALIZER,
        alias: Optional[str] = None,
    ) -> Tuple[str, TransactionReceipt]:
        label = f"{name} as {alias}" if alias else name
        # upgradeable implementations take no constructor arguments
        implementation = self._deploy(
            get_contract_container(name), [], description=f"{label} implementation"
        )
        data = b""
        if initializer:
            data = getattr(implementation, initializer).encode_input(*init_args)
            print(f"\n(i) {name}.{initializer} will be called with {list(init_args)}")

        proxy_container = getattr(get_oz_dependency(), PROXY_CONTRACT_NAME)
        proxy = self._deploy(
            proxy_container,
            [implementation.address, self.address, data],
            description=f"{PROXY_CONTRACT_NAME} for {label}",
            parameters="Proxy parameters",
        )
        print(
            f"\nWrapping {name} into {proxy.contract_type.name} at {proxy.address} "
            f"(implementation at {implementation.address})."
        )
        return proxy.address, _to_receipt(proxy.receipt)

    @_submission
    def upgrade_proxy(self, proxy_address: str, name: str) -> Tuple[str, TransactionReceipt]:
        admin_slot = chain.provider.get_storage(address=proxy_address, slot=EIP1967_ADMIN_SLOT)

        if admin_slot == EMPTY_BYTES32:
            raise ValueError(
                f"Admin slot for contract at {proxy_address} is empty. "
                "Are you sure this is an EIP1967-compatible proxy?"
            )

        implementation = self._deploy(
            get_contract_container(name),
            [],
            description=f"{name} (new implementation for proxy at {proxy_address})",
        )
        admin_address = to_checksum_address(admin_slot[-20:])
        proxy_admin = getattr(get_oz_dependency(), PROXY_ADMIN_CONTRACT_NAME).at(admin_address)
        if proxy_admin.owner() != self.address:
            raise ValueError(
                f"ProxyAdmin at {admin_address} is owned by {proxy_admin.owner()}, "
                f"not by {self.address}."
            )

        receipt = self.transact(
            proxy_admin.upgradeAndCall, proxy_address, implementation.address, b""
        )
        return proxy_address, _to_receipt(receipt)

    @_submission
    def call(self, address: str, method: str, args: List[Any]) -> TransactionReceipt:
        contract = Contract(address)
        receipt = self.transact(getattr(contract, method), *args)
        return _to_receipt(receipt)
