from abc import ABC, abstractmethod
from typing import Any, List, Optional, Tuple

from deployplan.constants import DEFAULT_INITIALIZER
from deployplan.steps import TransactionReceipt


class ChainClient(ABC):
    """
    Submits deployment transactions and waits for them to be confirmed.
    Implementations raise ChainSubmissionError for anything that did not make it on-chain.
    """

    @property
    @abstractmethod
    def address(self) -> str:
        """Address of the signing account."""
        raise NotImplementedError

    @abstractmethod
    def deploy_contract(
        self, name: str, args: List[Any], alias: Optional[str] = None
    ) -> Tuple[str, TransactionReceipt]:
        """`alias` is the logical name the plan binds the deployment to, when it differs."""
        raise NotImplementedError

    @abstractmethod
    def deploy_proxy(
        self,
        name: str,
        init_args: List[Any],
        initializer: str = DEFAULT_INITIALIZER,
        alias: Optional[str] = None,
    ) -> Tuple[str, TransactionReceipt]:
        raise NotImplementedError

    @abstractmethod
    def upgrade_proxy(self, proxy_address: str, name: str) -> Tuple[str, TransactionReceipt]:
        """Points the proxy at a freshly deployed implementation; returns the proxy address."""
        raise NotImplementedError

    @abstractmethod
    def call(self, address: str, method: str, args: List[Any]) -> TransactionReceipt:
        raise NotImplementedError
