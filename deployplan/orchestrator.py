import typing
from collections import Counter, OrderedDict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from eth_utils import is_same_address

from deployplan.client import ChainClient
from deployplan.exceptions import (
    AlreadyResolvedMismatch,
    ChainSubmissionError,
    LedgerWriteError,
)
from deployplan.ledger import LedgerRecord, StepLedger
from deployplan.plan import validate_plan
from deployplan.steps import (
    Call,
    Deploy,
    DeployedContract,
    DeployProxy,
    Outcome,
    Step,
    TransactionReceipt,
    UpgradeProxy,
    reference_name,
    resolve_params,
    step_hash,
)


class StepState(Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class DeploymentOrchestrator:
    """
    Executes a plan of steps against a chain client exactly once each, in order.

    Progress is written to a StepLedger after every step, so an interrupted run
    resumes at the first unresolved step when `run` is called again with the same
    plan. A step failure halts the run; nothing is retried or rolled back.
    """

    def __init__(
        self,
        client: ChainClient,
        ledger: StepLedger,
        existing: Optional[Dict[str, DeployedContract]] = None,
    ):
        self.client = client
        self.ledger = ledger
        self.existing = OrderedDict(existing or {})
        self._artifacts: Dict[str, DeployedContract] = OrderedDict()
        self._states: List[Tuple[Step, StepState]] = list()

    @property
    def artifacts(self) -> Dict[str, DeployedContract]:
        return OrderedDict(self._artifacts)

    @property
    def states(self) -> List[Tuple[Step, StepState]]:
        return list(self._states)

    def status(self) -> List[Tuple[Step, Outcome]]:
        """Read-only snapshot of the ledger."""
        return [(record.step, record.outcome) for record in self.ledger.records]

    def run(self, plan: typing.Iterable[Step]) -> Dict[str, DeployedContract]:
        steps = list(plan)
        validate_plan(steps, self.existing)

        self._artifacts = OrderedDict(
            (name, DeployedContract.from_dict(contract.to_dict()))
            for name, contract in self.existing.items()
        )
        self._states = [(step, StepState.PENDING) for step in steps]

        occurrences = Counter()
        for index, step in enumerate(steps):
            base_identity = step_hash(step)
            occurrence = occurrences[base_identity]
            occurrences[base_identity] += 1

            prefix = f"[{index + 1}/{len(steps)}]"
            record = self.ledger.success_for(step_hash(step, occurrence))
            if record is not None:
                print(f"{prefix} Skipping {step} (confirmed at {record.timestamp})")
                self._replay(step, record)
                self._states[index] = (step, StepState.CONFIRMED)
                continue

            print(f"\n{prefix} Submitting {step}")
            self._states[index] = (step, StepState.SUBMITTED)
            try:
                result = self._submit(step)
            except Exception as e:
                if isinstance(e, ChainSubmissionError):
                    reason = e.reason
                else:
                    reason = f"{type(e).__name__}: {e}"
                self._states[index] = (step, StepState.FAILED)
                print(f"(!) {step} failed: {reason}")
                self._write(self.ledger.record_failure, step, reason, occurrence)
                raise ChainSubmissionError(reason, step=step, artifacts=self._artifacts) from e

            self._apply(step, result)
            self._write(self.ledger.record_success, step, result, occurrence)
            self._states[index] = (step, StepState.CONFIRMED)

        print(f"\n(i) Plan complete: {len(steps)} step(s) confirmed.")
        return self.artifacts

    def _write(self, append, step: Step, payload: Any, occurrence: int) -> LedgerRecord:
        try:
            return append(step, payload, occurrence=occurrence)
        except (LedgerWriteError, AlreadyResolvedMismatch) as e:
            raise type(e)(str(e), step=step, artifacts=self._artifacts) from e

    #
    # Submission
    #

    def _resolve(self, args: typing.Sequence[Any]) -> List[Any]:
        return resolve_params(args, self._artifacts, self.client.address)

    def _target(self, reference: str) -> DeployedContract:
        return self._artifacts[reference_name(reference)]

    @staticmethod
    def _check_receipt(step: Step, receipt: TransactionReceipt) -> None:
        if not receipt.succeeded:
            raise ChainSubmissionError(f"Transaction {receipt.tx_hash} for '{step}' failed.")

    def _submit(self, step: Step) -> Dict[str, Any]:
        """Submits a step and returns the result to record in the ledger."""
        if isinstance(step, (Deploy, DeployProxy)):
            alias = step.produces if step.produces != step.contract else None
            if isinstance(step, DeployProxy):
                address, receipt = self.client.deploy_proxy(
                    step.contract, self._resolve(step.args), step.initializer, alias=alias
                )
            else:
                address, receipt = self.client.deploy_contract(
                    step.contract, self._resolve(step.args), alias=alias
                )
            self._check_receipt(step, receipt)
            is_proxy = isinstance(step, DeployProxy)
            contract = DeployedContract(
                name=step.produces,
                address=address,
                contract_type=step.contract,
                is_proxy=is_proxy,
                implementation_history=[step.contract] if is_proxy else [],
                tx_hash=receipt.tx_hash,
                block_number=receipt.block_number,
            )
            return {"contract": contract.to_dict(), "receipt": receipt.to_dict()}

        if isinstance(step, UpgradeProxy):
            proxy = self._target(step.proxy)
            address, receipt = self.client.upgrade_proxy(proxy.address, step.contract)
            self._check_receipt(step, receipt)
            if not is_same_address(address, proxy.address):
                raise ChainSubmissionError(
                    f"Upgrade of {proxy.name} reported address {address}, expected {proxy.address}."
                )
            return {
                "address": proxy.address,
                "implementation": step.contract,
                "receipt": receipt.to_dict(),
            }

        if isinstance(step, Call):
            target = self._target(step.target)
            receipt = self.client.call(target.address, step.method, self._resolve(step.args))
            self._check_receipt(step, receipt)
            return {"address": target.address, "receipt": receipt.to_dict()}

        raise TypeError(f"Unsupported step type {type(step).__name__}")

    #
    # Artifacts
    #

    def _apply(self, step: Step, result: Dict[str, Any]) -> None:
        if isinstance(step, (Deploy, DeployProxy)):
            contract = DeployedContract.from_dict(result["contract"])
            if contract.contract_type is None:
                contract.contract_type = step.contract
            self._artifacts[contract.name] = contract
            print(f"(i) {contract.name} deployed at {contract.address}")
        elif isinstance(step, UpgradeProxy):
            proxy = self._target(step.proxy)
            proxy.record_upgrade(result["implementation"])
            print(f"(i) {proxy.name} at {proxy.address} upgraded to {result['implementation']}")

    def _replay(self, step: Step, record: LedgerRecord) -> None:
        """Restores the artifacts of a step confirmed in an earlier run."""
        result = record.result or dict()
        try:
            if isinstance(step, (Deploy, DeployProxy)):
                recorded = result["contract"]
                mismatch = recorded["name"] != step.produces or bool(
                    recorded.get("is_proxy", False)
                ) != isinstance(step, DeployProxy)
            elif isinstance(step, (UpgradeProxy, Call)):
                reference = step.proxy if isinstance(step, UpgradeProxy) else step.target
                mismatch = not is_same_address(result["address"], self._target(reference).address)
            else:
                mismatch = False
        except (KeyError, TypeError, ValueError):
            mismatch = True

        if mismatch:
            raise AlreadyResolvedMismatch(
                f"Ledger record for '{step}' ({record.step_hash[:10]}) does not match the plan.",
                step=step,
                artifacts=self._artifacts,
            )
        self._apply(step, result)
