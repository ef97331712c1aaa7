import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, NamedTuple, Optional

from deployplan.exceptions import AlreadyResolvedMismatch, LedgerWriteError
from deployplan.steps import Outcome, Step, step_from_dict, step_hash


class LedgerRecord(NamedTuple):
    """A single resolved step, as persisted in the ledger."""

    step_hash: str
    occurrence: int
    step: Step
    outcome: Outcome
    timestamp: str
    result: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == Outcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "step_hash": self.step_hash,
            "occurrence": self.occurrence,
            "step": self.step.to_dict(),
            "outcome": self.outcome.value,
            "timestamp": self.timestamp,
        }
        if self.succeeded:
            data["result"] = self.result
        else:
            data["reason"] = self.reason
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LedgerRecord":
        return cls(
            step_hash=data["step_hash"],
            occurrence=int(data.get("occurrence", 0)),
            step=step_from_dict(data["step"]),
            outcome=Outcome(data["outcome"]),
            timestamp=data["timestamp"],
            result=data.get("result"),
            reason=data.get("reason"),
        )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StepLedger:
    """
    Append-only, line-delimited JSON log of resolved steps.

    Every record is flushed and fsync'ed before the append returns, so a
    record on disk always describes an on-chain action that has completed.
    """

    def __init__(self, filepath: Path):
        self.filepath = Path(filepath)
        self._records: List[LedgerRecord] = list()
        self._successes: Dict[str, LedgerRecord] = dict()
        self._truncate_to: Optional[int] = None
        if self.filepath.exists():
            self._load()

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[LedgerRecord]:
        return iter(list(self._records))

    @property
    def records(self) -> List[LedgerRecord]:
        return list(self._records)

    def success_for(self, identity: str) -> Optional[LedgerRecord]:
        """Returns the success record for a step identity, if there is one."""
        return self._successes.get(identity)

    def record_success(self, step: Step, result: Dict[str, Any], occurrence: int = 0) -> LedgerRecord:
        record = LedgerRecord(
            step_hash=step_hash(step, occurrence),
            occurrence=occurrence,
            step=step,
            outcome=Outcome.SUCCESS,
            timestamp=_now(),
            result=result,
        )
        self._append(record)
        return record

    def record_failure(self, step: Step, reason: str, occurrence: int = 0) -> LedgerRecord:
        record = LedgerRecord(
            step_hash=step_hash(step, occurrence),
            occurrence=occurrence,
            step=step,
            outcome=Outcome.FAILURE,
            timestamp=_now(),
            reason=reason,
        )
        self._append(record)
        return record

    def _index(self, record: LedgerRecord) -> None:
        previous = self._successes.get(record.step_hash)
        if previous is not None:
            if not record.succeeded:
                raise AlreadyResolvedMismatch(
                    f"Ledger {self.filepath} records a failure for '{record.step}' "
                    "after it was already confirmed.",
                    step=record.step,
                )
            if previous.result != record.result:
                raise AlreadyResolvedMismatch(
                    f"Ledger {self.filepath} records two different results for '{record.step}'.",
                    step=record.step,
                )
        elif record.succeeded:
            self._successes[record.step_hash] = record
        self._records.append(record)

    def _append(self, record: LedgerRecord) -> None:
        # refuse before writing: a conflicting record must never reach the file
        if record.step_hash in self._successes:
            raise AlreadyResolvedMismatch(
                f"'{record.step}' is already confirmed in {self.filepath}.", step=record.step
            )

        line = json.dumps(record.to_dict(), sort_keys=True) + "\n"
        try:
            self.filepath.parent.mkdir(parents=True, exist_ok=True)
            if self._truncate_to is not None:
                os.truncate(self.filepath, self._truncate_to)
            with open(self.filepath, "a") as file:
                file.write(line)
                file.flush()
                os.fsync(file.fileno())
        except (OSError, TypeError, ValueError) as e:
            raise LedgerWriteError(
                f"Could not write ledger record for '{record.step}' to {self.filepath}: {e}",
                step=record.step,
            ) from e
        self._truncate_to = None
        self._index(record)

    def _load(self) -> None:
        with open(self.filepath, "r") as file:
            content = file.read()

        lines = content.split("\n")
        last = len(lines) - 1
        for number, line in enumerate(lines):
            if not line.strip():
                continue
            try:
                record = LedgerRecord.from_dict(json.loads(line))
            except (ValueError, KeyError, TypeError) as e:
                if number == last:
                    # torn final write; nothing after it was ever confirmed
                    print(f"(!) Ignoring incomplete trailing record in {self.filepath}")
                    intact = "".join(part + "\n" for part in lines[:number])
                    self._truncate_to = len(intact.encode("utf-8"))
                    break
                raise AlreadyResolvedMismatch(
                    f"Ledger {self.filepath} is corrupt at line {number + 1}: {e}"
                ) from e

            if step_hash(record.step, record.occurrence) != record.step_hash:
                raise AlreadyResolvedMismatch(
                    f"Ledger {self.filepath} line {number + 1} does not match its step hash.",
                    step=record.step,
                )
            self._index(record)
