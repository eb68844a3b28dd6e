"""Harness accounts, contract handles, transaction and report models."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

OUT_OF_GAS_MARKERS = ("execute contract failed: Out of gas: ", "out of gas:")


class AccountId(str, Enum):
    A = "a"
    B = "b"
    C = "c"
    D = "d"


class ViewingKeyAlreadySet(RuntimeError):
    """Raised when an account's viewing key is assigned a second time."""


@dataclass
class Account:
    account_id: AccountId
    address: str
    viewing_key: Optional[str] = None

    @property
    def alias(self) -> str:
        return self.account_id.value

    def set_viewing_key(self, key: str) -> None:
        if self.viewing_key is not None:
            raise ViewingKeyAlreadySet(f"VIEWING_KEY_ALREADY_SET:{self.alias}")
        if not key:
            raise ValueError("viewing key must be non-empty")
        self.viewing_key = key

    def require_viewing_key(self) -> str:
        if self.viewing_key is None:
            raise RuntimeError(f"VIEWING_KEY_MISSING:{self.alias}")
        return self.viewing_key


@dataclass(frozen=True)
class ContractHandle:
    address: str
    code_hash: str
    code_id: Optional[int] = None
    label: Optional[str] = None

    def as_snip20_ref(self) -> dict[str, str]:
        return {"address": self.address, "contract_hash": self.code_hash}


class TxStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"


@dataclass(frozen=True)
class TxAttribute:
    key: str
    value: str


@dataclass(frozen=True)
class TxEvent:
    type: str
    attributes: tuple[TxAttribute, ...] = ()

    def get(self, key: str) -> Optional[str]:
        for attribute in self.attributes:
            if attribute.key == key:
                return attribute.value
        return None


@dataclass(frozen=True)
class TransactionResult:
    tx_hash: str
    status: TxStatus
    height: int = 0
    raw_log: str = ""
    code: int = 0
    events: tuple[TxEvent, ...] = ()
    has_logs: bool = False
    output_data: Optional[str] = None

    @property
    def out_of_gas(self) -> bool:
        return any(marker in self.raw_log for marker in OUT_OF_GAS_MARKERS)

    def with_output(self, output_data: Optional[str]) -> "TransactionResult":
        return replace(self, output_data=output_data)


@dataclass(frozen=True)
class DecodedResult:
    tx_hash: str
    output_data: Optional[str]
    output_log: Optional[list[dict[str, Any]]]
    output_error: Optional[dict[str, Any]] = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def has_logs(self) -> bool:
        return bool(self.output_log)


class TransactionRequest(BaseModel):
    """A single contract call; built fresh for every submission."""

    contract: str
    message: Any
    sender: AccountId
    gas: int = Field(..., gt=0)
    funds: Optional[str] = None
    code_hash: Optional[str] = None


class StepStatus(str, Enum):
    PENDING = "PENDING"
    PASSED = "PASSED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class AssertionRecord(BaseModel):
    step: str
    description: str
    expected: Any = None
    actual: Any = None
    passed: bool
    message: Optional[str] = None
    diff: Optional[str] = None
    tx_hash: Optional[str] = None


class StepOutcome(BaseModel):
    name: str
    status: StepStatus = StepStatus.PENDING
    reason_code: Optional[str] = None
    message: Optional[str] = None
    tx_hashes: list[str] = Field(default_factory=list)
    assertions: list[AssertionRecord] = Field(default_factory=list)


class ScenarioReport(BaseModel):
    scenario_id: str
    passed: bool
    steps: list[StepOutcome]
    failed_step: Optional[str] = None
    failures: list[AssertionRecord] = Field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1
