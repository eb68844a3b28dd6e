"""Batch admin messages for a lockup pool into one signed transaction."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from lockup_harness.scenario_runner.decoder import ResultDecoder
from lockup_harness.scenario_runner.ledger import LedgerClient
from lockup_harness.scenario_runner.messages import ContractMessage
from lockup_harness.scenario_runner.models import ContractHandle, TransactionResult
from lockup_harness.scenario_runner.poller import ConfirmationPoller


class PoolUpdateError(RuntimeError):
    """Raised when an unsigned transaction cannot be assembled."""


@dataclass(frozen=True)
class PoolUpdateResult:
    pool: ContractHandle
    admin_address: str
    unsigned_tx_path: str
    signed_tx_path: str
    tx_hash: str
    result: TransactionResult


def _message_list(tx: dict[str, Any]) -> list[Any]:
    # Amino StdTx keeps messages under value.msg; protobuf JSON under body.messages
    if isinstance(tx.get("value"), dict) and isinstance(tx["value"].get("msg"), list):
        return tx["value"]["msg"]
    if isinstance(tx.get("body"), dict) and isinstance(tx["body"].get("messages"), list):
        return tx["body"]["messages"]
    raise PoolUpdateError("UNSIGNED_TX_SHAPE_UNKNOWN")


def merge_unsigned(transactions: Sequence[dict[str, Any]]) -> dict[str, Any]:
    if not transactions:
        raise PoolUpdateError("NO_TRANSACTIONS")
    merged = json.loads(json.dumps(transactions[0]))
    target = _message_list(merged)
    for tx in transactions[1:]:
        target.extend(_message_list(tx))
    return merged


class PoolUpdater:
    def __init__(
        self,
        ledger: LedgerClient,
        poller: ConfirmationPoller,
        work_dir: Path,
        *,
        gas: int = 500_000,
    ) -> None:
        self.ledger = ledger
        self.poller = poller
        self.decoder = ResultDecoder(ledger)
        self.work_dir = work_dir
        self.gas = gas
        self.logger = logging.getLogger(__name__)

    def resolve_pool(self, label: str) -> ContractHandle:
        address = self.ledger.contract_address_by_label(label)
        if not address:
            raise PoolUpdateError(f"POOL_LABEL_UNKNOWN:{label}")
        code_hash = self.ledger.contract_hash(address)
        self.logger.info("HARNESS: pool resolved (label=%s, address=%s, code_hash=%s)", label, address, code_hash)
        return ContractHandle(address=address, code_hash=code_hash, label=label)

    def update(self, label: str, admin_alias: str, messages: Sequence[ContractMessage]) -> PoolUpdateResult:
        if not messages:
            raise PoolUpdateError("NO_MESSAGES")
        pool = self.resolve_pool(label)
        admin_address = self.ledger.key_show(admin_alias)

        unsigned = [
            self.ledger.generate_execute(pool.address, message, admin_address, self.gas, pool.code_hash)
            for message in messages
        ]
        merged = merge_unsigned(unsigned)

        self.work_dir.mkdir(parents=True, exist_ok=True)
        unsigned_path = self.work_dir / "unsigned_tx.json"
        signed_path = self.work_dir / "signed_tx.json"
        unsigned_path.write_text(json.dumps(merged, sort_keys=True, indent=2) + "\n", encoding="utf-8")
        self.logger.info("HARNESS: signing pool update (pool=%s, messages=%d)", pool.address, len(messages))
        signed = self.ledger.sign(unsigned_path, admin_address)
        signed_path.write_text(json.dumps(signed, sort_keys=True, indent=2) + "\n", encoding="utf-8")

        tx_hash = self.ledger.broadcast(signed_path)
        result = self.poller.await_confirmation(tx_hash, f"waiting for pool update on {label}")
        self.decoder.require_success(result)
        return PoolUpdateResult(
            pool=pool,
            admin_address=admin_address,
            unsigned_tx_path=str(unsigned_path),
            signed_tx_path=str(signed_path),
            tx_hash=tx_hash,
            result=result,
        )
