from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from lockup_harness.pool_admin import PoolUpdateError, PoolUpdater
from lockup_harness.pool_admin.cli import build_messages, parse_args
from lockup_harness.pool_admin.updater import merge_unsigned
from lockup_harness.scenario_runner.decoder import BusinessFailure
from lockup_harness.scenario_runner.ledger import LedgerClient
from lockup_harness.scenario_runner.messages import ContractMessage, UpdateDeadline, UpdateRewardToken, encode_message
from lockup_harness.scenario_runner.poller import ConfirmationPoller


class _AdminLedger(LedgerClient):
    def __init__(self, *, raw_log: str = "[]") -> None:
        self.raw_log = raw_log
        self.generated: list[str] = []
        self.signed: list[dict[str, Any]] = []
        self.broadcasts: list[Path] = []

    def contract_address_by_label(self, label: str) -> str:
        return {"pool-1": "secret1pool1"}.get(label, "")

    def contract_hash(self, address: str) -> str:
        return "ef" * 32

    def key_show(self, alias: str) -> str:
        return f"secret1{alias}admin"

    def generate_execute(self, contract: str, msg: ContractMessage, sender: str, gas: int, code_hash: str) -> dict[str, Any]:
        self.generated.append(encode_message(msg))
        return {
            "type": "cosmos-sdk/StdTx",
            "value": {"msg": [{"contract": contract, "sender": sender, "msg": encode_message(msg)}], "fee": {"gas": str(gas)}},
        }

    def sign(self, tx_file: Path, sender: str) -> dict[str, Any]:
        tx = json.loads(tx_file.read_text(encoding="utf-8"))
        tx["value"]["signatures"] = [{"signer": sender}]
        self.signed.append(tx)
        return tx

    def broadcast(self, tx_file: Path) -> str:
        self.broadcasts.append(tx_file)
        return "POOLTX"

    def query_tx(self, tx_hash: str) -> dict[str, Any] | None:
        return {"txhash": tx_hash, "height": "50", "code": 0, "raw_log": self.raw_log, "logs": [{"events": []}]}


def _updater(ledger: LedgerClient, tmp_path: Path) -> PoolUpdater:
    poller = ConfirmationPoller(ledger, interval_seconds=1, timeout_seconds=5, sleep=lambda _: None)
    return PoolUpdater(ledger, poller, tmp_path / "pool-1", gas=200_000)


def test_merge_unsigned_amino_and_protobuf_shapes() -> None:
    amino = [{"value": {"msg": [1]}}, {"value": {"msg": [2]}}]
    assert merge_unsigned(amino)["value"]["msg"] == [1, 2]
    assert amino[0]["value"]["msg"] == [1]

    proto = [{"body": {"messages": ["a"]}}, {"body": {"messages": ["b", "c"]}}]
    assert merge_unsigned(proto)["body"]["messages"] == ["a", "b", "c"]

    with pytest.raises(PoolUpdateError, match="UNSIGNED_TX_SHAPE_UNKNOWN"):
        merge_unsigned([{"unexpected": True}])
    with pytest.raises(PoolUpdateError, match="NO_TRANSACTIONS"):
        merge_unsigned([])


def test_update_signs_one_transaction_for_all_messages(tmp_path: Path) -> None:
    ledger = _AdminLedger()
    messages = [
        UpdateDeadline(height=9000),
        UpdateRewardToken(new_token={"address": "secret1new", "contract_hash": "aa" * 32}),
    ]
    result = _updater(ledger, tmp_path).update("pool-1", "admin", messages)

    assert result.tx_hash == "POOLTX"
    assert result.pool.address == "secret1pool1"
    assert result.admin_address == "secret1adminadmin"
    assert len(ledger.generated) == 2
    assert len(ledger.signed) == 1
    unsigned = json.loads(Path(result.unsigned_tx_path).read_text(encoding="utf-8"))
    assert len(unsigned["value"]["msg"]) == 2
    signed = json.loads(Path(result.signed_tx_path).read_text(encoding="utf-8"))
    assert signed["value"]["signatures"] == [{"signer": "secret1adminadmin"}]
    assert ledger.broadcasts == [Path(result.signed_tx_path)]


def test_unknown_label_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(PoolUpdateError, match="POOL_LABEL_UNKNOWN"):
        _updater(_AdminLedger(), tmp_path).update("missing", "admin", [UpdateDeadline(height=1)])


def test_update_out_of_gas_raises(tmp_path: Path) -> None:
    ledger = _AdminLedger(raw_log="out of gas: gas wanted 200000")
    with pytest.raises(BusinessFailure) as excinfo:
        _updater(ledger, tmp_path).update("pool-1", "admin", [UpdateDeadline(height=1)])
    assert excinfo.value.reason_code == "OUT_OF_GAS"


def test_cli_builds_messages() -> None:
    args = parse_args(
        [
            "update",
            "--wiring",
            "wiring.yaml",
            "--label",
            "pool-1",
            "--label",
            "pool-2",
            "--admin",
            "a",
            "--deadline",
            "4200",
            "--reward-token-address",
            "secret1new",
            "--reward-token-hash",
            "bb" * 32,
        ]
    )
    assert args.label == ["pool-1", "pool-2"]
    messages = build_messages(args)
    assert [message.wire_key for message in messages] == ["update_deadline", "update_reward_token"]


def test_cli_requires_token_address_and_hash_together() -> None:
    with pytest.raises(SystemExit):
        parse_args(["update", "--wiring", "w.yaml", "--label", "p", "--admin", "a", "--reward-token-address", "secret1new"])
    with pytest.raises(SystemExit):
        parse_args(["update", "--wiring", "w.yaml", "--label", "p", "--admin", "a"])
