"""CLI for batching lockup pool admin updates into a single signed tx."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from lockup_harness.scenario_runner.config import load_wiring
from lockup_harness.scenario_runner.ledger import SecretCliLedgerClient
from lockup_harness.scenario_runner.logging_utils import configure_logging
from lockup_harness.scenario_runner.messages import ContractMessage, UpdateDeadline, UpdateRewardToken
from lockup_harness.scenario_runner.poller import ConfirmationPoller

from .updater import PoolUpdater


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Lockup pool admin updates")
    subparsers = parser.add_subparsers(dest="command", required=True)
    update = subparsers.add_parser("update", help="Update one or more pools")
    update.add_argument("--wiring", required=True, help="Path to wiring profile YAML")
    update.add_argument("--label", action="append", required=True, help="Pool label (repeatable)")
    update.add_argument("--admin", required=True, help="Admin key alias")
    update.add_argument("--deadline", type=int, default=None, help="New deadline height")
    update.add_argument("--reward-token-address", default=None)
    update.add_argument("--reward-token-hash", default=None)
    update.add_argument("--enclave-key", default=None)
    update.add_argument("--work-dir", default="runs/pool_admin")
    args = parser.parse_args(argv)
    if bool(args.reward_token_address) != bool(args.reward_token_hash):
        parser.error("--reward-token-address and --reward-token-hash go together")
    if args.deadline is None and not args.reward_token_address:
        parser.error("nothing to update: pass --deadline and/or --reward-token-address")
    return args


def build_messages(args: argparse.Namespace) -> list[ContractMessage]:
    messages: list[ContractMessage] = []
    if args.deadline is not None:
        messages.append(UpdateDeadline(height=args.deadline))
    if args.reward_token_address:
        messages.append(
            UpdateRewardToken(
                new_token={"address": args.reward_token_address, "contract_hash": args.reward_token_hash},
            )
        )
    return messages


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(level=logging.INFO)
    wiring = load_wiring(Path(args.wiring))
    ledger = SecretCliLedgerClient(
        wiring.cli_command,
        timeout_seconds=wiring.cli_timeout_seconds,
        chain_id=wiring.chain_id,
        keyring_backend=wiring.keyring_backend,
        enclave_key=args.enclave_key,
    )
    poller = ConfirmationPoller(
        ledger,
        interval_seconds=wiring.poll_interval_seconds,
        timeout_seconds=wiring.confirmation_timeout_seconds,
    )
    messages = build_messages(args)
    for label in args.label:
        updater = PoolUpdater(ledger, poller, Path(args.work_dir) / label, gas=wiring.gas.execute)
        result = updater.update(label, args.admin, messages)
        print(json.dumps({"label": label, "pool": result.pool.address, "tx_hash": result.tx_hash}, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
