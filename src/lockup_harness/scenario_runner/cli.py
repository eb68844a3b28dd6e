"""CLI for running the lockup scenario against a node."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from .config import WiringProfile, load_scenario, load_wiring
from .ledger import SecretCliLedgerClient
from .logging_utils import configure_logging
from .report import render_text
from .runner import LockupScenarioRunner


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    base = argparse.ArgumentParser(add_help=False)
    base.add_argument("--wiring", required=True, help="Path to wiring profile YAML")
    base.add_argument("--scenario", required=True, help="Path to scenario profile YAML")

    parser = argparse.ArgumentParser(description="Lockup integration harness")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", parents=[base], help="Run the lockup scenario")
    run_parser.add_argument("--report-path", default=None)
    run_parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    run_parser.add_argument("--verbose", action="store_true")

    raw = list(sys.argv[1:] if argv is None else argv)
    if not raw or raw[0] not in subparsers.choices:
        raw = ["run", *raw]
    return parser.parse_args(raw)


def build_ledger(wiring: WiringProfile, secrets: list[str]) -> SecretCliLedgerClient:
    return SecretCliLedgerClient(
        wiring.cli_command,
        timeout_seconds=wiring.cli_timeout_seconds,
        chain_id=wiring.chain_id,
        keyring_backend=wiring.keyring_backend,
        secrets=secrets,
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    wiring = load_wiring(Path(args.wiring))
    scenario = load_scenario(Path(args.scenario))
    if args.report_path:
        wiring = wiring.model_copy(update={"report_path": args.report_path})
    log_paths = [wiring.log_path] if wiring.log_path else None
    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO, log_paths=log_paths)

    ledger = build_ledger(wiring, [scenario.viewing_key, scenario.lockup_viewing_key])
    runner = LockupScenarioRunner(wiring, scenario, ledger)
    report = runner.run()
    if args.json:
        print(json.dumps(report.model_dump(mode="json"), sort_keys=True))
    else:
        print(render_text(report))
    return report.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
