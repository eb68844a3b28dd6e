from __future__ import annotations

import json
from pathlib import Path

from fake_ledger import FakeLedger
from lockup_harness.scenario_runner.config import ScenarioProfile, WiringProfile
from lockup_harness.scenario_runner.models import AccountId, StepStatus
from lockup_harness.scenario_runner.poller import ConfirmationPoller
from lockup_harness.scenario_runner.runner import LockupScenarioRunner, ScenarioStepName


class FakeClock:
    def __init__(self) -> None:
        self.current = 0.0

    def now(self) -> float:
        return self.current

    def sleep(self, seconds: float) -> None:
        self.current += seconds


def _build_wiring(tmp_path: Path) -> WiringProfile:
    return WiringProfile(
        profile_id="test",
        token_code_path=str(tmp_path / "snip20.wasm.gz"),
        lockup_code_path=str(tmp_path / "lockup.wasm.gz"),
        report_path=str(tmp_path / "reports" / "lockup.json"),
    )


def _build_scenario() -> ScenarioProfile:
    return ScenarioProfile(
        scenario_id="lockup_rewards",
        revision="v0-test",
        viewing_key="api_key_test",
        lockup_viewing_key="lockup_key_test",
        prng_seed="seed-test",
    )


def _runner(tmp_path: Path, ledger: FakeLedger) -> LockupScenarioRunner:
    clock = FakeClock()
    poller = ConfirmationPoller(ledger, interval_seconds=1, timeout_seconds=30, sleep=clock.sleep, clock=clock.now)
    return LockupScenarioRunner(_build_wiring(tmp_path), _build_scenario(), ledger, poller=poller)


def _statuses(report) -> dict[str, StepStatus]:
    return {step.name: step.status for step in report.steps}


def test_full_scenario_passes(tmp_path: Path) -> None:
    ledger = FakeLedger()
    report = _runner(tmp_path, ledger).run()

    assert report.passed, report.model_dump(mode="json")
    assert report.exit_code == 0
    assert report.failed_step is None
    assert [step.name for step in report.steps] == [name.value for name in ScenarioStepName]
    assert all(step.status == StepStatus.PASSED for step in report.steps)
    assert report.failures == []


def test_steps_issue_transactions_in_order(tmp_path: Path) -> None:
    ledger = FakeLedger()
    _runner(tmp_path, ledger).run()

    executed = [detail for kind, detail in ledger.calls if kind == "execute"]
    assert executed[0] == "deposit"
    assert executed[1] == "send"
    # three rounds for b and c, then the final lock for b
    sends = [index for index, key in enumerate(executed) if key == "send"]
    assert len(sends) == 1 + 3 * 2 + 1
    assert executed.index("set_viewing_key") < sends[-1]
    assert executed[-2:] == ["increase_allowance", "decrease_allowance"]
    assert [kind for kind, _ in ledger.calls if kind == "store_code"] == ["store_code", "store_code"]


def test_every_submission_waits_for_confirmation(tmp_path: Path) -> None:
    ledger = FakeLedger(pending_polls=2)
    report = _runner(tmp_path, ledger).run()

    assert report.passed
    tx_hashes = [tx for step in report.steps for tx in step.tx_hashes]
    assert len(tx_hashes) == len(ledger.txs)
    assert all(ledger.polls[tx] == 3 for tx in tx_hashes)


def test_out_of_gas_aborts_and_skips_remaining_steps(tmp_path: Path) -> None:
    ledger = FakeLedger()
    ledger.out_of_gas_on = {"send"}
    report = _runner(tmp_path, ledger).run()

    assert not report.passed
    assert report.exit_code == 1
    assert report.failed_step == ScenarioStepName.ADD_TO_REWARD_POOL.value
    statuses = _statuses(report)
    failed = next(step for step in report.steps if step.name == report.failed_step)
    assert failed.reason_code == "OUT_OF_GAS"
    assert failed.tx_hashes
    assert statuses[ScenarioStepName.DEPOSIT.value] == StepStatus.PASSED
    assert statuses[ScenarioStepName.QUERY_BALANCE.value] == StepStatus.SKIPPED
    assert statuses[ScenarioStepName.ALLOWANCE.value] == StepStatus.SKIPPED
    assert statuses[ScenarioStepName.REPORT.value] == StepStatus.PASSED

    failed_hash = failed.tx_hashes[-1]
    last_poll = max(index for index, call in enumerate(ledger.calls) if call == ("query_tx", failed_hash))
    assert all(kind in ("query_tx", "query_compute_tx") for kind, _ in ledger.calls[last_poll:])


def test_assertion_failure_is_reported_with_operands(tmp_path: Path) -> None:
    ledger = FakeLedger()
    ledger.pool_skew = 1
    report = _runner(tmp_path, ledger).run()

    assert not report.passed
    assert report.failed_step == ScenarioStepName.QUERY_REWARD_POOL.value
    failed = next(step for step in report.steps if step.name == report.failed_step)
    assert failed.reason_code == "ASSERTION_FAILED"
    assert len(report.failures) == 1
    record = report.failures[0]
    assert record.expected == "500000000000"
    assert record.actual == "500000000001"
    assert _statuses(report)[ScenarioStepName.LOCK_TOKENS.value] == StepStatus.SKIPPED


def test_missing_logs_fail_instantiation(tmp_path: Path) -> None:
    ledger = FakeLedger()
    ledger.no_logs_on = {"instantiate"}
    report = _runner(tmp_path, ledger).run()

    assert report.failed_step == ScenarioStepName.INIT_SSCRT.value
    failed = next(step for step in report.steps if step.name == report.failed_step)
    assert failed.reason_code == "NO_LOGS"
    assert _statuses(report)[ScenarioStepName.UPLOAD_CODE.value] == StepStatus.PASSED


def test_stalled_transaction_times_out(tmp_path: Path) -> None:
    ledger = FakeLedger()
    ledger.stall_on = {"deposit"}
    report = _runner(tmp_path, ledger).run()

    assert report.failed_step == ScenarioStepName.DEPOSIT.value
    failed = next(step for step in report.steps if step.name == report.failed_step)
    assert failed.reason_code == "CONFIRMATION_TIMEOUT"
    assert "waiting for deposit" in (failed.message or "")
    assert _statuses(report)[ScenarioStepName.ADD_TO_REWARD_POOL.value] == StepStatus.SKIPPED


def test_report_file_is_written(tmp_path: Path) -> None:
    ledger = FakeLedger()
    ledger.pool_skew = 5
    report = _runner(tmp_path, ledger).run()

    payload = json.loads((tmp_path / "reports" / "lockup.json").read_text(encoding="utf-8"))
    assert payload["scenario_id"] == report.scenario_id
    assert payload["passed"] is False
    assert payload["failed_step"] == ScenarioStepName.QUERY_REWARD_POOL.value
    assert payload["steps"][-1]["name"] == ScenarioStepName.REPORT.value


def test_labels_are_derived_from_init_messages(tmp_path: Path) -> None:
    ledger = FakeLedger()
    _runner(tmp_path, ledger).run()

    labels = [label for kind, label in ledger.calls if kind == "instantiate"]
    assert len(labels) == 3
    assert len(set(labels)) == 3
    assert all(len(label) == 64 for label in labels)


def test_viewing_keys_are_set_once_per_account(tmp_path: Path) -> None:
    ledger = FakeLedger()
    runner = _runner(tmp_path, ledger)
    runner.run()

    executed = [detail for kind, detail in ledger.calls if kind == "execute"]
    assert executed.count("set_viewing_key") == 4 * 3


def test_missing_deployer_fails_upload(tmp_path: Path) -> None:
    ledger = FakeLedger()
    wiring = _build_wiring(tmp_path).model_copy(update={"accounts": [AccountId.B, AccountId.C]})
    runner = LockupScenarioRunner(wiring, _build_scenario(), ledger)
    report = runner.run()

    assert report.failed_step == ScenarioStepName.UPLOAD_CODE.value
    failed = report.steps[0]
    assert failed.reason_code == "STEP_ERROR"
    assert "DEPLOYER_NOT_CONFIGURED" in (failed.message or "")


def test_second_run_does_not_inherit_assertion_records(tmp_path: Path) -> None:
    ledger = FakeLedger()
    ledger.pool_skew = 1
    runner = _runner(tmp_path, ledger)
    first = runner.run()
    assert first.failed_step == ScenarioStepName.QUERY_REWARD_POOL.value

    ledger.reset()
    second = runner.run()

    assert second.passed, second.model_dump(mode="json")
    assert second.failures == []
    assert all(step.status == StepStatus.PASSED for step in second.steps)
    assert len(first.failures) == 1


class _NullBodyLedger(FakeLedger):
    def query(self, contract, msg):
        payload = super().query(contract, msg)
        if msg.wire_key == "query_reward_pool_balance":
            return {"query_reward_pool_balance": None}
        return payload


def test_malformed_query_body_fails_step_with_report(tmp_path: Path) -> None:
    ledger = _NullBodyLedger()
    report = _runner(tmp_path, ledger).run()

    assert report.failed_step == ScenarioStepName.QUERY_REWARD_POOL.value
    failed = next(step for step in report.steps if step.name == report.failed_step)
    assert failed.reason_code == "DECODE_ERROR"
    assert "RESPONSE_BODY_INVALID" in (failed.message or "")
    assert report.steps[-1].name == ScenarioStepName.REPORT.value
    assert (tmp_path / "reports" / "lockup.json").exists()


def test_redeem_requires_recipient_and_amount_on_one_transfer(tmp_path: Path) -> None:
    ledger = FakeLedger()
    ledger.split_transfer = True
    report = _runner(tmp_path, ledger).run()

    assert report.failed_step == ScenarioStepName.REDEEM.value
    failed = next(step for step in report.steps if step.name == report.failed_step)
    assert failed.reason_code == "ASSERTION_FAILED"
    assert [record.description for record in report.failures] == ["redeem transfer amount"]
    assert report.failures[0].actual is None
