"""Lockup scenario orchestration.

Steps run strictly in order. Assertions inside a step are all evaluated
(collect-all); a step that records a failed assertion, or raises a
business/decode/ledger/timeout error, ends the pipeline (fail-fast) and every
later step is reported as SKIPPED. The report is always produced.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from .assertions import AssertionEngine
from .config import ScenarioProfile, WiringProfile
from .decoder import (
    BusinessFailure,
    DecodeError,
    ResultDecoder,
    code_id_from,
    contract_address_from,
    events_of_type,
    find_event,
    pad_response,
    parse_contract_response,
    parse_handle_output,
)
from .ids import contract_label, scenario_id_for, viewing_key_for
from .ledger import LedgerClient, LedgerCommandError
from .messages import (
    AddToRewardPool,
    Allowance,
    Balance,
    ContractMessage,
    DecreaseAllowance,
    Deposit,
    IncreaseAllowance,
    InitialBalance,
    InitMessage,
    LockTokens,
    LockupInitMsg,
    QueryDeposit,
    QueryRewardPoolBalance,
    QueryRewards,
    Redeem,
    Send,
    SetViewingKey,
    Snip20InitMsg,
    Snip20Ref,
    coin,
    encode_message,
)
from .models import (
    Account,
    AccountId,
    ContractHandle,
    ScenarioReport,
    StepOutcome,
    StepStatus,
    TransactionRequest,
    TransactionResult,
    TxEvent,
    ViewingKeyAlreadySet,
)
from .poller import ConfirmationPoller, ConfirmationTimeout

SSCRT = "sscrt"
SETH = "seth"
LOCKUP = "lockup"


class ScenarioStepName(str, Enum):
    UPLOAD_CODE = "upload_code"
    INIT_SSCRT = "init_sscrt"
    INIT_SETH = "init_seth"
    INIT_LOCKUP = "init_lockup"
    DEPOSIT = "deposit"
    ADD_TO_REWARD_POOL = "add_to_reward_pool"
    QUERY_BALANCE = "query_balance"
    QUERY_REWARD_POOL = "query_reward_pool"
    LOCK_TOKENS = "lock_tokens"
    SET_VIEWING_KEY = "set_viewing_key"
    LOCK_TOKENS_FINAL = "lock_tokens_final"
    QUERY_REWARDS = "query_rewards"
    REDEEM = "redeem"
    ALLOWANCE = "allowance"
    REPORT = "report"


@dataclass
class ScenarioContext:
    accounts: dict[AccountId, Account] = field(default_factory=dict)
    contracts: dict[str, ContractHandle] = field(default_factory=dict)
    code_ids: dict[str, int] = field(default_factory=dict)
    locked: dict[AccountId, int] = field(default_factory=dict)
    last_height: int = 0
    outcome: StepOutcome | None = None
    assertions: AssertionEngine = field(default_factory=AssertionEngine)

    def account(self, account_id: AccountId) -> Account:
        try:
            return self.accounts[account_id]
        except KeyError:
            raise RuntimeError(f"UNKNOWN_ACCOUNT:{account_id.value}") from None

    def contract(self, name: str) -> ContractHandle:
        try:
            return self.contracts[name]
        except KeyError:
            raise RuntimeError(f"CONTRACT_NOT_DEPLOYED:{name}") from None


@dataclass(frozen=True)
class ScenarioStep:
    name: ScenarioStepName
    action: Callable[[ScenarioContext], None]
    predecessor: ScenarioStepName | None = None


def status_output(key: str) -> str:
    return pad_response(json.dumps({key: {"status": "success"}}, separators=(",", ":")))


class LockupScenarioRunner:
    def __init__(
        self,
        wiring: WiringProfile,
        scenario: ScenarioProfile,
        ledger: LedgerClient,
        poller: ConfirmationPoller | None = None,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.wiring = wiring
        self.scenario = scenario
        self.ledger = ledger
        self.poller = poller or ConfirmationPoller(
            ledger,
            interval_seconds=wiring.poll_interval_seconds,
            timeout_seconds=wiring.confirmation_timeout_seconds,
        )
        self.decoder = ResultDecoder(ledger)
        self.scenario_id = scenario_id_for(wiring.profile_id, scenario.scenario_id, scenario.prng_seed)
        self.steps = self.build_pipeline()

    def build_pipeline(self) -> list[ScenarioStep]:
        actions: list[tuple[ScenarioStepName, Callable[[ScenarioContext], None]]] = [
            (ScenarioStepName.UPLOAD_CODE, self._upload_code),
            (ScenarioStepName.INIT_SSCRT, self._init_sscrt),
            (ScenarioStepName.INIT_SETH, self._init_seth),
            (ScenarioStepName.INIT_LOCKUP, self._init_lockup),
            (ScenarioStepName.DEPOSIT, self._deposit),
            (ScenarioStepName.ADD_TO_REWARD_POOL, self._add_to_reward_pool),
            (ScenarioStepName.QUERY_BALANCE, self._query_balance),
            (ScenarioStepName.QUERY_REWARD_POOL, self._query_reward_pool),
            (ScenarioStepName.LOCK_TOKENS, self._lock_tokens),
            (ScenarioStepName.SET_VIEWING_KEY, self._set_viewing_keys),
            (ScenarioStepName.LOCK_TOKENS_FINAL, self._lock_tokens_final),
            (ScenarioStepName.QUERY_REWARDS, self._query_rewards),
            (ScenarioStepName.REDEEM, self._redeem),
            (ScenarioStepName.ALLOWANCE, self._allowance),
        ]
        steps: list[ScenarioStep] = []
        previous: ScenarioStepName | None = None
        for name, action in actions:
            steps.append(ScenarioStep(name=name, action=action, predecessor=previous))
            previous = name
        return steps

    def run(self) -> ScenarioReport:
        self.logger.info(
            "HARNESS: scenario started (scenario_id=%s, profile=%s, rev=%s)",
            self.scenario_id,
            self.wiring.profile_id,
            self.scenario.as_rev(),
        )
        context = ScenarioContext()
        outcomes: list[StepOutcome] = []
        passed_steps: set[ScenarioStepName] = set()
        failed_step: ScenarioStepName | None = None

        for step in self.steps:
            outcome = StepOutcome(name=step.name.value)
            outcomes.append(outcome)
            if failed_step is not None or (step.predecessor is not None and step.predecessor not in passed_steps):
                outcome.status = StepStatus.SKIPPED
                continue
            self._run_step(step, context, outcome)
            if outcome.status == StepStatus.PASSED:
                passed_steps.add(step.name)
            else:
                failed_step = step.name

        outcomes.append(StepOutcome(name=ScenarioStepName.REPORT.value, status=StepStatus.PASSED))
        return self._report(context, outcomes, failed_step)

    def _run_step(self, step: ScenarioStep, context: ScenarioContext, outcome: StepOutcome) -> None:
        context.outcome = outcome
        self.logger.info("HARNESS: step started (step=%s)", step.name.value, extra={"narrative": True})
        try:
            step.action(context)
        except ConfirmationTimeout as exc:
            self._fail(outcome, "CONFIRMATION_TIMEOUT", str(exc), exc.tx_hash)
        except BusinessFailure as exc:
            self._fail(outcome, exc.reason_code, str(exc), exc.tx_hash, raw_log=exc.raw_log)
        except DecodeError as exc:
            self._fail(outcome, "DECODE_ERROR", str(exc), exc.tx_hash)
        except LedgerCommandError as exc:
            self._fail(outcome, "LEDGER_ERROR", f"{exc} (stderr={exc.stderr})", None)
        except ViewingKeyAlreadySet as exc:
            self._fail(outcome, "VIEWING_KEY_ALREADY_SET", str(exc), None)
        except RuntimeError as exc:
            self._fail(outcome, "STEP_ERROR", str(exc), None)
        finally:
            outcome.assertions = context.assertions.for_step(step.name.value)
            context.outcome = None

        if outcome.status == StepStatus.FAILED:
            return
        if context.assertions.failures(step.name.value):
            outcome.status = StepStatus.FAILED
            outcome.reason_code = "ASSERTION_FAILED"
            self.logger.error("HARNESS: step failed assertions (step=%s)", step.name.value)
            return
        outcome.status = StepStatus.PASSED
        self.logger.info(
            "HARNESS: step passed (step=%s, checks=%d, txs=%d)",
            step.name.value,
            len(outcome.assertions),
            len(outcome.tx_hashes),
            extra={"narrative": True},
        )

    def _fail(
        self,
        outcome: StepOutcome,
        reason_code: str,
        message: str,
        tx_hash: str | None,
        raw_log: str | None = None,
    ) -> None:
        outcome.status = StepStatus.FAILED
        outcome.reason_code = reason_code
        outcome.message = message
        if tx_hash and tx_hash not in outcome.tx_hashes:
            outcome.tx_hashes.append(tx_hash)
        self.logger.error(
            "HARNESS: step aborted (step=%s, reason=%s, tx_hash=%s, raw_log=%s): %s",
            outcome.name,
            reason_code,
            tx_hash,
            raw_log,
            message,
        )

    def _report(
        self,
        context: ScenarioContext,
        outcomes: list[StepOutcome],
        failed_step: ScenarioStepName | None,
    ) -> ScenarioReport:
        failures = context.assertions.failures()
        passed = failed_step is None and not failures
        report = ScenarioReport(
            scenario_id=self.scenario_id,
            passed=passed,
            steps=outcomes,
            failed_step=failed_step.value if failed_step else None,
            failures=failures,
        )
        if self.wiring.report_path:
            path = Path(self.wiring.report_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps(report.model_dump(mode="json"), sort_keys=True, ensure_ascii=True, indent=2) + "\n",
                encoding="utf-8",
            )
        level = logging.INFO if passed else logging.ERROR
        self.logger.log(
            level,
            "HARNESS: scenario finished (scenario_id=%s, passed=%s, failed_step=%s, failures=%d)",
            self.scenario_id,
            passed,
            report.failed_step,
            len(failures),
        )
        return report

    # Transport helpers

    def _transact(
        self,
        context: ScenarioContext,
        contract: ContractHandle,
        msg: ContractMessage,
        sender: AccountId,
        *,
        gas: int | None = None,
        funds: str | None = None,
    ) -> TransactionResult:
        request = TransactionRequest(
            contract=contract.address,
            message=msg,
            sender=sender,
            gas=gas or self.wiring.gas.execute,
            funds=funds,
            code_hash=contract.code_hash,
        )
        tx_hash = self.ledger.submit(request)
        return self._confirm(context, tx_hash, f"waiting for {msg.wire_key} from {sender.value}", decode=True)

    def _confirm(self, context: ScenarioContext, tx_hash: str, wait_message: str, *, decode: bool) -> TransactionResult:
        if context.outcome is not None:
            context.outcome.tx_hashes.append(tx_hash)
        result = self.poller.await_confirmation(tx_hash, wait_message)
        context.last_height = max(context.last_height, result.height)
        self.decoder.require_success(result)
        if not decode:
            return result
        result, decoded, _ = self.decoder.decode_compute(result)
        self.decoder.require_success(result, decoded)
        return result

    def _query(self, contract: ContractHandle, msg: ContractMessage) -> Any:
        payload = self.ledger.query(contract.address, msg)
        return parse_contract_response(payload, msg.wire_key)

    def _instantiate(self, context: ScenarioContext, name: str, code_key: str, init_msg: InitMessage) -> ContractHandle:
        code_id = context.code_ids[code_key]
        label = contract_label(code_id, encode_message(init_msg))
        deployer = self.wiring.deployer.value
        tx_hash = self.ledger.instantiate(code_id, init_msg, label, deployer, self.wiring.gas.instantiate)
        result = self._confirm(context, tx_hash, f"waiting for {name} instantiation", decode=True)
        address = contract_address_from(result)
        handle = ContractHandle(
            address=address,
            code_hash=self.ledger.contract_hash(address),
            code_id=code_id,
            label=label,
        )
        context.contracts[name] = handle
        self.logger.info(
            "HARNESS: contract instantiated (name=%s, address=%s, code_id=%d, label=%s)",
            name,
            address,
            code_id,
            label,
        )
        return handle

    def _prng_seed(self, suffix: str) -> str:
        return base64.b64encode(f"{self.scenario.prng_seed}|{suffix}".encode("utf-8")).decode("ascii")

    # Steps

    def _upload_code(self, context: ScenarioContext) -> None:
        for account_id in self.wiring.accounts:
            context.accounts[account_id] = Account(account_id=account_id, address=self.ledger.key_show(account_id.value))
        if self.wiring.deployer not in context.accounts:
            raise RuntimeError(f"DEPLOYER_NOT_CONFIGURED:{self.wiring.deployer.value}")

        uploads = (("token", self.wiring.token_code_path), ("lockup", self.wiring.lockup_code_path))
        for code_key, path in uploads:
            tx_hash = self.ledger.store_code(path, self.wiring.deployer.value, self.wiring.gas.store)
            result = self._confirm(context, tx_hash, f"waiting for {code_key} code upload", decode=False)
            context.code_ids[code_key] = code_id_from(result)
            self.logger.info("HARNESS: code uploaded (code=%s, code_id=%d)", code_key, context.code_ids[code_key])

    def _init_sscrt(self, context: ScenarioContext) -> None:
        init_msg = Snip20InitMsg(
            name="secret-secret",
            symbol="SSCRT",
            decimals=6,
            admin=context.account(self.wiring.deployer).address,
            prng_seed=self._prng_seed(SSCRT),
        )
        self._instantiate(context, SSCRT, "token", init_msg)

    def _init_seth(self, context: ScenarioContext) -> None:
        init_msg = Snip20InitMsg(
            name="secret-eth",
            symbol="SETH",
            decimals=18,
            admin=context.account(self.wiring.deployer).address,
            initial_balances=[
                InitialBalance(address=account.address, amount=self.scenario.seth_initial_balance)
                for account in context.accounts.values()
            ],
            prng_seed=self._prng_seed(SETH),
        )
        self._instantiate(context, SETH, "token", init_msg)

    def _init_lockup(self, context: ScenarioContext) -> None:
        init_msg = LockupInitMsg(
            reward_token=Snip20Ref(**context.contract(SSCRT).as_snip20_ref()),
            inc_token=Snip20Ref(**context.contract(SETH).as_snip20_ref()),
            deadline=str(context.last_height + self.scenario.deadline_offset_blocks),
            pool_claim_block=str(context.last_height + self.scenario.pool_claim_offset_blocks),
            viewing_key=self.scenario.lockup_viewing_key,
            prng_seed=self._prng_seed(LOCKUP),
        )
        self._instantiate(context, LOCKUP, "lockup", init_msg)

    def _deposit(self, context: ScenarioContext) -> None:
        step = ScenarioStepName.DEPOSIT.value
        amount = self.scenario.reward_pool_amount
        result = self._transact(
            context,
            context.contract(SSCRT),
            Deposit(padding=":::"),
            self.wiring.deployer,
            funds=coin(amount, self.wiring.denom),
        )
        context.assertions.assert_eq(result.output_data, status_output("deposit"), step=step, tx_hash=result.tx_hash)

    def _add_to_reward_pool(self, context: ScenarioContext) -> None:
        step = ScenarioStepName.ADD_TO_REWARD_POOL.value
        msg = Send(
            recipient=context.contract(LOCKUP).address,
            amount=self.scenario.reward_pool_amount,
            msg=AddToRewardPool(),
        )
        result = self._transact(context, context.contract(SSCRT), msg, self.wiring.deployer, gas=self.wiring.gas.send)
        context.assertions.assert_eq(result.output_data, status_output("send"), step=step, tx_hash=result.tx_hash)

    def _query_balance(self, context: ScenarioContext) -> None:
        step = ScenarioStepName.QUERY_BALANCE.value
        lockup = context.contract(LOCKUP)
        body = self._query(context.contract(SSCRT), Balance(address=lockup.address, key=self.scenario.lockup_viewing_key))
        context.assertions.assert_eq(
            body.get("amount"),
            self.scenario.reward_pool_amount,
            "lockup reward-token balance equals the deposited pool",
            step=step,
        )

    def _query_reward_pool(self, context: ScenarioContext) -> None:
        step = ScenarioStepName.QUERY_REWARD_POOL.value
        body = self._query(context.contract(LOCKUP), QueryRewardPoolBalance())
        context.assertions.assert_eq(
            body.get("balance"),
            self.scenario.reward_pool_amount,
            "reward pool balance equals the deposited pool",
            step=step,
        )

    def _lock(self, context: ScenarioContext, step: str, account_id: AccountId) -> None:
        msg = Send(
            recipient=context.contract(LOCKUP).address,
            amount=self.scenario.lock_amount,
            msg=LockTokens(),
        )
        result = self._transact(context, context.contract(SETH), msg, account_id, gas=self.wiring.gas.send)
        context.locked[account_id] = context.locked.get(account_id, 0) + int(self.scenario.lock_amount)
        context.assertions.assert_eq(
            result.output_data,
            status_output("send"),
            f"lock_tokens send from {account_id.value}",
            step=step,
            tx_hash=result.tx_hash,
        )

    def _lock_tokens(self, context: ScenarioContext) -> None:
        step = ScenarioStepName.LOCK_TOKENS.value
        for round_no in range(1, self.scenario.lock_rounds + 1):
            self.logger.info("HARNESS: lock round (round=%d/%d)", round_no, self.scenario.lock_rounds)
            for account_id in self.scenario.lock_accounts:
                self._lock(context, step, account_id)

    def _set_viewing_keys(self, context: ScenarioContext) -> None:
        step = ScenarioStepName.SET_VIEWING_KEY.value
        targets = (SSCRT, SETH, LOCKUP)
        for account in context.accounts.values():
            account.set_viewing_key(viewing_key_for(self.scenario.viewing_key, account.alias))
            for name in targets:
                result = self._transact(
                    context,
                    context.contract(name),
                    SetViewingKey(key=account.require_viewing_key()),
                    account.account_id,
                )
                context.assertions.assert_eq(
                    result.output_data,
                    status_output("set_viewing_key"),
                    f"set_viewing_key for {account.alias} on {name}",
                    step=step,
                    tx_hash=result.tx_hash,
                )

    def _lock_tokens_final(self, context: ScenarioContext) -> None:
        self._lock(context, ScenarioStepName.LOCK_TOKENS_FINAL.value, self.scenario.lock_accounts[0])

    def _query_rewards(self, context: ScenarioContext) -> None:
        step = ScenarioStepName.QUERY_REWARDS.value
        lockup = context.contract(LOCKUP)
        for account_id in self.scenario.lock_accounts:
            account = context.account(account_id)
            key = account.require_viewing_key()
            deposit = self._query(lockup, QueryDeposit(address=account.address, key=key))
            context.assertions.assert_eq(
                deposit.get("deposit"),
                str(context.locked.get(account_id, 0)),
                f"locked deposit for {account.alias}",
                step=step,
            )
            rewards = self._query(
                lockup,
                QueryRewards(address=account.address, key=key, height=str(context.last_height)),
            )
            context.assertions.assert_ne(
                rewards.get("rewards"),
                "0",
                f"rewards accrued for {account.alias}",
                step=step,
            )

    def _redeem(self, context: ScenarioContext) -> None:
        step = ScenarioStepName.REDEEM.value
        account = context.account(self.scenario.redeem_account)
        sscrt = context.contract(SSCRT)
        amount = self.scenario.redeem_amount
        self._transact(context, sscrt, Deposit(), account.account_id, funds=coin(amount, self.wiring.denom))
        result = self._transact(context, sscrt, Redeem(amount=amount), account.account_id)
        expected_amount = coin(amount, self.wiring.denom)
        transfer = find_event(result.events, "transfer", recipient=account.address, amount=expected_amount)
        if transfer is None:
            # Report the first transfer so both operands come from one event
            transfers = events_of_type(result.events, "transfer")
            transfer = transfers[0] if transfers else TxEvent(type="transfer")
        context.assertions.assert_eq(
            transfer.get("recipient"),
            account.address,
            "redeem transfer recipient",
            step=step,
            tx_hash=result.tx_hash,
        )
        context.assertions.assert_eq(
            transfer.get("amount"),
            expected_amount,
            "redeem transfer amount",
            step=step,
            tx_hash=result.tx_hash,
        )
        context.assertions.assert_eq(result.output_data, status_output("redeem"), step=step, tx_hash=result.tx_hash)

    def _allowance(self, context: ScenarioContext) -> None:
        step = ScenarioStepName.ALLOWANCE.value
        owner = context.account(self.wiring.deployer)
        spender = context.account(self.scenario.redeem_account)
        sscrt = context.contract(SSCRT)
        increase = self.scenario.allowance_increase
        remaining = str(int(increase) - int(self.scenario.allowance_decrease))

        result = self._transact(context, sscrt, IncreaseAllowance(spender=spender.address, amount=increase), owner.account_id)
        body = parse_handle_output(result.output_data, "increase_allowance", tx_hash=result.tx_hash)
        context.assertions.assert_eq(body.get("allowance"), increase, "increase_allowance output", step=step, tx_hash=result.tx_hash)
        self._assert_allowance(context, sscrt, owner, spender, increase, step)

        result = self._transact(
            context,
            sscrt,
            DecreaseAllowance(spender=spender.address, amount=self.scenario.allowance_decrease),
            owner.account_id,
        )
        body = parse_handle_output(result.output_data, "decrease_allowance", tx_hash=result.tx_hash)
        context.assertions.assert_eq(body.get("allowance"), remaining, "decrease_allowance output", step=step, tx_hash=result.tx_hash)
        self._assert_allowance(context, sscrt, owner, spender, remaining, step)

    def _assert_allowance(
        self,
        context: ScenarioContext,
        token: ContractHandle,
        owner: Account,
        spender: Account,
        expected: str,
        step: str,
    ) -> None:
        body = self._query(token, Allowance(owner=owner.address, spender=spender.address, key=owner.require_viewing_key()))
        context.assertions.assert_eq(
            body.get("allowance"),
            expected,
            f"allowance {owner.alias}->{spender.alias}",
            step=step,
        )
