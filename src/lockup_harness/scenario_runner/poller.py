"""Confirmation polling against an eventually-consistent ledger."""

from __future__ import annotations

import logging
import time
from typing import Callable

from .decoder import transaction_from_raw
from .ledger import LedgerClient
from .models import TransactionResult, TxStatus


class ConfirmationTimeout(TimeoutError):
    def __init__(self, tx_hash: str, context: str, waited_seconds: float, attempts: int) -> None:
        super().__init__(
            f"CONFIRMATION_TIMEOUT: {context} (tx_hash={tx_hash}, waited={waited_seconds:.1f}s, attempts={attempts})"
        )
        self.tx_hash = tx_hash
        self.context = context
        self.waited_seconds = waited_seconds
        self.attempts = attempts


class ConfirmationPoller:
    def __init__(
        self,
        ledger: LedgerClient,
        *,
        interval_seconds: float = 1.0,
        timeout_seconds: float = 180.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval_seconds <= 0 or timeout_seconds <= 0:
            raise ValueError("interval_seconds and timeout_seconds must be positive")
        self.ledger = ledger
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds
        self.sleep = sleep
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def await_confirmation(
        self,
        tx_hash: str,
        context: str,
        *,
        timeout_seconds: float | None = None,
    ) -> TransactionResult:
        budget = self.timeout_seconds if timeout_seconds is None else timeout_seconds
        started = self.clock()
        deadline = started + budget
        attempts = 0
        while True:
            attempts += 1
            raw = self.ledger.query_tx(tx_hash)
            if raw is not None:
                result = transaction_from_raw(tx_hash, raw)
                if result.status == TxStatus.CONFIRMED:
                    break
            now = self.clock()
            self.logger.info("HARNESS: %s (attempt=%d, tx_hash=%s)", context, attempts, tx_hash)
            if now + self.interval_seconds > deadline:
                raise ConfirmationTimeout(tx_hash, context, now - started, attempts)
            self.sleep(self.interval_seconds)

        if result.out_of_gas:
            self.logger.warning(
                "HARNESS: transaction ran out of gas (tx_hash=%s, raw_log=%s)",
                tx_hash,
                result.raw_log,
            )
        else:
            self.logger.debug("HARNESS: transaction confirmed (tx_hash=%s, attempts=%d)", tx_hash, attempts)
        return result
