"""Decode confirmed transactions and contract responses.

Handle outputs from the enclave are space-padded to a 256 byte block. The
harness never strips that padding: expected literals are padded with
`pad_response` and compared byte for byte.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from .ledger import LedgerClient, LedgerCommandError
from .models import DecodedResult, TransactionResult, TxAttribute, TxEvent, TxStatus

RESPONSE_BLOCK_SIZE = 256
_ERROR_KEYS = ("generic_err", "query_error", "viewing_key_error", "unauthorized")


class DecodeError(RuntimeError):
    """Raised when a node response cannot be decrypted or parsed."""

    def __init__(self, message: str, *, tx_hash: str | None = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash


class BusinessFailure(RuntimeError):
    """A confirmed transaction that failed on-chain (out of gas, no logs, contract error)."""

    def __init__(
        self,
        reason_code: str,
        message: str,
        *,
        tx_hash: str | None = None,
        raw_log: str | None = None,
    ) -> None:
        super().__init__(f"{reason_code}: {message}")
        self.reason_code = reason_code
        self.tx_hash = tx_hash
        self.raw_log = raw_log


class ContractError(BusinessFailure):
    def __init__(self, message: str, *, tx_hash: str | None = None) -> None:
        super().__init__("CONTRACT_ERROR", message, tx_hash=tx_hash)
        self.contract_message = message


def pad_response(text: str, block_size: int = RESPONSE_BLOCK_SIZE) -> str:
    size = len(text.encode("utf-8"))
    remainder = size % block_size
    if size and remainder == 0:
        return text
    return text + " " * (block_size - remainder)


def transaction_from_raw(tx_hash: str, raw: dict[str, Any]) -> TransactionResult:
    """Build a result from `query tx` output; a tx without a block height is still PENDING."""
    logs = raw.get("logs")
    events: list[TxEvent] = []
    for entry in logs or []:
        events.extend(_events_from(entry.get("events") or []))
    try:
        height = int(raw.get("height") or 0)
        code = int(raw.get("code") or 0)
    except (TypeError, ValueError) as exc:
        raise DecodeError("TX_PAYLOAD_INVALID", tx_hash=tx_hash) from exc
    return TransactionResult(
        tx_hash=str(raw.get("txhash") or tx_hash),
        status=TxStatus.CONFIRMED if height > 0 else TxStatus.PENDING,
        height=height,
        raw_log=str(raw.get("raw_log") or ""),
        code=code,
        events=tuple(events),
        has_logs=bool(logs),
    )


def _events_from(items: Iterable[dict[str, Any]]) -> list[TxEvent]:
    events = []
    for item in items:
        attributes = tuple(
            TxAttribute(key=str(attr.get("key")), value=str(attr.get("value")))
            for attr in item.get("attributes") or []
        )
        events.append(TxEvent(type=str(item.get("type")), attributes=attributes))
    return events


def events_of_type(events: Iterable[TxEvent], event_type: str) -> list[TxEvent]:
    return [event for event in events if event.type == event_type]


def find_attribute(events: Iterable[TxEvent], event_type: str, key: str) -> str | None:
    for event in events_of_type(events, event_type):
        value = event.get(key)
        if value is not None:
            return value
    return None


def find_event(events: Iterable[TxEvent], event_type: str, **attributes: str) -> TxEvent | None:
    """First event of `event_type` whose attributes all match on that same event."""
    for event in events_of_type(events, event_type):
        if all(event.get(key) == value for key, value in attributes.items()):
            return event
    return None


def code_id_from(result: TransactionResult) -> int:
    value = find_attribute(result.events, "message", "code_id")
    if value is None:
        raise BusinessFailure("NO_CODE_ID", "store transaction emitted no code_id", tx_hash=result.tx_hash, raw_log=result.raw_log)
    try:
        return int(value)
    except ValueError as exc:
        raise DecodeError(f"CODE_ID_INVALID:{value}", tx_hash=result.tx_hash) from exc


def contract_address_from(result: TransactionResult) -> str:
    value = find_attribute(result.events, "message", "contract_address")
    if value is None:
        raise BusinessFailure(
            "NO_CONTRACT_ADDRESS",
            "instantiate transaction emitted no contract_address",
            tx_hash=result.tx_hash,
            raw_log=result.raw_log,
        )
    return value


def parse_contract_response(payload: dict[str, Any], expected_key: str) -> Any:
    """Return the body under `expected_key`, raising on contract error payloads."""
    for key in _ERROR_KEYS:
        if key in payload:
            body = payload.get(key) or {}
            raise ContractError(str(body.get("msg") if isinstance(body, dict) else body))
    if expected_key not in payload:
        raise DecodeError(f"RESPONSE_KEY_MISMATCH:{expected_key}:{sorted(payload)}")
    body = payload[expected_key]
    if not isinstance(body, dict):
        raise DecodeError(f"RESPONSE_BODY_INVALID:{expected_key}")
    if body.get("status") not in (None, "success"):
        raise ContractError(f"{expected_key} status {body.get('status')}")
    return body


def parse_handle_output(output_data: str | None, expected_key: str, *, tx_hash: str | None = None) -> Any:
    if output_data is None:
        raise DecodeError("HANDLE_OUTPUT_MISSING", tx_hash=tx_hash)
    try:
        payload = json.loads(output_data)
    except json.JSONDecodeError as exc:
        raise DecodeError("HANDLE_OUTPUT_INVALID", tx_hash=tx_hash) from exc
    if not isinstance(payload, dict):
        raise DecodeError("HANDLE_OUTPUT_INVALID", tx_hash=tx_hash)
    try:
        return parse_contract_response(payload, expected_key)
    except ContractError as exc:
        raise ContractError(exc.contract_message, tx_hash=tx_hash) from exc


class ResultDecoder:
    def __init__(self, ledger: LedgerClient) -> None:
        self.ledger = ledger
        self.logger = logging.getLogger(__name__)

    def query_compute_tx(self, tx_hash: str) -> DecodedResult:
        try:
            payload = self.ledger.query_compute_tx(tx_hash)
        except LedgerCommandError as exc:
            raise DecodeError(f"COMPUTE_TX_UNREADABLE:{exc}", tx_hash=tx_hash) from exc
        output_log = payload.get("output_log")
        if output_log is not None and not isinstance(output_log, list):
            raise DecodeError("COMPUTE_TX_LOG_INVALID", tx_hash=tx_hash)
        output_error = payload.get("output_error") or None
        return DecodedResult(
            tx_hash=tx_hash,
            output_data=payload.get("output_data_as_string"),
            output_log=output_log,
            output_error=output_error,
            raw=payload,
        )

    def check_tx(self, decoded: DecodedResult, result: TransactionResult | None = None) -> bool:
        if result is not None and result.out_of_gas:
            return False
        if decoded.output_error:
            return False
        return decoded.has_logs

    def decode_compute(self, result: TransactionResult) -> tuple[TransactionResult, DecodedResult, bool]:
        decoded = self.query_compute_tx(result.tx_hash)
        success = self.check_tx(decoded, result)
        if not success:
            self.logger.warning(
                "HARNESS: compute tx failed (tx_hash=%s, out_of_gas=%s, error=%s, raw_log=%s)",
                result.tx_hash,
                result.out_of_gas,
                decoded.output_error,
                result.raw_log,
            )
        return result.with_output(decoded.output_data), decoded, success

    def require_success(self, result: TransactionResult, decoded: DecodedResult | None = None) -> None:
        if result.out_of_gas:
            raise BusinessFailure("OUT_OF_GAS", result.raw_log, tx_hash=result.tx_hash, raw_log=result.raw_log)
        if result.code != 0:
            raise BusinessFailure(f"TX_FAILED:{result.code}", result.raw_log, tx_hash=result.tx_hash, raw_log=result.raw_log)
        if decoded is not None and decoded.output_error:
            error = decoded.output_error
            generic = error.get("generic_err") if isinstance(error, dict) else None
            message = generic.get("msg") if isinstance(generic, dict) else json.dumps(error, sort_keys=True)
            raise ContractError(str(message), tx_hash=result.tx_hash)
        has_logs = decoded.has_logs if decoded is not None else result.has_logs
        if not has_logs:
            raise BusinessFailure("NO_LOGS", "transaction confirmed without logs", tx_hash=result.tx_hash, raw_log=result.raw_log)
