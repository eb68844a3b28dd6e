"""Ledger client adapter over the node CLI."""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Any, Iterable

from .messages import ContractMessage, InitMessage, encode_message
from .models import TransactionRequest
from .security import redact_argv

_NOT_FOUND_MARKERS = ("not found", "NotFound")


class LedgerCommandError(RuntimeError):
    """Raised when the node CLI fails or returns an unparseable payload."""

    def __init__(
        self,
        message: str,
        *,
        argv: list[str] | None = None,
        returncode: int | None = None,
        stderr: str | None = None,
    ) -> None:
        super().__init__(message)
        self.argv = argv or []
        self.returncode = returncode
        self.stderr = stderr


class LedgerClient:
    """Collaborator surface the scenario drives; implementations talk to a node."""

    def store_code(self, path: str, sender: str, gas: int) -> str:
        raise NotImplementedError

    def instantiate(self, code_id: int, init_msg: InitMessage, label: str, sender: str, gas: int) -> str:
        raise NotImplementedError

    def execute(
        self,
        contract: str,
        msg: ContractMessage,
        sender: str,
        gas: int,
        funds: str | None = None,
        code_hash: str | None = None,
    ) -> str:
        raise NotImplementedError

    def query_tx(self, tx_hash: str) -> dict[str, Any] | None:
        raise NotImplementedError

    def query_compute_tx(self, tx_hash: str) -> dict[str, Any]:
        raise NotImplementedError

    def query(self, contract: str, msg: ContractMessage) -> dict[str, Any]:
        raise NotImplementedError

    def key_show(self, alias: str) -> str:
        raise NotImplementedError

    def contract_hash(self, address: str) -> str:
        raise NotImplementedError

    def contract_address_by_label(self, label: str) -> str:
        raise NotImplementedError

    def generate_execute(self, contract: str, msg: ContractMessage, sender: str, gas: int, code_hash: str) -> dict[str, Any]:
        raise NotImplementedError

    def sign(self, tx_file: Path, sender: str) -> dict[str, Any]:
        raise NotImplementedError

    def broadcast(self, tx_file: Path) -> str:
        raise NotImplementedError

    def submit(self, request: TransactionRequest) -> str:
        return self.execute(
            request.contract,
            request.message,
            request.sender.value,
            request.gas,
            funds=request.funds,
            code_hash=request.code_hash,
        )


class SecretCliLedgerClient(LedgerClient):
    def __init__(
        self,
        command: list[str],
        *,
        timeout_seconds: int | None = None,
        chain_id: str | None = None,
        keyring_backend: str | None = None,
        enclave_key: str | None = None,
        secrets: Iterable[str] = (),
    ) -> None:
        self.command = list(command)
        self.timeout_seconds = timeout_seconds
        self.chain_id = chain_id
        self.keyring_backend = keyring_backend
        self.enclave_key = enclave_key
        self.secrets = [item for item in secrets if item]
        self.logger = logging.getLogger(__name__)

    def store_code(self, path: str, sender: str, gas: int) -> str:
        payload = self._run_json(["tx", "compute", "store", path, *self._tx_flags(sender, gas)])
        return self._tx_hash(payload)

    def instantiate(self, code_id: int, init_msg: InitMessage, label: str, sender: str, gas: int) -> str:
        args = [
            "tx",
            "compute",
            "instantiate",
            str(code_id),
            encode_message(init_msg),
            "--label",
            label,
            *self._tx_flags(sender, gas),
        ]
        return self._tx_hash(self._run_json(args))

    def execute(
        self,
        contract: str,
        msg: ContractMessage,
        sender: str,
        gas: int,
        funds: str | None = None,
        code_hash: str | None = None,
    ) -> str:
        args = ["tx", "compute", "execute", contract, encode_message(msg), *self._tx_flags(sender, gas)]
        if funds:
            args.extend(["--amount", funds])
        if code_hash:
            args.extend(["--code-hash", code_hash])
        return self._tx_hash(self._run_json(args))

    def query_tx(self, tx_hash: str) -> dict[str, Any] | None:
        result = self._run(["query", "tx", tx_hash], check=False)
        if result.returncode != 0:
            combined = f"{result.stdout or ''}{result.stderr or ''}"
            if any(marker in combined for marker in _NOT_FOUND_MARKERS):
                return None
            raise self._failure("query tx failed", result)
        return self._parse_json(result.stdout, ["query", "tx", tx_hash])

    def query_compute_tx(self, tx_hash: str) -> dict[str, Any]:
        return self._run_json(["query", "compute", "tx", tx_hash])

    def query(self, contract: str, msg: ContractMessage) -> dict[str, Any]:
        return self._run_json(["query", "compute", "query", contract, encode_message(msg)])

    def key_show(self, alias: str) -> str:
        args = ["keys", "show", "-a", alias]
        if self.keyring_backend:
            args.extend(["--keyring-backend", self.keyring_backend])
        return self._run_text(args)

    def contract_hash(self, address: str) -> str:
        value = self._run_text(["query", "compute", "contract-hash", address])
        return value[2:] if value.startswith("0x") else value

    def contract_address_by_label(self, label: str) -> str:
        value = self._run_text(["query", "compute", "label", label])
        return value.split()[-1] if value else value

    def generate_execute(self, contract: str, msg: ContractMessage, sender: str, gas: int, code_hash: str) -> dict[str, Any]:
        args = [
            "tx",
            "compute",
            "execute",
            contract,
            encode_message(msg),
            "--from",
            sender,
            "--gas",
            str(gas),
            "--generate-only",
            "--code-hash",
            code_hash,
        ]
        if self.enclave_key:
            args.extend(["--enclave-key", self.enclave_key])
        return self._run_json(args)

    def sign(self, tx_file: Path, sender: str) -> dict[str, Any]:
        args = ["tx", "sign", str(tx_file), "--from", sender]
        if self.chain_id:
            args.extend(["--chain-id", self.chain_id])
        if self.keyring_backend:
            args.extend(["--keyring-backend", self.keyring_backend])
        return self._run_json(args)

    def broadcast(self, tx_file: Path) -> str:
        return self._tx_hash(self._run_json(["tx", "broadcast", str(tx_file)]))

    def _tx_flags(self, sender: str, gas: int) -> list[str]:
        flags = ["--from", sender, "--gas", str(gas), "-y"]
        if self.chain_id:
            flags.extend(["--chain-id", self.chain_id])
        if self.keyring_backend:
            flags.extend(["--keyring-backend", self.keyring_backend])
        return flags

    def _run(self, args: list[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        argv = [*self.command, *args]
        shown = redact_argv(argv, self.secrets)
        self.logger.debug("HARNESS: cli invoke (argv=%s)", " ".join(shown))
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError as exc:
            raise LedgerCommandError("LEDGER_COMMAND_MISSING", argv=shown) from exc
        except subprocess.TimeoutExpired as exc:
            raise LedgerCommandError("LEDGER_COMMAND_TIMEOUT", argv=shown) from exc
        if check and result.returncode != 0:
            raise self._failure("LEDGER_EXIT_NONZERO", result)
        return result

    def _run_text(self, args: list[str]) -> str:
        return (self._run(args).stdout or "").strip()

    def _run_json(self, args: list[str]) -> dict[str, Any]:
        result = self._run(args)
        return self._parse_json(result.stdout, args)

    def _parse_json(self, text: str | None, args: list[str]) -> dict[str, Any]:
        try:
            payload = json.loads(text or "")
        except json.JSONDecodeError as exc:
            raise LedgerCommandError(
                "LEDGER_OUTPUT_INVALID",
                argv=redact_argv([*self.command, *args], self.secrets),
            ) from exc
        if not isinstance(payload, dict):
            raise LedgerCommandError("LEDGER_OUTPUT_INVALID", argv=redact_argv([*self.command, *args], self.secrets))
        return payload

    def _failure(self, message: str, result: subprocess.CompletedProcess[str]) -> LedgerCommandError:
        return LedgerCommandError(
            message,
            argv=redact_argv([str(token) for token in result.args], self.secrets),
            returncode=result.returncode,
            stderr=result.stderr,
        )

    @staticmethod
    def _tx_hash(payload: dict[str, Any]) -> str:
        tx_hash = payload.get("txhash")
        if not tx_hash:
            raise LedgerCommandError("LEDGER_TXHASH_MISSING")
        code = payload.get("code")
        if code not in (None, 0):
            raise LedgerCommandError(
                f"LEDGER_TX_REJECTED:{code}",
                stderr=str(payload.get("raw_log") or ""),
            )
        return str(tx_hash)
