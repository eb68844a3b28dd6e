"""Configuration loader for harness wiring and scenario profiles."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, Field, field_validator

from .models import AccountId

_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
ProfileT = TypeVar("ProfileT", bound=BaseModel)


class GasProfile(BaseModel):
    store: int = 10_000_000
    instantiate: int = 1_000_000
    execute: int = 500_000
    send: int = 1_000_000


class WiringProfile(BaseModel):
    profile_id: str = "local"
    cli_command: list[str] = ["secretcli"]
    cli_timeout_seconds: int | None = 60
    chain_id: str | None = None
    keyring_backend: str | None = None
    poll_interval_seconds: float = Field(1.0, gt=0)
    confirmation_timeout_seconds: float = Field(180.0, gt=0)
    token_code_path: str
    lockup_code_path: str
    denom: str = "uscrt"
    deployer: AccountId = AccountId.A
    accounts: list[AccountId] = [AccountId.A, AccountId.B, AccountId.C, AccountId.D]
    gas: GasProfile = GasProfile()
    report_path: str | None = None
    log_path: str | None = None

    @field_validator("cli_command")
    @classmethod
    def _non_empty_command(cls, value: list[str]) -> list[str]:
        if not value or not all(token.strip() for token in value):
            raise ValueError("cli_command must be a non-empty list of tokens")
        return value


class ScenarioProfile(BaseModel):
    scenario_id: str = "lockup_rewards"
    revision: str = "v0"
    viewing_key: str = Field(..., min_length=1)
    lockup_viewing_key: str = Field(..., min_length=1)
    prng_seed: str = Field(..., min_length=1)
    reward_pool_amount: str = "500000000000"
    seth_initial_balance: str = "1000000000000000000000"
    lock_amount: str = "1000000000000000000"
    lock_rounds: int = Field(3, ge=1)
    lock_accounts: list[AccountId] = [AccountId.B, AccountId.C]
    deadline_offset_blocks: int = Field(1_000, ge=1)
    pool_claim_offset_blocks: int = Field(2_000, ge=1)
    redeem_account: AccountId = AccountId.B
    redeem_amount: str = "100"
    allowance_increase: str = "50"
    allowance_decrease: str = "20"

    @field_validator(
        "reward_pool_amount",
        "seth_initial_balance",
        "lock_amount",
        "redeem_amount",
        "allowance_increase",
        "allowance_decrease",
    )
    @classmethod
    def _decimal_amount(cls, value: str) -> str:
        if not value.isdigit():
            raise ValueError("Expected decimal integer string")
        return value

    def as_rev(self) -> dict[str, Any]:
        return {"scenario_id": self.scenario_id, "revision": self.revision}


def _expand_str(value: str, *, origin: Path | None = None) -> str:
    def replacer(match: re.Match[str]) -> str:
        token = match.group(1)
        if ":-" in token:
            key, default = token.split(":-", 1)
            actual = os.getenv(key, "")
            return actual if actual.strip() else default
        actual = os.getenv(token, "")
        if not actual.strip():
            raise ValueError(f"PROFILE_ENV_MISSING:{token}" + (f" ({origin})" if origin else ""))
        return actual

    return _VAR_PATTERN.sub(replacer, value)


def _expand_payload(value: Any, origin: Path | None = None) -> Any:
    if isinstance(value, str):
        return _expand_str(value, origin=origin)
    if isinstance(value, list):
        return [_expand_payload(item, origin) for item in value]
    if isinstance(value, dict):
        return {str(key): _expand_payload(item, origin) for key, item in value.items()}
    return value


def _load_profile(path: Path, model: type[ProfileT]) -> ProfileT:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"PROFILE_NOT_A_MAPPING:{path}")
    return model(**_expand_payload(data, path))


def load_wiring(path: Path) -> WiringProfile:
    return _load_profile(path, WiringProfile)


def load_scenario(path: Path) -> ScenarioProfile:
    return _load_profile(path, ScenarioProfile)
