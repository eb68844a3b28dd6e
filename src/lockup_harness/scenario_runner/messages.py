"""Typed contract messages for the SNIP-20 tokens and the lockup contract.

Each message is a pydantic model keyed by its top-level wire key. Models are
only turned into JSON at the ledger adapter boundary via `encode_message`.
"""

from __future__ import annotations

import base64
import json
from typing import Annotated, Any, ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Amount = Annotated[str, Field(pattern=r"^[0-9]+$")]


def coin(amount: str, denom: str) -> str:
    return f"{amount}{denom}"


class ContractMessage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    wire_key: ClassVar[str] = ""

    def body(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def to_wire(self) -> dict[str, Any]:
        return {self.wire_key: self.body()}


# SNIP-20 handle messages


class Deposit(ContractMessage):
    wire_key: ClassVar[str] = "deposit"
    padding: Optional[str] = None


class Redeem(ContractMessage):
    wire_key: ClassVar[str] = "redeem"
    amount: Optional[Amount] = None
    padding: Optional[str] = None


class Send(ContractMessage):
    """Token-receiver send: the inner message is forwarded to `recipient`."""

    wire_key: ClassVar[str] = "send"
    recipient: str
    amount: Amount
    msg: Optional[ContractMessage] = None
    padding: Optional[str] = None

    def body(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"recipient": self.recipient, "amount": self.amount}
        if self.msg is not None:
            payload["msg"] = encode_inner(self.msg)
        if self.padding is not None:
            payload["padding"] = self.padding
        return payload


class IncreaseAllowance(ContractMessage):
    wire_key: ClassVar[str] = "increase_allowance"
    spender: str
    amount: Amount
    padding: Optional[str] = None


class DecreaseAllowance(ContractMessage):
    wire_key: ClassVar[str] = "decrease_allowance"
    spender: str
    amount: Amount
    padding: Optional[str] = None


class SetViewingKey(ContractMessage):
    wire_key: ClassVar[str] = "set_viewing_key"
    key: str
    padding: Optional[str] = None


class CreateViewingKey(ContractMessage):
    wire_key: ClassVar[str] = "create_viewing_key"
    entropy: str
    padding: Optional[str] = None


# Lockup handle messages


class LockTokens(ContractMessage):
    wire_key: ClassVar[str] = "lock_tokens"


class AddToRewardPool(ContractMessage):
    wire_key: ClassVar[str] = "add_to_reward_pool"


class EmergencyRedeem(ContractMessage):
    wire_key: ClassVar[str] = "emergency_redeem"


class UpdateDeadline(ContractMessage):
    wire_key: ClassVar[str] = "update_deadline"
    height: int = Field(..., ge=0)


class UpdateRewardToken(ContractMessage):
    wire_key: ClassVar[str] = "update_reward_token"
    new_token: dict[str, str]


class UpdateIncentivizedToken(ContractMessage):
    wire_key: ClassVar[str] = "update_incentivized_token"
    new_token: dict[str, str]


class ClaimRewardPool(ContractMessage):
    wire_key: ClassVar[str] = "claim_reward_pool"
    recipient: Optional[str] = None


class StopContract(ContractMessage):
    wire_key: ClassVar[str] = "stop_contract"


class ResumeContract(ContractMessage):
    wire_key: ClassVar[str] = "resume_contract"


class ChangeAdmin(ContractMessage):
    wire_key: ClassVar[str] = "change_admin"
    address: str


# Queries


class Balance(ContractMessage):
    wire_key: ClassVar[str] = "balance"
    address: str
    key: str


class Allowance(ContractMessage):
    wire_key: ClassVar[str] = "allowance"
    owner: str
    spender: str
    key: str


class TokenInfo(ContractMessage):
    wire_key: ClassVar[str] = "token_info"


class QueryRewards(ContractMessage):
    wire_key: ClassVar[str] = "query_rewards"
    address: str
    key: str
    height: Amount


class QueryDeposit(ContractMessage):
    wire_key: ClassVar[str] = "query_deposit"
    address: str
    key: str


class QueryRewardPoolBalance(ContractMessage):
    wire_key: ClassVar[str] = "query_reward_pool_balance"


class QueryUnlockClaimHeight(ContractMessage):
    wire_key: ClassVar[str] = "query_unlock_claim_height"


class QueryContractStatus(ContractMessage):
    wire_key: ClassVar[str] = "query_contract_status"


class QueryEndHeight(ContractMessage):
    wire_key: ClassVar[str] = "query_end_height"


class QueryLastRewardBlock(ContractMessage):
    wire_key: ClassVar[str] = "query_last_reward_block"


class QueryRewardToken(ContractMessage):
    wire_key: ClassVar[str] = "query_reward_token"


class QueryIncentivizedToken(ContractMessage):
    wire_key: ClassVar[str] = "query_incentivized_token"


# Init messages are not keyed on the wire.


class InitMessage(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class InitialBalance(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    amount: Amount


class Snip20Config(BaseModel):
    model_config = ConfigDict(frozen=True)

    public_total_supply: bool = True
    enable_deposit: bool = True
    enable_redeem: bool = True
    enable_mint: bool = False
    enable_burn: bool = False


class Snip20InitMsg(InitMessage):
    name: str
    symbol: str
    decimals: int = Field(..., ge=0, le=18)
    admin: Optional[str] = None
    initial_balances: list[InitialBalance] = Field(default_factory=list)
    prng_seed: str
    config: Snip20Config = Field(default_factory=Snip20Config)


class Snip20Ref(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: str
    contract_hash: str


class LockupInitMsg(InitMessage):
    reward_token: Snip20Ref
    inc_token: Snip20Ref
    deadline: Amount
    pool_claim_block: Amount
    viewing_key: str
    prng_seed: str


HandleMessage = Union[
    Deposit,
    Redeem,
    Send,
    IncreaseAllowance,
    DecreaseAllowance,
    SetViewingKey,
    CreateViewingKey,
    LockTokens,
    AddToRewardPool,
    EmergencyRedeem,
    UpdateDeadline,
    UpdateRewardToken,
    UpdateIncentivizedToken,
    ClaimRewardPool,
    StopContract,
    ResumeContract,
    ChangeAdmin,
]

QueryMessage = Union[
    Balance,
    Allowance,
    TokenInfo,
    QueryRewards,
    QueryDeposit,
    QueryRewardPoolBalance,
    QueryUnlockClaimHeight,
    QueryContractStatus,
    QueryEndHeight,
    QueryLastRewardBlock,
    QueryRewardToken,
    QueryIncentivizedToken,
]

_REGISTRY: dict[str, type[ContractMessage]] = {
    model.wire_key: model
    for model in (*HandleMessage.__args__, *QueryMessage.__args__)  # type: ignore[attr-defined]
}


def encode_message(message: ContractMessage | InitMessage) -> str:
    return json.dumps(message.to_wire(), sort_keys=True, ensure_ascii=True, separators=(",", ":"))


def encode_inner(message: ContractMessage) -> str:
    return base64.b64encode(encode_message(message).encode("utf-8")).decode("ascii")


def decode_inner(encoded: str) -> dict[str, Any]:
    return json.loads(base64.b64decode(encoded.encode("ascii"), validate=True).decode("utf-8"))


def parse_message(payload: dict[str, Any]) -> ContractMessage:
    """Rebuild a typed message from its wire form (inverse of `to_wire`)."""
    if not isinstance(payload, dict) or len(payload) != 1:
        raise ValueError("message must have exactly one top-level key")
    (key, body), = payload.items()
    model = _REGISTRY.get(key)
    if model is None:
        raise ValueError(f"UNKNOWN_MESSAGE:{key}")
    body = dict(body or {})
    if model is Send and "msg" in body:
        body["msg"] = parse_message(decode_inner(body["msg"]))
    return model(**body)
