from __future__ import annotations

import base64
import json

import pytest
from pydantic import ValidationError

from lockup_harness.scenario_runner.messages import (
    AddToRewardPool,
    Allowance,
    Deposit,
    LockTokens,
    LockupInitMsg,
    QueryRewardPoolBalance,
    QueryRewards,
    Redeem,
    Send,
    Snip20Ref,
    coin,
    decode_inner,
    encode_message,
    parse_message,
)


def test_messages_echo_their_wire_key() -> None:
    assert json.loads(encode_message(Redeem(amount="100"))) == {"redeem": {"amount": "100"}}
    assert json.loads(encode_message(Deposit(padding=":::"))) == {"deposit": {"padding": ":::"}}
    assert json.loads(encode_message(QueryRewardPoolBalance())) == {"query_reward_pool_balance": {}}
    assert json.loads(encode_message(Allowance(owner="o", spender="s", key="k"))) == {
        "allowance": {"owner": "o", "spender": "s", "key": "k"}
    }


def test_encoding_is_compact() -> None:
    assert encode_message(LockTokens()) == '{"lock_tokens":{}}'


def test_send_embeds_base64_inner_message() -> None:
    message = Send(recipient="secret1lockup", amount="500000000000", msg=AddToRewardPool())
    wire = json.loads(encode_message(message))["send"]
    assert wire["recipient"] == "secret1lockup"
    assert wire["amount"] == "500000000000"
    assert base64.b64decode(wire["msg"]) == b'{"add_to_reward_pool":{}}'
    assert decode_inner(wire["msg"]) == {"add_to_reward_pool": {}}


def test_send_without_inner_message_omits_msg() -> None:
    wire = json.loads(encode_message(Send(recipient="r", amount="1")))["send"]
    assert "msg" not in wire


def test_parse_message_rebuilds_nested_send() -> None:
    original = Send(recipient="secret1lockup", amount="7", msg=LockTokens())
    rebuilt = parse_message(json.loads(encode_message(original)))
    assert isinstance(rebuilt, Send)
    assert isinstance(rebuilt.msg, LockTokens)
    assert rebuilt.amount == "7"


def test_parse_message_rejects_unknown_key() -> None:
    with pytest.raises(ValueError, match="UNKNOWN_MESSAGE"):
        parse_message({"mint": {"amount": "1"}})
    with pytest.raises(ValueError):
        parse_message({"redeem": {}, "deposit": {}})


@pytest.mark.parametrize("amount", ["1.5", "-3", "", "10uscrt"])
def test_amounts_must_be_decimal_integers(amount: str) -> None:
    with pytest.raises(ValidationError):
        Redeem(amount=amount)


def test_query_rewards_carries_height_as_string() -> None:
    wire = json.loads(encode_message(QueryRewards(address="a", key="k", height="123")))
    assert wire == {"query_rewards": {"address": "a", "key": "k", "height": "123"}}


def test_lockup_init_message_shape() -> None:
    init = LockupInitMsg(
        reward_token=Snip20Ref(address="secret1sscrt", contract_hash="aa"),
        inc_token=Snip20Ref(address="secret1seth", contract_hash="bb"),
        deadline="1100",
        pool_claim_block="2100",
        viewing_key="vk",
        prng_seed="c2VlZA==",
    )
    wire = json.loads(encode_message(init))
    assert wire["reward_token"] == {"address": "secret1sscrt", "contract_hash": "aa"}
    assert wire["inc_token"]["address"] == "secret1seth"
    assert wire["deadline"] == "1100"


def test_coin_concatenates_without_separator() -> None:
    assert coin("100", "uscrt") == "100uscrt"
