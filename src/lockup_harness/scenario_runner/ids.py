"""Deterministic identifier helpers for the harness."""

from __future__ import annotations

import hashlib


def _hex_from_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def contract_label(code_id: int, init_msg: str) -> str:
    """Instantiate label derived from the code id and the encoded init message."""
    return _hex_from_text(f"{code_id} {init_msg}")


def scenario_id_for(wiring_id: str, scenario_id: str, seed: str) -> str:
    return f"lockup_{_hex_from_text(f'scenario|{wiring_id}|{scenario_id}|{seed}')[:16]}"


def viewing_key_for(base_key: str, alias: str) -> str:
    return _hex_from_text(f"vk|{base_key}|{alias}")[:32]
