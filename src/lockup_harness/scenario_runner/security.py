"""Redaction helpers for viewing keys and signing material in logs."""

from __future__ import annotations

import re
from typing import Iterable

_MASK = "***"
_KEY_FIELD = re.compile(r'("(?:key|viewing_key|entropy)"\s*:\s*")([^"]*)(")')


def redact_message(value: str) -> str:
    # Masks viewing keys inside encoded JSON messages
    return _KEY_FIELD.sub(rf"\1{_MASK}\3", value)


def redact_argv(argv: Iterable[str], secrets: Iterable[str] = ()) -> list[str]:
    hidden = {item for item in secrets if item}
    redacted: list[str] = []
    for token in argv:
        token = redact_message(token)
        for secret in hidden:
            token = token.replace(secret, _MASK)
        redacted.append(token)
    return redacted
