"""Non-raising equality checks that accumulate assertion records."""

from __future__ import annotations

import difflib
import logging
import shlex
from typing import Any

from .models import AssertionRecord


def render_operand(value: Any) -> str:
    if isinstance(value, str):
        return shlex.quote(value)
    return repr(value)


def _diff(actual: Any, expected: Any) -> str:
    expected_lines = (expected if isinstance(expected, str) else repr(expected)).splitlines() or [""]
    actual_lines = (actual if isinstance(actual, str) else repr(actual)).splitlines() or [""]
    diff = difflib.unified_diff(expected_lines, actual_lines, fromfile="expected", tofile="actual", lineterm="")
    text = "\n".join(diff)
    if text:
        return text
    # Same lines but different types or trailing whitespace
    return f"expected {render_operand(expected)} ({type(expected).__name__}), actual {render_operand(actual)} ({type(actual).__name__})"


class AssertionEngine:
    def __init__(self) -> None:
        self.records: list[AssertionRecord] = []
        self.logger = logging.getLogger(__name__)

    def assert_eq(
        self,
        actual: Any,
        expected: Any,
        description: str | None = None,
        *,
        step: str,
        tx_hash: str | None = None,
    ) -> AssertionRecord:
        passed = type(actual) is type(expected) and actual == expected
        message = None
        diff = None
        if not passed:
            message = description or f"assert_eq failed: {render_operand(actual)} != {render_operand(expected)}"
            diff = _diff(actual, expected)
        return self._record(step, description or "assert_eq", expected, actual, passed, message, diff, tx_hash)

    def assert_ne(
        self,
        actual: Any,
        expected: Any,
        description: str | None = None,
        *,
        step: str,
        tx_hash: str | None = None,
    ) -> AssertionRecord:
        equal = type(actual) is type(expected) and actual == expected
        message = None
        if equal:
            message = description or f"assert_ne failed: {render_operand(actual)} == {render_operand(expected)}"
        return self._record(step, description or "assert_ne", expected, actual, not equal, message, None, tx_hash)

    def failures(self, step: str | None = None) -> list[AssertionRecord]:
        return [record for record in self.records if not record.passed and (step is None or record.step == step)]

    def for_step(self, step: str) -> list[AssertionRecord]:
        return [record for record in self.records if record.step == step]

    @property
    def passed(self) -> bool:
        return not self.failures()

    def _record(
        self,
        step: str,
        description: str,
        expected: Any,
        actual: Any,
        passed: bool,
        message: str | None,
        diff: str | None,
        tx_hash: str | None,
    ) -> AssertionRecord:
        record = AssertionRecord(
            step=step,
            description=description,
            expected=expected,
            actual=actual,
            passed=passed,
            message=message,
            diff=diff,
            tx_hash=tx_hash,
        )
        self.records.append(record)
        if passed:
            self.logger.debug("HARNESS: assertion passed (step=%s, check=%s)", step, description)
        else:
            self.logger.error(
                "HARNESS: assertion failed (step=%s, check=%s, tx_hash=%s): %s",
                step,
                description,
                tx_hash,
                message,
            )
        return record
