"""Logging helpers for the lockup harness."""

from __future__ import annotations

import logging
from pathlib import Path

from .security import redact_message


class RedactingFilter(logging.Filter):
    """Masks viewing keys and entropy embedded in encoded contract messages."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        message = record.getMessage()
        redacted = redact_message(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class NarrativeFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if record.levelno >= logging.WARNING:
            return True
        if getattr(record, "narrative", False):
            return True
        if record.name.startswith("lockup_harness.scenario_runner.runner"):
            return True
        return False


def configure_logging(level: int = logging.INFO, log_paths: list[str] | None = None) -> None:
    """Configure default logging if no handlers are present."""
    root = logging.getLogger()
    if root.handlers:
        return
    handlers: list[logging.Handler] = []
    handlers.append(logging.StreamHandler())

    narrative_path = log_paths[0] if log_paths else None
    if narrative_path:
        path = Path(narrative_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        narrative_handler = logging.FileHandler(path, encoding="utf-8")
        narrative_handler.addFilter(NarrativeFilter())
        handlers.append(narrative_handler)

    for extra_path in (log_paths or [])[1:]:
        path = Path(extra_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))

    redacting = RedactingFilter()
    for handler in handlers:
        handler.addFilter(redacting)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )
