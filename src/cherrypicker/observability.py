from __future__ import annotations

from contextlib import contextmanager
import json
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
import sys
import threading
from typing import Final, Iterator


_LOGGER_NAME: Final[str] = "cherrypicker"
_MAX_VALUE_LEN: Final[int] = 120
_FORMAT: Final[str] = (
    "%(asctime)s %(levelname)s %(name)s [%(threadName)s] repo=%(repo_full_name)s %(message)s"
)
_MODES: Final[frozenset[str]] = frozenset({"low", "high"})
# Shown in "low" mode; warnings and errors are always shown.
_OUTCOME_EVENTS: Final[frozenset[str]] = frozenset(
    {
        "event_received",
        "cherry_pick_requested",
        "cherry_pick_pr_created",
        "cherry_pick_conflict",
        "cherry_pick_failed",
        "conflict_issue_created",
        "config_reloaded",
    }
)
_REPO_CONTEXT = threading.local()


def configure_logging(verbose: str | None, *, state_dir: Path | None = None) -> None:
    """Route `cherrypicker.*` loggers to stderr and, given `state_dir`, a daily UTC log file.

    `verbose` is "low" (outcome events and warnings), "high" (every event) or None (silent).
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.propagate = False
    logger.handlers.clear()

    if verbose is None:
        logger.addHandler(logging.NullHandler())
        logger.setLevel(logging.CRITICAL + 1)
        return
    if verbose not in _MODES:
        raise ValueError(f"Unsupported verbose mode: {verbose!r}")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if state_dir is not None:
        logs_dir = state_dir / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            TimedRotatingFileHandler(
                logs_dir / "cherrypicker.log", when="midnight", utc=True, encoding="utf-8"
            )
        )
    for handler in handlers:
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler.addFilter(_RepoContextFilter())
        if verbose == "low":
            handler.addFilter(_is_outcome_or_warning)
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def log_event(
    logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: object
) -> None:
    logger.log(level, _build_event_message(event=event, fields=fields), extra={"event": event})


@contextmanager
def logging_repo_context(full_name: str) -> Iterator[None]:
    previous = getattr(_REPO_CONTEXT, "full_name", None)
    _REPO_CONTEXT.full_name = full_name
    try:
        yield
    finally:
        _REPO_CONTEXT.full_name = previous


def _build_event_message(*, event: str, fields: dict[str, object]) -> str:
    parts = [f"event={_normalize_field_value(event)}"]
    for key in sorted(fields.keys()):
        parts.append(f"{key}={_normalize_field_value(fields[key])}")
    return " ".join(parts)


def _normalize_field_value(value: object) -> str:
    if value is None:
        normalized = "null"
    elif isinstance(value, bool):
        normalized = "true" if value else "false"
    elif isinstance(value, int | float):
        normalized = str(value)
    elif isinstance(value, str):
        collapsed = " ".join(value.split())
        if len(collapsed) > _MAX_VALUE_LEN:
            collapsed = f"{collapsed[:_MAX_VALUE_LEN]}..."
        normalized = collapsed if collapsed else "<empty>"
    elif isinstance(value, tuple | list | frozenset):
        normalized = ",".join(str(item) for item in value) or "<empty>"
    else:
        normalized = f"<{type(value).__name__}>"

    if any(ch.isspace() for ch in normalized) or "=" in normalized:
        return json.dumps(normalized)
    return normalized


def _is_outcome_or_warning(record: logging.LogRecord) -> bool:
    if record.levelno >= logging.WARNING:
        return True
    return getattr(record, "event", None) in _OUTCOME_EVENTS


class _RepoContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.repo_full_name = getattr(_REPO_CONTEXT, "full_name", None) or "-"
        return True
