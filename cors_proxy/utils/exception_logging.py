"""
Exception logging that copes with exception groups and broken exceptions.

anyio task groups wrap transport errors raised inside streaming responses in
exception groups; these helpers log and format each sub-exception, and never
raise themselves.
"""

import logging
from typing import List


def _safe_str(obj) -> str:
    try:
        return str(obj)
    except Exception:
        try:
            return repr(obj)
        except Exception:
            return f"<{type(obj).__name__} (string conversion failed)>"


def _sub_exceptions(exception) -> List[BaseException]:
    try:
        return list(getattr(exception, "exceptions", None) or [])
    except Exception:
        return []


def log_exception_with_details(
    logger: logging.Logger,
    prefix: str,
    exception: BaseException,
    level: int = logging.ERROR,
) -> None:
    """
    Log an exception, one record per sub-exception for exception groups.

    Args:
        logger: The logger instance to use
        prefix: Prefix for the log message (e.g., "[Proxy]")
        exception: The exception to log
        level: The logging level to use (default: ERROR)
    """
    try:
        subs = _sub_exceptions(exception)
        if subs:
            logger.log(
                level,
                f"{prefix} Exception with {len(subs)} sub-exceptions: {_safe_str(exception)}",
            )
            for i, sub in enumerate(subs, start=1):
                logger.log(
                    level,
                    f"{prefix} Sub-exception {i}: {type(sub).__name__}: {_safe_str(sub)}",
                    exc_info=sub,
                )
        else:
            logger.log(
                level,
                f"{prefix} Exception: {_safe_str(exception)}",
                exc_info=exception if exception is not None else False,
            )
    except Exception:
        try:
            logger.log(level, f"{prefix} Exception (logging failed)")
        except Exception:
            pass


def format_exception_message(exception: BaseException) -> str:
    """Single-line description of an exception, including sub-exceptions."""
    if exception is None:
        return "None"
    subs = _sub_exceptions(exception)
    if not subs:
        return _safe_str(exception)
    joined = "; ".join(f"{type(s).__name__}: {_safe_str(s)}" for s in subs)
    return f"{_safe_str(exception)} (Sub-exceptions: {joined})"
