"""Configure loguru and render pre-deploy results for logs."""

from __future__ import annotations

import json
import sys
from typing import Any, Optional

from loguru import logger

from .models import TaskResult


def configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
            "{message}"
        ),
    )


def summarize_result(result: Optional[TaskResult]) -> dict[str, Any]:
    """Render a compact, JSON-friendly summary of a pre-deploy result.

    Args:
        result: Result of `try_run_pre_deploy_task` (or None).

    Returns:
        A dictionary with the raw fields plus an `outcome` label.
    """
    if result is None:
        return {"outcome": None}

    d: dict[str, Any] = result.to_dict()
    if not result.task_name:
        d["outcome"] = "not_configured"
    elif result.failed_to_find_task:
        d["outcome"] = "not_found"
    elif result.exit_code is None:
        d["outcome"] = "skipped"
    elif result.exit_code == 0:
        d["outcome"] = "succeeded"
    else:
        d["outcome"] = "failed"
    return d


def pretty(obj: Any, *, indent: int = 2) -> str:
    """Serialize an object as JSON for readable logs.

    Args:
        obj: Object to serialize.
        indent: Indentation level for JSON output.

    Returns:
        A JSON string when possible; otherwise `str(obj)`.
    """
    try:
        return json.dumps(obj, indent=indent, default=str)
    except (TypeError, ValueError):
        return str(obj)
