"""
Utility helpers for filesystem paths used by reports and logging.

Centralizes logic for resolving the report output directory and log file
locations so the CLI and library callers stay in sync.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent
_DEFAULT_OUTPUT_DIR_NAME = "reports"


def get_project_root() -> Path:
    """Return the repository root directory."""
    return _PROJECT_ROOT


def _coerce_path(path_value: str | Path) -> Path:
    """Anchor relative paths at the project root; absolute paths pass through."""
    path = Path(path_value).expanduser()
    return path if path.is_absolute() else get_project_root() / path


def get_output_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """
    Resolve the report output directory without creating it.

    Args:
        config: Optional configuration dictionary.

    Returns:
        Path to the output directory (may not exist yet).
    """
    reports_config = (config or {}).get("reports", {})
    output_dir_raw = reports_config.get("output_dir") or _DEFAULT_OUTPUT_DIR_NAME
    return _coerce_path(output_dir_raw)


def ensure_output_dir(
    config: Optional[Dict[str, Any]] = None,
    override: Optional[str | Path] = None
) -> Path:
    """
    Ensure the report output directory exists and return its Path.

    Args:
        config: Optional configuration dictionary.
        override: Explicit directory that wins over the configured one.

    Returns:
        Absolute Path to the ensured directory.
    """
    output_dir = _coerce_path(override) if override else get_output_dir(config)
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Failed to create output directory '%s': %s", output_dir, exc)
        raise
    return output_dir


def resolve_log_path(log_path: str) -> Path:
    """
    Resolve the configured log file and create its directory.

    Raises:
        OSError: If the directory cannot be created
    """
    log_file = _coerce_path(log_path)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    return log_file
