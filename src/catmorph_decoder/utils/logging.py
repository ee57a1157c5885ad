"""
Structured Logging
==================

Two-tier logging for the decoding sweep: a Rich console handler for
interactive use and an optional plain-text file handler for batch runs on
the cluster.

Design Principles:
    - Module-level singleton with explicit ``configure_logging()``
    - Pipe-delimited key=value messages (``unit | sub=03 roi=2 r=0.41``)
    - Simultaneous file + console output for auditability
    - MATLAB correspondence notes so each step can be traced back to
      ``build_model.m`` / ``get_taskbehavior.m``

Usage::

    from catmorph_decoder.utils.logging import get_logger

    logger = get_logger(__name__)
    logger.info("sweep | subject=3 condition=vowel roi=1")
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

_FILE_FORMAT = "[%(asctime)s] %(levelname)-7s %(name)s | %(message)s"

_console = Console(stderr=True)
_handlers: list[logging.Handler] = []
_configured = False


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[str | Path] = None,
    log_file: Optional[str] = None,
) -> Optional[Path]:
    """Configure the package logging handlers.

    Safe to call repeatedly: a second call replaces the handlers installed
    by the first one, so the CLI can reconfigure after the implicit
    defaults set up by :func:`get_logger`.

    Args:
        level:    Log level name (DEBUG, INFO, WARNING, ERROR).
        log_dir:  Directory for the plain-text log file.  Created if needed.
        log_file: Log filename.  Defaults to ``catmorph_<timestamp>.log``.

    Returns:
        Path of the log file, or None when logging to the console only.
    """
    global _configured

    root = logging.getLogger("catmorph_decoder")
    for handler in _handlers:
        root.removeHandler(handler)
        handler.close()
    _handlers.clear()

    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.propagate = False

    console_handler = RichHandler(
        console=_console,
        rich_tracebacks=True,
        show_path=False,
        markup=False,
    )
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(console_handler)
    _handlers.append(console_handler)

    log_path = None
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        if log_file is None:
            log_file = f"catmorph_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
        log_path = log_dir / log_file
        fh = logging.FileHandler(log_path, encoding="utf-8")
        fh.setFormatter(logging.Formatter(_FILE_FORMAT))
        root.addHandler(fh)
        _handlers.append(fh)

    _configured = True
    return log_path


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the ``catmorph_decoder`` hierarchy.

    Auto-configures console logging at INFO on first use.
    """
    if not _configured:
        configure_logging()
    if not name.startswith("catmorph_decoder"):
        name = f"catmorph_decoder.{name}"
    return logging.getLogger(name)


def log_matlab_note(
    logger: logging.Logger,
    script_name: str,
    detail: str,
) -> None:
    """Log which step of the original MATLAB analysis is being reproduced."""
    logger.debug("[MATLAB≈%s] %s", script_name, detail)
