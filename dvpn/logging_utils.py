"""日志工具。Logging setup for the dvpn client.

Every module logs through ``get_logger(__name__)`` so records land under the
``dvpn`` hierarchy. ``setup_logging`` is called once by the command line and
attaches a console and a file handler, both of which pass records through
:class:`RedactingFilter` so keys and tokens never reach disk.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from dvpn.redact import redact_text

ROOT_LOGGER_NAME = "dvpn"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class RedactingFilter(logging.Filter):
    """Mask key material and bearer tokens in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = redact_text(record.getMessage())
        record.args = None
        return True


def _attach(logger: logging.Logger, handler: logging.Handler) -> None:
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RedactingFilter())
    logger.addHandler(handler)


def setup_logging(
    log_dir: str | Path,
    log_name: str = ROOT_LOGGER_NAME,
    level: int = logging.INFO,
) -> logging.Logger:
    """配置控制台与文件日志。Configure console and file logging.

    Calling it again with the same directory adds no handlers; the file is
    ``<log_dir>/<log_name>.log``.
    """

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    log_file = directory / f"{log_name}.log"

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    files = {
        getattr(handler, "baseFilename", None)
        for handler in logger.handlers
        if isinstance(handler, logging.FileHandler)
    }
    has_console = any(type(handler) is logging.StreamHandler for handler in logger.handlers)

    if not has_console:
        _attach(logger, logging.StreamHandler())
    if os.path.abspath(log_file) not in files:
        _attach(logger, logging.FileHandler(log_file, encoding="utf-8"))

    logger.debug("Logging initialized", extra={"log_file": str(log_file)})
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return ``name`` as a child of the ``dvpn`` logger."""

    base = logging.getLogger(ROOT_LOGGER_NAME)
    if not name or name == ROOT_LOGGER_NAME:
        return base
    if name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return base.getChild(name)
