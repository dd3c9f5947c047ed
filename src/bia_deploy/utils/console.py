"""Console logging with severity tags.

Operators read the workflow output as colored ``[INFO]``/``[SUCCESS]``/
``[WARNING]``/``[ERROR]`` lines on stdout. Modules keep using
``logging.getLogger(__name__)``; success lines go through ``log_success``.
"""
import logging
import sys
from typing import Optional

import click

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")

LEVEL_COLORS = {
    "DEBUG": "white",
    "INFO": "blue",
    "SUCCESS": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red",
}


class SeverityTagFormatter(logging.Formatter):
    """Prefix each message with a colored severity tag."""

    def __init__(self, color: bool = True):
        super().__init__("%(message)s")
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        tag = f"[{record.levelname}]"
        if self.color:
            tag = click.style(tag, fg=LEVEL_COLORS.get(record.levelname, "white"), bold=True)
        return f"{tag} {message}"


class ClickEchoHandler(logging.Handler):
    """Write formatted records to stdout through click.echo."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), file=sys.stdout)
        except Exception:
            self.handleError(record)


def log_success(logger: logging.Logger, message: str, *args) -> None:
    """Log at the SUCCESS level."""
    logger.log(SUCCESS, message, *args)


def setup_logging(level: str = "INFO", color: Optional[bool] = None) -> None:
    """Install the severity-tag handler on the package logger."""
    package_logger = logging.getLogger("bia_deploy")
    for handler in list(package_logger.handlers):
        if isinstance(handler, ClickEchoHandler):
            package_logger.removeHandler(handler)

    handler = ClickEchoHandler()
    if color is None:
        color = sys.stdout.isatty()
    handler.setFormatter(SeverityTagFormatter(color=color))

    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    package_logger.propagate = False

    # boto noise stays out of operator output unless debugging
    if level != "DEBUG":
        logging.getLogger("botocore").setLevel(logging.WARNING)
        logging.getLogger("boto3").setLevel(logging.WARNING)
        logging.getLogger("urllib3").setLevel(logging.WARNING)
