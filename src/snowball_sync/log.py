"""Logging setup for the command line tool."""

import logging
from typing import Any, MutableMapping, Optional, Tuple

from rich.console import Console
from rich.logging import RichHandler

QUIET_LOGGERS = ("boto3", "botocore", "s3transfer", "urllib3")


def setup_logging(verbose: bool = False, console: Optional[Console] = None) -> None:
    """Send snowball_sync logs to the console through Rich."""
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=True,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    root = logging.getLogger("snowball_sync")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.propagate = False

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class CorrelationAdapter(logging.LoggerAdapter):
    """Tag every message with the manifest's correlation id."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"{msg} correlationId={self.extra['correlation_id']}", kwargs


def bind_correlation(logger: logging.Logger, correlation_id: str) -> CorrelationAdapter:
    return CorrelationAdapter(logger, {"correlation_id": correlation_id})
