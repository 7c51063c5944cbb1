"""Logging setup for the CLI.

Library modules only call ``logging.getLogger(__name__)``; the host decides
where records go. The CLI calls ``setup_logging()`` once per command.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "%(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"


def setup_logging(level: int | str = logging.WARNING, debug: bool = False) -> None:
    """Configure the root logger with a rich handler on stderr.

    Args:
        level: Minimum log level when debug is off.
        debug: If True, forces DEBUG level and shows source paths.
    """
    if debug:
        level = logging.DEBUG
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=debug,
        rich_tracebacks=debug,
        markup=False,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(handler)

    # httpx logs every request at INFO; keep it quiet unless debugging.
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)
