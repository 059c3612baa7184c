"""loguru sinks for the bundler.

Every record carries ``action`` and ``asset`` extras. The engine binds them
with ``logger.contextualize`` for the duration of a sell/buy/dump, so lines
from the bundler, relay and RPC layers can be tied back to the operation
that produced them. Outside an operation they render as "-".
"""

import sys

from loguru import logger

from config.settings import Settings

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[action]}:{extra[asset]}</magenta> | "
    "<level>{message}</level>"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "action={extra[action]} asset={extra[asset]} | "
    "{name}:{function}:{line} - {message}"
)


def setup_logger(settings: Settings) -> None:
    """Console sink at ``settings.log_level``, DEBUG file sink from settings."""
    logger.remove()
    logger.configure(extra={"action": "-", "asset": "-"})

    if settings.json_logs:
        logger.add(sys.stdout, serialize=True, level=settings.log_level.upper())
    else:
        logger.add(
            sys.stdout,
            format=CONSOLE_FORMAT,
            level=settings.log_level.upper(),
            colorize=True,
        )

    # Failed bundles are replayed from this file, so it always keeps DEBUG
    logger.add(
        settings.log_file,
        format=FILE_FORMAT,
        rotation=settings.log_rotation,
        retention=settings.log_retention,
        compression=settings.log_compression,
        level="DEBUG",
        serialize=settings.json_logs,
    )
