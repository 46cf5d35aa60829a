import os
import sys
from pathlib import Path
from typing import Iterable

from loguru import logger

REDACTED = "***"


def _redactor(secrets: list[str]):
    def patch(record) -> None:
        message = record["message"]
        for secret in secrets:
            if secret in message:
                message = message.replace(secret, REDACTED)
        record["message"] = message

    return patch


def setup_logger(
    *,
    json_logs: bool = False,
    level: str = "INFO",
    log_dir: str | Path = "logs",
    secrets: Iterable[str] = (),
) -> None:
    """Configure loguru for the top-up bot.

    Console level controlled by LOG_LEVEL env (default: INFO).
    File always captures DEBUG so a stranded-funds cycle can be reconstructed.
    Any string in secrets is masked in every sink.
    """
    console_level = os.getenv("LOG_LEVEL", level).upper()
    logger.remove()
    logger.configure(patcher=_redactor([s for s in secrets if s]))

    if json_logs:
        logger.add(sys.stdout, serialize=True, level=console_level)
    else:
        logger.add(
            sys.stdout,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan> - "
                "<level>{message}</level>"
            ),
            level=console_level,
            colorize=True,
        )

    logger.add(
        str(Path(log_dir) / "topup_{time:YYYY-MM-DD}.log"),
        rotation="50 MB",
        retention="30 days",
        compression="gz",
        level="DEBUG",
        serialize=json_logs,
    )
