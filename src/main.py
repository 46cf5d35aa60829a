"""Entry point for the ARIO balance top-up bot."""

import asyncio
import signal
import sys

from loguru import logger

from config.settings import load_settings
from src.context import AppContext
from src.errors import ConfigurationError
from src.scheduler import run_schedule
from src.utils.logger import setup_logger


async def main() -> int:
    setup_logger(level="INFO")
    logger.info("Starting ARIO balance top-up bot...")

    try:
        settings = load_settings()
    except ConfigurationError:
        logger.error("Invalid configuration, exiting")
        return 1
    setup_logger(
        json_logs=settings.json_logs,
        level=settings.log_level,
        log_dir=settings.log_dir,
        secrets=(settings.base_private_key,),
    )

    if settings.dry_run:
        logger.warning("DRY RUN mode: no transactions will be submitted")

    try:
        ctx = AppContext.build(settings)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load wallets: {e}")
        return 1

    logger.info(f"AO wallet: {ctx.ao.address}")
    logger.info(f"Target wallet: {settings.target_wallet_address}")
    logger.info(f"Venue: {settings.swap_venue}, schedule: {settings.cron_schedule}")

    # Immediate exit on SIGINT/SIGTERM; an interrupted cycle just stops
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _signal_handler)

    schedule_task = asyncio.create_task(
        run_schedule(ctx.orchestrator.run_cycle, settings.cron_schedule)
    )

    done, pending = await asyncio.wait(
        [schedule_task, asyncio.create_task(shutdown_event.wait())],
        return_when=asyncio.FIRST_COMPLETED,
    )

    for task in pending:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    exit_code = 0
    if schedule_task in done and schedule_task.exception() is not None:
        logger.exception(f"Scheduler crashed: {schedule_task.exception()}")
        exit_code = 1

    await ctx.close()
    logger.info("Shutdown complete")
    return exit_code


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
