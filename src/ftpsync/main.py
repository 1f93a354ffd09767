"""Main application entry point."""

import asyncio
import signal
from typing import Optional

import click
from dotenv import load_dotenv

from . import __version__
from .config.loader import ConfigLoader, ConfigurationError, load_config_from_env
from .config.schema import PurgeMode
from .config.settings import get_settings
from .core.connector import FileSyncConnector
from .core.errors import SyncEngineError
from .database import FingerprintStore
from .status import LoggingObserver
from .transfer import FTPSession, TransferError
from .utils.logging import setup_logging, get_logger


LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def setup_signal_handlers(connector: FileSyncConnector):
    """Set up signal handlers for graceful shutdown."""
    logger = get_logger("signals")

    def signal_handler(signum, frame):
        logger.info("Received signal", signal=signum)
        connector.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


async def main(
    config_path: Optional[str] = None,
    purge: Optional[str] = None,
    force_check: bool = False,
    log_level: Optional[str] = None
) -> int:
    """Run one sync and return the process exit code."""
    settings = get_settings()

    setup_logging(log_level=log_level)
    logger = get_logger("main")

    loader = ConfigLoader()
    try:
        config = loader.load_from_file(config_path) if config_path else load_config_from_env()
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
        return 2

    if log_level is None and config.log_level:
        setup_logging(log_level=config.log_level)
    loader.validate_config(config)

    if force_check:
        config.force_remote_check = True

    logger.info("Starting FTP sync", version=settings.version, host=settings.ftp.host, roots=config.roots)

    store = FingerprintStore(settings.store.url)
    session = FTPSession.from_settings(settings.ftp)
    try:
        connector = FileSyncConnector(config, session, store, observer=LoggingObserver(), settings=settings)
    except SyncEngineError as e:
        logger.error("Cannot start sync", error=str(e))
        return 1

    setup_signal_handlers(connector)
    try:
        result = await connector.run(PurgeMode(purge) if purge else None)
    except (SyncEngineError, TransferError, OSError) as e:
        logger.error("Sync failed", error=str(e), error_type=type(e).__name__)
        return 1
    finally:
        connector.close()

    logger.info(
        "FTP sync finished",
        state=result.state.value,
        changed_files=result.changed_files,
        uploaded=result.uploaded_size,
        file_errors=len(result.file_errors)
    )
    return 130 if result.stopped else 0


@click.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Path to a YAML or JSON sync configuration",
)
@click.option(
    "--purge",
    type=click.Choice([mode.value for mode in PurgeMode]),
    default=None,
    help="Purge strategy to run after the sync",
)
@click.option("--force-check", is_flag=True, help="Verify remote modify times before uploading")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Logging level (overrides the configuration)",
)
@click.version_option(version=__version__, prog_name="ftpsync")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Optional[str],
    purge: Optional[str],
    force_check: bool,
    log_level: Optional[str],
) -> None:
    """Upload local directories to an FTP server."""
    load_dotenv()
    try:
        code = asyncio.run(main(config_path, purge, force_check, log_level))
    except KeyboardInterrupt:
        click.echo("\nShutdown requested by user", err=True)
        code = 130
    ctx.exit(code)


if __name__ == "__main__":
    cli()
