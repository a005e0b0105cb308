"""Run and check-config commands for the watchfolder CLI.

Commands:
- run: Poll the watch folder and upload finished files
- check-config: Validate the configuration and exit
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from pathlib import Path

import click

from watchfolder.client.api import GatewayClient
from watchfolder.client.cli.config import get_config_file, load_config
from watchfolder.client.detector import StabilityDetector
from watchfolder.client.state import SyncStateStore
from watchfolder.client.transfer import ChunkedTransferClient
from watchfolder.client.uploader import UploadOrchestrator
from watchfolder.client.worker import WatchFolderWorker
from watchfolder.core.config import ConfigurationError, WatchConfig

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    envvar="WATCHFOLDER_CONFIG",
    default=None,
    help="Config file (default: ~/.watchfolder/config.json).",
)


def setup_logging(verbose: bool = False, log_path: Path | None = None) -> None:
    """Configure the watchfolder logger for stdout and an optional file.

    Args:
        verbose: Log at DEBUG instead of INFO.
        log_path: Optional log file.
    """
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger("watchfolder")
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    root_logger.addHandler(stdout_handler)

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Per-request noise from the HTTP and S3 stacks
    for noisy in ("httpx", "httpcore", "botocore", "boto3", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def check_watch_folder(config: WatchConfig) -> None:
    """Make sure the watch folder exists.

    Raises:
        ConfigurationError: If it is missing or not a directory.
    """
    if not config.watch_folder.is_dir():
        raise ConfigurationError(f"watch_folder is not a directory: {config.watch_folder}")


def build_worker(config: WatchConfig) -> tuple[WatchFolderWorker, GatewayClient]:
    """Wire the store, detector, clients and orchestrator into a worker.

    Returns:
        The worker and the gateway client (to close on exit).
    """
    gateway = GatewayClient(config.server)
    orchestrator = UploadOrchestrator(
        gateway=gateway,
        transfers=ChunkedTransferClient(config.transfer),
        folder_id=config.folder_id,
        part_size=config.part_size,
        abort_on_part_failure=config.abort_on_part_failure,
    )
    detector = StabilityDetector(
        settle_seconds=config.settle_seconds,
        poll_interval=config.poll_interval,
        max_attempts=config.max_attempts,
    )
    worker = WatchFolderWorker(
        config=config,
        store=SyncStateStore(config.state_file),
        detector=detector,
        orchestrator=orchestrator,
    )
    return worker, gateway


def load_config_or_exit(config_path: Path | None) -> WatchConfig:
    """Load the configuration, or print the problem and exit with status 1."""
    try:
        config = load_config(config_path)
        check_watch_folder(config)
    except ConfigurationError as e:
        click.echo(f"Error: invalid configuration: {e}", err=True)
        sys.exit(1)
    return config


@click.command()
@config_option
@click.option("--once", is_flag=True, help="Run a single cycle and exit.")
@click.option("--verbose", "-v", is_flag=True, help="Log at debug level.")
def run(config_path: Path | None, once: bool, verbose: bool) -> None:
    """Watch the folder and upload files once they stop changing.

    Runs until interrupted. Use --once for a single scan/upload pass
    (exits with status 1 if any upload failed).
    """
    config = load_config_or_exit(config_path)
    setup_logging(verbose or config.verbose, config.log_file)
    logger = logging.getLogger("watchfolder.cli")

    worker, gateway = build_worker(config)
    try:
        if once:
            result = worker.run_cycle()
            for name in result.uploaded:
                click.echo(f"  ↑ {name}")
            for name in result.failed:
                click.echo(f"  ✗ {name}", err=True)
            if not result.ok:
                sys.exit(1)
            return

        stop_requested = threading.Event()

        def request_stop(signum: int, frame: object) -> None:
            logger.info("Received signal %d, stopping", signum)
            stop_requested.set()

        signal.signal(signal.SIGTERM, request_stop)
        worker.start()
        try:
            while worker.is_running and not stop_requested.wait(0.5):
                pass
        except KeyboardInterrupt:
            logger.info("Interrupted, stopping")
        worker.stop()
    finally:
        gateway.close()


@click.command("check-config")
@config_option
def check_config(config_path: Path | None) -> None:
    """Validate the configuration and print the effective settings."""
    config = load_config_or_exit(config_path)
    click.echo(f"Config:          {config_path or get_config_file()}")
    click.echo(f"Watch folder:    {config.watch_folder}")
    click.echo(f"State file:      {config.state_file}")
    click.echo(f"Gateway:         {config.server.server_url}")
    click.echo(f"Target folder:   {config.folder_id}")
    click.echo(f"Poll interval:   {config.poll_interval}s")
    click.echo(f"Settle time:     {config.settle_seconds}s")
    click.echo(f"Part size:       {config.part_size} bytes")
    click.echo(f"Max attempts:    {config.max_attempts}")
    click.echo(f"Extensions:      {', '.join(sorted(config.extensions))}")
    click.echo("Configuration OK")
