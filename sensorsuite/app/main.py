import asyncio
import signal
import sys
from typing import Optional

from ..config.settings import SuiteSettings, parse_cli_args
from ..core.errors import ConfigurationError, LogIOError
from ..core.logging_config import configure_logging
from ..core.logging_utils import get_module_logger
from ..core.paths import LOGS_SUBDIR
from .suite import SensorSuiteApp

logger = get_module_logger("Main")


def _install_signal_handlers(app: SensorSuiteApp) -> None:
    loop = asyncio.get_running_loop()

    def signal_handler(sig: signal.Signals) -> None:
        app.request_shutdown(f"signal {sig.name}")

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler, sig)
        except NotImplementedError:
            pass  # Windows doesn't support add_signal_handler


async def main(argv: Optional[list[str]] = None) -> int:
    """
    Run one collection session.

    Shutdown Sequence:
    1. Duration elapses, or SIGINT/SIGTERM requests shutdown
    2. ShutdownCoordinator runs the cleanup callbacks exactly once
    3. Collection stops, the log is flushed and closed
    4. Audio/camera devices and the save workers are released
    """
    args = parse_cli_args(argv)
    try:
        settings = SuiteSettings.from_args(args)
    except ConfigurationError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2

    log_file = settings.log_file or (settings.output_dir / LOGS_SUBDIR / "sensorsuite.log")
    configure_logging(settings.log_level, force=True, console=True, log_file=log_file)

    logger.info("=" * 60)
    logger.info("SensorSuite starting")
    logger.info("=" * 60)
    logger.info("Output directory: %s", settings.output_dir)
    logger.info("Audio backend: %s | camera backend: %s", settings.audio_backend, settings.camera_backend)
    if settings.duration > 0:
        logger.info("Collecting for %.1fs", settings.duration)
    else:
        logger.info("Collecting until interrupted (Ctrl+C)")

    app = SensorSuiteApp(settings)
    _install_signal_handlers(app)
    try:
        await app.run()
    except (ConfigurationError, LogIOError) as exc:
        logger.error("Collection failed to start: %s", exc)
        return 1

    logger.info("SensorSuite stopped")
    return 0


def run(argv: Optional[list[str]] = None) -> int:
    try:
        return asyncio.run(main(argv))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130


if __name__ == "__main__":
    raise SystemExit(run())
