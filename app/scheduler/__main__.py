"""Standalone enforcement scheduler: ``python -m app.scheduler``."""

import argparse
import logging
import signal

from app.logging import configure_logging
from app.scheduler import build_runner

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run enforcement workflows on timers")
    parser.add_argument(
        "--run-on-start",
        action="store_true",
        help="run every enabled workflow once at startup",
    )
    args = parser.parse_args(argv)

    configure_logging()
    runner = build_runner(run_on_start=args.run_on_start)

    def handle_signal(signum, _frame):
        logger.info("Received signal %s, shutting down", signum)
        runner.shutdown(timeout=0)

    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, handle_signal)

    runner.start()
    runner.wait()
    # Let in-flight runs finish their current customer or transaction
    runner.shutdown()


if __name__ == "__main__":
    main()
