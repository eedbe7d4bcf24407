"""
dashpilot entry point.

Modes:

* ``api``  - serve the HTTP API (remote split, sessions, health).
* ``cli``  - start the API in a background thread and drive it from a terminal shell whose
  dashboard tools run locally.
* ``chat`` - run the agent loop in-process; no HTTP involved.
"""

import argparse
import logging
import os
import sys
import threading
from pathlib import Path
from typing import (
    Callable,
    Dict,
)

from dashpilot.api.app import run_api
from dashpilot.config import settings

logger = logging.getLogger(__name__)

QUIET_LOGGERS = ("httpx", "openai", "anthropic")


def _init_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _check_data_dir() -> None:
    """The run log lives in ``DATA_DIR``; refuse to start if it cannot be written."""
    data_dir = Path(settings.DATA_DIR)
    data_dir.mkdir(parents=True, exist_ok=True)
    if not os.access(data_dir, os.W_OK):
        logger.error("Data directory is not writable: %s", data_dir)
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the dashpilot dashboard agent")
    parser.add_argument(
        "--mode",
        choices=["api", "cli", "chat"],
        type=str.lower,
        default="api",
        help="Serve the REST API, run the remote CLI, or chat in-process (default: api)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    parser.add_argument(
        "--port", type=int, default=settings.API_PORT, help="API port (default: %(default)s)"
    )
    parser.add_argument(
        "--provider",
        choices=["openai", "azure", "anthropic"],
        type=str.lower,
        default=settings.PROVIDER,
        help="LLM provider (default from env: %(default)s)",
    )
    parser.add_argument(
        "--no-run-log", action="store_true", help="Do not append completed runs to the run log"
    )
    return parser


# ---------------------------------------------------------------------------
# Modes
# ---------------------------------------------------------------------------
def _serve(port: int) -> None:
    run_api(host="0.0.0.0", port=port, reload=settings.DEBUG)


def _remote_cli(port: int) -> None:
    from dashpilot.client.cli import run_cli  # pylint: disable=import-outside-toplevel

    # Reload doesn't work in a thread; the CLI retries until the server accepts connections
    threading.Thread(
        target=run_api,
        kwargs={"host": "127.0.0.1", "port": port, "reload": False, "log_level": "warning"},
        daemon=True,
    ).start()
    settings.API_URL = f"http://localhost:{port}/api"
    run_cli()


def _local_chat(port: int) -> None:  # pylint: disable=unused-argument
    from dashpilot.client.cli import run_chat  # pylint: disable=import-outside-toplevel

    run_chat()


MODES: Dict[str, Callable[[int], None]] = {
    "api": _serve,
    "cli": _remote_cli,
    "chat": _local_chat,
}


def main(argv: list[str] | None = None) -> None:
    """Parse arguments, apply them to ``settings`` and launch the selected mode."""
    args = build_parser().parse_args(sys.argv[1:] if argv is None else argv)

    overrides = {
        "LOG_LEVEL": args.log_level,
        "PROVIDER": args.provider,
        "API_PORT": args.port,
    }
    if args.no_run_log:
        overrides["RUN_LOG_ENABLED"] = False
    for key, value in overrides.items():
        setattr(settings, key, value)
        # uvicorn's reloader re-imports settings in a fresh process that only sees the env
        os.environ[key] = str(value).lower() if isinstance(value, bool) else str(value)

    _init_logging(settings.LOG_LEVEL)
    _check_data_dir()

    logger.info("Starting dashpilot [%s mode, provider=%s]", args.mode, settings.PROVIDER)
    logger.debug("Settings: %s", settings.model_dump())
    MODES[args.mode](args.port)


if __name__ == "__main__":
    main()
