"""Persist completed runs to a lightweight JSON-lines log."""

import json
import logging
from datetime import (
    datetime,
    timezone,
)
from pathlib import Path
from typing import (
    Any,
    Dict,
    Iterator,
)

from dashpilot.config import settings
from dashpilot.core.schema import AgentTurn

logger = logging.getLogger(__name__)

LOG_FILENAME = "dashpilot_runs.jsonl"


def log_path() -> Path:
    return Path(settings.DATA_DIR) / LOG_FILENAME


def init_memory_store() -> None:
    """
    Initialize the run log by ensuring the log file exists.
    This is called at application startup to prepare the environment.
    """
    if not settings.RUN_LOG_ENABLED:
        return
    path = log_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        path.touch()  # Create an empty file if it doesn't exist


def save_turn(turn: AgentTurn) -> None:
    """
    Append a completed run to the flat-file audit trail (JSON lines format).

    Disabled when ``RUN_LOG_ENABLED`` is false.  Write failures are logged, never raised.
    """
    if not settings.RUN_LOG_ENABLED:
        return

    record = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "turn": turn.model_dump(mode="json", by_alias=True),
    }
    path = log_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")
    except OSError as exc:
        logger.warning("Could not write run log %s: %s", path, exc)


def iter_turns() -> Iterator[Dict[str, Any]]:
    """Yield logged records, oldest first."""
    path = log_path()
    if not path.exists():
        return
    with path.open(encoding="utf-8") as f:
        for line in f:
            if line.strip():
                yield json.loads(line)
