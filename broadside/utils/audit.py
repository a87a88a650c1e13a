import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Maintain per-game filename base so all writes go to the same timestamped file
_GAME_FILE_BASE: Dict[str, str] = {}


def _ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _log_dir() -> str:
    override = os.getenv("BROADSIDE_LOG_DIR")
    if override:
        return os.path.abspath(override)
    # Resolve logs dir relative to this file: ../../logs/games
    return os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "logs", "games"))


def _file_base_for(log_id: str) -> str:
    """Return a stable '<timestamp>_<log_id>' base for this process."""
    if log_id in _GAME_FILE_BASE:
        return _GAME_FILE_BASE[log_id]
    ts = datetime.now().strftime("%Y%m%d-%H%M%S")
    base = f"{ts}_{log_id}"
    _GAME_FILE_BASE[log_id] = base
    return base


def game_write(log_id: Optional[str], record: Dict[str, Any]) -> None:
    """Append a structured JSON line to the per-game event log.

    The file is stored under logs/games/<timestamp>_<log_id>.log relative to repo root.
    Does nothing when log_id is None.
    """
    if not log_id:
        return
    record = dict(record)
    record.setdefault("ts", datetime.now(timezone.utc).isoformat())
    record.setdefault("log_id", log_id)
    try:
        base_dir = _log_dir()
        _ensure_dir(base_dir)
        log_path = os.path.join(base_dir, f"{_file_base_for(log_id)}.log")
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
    except OSError:
        # Never raise from event logging; it's best-effort.
        pass
