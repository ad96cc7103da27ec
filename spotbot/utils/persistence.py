"""JSON backups of engine state for crash recovery."""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from spotbot.models.snapshot import EngineSnapshot
from spotbot.utils.logger import logger


def load_state(path: str) -> Optional[Dict[str, Any]]:
    """Load a JSON state file, or None if it does not exist."""
    file_path = Path(path)
    if not file_path.exists():
        return None
    with file_path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def save_state(path: str, state: Dict[str, Any]) -> None:
    """Write a JSON state file through a temporary file so a crash never leaves half a backup."""
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = file_path.with_name(file_path.name + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as fh:
        json.dump(state, fh, ensure_ascii=False, indent=2, sort_keys=True)
    os.replace(tmp_path, file_path)


def save_snapshot(path: str, snapshot: EngineSnapshot) -> str:
    save_state(path, snapshot.model_dump(mode="json"))
    logger.info(f"Backup written to {path}: {len(snapshot.active_positions)} positions, "
                f"{len(snapshot.pending_signals)} pending signals")
    return str(path)


def load_snapshot(path: str) -> Optional[EngineSnapshot]:
    data = load_state(path)
    if data is None:
        logger.info(f"No backup found at {path}")
        return None
    return EngineSnapshot.model_validate(data)
