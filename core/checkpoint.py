"""Durable checkpoint snapshots of a scan state."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Optional

from core.scan_state import CHECKPOINT_VERSION, ScanState
from utils.serialization import json_dumps

logger = logging.getLogger(__name__)


def _write_json_atomic(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    serialized = json_dumps(payload, indent=2) + "\n"
    fd, temp_path = tempfile.mkstemp(dir=str(path.parent), prefix=path.name, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(serialized)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, path)
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(temp_path)


class CheckpointStore:
    """Reads and writes the checkpoint file of one target.

    Write failures are logged and reported as ``False``; they never
    interrupt the scan that triggered them.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def save(self, state: ScanState) -> bool:
        state.stats.checkpoints_saved += 1
        state.stats.last_checkpoint = time.time()
        try:
            _write_json_atomic(self.path, state.to_dict())
        except (OSError, TypeError, ValueError) as exc:
            state.stats.checkpoints_saved -= 1
            logger.warning("Failed to save checkpoint %s: %s", self.path, exc)
            return False
        logger.debug(
            "Checkpoint saved to %s (%d variants)", self.path, len(state.seen_variants)
        )
        return True

    def read(self) -> Optional[Dict[str, Any]]:
        if not self.exists():
            return None
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable checkpoint %s: %s", self.path, exc)
            return None
        if not isinstance(payload, dict):
            logger.warning("Ignoring checkpoint %s: unexpected payload type", self.path)
            return None
        version = payload.get("version", CHECKPOINT_VERSION)
        if version != CHECKPOINT_VERSION:
            logger.warning("Ignoring checkpoint %s: unsupported version %s", self.path, version)
            return None
        return payload

    def load(self, state: ScanState) -> bool:
        """Restore ``state`` from disk. Returns ``True`` when a checkpoint was applied."""
        payload = self.read()
        if payload is None:
            return False
        if payload.get("domain") and payload["domain"] != state.domain:
            logger.warning(
                "Checkpoint %s belongs to %s, not %s; ignoring",
                self.path,
                payload["domain"],
                state.domain,
            )
            return False
        state.restore(payload)
        logger.info(
            "Resumed from checkpoint: %d variants, %d products already seen",
            len(state.seen_variants),
            len(state.seen_products),
        )
        return True

    def clear(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            self.path.unlink()
