"""
Checkpoint store: a small durable JSON side-file, independent of the database.

The file is rewritten after every committed batch, so saves stay cheap: the
document is a few hundred bytes, written to a temporary sibling, flushed,
fsynced and atomically renamed over the previous version. A crash therefore
leaves either the old or the new checkpoint on disk, never a torn one.

No locking is done; one writer per checkpoint file is assumed.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Union

from pydantic import ValidationError

from core.exceptions import CheckpointError
from schemas.checkpoint import Checkpoint

logger = logging.getLogger(__name__)


def checkpoint_path_for(checkpoint_dir: Union[str, Path], kind: str) -> Path:
    return Path(checkpoint_dir) / f".{kind}.checkpoint.json"


class CheckpointStore:
    """Load/save the checkpoint of one pipeline."""

    def __init__(self, path: Union[str, Path], kind: str = None):
        self.path = Path(path)
        self.kind = kind

    def load(self) -> Checkpoint:
        """
        Read the checkpoint, or return a fresh default if none exists yet.

        Raises:
            CheckpointError: If the file exists but cannot be parsed
        """
        if not self.path.exists():
            logger.info(f"No checkpoint at {self.path}; starting fresh")
            return self._fresh()

        try:
            checkpoint = Checkpoint.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as e:
            raise CheckpointError(
                "Failed to read checkpoint",
                context={"path": str(self.path), "operation": "load"},
                original_exception=e
            )

        progress = {k: v.processed_count for k, v in checkpoint.streams.items()}
        logger.info(
            f"Loaded checkpoint {self.path} (phase={checkpoint.phase.value}, streams={progress})"
        )
        return checkpoint

    def save(self, checkpoint: Checkpoint) -> None:
        """Atomically overwrite the side-file with ``checkpoint``."""
        checkpoint.updated_at = datetime.utcnow()
        tmp_path = self.path.with_name(self.path.name + ".tmp")

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(checkpoint.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise CheckpointError(
                "Failed to write checkpoint",
                context={"path": str(self.path), "operation": "save"},
                original_exception=e
            )

    def reset(self) -> Checkpoint:
        """Discard recorded progress and persist a fresh checkpoint."""
        checkpoint = self._fresh()
        self.save(checkpoint)
        logger.warning(f"Checkpoint {self.path} reset")
        return checkpoint

    def _fresh(self) -> Checkpoint:
        return Checkpoint(kind=self.kind, cycle_started_at=datetime.utcnow())
