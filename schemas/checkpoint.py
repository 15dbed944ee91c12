"""
Pydantic schemas for the checkpoint side-file
"""

from pydantic import BaseModel, Field
from typing import Dict, Optional
from datetime import datetime
import enum


class Phase(str, enum.Enum):
    """Orchestrator phases, in execution order"""
    START = "start"
    DOWNLOADED = "downloaded"
    REFERENCE_LOADED = "reference-loaded"
    PRIMARY_LOADED = "primary-loaded"
    SECONDARY_LOADED = "secondary-loaded"
    DONE = "done"

    @property
    def rank(self) -> int:
        return _PHASE_ORDER.index(self)


_PHASE_ORDER = list(Phase)


class StreamProgress(BaseModel):
    """Progress of one streamed dataset within the current refresh cycle"""
    processed_count: int = Field(0, ge=0)
    batches_committed: int = Field(0, ge=0)
    last_record_id: Optional[str] = None
    completed: bool = False


class Checkpoint(BaseModel):
    """
    Durable progress marker of one pipeline.

    ``phase`` only moves forward within a cycle. Streamed datasets keep their
    own ``StreamProgress`` since they may be interrupted mid-pass; a restart
    skips exactly ``processed_count`` records of that dataset.
    """
    kind: Optional[str] = None
    phase: Phase = Phase.START
    downloads: Dict[str, bool] = Field(default_factory=dict)
    references: Dict[str, bool] = Field(default_factory=dict)
    streams: Dict[str, StreamProgress] = Field(default_factory=dict)
    cycle_started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def reached(self, phase: Phase) -> bool:
        """True once ``phase`` (or any later phase) has been recorded"""
        return self.phase.rank >= phase.rank

    def advance(self, phase: Phase) -> None:
        if phase.rank > self.phase.rank:
            self.phase = phase

    def stream(self, kind: str) -> StreamProgress:
        """Progress entry for ``kind``, created on first access"""
        if kind not in self.streams:
            self.streams[kind] = StreamProgress()
        return self.streams[kind]
