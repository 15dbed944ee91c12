from sqlalchemy import Column, BigInteger, Integer, String, Enum, DateTime, Float, Text, Index, Uuid
from datetime import datetime
import uuid
from models.base import Base, ETLStatus, JSONType


class ETLRun(Base):
    """
    Tracks metadata for each orchestrator execution.

    Purpose:
    - Audit trail of all ingestion runs
    - Resume diagnostics (phase before/after, batches committed)
    - Error tracking and debugging

    Rows are written best-effort: failing to record a run never fails the run.
    """
    __tablename__ = "etl_runs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    run_id = Column(Uuid, default=uuid.uuid4, unique=True, nullable=False, index=True)

    # Dataset identification
    dataset_kind = Column(String(100), nullable=False, index=True)

    # Run metadata
    status = Column(Enum(ETLStatus), default=ETLStatus.PENDING, nullable=False, index=True)

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    records_loaded = Column(Integer, default=0)
    batches_committed = Column(Integer, default=0)

    # Checkpoint info
    phase_before = Column(String(32), nullable=True)
    phase_after = Column(String(32), nullable=True)

    # Error tracking
    error_message = Column(Text, nullable=True)
    error_details = Column(JSONType, nullable=True)

    __table_args__ = (
        Index("idx_etl_run_kind_started", "dataset_kind", "started_at"),
    )
