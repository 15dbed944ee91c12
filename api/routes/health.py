"""
Health check endpoint with database and ingestion checkpoint status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, text
from api.dependencies import get_db
from core.config import settings
from core.exceptions import CheckpointError
from ingestion.checkpoint import CheckpointStore, checkpoint_path_for
from schemas.api import HealthCheckResponse, CheckpointStatus
from models.etl_run import ETLRun
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


def read_checkpoint_status(kind: str) -> CheckpointStatus:
    """Checkpoint side-file state of one configured kind"""
    path = checkpoint_path_for(settings.CHECKPOINT_DIR, kind)
    status = CheckpointStatus(dataset_kind=kind, checkpoint_path=str(path), exists=path.exists())
    if not status.exists:
        return status

    try:
        checkpoint = CheckpointStore(path, kind=kind).load()
    except CheckpointError as e:
        logger.error(f"Unreadable checkpoint {path}: {e.message}")
        status.error = e.message
        return status

    status.phase = checkpoint.phase.value
    status.downloads = checkpoint.downloads
    status.streams = checkpoint.streams
    status.cycle_started_at = checkpoint.cycle_started_at
    status.updated_at = checkpoint.updated_at
    return status


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Checkpoint phase and per-stream progress for every configured kind
    - Status of the latest ETL run per kind
    """

    # Check database connectivity
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    checkpoints = [read_checkpoint_status(kind) for kind in settings.bulk_kinds]

    if db_connected:
        for checkpoint in checkpoints:
            try:
                result = await db.execute(
                    select(ETLRun.status)
                    .where(ETLRun.dataset_kind == checkpoint.dataset_kind)
                    .order_by(ETLRun.started_at.desc())
                    .limit(1)
                )
                checkpoint.last_run_status = result.scalar_one_or_none()
            except Exception as e:
                logger.error(f"Failed to fetch ETL runs for {checkpoint.dataset_kind}: {str(e)}")

    return HealthCheckResponse(
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        checkpoints=checkpoints
    )
