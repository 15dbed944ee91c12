"""
Catalog statistics and ETL run history endpoint
"""
from datetime import datetime
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, and_
from api.dependencies import get_db
from schemas.api import StatsResponse, ETLRunSummary
from models import Card, CardFace, CardPrice, CardSet, CatalogItem, Ruling, Symbol
from models.etl_run import ETLRun, ETLStatus
import uuid
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Statistics"])

COUNTED_TABLES = (Card, CardFace, CardPrice, Ruling, CardSet, Symbol, CatalogItem)


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    limit: int = Query(10, ge=1, le=100, description="Number of recent runs to return"),
    db: AsyncSession = Depends(get_db)
):
    """
    Get catalog statistics and ETL run history.

    Returns:
    - Row count of every catalog table
    - Item count per flat catalog
    - Recent ETL run history with last success/failure and average duration
    """
    request_id = f"req_{uuid.uuid4().hex[:12]}"

    logger.info(f"[{request_id}] GET /stats")

    # ========== Table counts ==========

    table_counts = {}
    for model in COUNTED_TABLES:
        result = await db.execute(select(func.count()).select_from(model))
        table_counts[model.__tablename__] = result.scalar() or 0

    catalog_result = await db.execute(
        select(CatalogItem.catalog, func.count())
        .group_by(CatalogItem.catalog)
        .order_by(CatalogItem.catalog)
    )
    catalog_counts = {catalog: count for catalog, count in catalog_result.all()}

    # ========== Run history ==========

    total_runs_result = await db.execute(select(func.count()).select_from(ETLRun))
    total_runs = total_runs_result.scalar() or 0

    last_success_result = await db.execute(
        select(func.max(ETLRun.completed_at)).where(ETLRun.status == ETLStatus.SUCCESS)
    )
    last_success = last_success_result.scalar()

    last_failure_result = await db.execute(
        select(func.max(ETLRun.completed_at)).where(ETLRun.status == ETLStatus.FAILED)
    )
    last_failure = last_failure_result.scalar()

    avg_duration_result = await db.execute(
        select(func.avg(ETLRun.duration_seconds)).where(
            and_(
                ETLRun.status == ETLStatus.SUCCESS,
                ETLRun.duration_seconds.isnot(None)
            )
        )
    )
    avg_duration = avg_duration_result.scalar()

    recent_runs_result = await db.execute(
        select(ETLRun)
        .order_by(ETLRun.started_at.desc())
        .limit(limit)
    )
    recent_runs = [
        ETLRunSummary(
            run_id=str(run.run_id),
            dataset_kind=run.dataset_kind,
            status=run.status,
            started_at=run.started_at,
            completed_at=run.completed_at,
            duration_seconds=run.duration_seconds,
            records_loaded=run.records_loaded or 0,
            batches_committed=run.batches_committed or 0,
            phase_before=run.phase_before,
            phase_after=run.phase_after,
            error_message=run.error_message
        )
        for run in recent_runs_result.scalars().all()
    ]

    logger.info(
        f"[{request_id}] Stats: {table_counts.get('mtg_cards', 0)} cards, {total_runs} runs"
    )

    return StatsResponse(
        timestamp=datetime.utcnow(),
        table_counts=table_counts,
        catalog_counts=catalog_counts,
        total_etl_runs=total_runs,
        recent_runs=recent_runs,
        last_etl_success=last_success,
        last_etl_failure=last_failure,
        avg_etl_duration_seconds=round(avg_duration, 2) if avg_duration else None,
        request_id=request_id
    )
