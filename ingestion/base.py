"""
Dataset definitions and ETL run tracking shared by the orchestrator
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
from datetime import datetime
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from core.exceptions import ETLException
from ingestion.aggregate import DistinctValueCollector
from models.etl_run import ETLRun, ETLStatus
import logging
import uuid

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


def default_record_id(record: Record) -> Any:
    return record.get("id")


@dataclass(frozen=True)
class StreamedDataset:
    """
    A bulk export consumed record by record.

    Attributes:
        kind: Discovery type (``default_cards``, ``rulings``, ...)
        write_batch: Writer run inside each batch transaction
        batch_size: Records per transaction
        record_id: Value stored as ``last_record_id`` in the checkpoint
        collector_factory: Builds the derived aggregate fed by this stream
        prune_stale: Deletes rows the current cycle did not write, run once
            the stream completes; the writer then receives ``cycle``
    """
    kind: str
    write_batch: Callable[[AsyncSession, List[Record]], Awaitable[Any]]
    batch_size: int
    record_id: Callable[[Record], Any] = field(default=default_record_id)
    collector_factory: Optional[Callable[[], DistinctValueCollector]] = None
    prune_stale: Optional[Callable[[AsyncSession, datetime], Awaitable[int]]] = None


@dataclass(frozen=True)
class ReferenceDataset:
    """
    A small reference document loaded whole before streaming starts.

    ``path`` is the endpoint below the catalog API; ``None`` marks the
    aggregated ``/catalog/<name>`` document.
    """
    name: str
    load: Callable[[AsyncSession, Any], Awaitable[int]]
    path: Optional[str] = None


class RunTracker:
    """
    ETL run audit trail.

    Every method is best-effort: a failure to record a run is logged and
    never fails the run itself.
    """

    def __init__(self, session_factory: async_sessionmaker, dataset_kind: str):
        self.session_factory = session_factory
        self.dataset_kind = dataset_kind
        self.run_pk: Optional[int] = None
        self.run_id: Optional[uuid.UUID] = None
        self.started_at: Optional[datetime] = None

    async def start(self, phase_before: Optional[str] = None) -> None:
        """Create the ETL run record"""
        self.started_at = datetime.utcnow()
        self.run_id = uuid.uuid4()
        try:
            async with self.session_factory() as session:
                etl_run = ETLRun(
                    run_id=self.run_id,
                    dataset_kind=self.dataset_kind,
                    status=ETLStatus.RUNNING,
                    started_at=self.started_at,
                    phase_before=phase_before
                )
                session.add(etl_run)
                await session.commit()
                self.run_pk = etl_run.id
        except SQLAlchemyError as e:
            logger.warning(f"Could not record ETL run start for {self.dataset_kind}: {e}")

    async def complete(
        self,
        status: ETLStatus,
        records_loaded: int = 0,
        batches_committed: int = 0,
        phase_after: Optional[str] = None,
        error: Optional[BaseException] = None
    ) -> None:
        """Complete the ETL run record with statistics"""
        if self.run_pk is None:
            return

        try:
            async with self.session_factory() as session:
                etl_run = await session.get(ETLRun, self.run_pk)
                if etl_run is None:
                    return
                etl_run.status = status
                etl_run.completed_at = datetime.utcnow()
                etl_run.duration_seconds = (etl_run.completed_at - etl_run.started_at).total_seconds()
                etl_run.records_loaded = records_loaded
                etl_run.batches_committed = batches_committed
                etl_run.phase_after = phase_after
                if error is not None:
                    etl_run.error_message = str(error)[:2000]
                    if isinstance(error, ETLException):
                        etl_run.error_details = error.to_dict()
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Could not record ETL run completion for {self.dataset_kind}: {e}")
