"""
Batched, checkpointed writer for streamed datasets.

Records are grouped into batches of ``batch_size``; each batch is written by
a dataset-specific ``write_batch(session, batch)`` coroutine inside its own
transaction. Only after the transaction commits is the checkpoint advanced
and saved, so a crash between the two replays the batch, and replaying a
batch is harmless because every write is an upsert or a delete-then-insert.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from core.exceptions import ETLException, StoreFatalError, StoreTransientError
from core.retry import RetryPolicy, retry_async
from ingestion.checkpoint import CheckpointStore
from schemas.checkpoint import Checkpoint

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
WriteBatch = Callable[[AsyncSession, List[Record]], Awaitable[Any]]

# admin/crash shutdown, cannot connect now, too many connections, insufficient
# resources, serialization failure, deadlock, lock not available
TRANSIENT_SQLSTATES = frozenset({
    "57P01", "57P02", "57P03",
    "53300", "53400",
    "40001", "40P01",
    "55P03",
})


def sqlstate_of(exc: BaseException) -> Optional[str]:
    """SQLSTATE of the DBAPI error wrapped by a SQLAlchemy exception, if any"""
    orig = getattr(exc, "orig", None)
    for attr in ("pgcode", "sqlstate"):
        code = getattr(orig, attr, None)
        if code:
            return str(code)
    return None


def classify_store_error(exc: Exception, context: Optional[Dict[str, Any]] = None) -> Exception:
    """
    Map a database exception onto ``StoreTransientError`` / ``StoreFatalError``.

    SQLSTATE wins when present; otherwise the SQLAlchemy exception type
    decides. Integrity violations and anything unrecognized are fatal.
    """
    if isinstance(exc, ETLException):
        return exc

    context = dict(context or {})
    sqlstate = sqlstate_of(exc)
    if sqlstate:
        context["sqlstate"] = sqlstate

    if sqlstate in TRANSIENT_SQLSTATES:
        return StoreTransientError(f"Transient database error ({sqlstate})", context, exc)

    if isinstance(exc, sa_exc.IntegrityError):
        return StoreFatalError("Constraint violation", context, exc)

    if isinstance(exc, (sa_exc.OperationalError, sa_exc.InterfaceError)):
        return StoreTransientError(f"Database unavailable: {type(exc).__name__}", context, exc)

    if isinstance(exc, sa_exc.DBAPIError) and exc.connection_invalidated:
        return StoreTransientError("Database connection invalidated", context, exc)

    if isinstance(exc, (sa_exc.TimeoutError, TimeoutError, ConnectionError)):
        return StoreTransientError(f"Database timeout: {type(exc).__name__}", context, exc)

    return StoreFatalError(f"Batch write failed: {type(exc).__name__}", context, exc)


class BatchLoader:
    """
    Stream records into the store, one transaction and one checkpoint save
    per batch.

    Attributes:
        session_factory: Produces a fresh ``AsyncSession`` per attempt
        write_batch: Dataset writer run inside the batch transaction
        store: Where the checkpoint is persisted after each commit
        checkpoint: Shared checkpoint value (mutated in place)
        stream_key: Key of this dataset in ``checkpoint.streams``
        batch_size: Records per transaction
        retry_policy: Retry ceiling for transient storage errors
        record_id: Extracts the id recorded as ``last_record_id``
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        write_batch: WriteBatch,
        store: CheckpointStore,
        checkpoint: Checkpoint,
        stream_key: str,
        batch_size: int = None,
        retry_policy: Optional[RetryPolicy] = None,
        record_id: Optional[Callable[[Record], Any]] = None,
        sleep=asyncio.sleep
    ):
        if batch_size is not None and batch_size < 1:
            raise ValueError("batch_size must be positive")

        self.session_factory = session_factory
        self.write_batch = write_batch
        self.store = store
        self.checkpoint = checkpoint
        self.stream_key = stream_key
        self.batch_size = batch_size or settings.ETL_BATCH_SIZE
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=settings.STORE_MAX_RETRIES,
            base_delay=settings.STORE_RETRY_BASE_DELAY,
            max_delay=settings.STORE_RETRY_MAX_DELAY,
            jitter=settings.RETRY_JITTER
        )
        self.record_id = record_id or (lambda record: record.get("id"))
        self._sleep = sleep

    @property
    def progress(self):
        return self.checkpoint.stream(self.stream_key)

    async def load(self, records: Iterable[Record]) -> int:
        """
        Consume ``records`` and commit them in batches.

        Returns:
            Number of records committed by this call

        Raises:
            StoreFatalError: Non-retryable error, or retries exhausted
            CheckpointError: If the checkpoint cannot be saved
        """
        loaded = 0
        batch: List[Record] = []

        for record in records:
            batch.append(record)
            if len(batch) >= self.batch_size:
                await self.commit_batch(batch)
                loaded += len(batch)
                batch = []

        if batch:
            await self.commit_batch(batch)
            loaded += len(batch)

        return loaded

    async def commit_batch(self, batch: List[Record]) -> None:
        """Write one batch in a single transaction, then advance the checkpoint."""
        progress = self.progress
        batch_number = progress.batches_committed + 1
        context = {
            "stream": self.stream_key,
            "batch_number": batch_number,
            "batch_size": len(batch),
            "first_record_id": self.record_id(batch[0]),
            "last_record_id": self.record_id(batch[-1]),
        }

        async def attempt():
            async with self.session_factory() as session:
                async with session.begin():
                    await self.write_batch(session, batch)

        def exhausted(error: Exception, attempts: int) -> StoreFatalError:
            return StoreFatalError(
                f"{self.stream_key}: batch {batch_number} failed after {attempts} attempts",
                context={**context, "attempts": attempts, "last_error": str(error)},
                original_exception=error
            )

        await retry_async(
            attempt,
            policy=self.retry_policy,
            classify=lambda exc: classify_store_error(exc, context),
            on_exhausted=exhausted,
            label=f"{self.stream_key} batch {batch_number}",
            sleep=self._sleep
        )

        progress.processed_count += len(batch)
        progress.batches_committed = batch_number
        last_id = self.record_id(batch[-1])
        progress.last_record_id = str(last_id) if last_id is not None else None
        self.store.save(self.checkpoint)

        logger.info(
            f"[commit] {self.stream_key}: batch {batch_number} "
            f"({len(batch)} records, {progress.processed_count:,} total)"
        )
