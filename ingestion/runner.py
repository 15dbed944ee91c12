# ============================================================================
# File: ingestion/runner.py
# Description: Resumable phase orchestrator for bulk catalog ingestion
# ============================================================================
"""
Catalog Runner - drives one primary dataset through every load phase.

Phases, persisted in the checkpoint as each one completes:

    start → downloaded → reference-loaded → primary-loaded
          → secondary-loaded → done

On restart, completed phases are skipped and streamed phases resume from
their per-stream record count. A checkpoint found at ``done`` starts a new
refresh cycle. Any fatal error flushes the checkpoint, marks the ETL run as
failed and is re-raised to the entry point.
"""

import asyncio
import functools
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from core.exceptions import CheckpointError, DecodeError, ETLException, StoreFatalError
from core.retry import RetryPolicy, retry_async
from ingestion.aggregate import DistinctValueCollector, persist_aggregate
from ingestion.base import ReferenceDataset, RunTracker, StreamedDataset
from ingestion.checkpoint import CheckpointStore, checkpoint_path_for
from ingestion.datasets.registry import REFERENCE_DATASETS, primary_dataset, secondary_dataset
from ingestion.extractors.decoder import iter_records
from ingestion.extractors.fetcher import CatalogFetcher
from ingestion.extractors.format_detector import detect_format
from ingestion.loaders.batch_loader import BatchLoader, classify_store_error
from models.etl_run import ETLStatus
from schemas.checkpoint import Checkpoint, Phase

logger = logging.getLogger(__name__)


class CatalogRunner:
    """
    Orchestrator for one primary dataset kind.

    Responsibilities:
    - Download every artifact the cycle needs (reference documents, bulk files)
    - Load reference tables, then stream the primary and secondary datasets
    - Persist the derived aggregate at the end of the primary pass
    - Record each completed phase in the checkpoint
    - Audit the run in ``etl_runs``
    """

    def __init__(
        self,
        kind: str,
        session_factory: async_sessionmaker,
        fetcher: CatalogFetcher,
        store: CheckpointStore,
        secondary_kinds: Optional[Sequence[str]] = None,
        reference_datasets: Sequence[ReferenceDataset] = REFERENCE_DATASETS,
        catalog_names: Optional[Sequence[str]] = None,
        batch_size: Optional[int] = None,
        secondary_batch_size: Optional[int] = None,
        progress_every: Optional[int] = None,
        store_retry_policy: Optional[RetryPolicy] = None,
        force_reset: Optional[bool] = None,
        download_only: Optional[bool] = None,
        sleep=asyncio.sleep
    ):
        self.kind = kind
        self.session_factory = session_factory
        self.fetcher = fetcher
        self.store = store
        self.primary: StreamedDataset = primary_dataset(kind, batch_size)
        self.secondaries: List[StreamedDataset] = [
            secondary_dataset(secondary, secondary_batch_size)
            for secondary in (settings.secondary_kinds if secondary_kinds is None else secondary_kinds)
        ]
        self.reference_datasets = list(reference_datasets)
        self.catalog_names = list(settings.catalog_names if catalog_names is None else catalog_names)
        self.progress_every = settings.PROGRESS_EVERY if progress_every is None else progress_every
        self.store_retry_policy = store_retry_policy or RetryPolicy(
            max_retries=settings.STORE_MAX_RETRIES,
            base_delay=settings.STORE_RETRY_BASE_DELAY,
            max_delay=settings.STORE_RETRY_MAX_DELAY,
            jitter=settings.RETRY_JITTER
        )
        self.force_reset = settings.FORCE_RESET if force_reset is None else force_reset
        self.download_only = settings.DOWNLOAD_ONLY if download_only is None else download_only
        self._sleep = sleep

        self.checkpoint: Optional[Checkpoint] = None
        self.records_loaded = 0

    # --------------------------------------------------
    # Entry point
    # --------------------------------------------------

    async def run(self) -> Dict[str, Any]:
        """
        Run (or resume) one refresh cycle.

        Returns:
            Dictionary with run statistics:
            - status: "success" or "downloaded" (download-only mode)
            - dataset_kind: Primary dataset kind
            - phase: Phase recorded at the end of the run
            - records_loaded: Records committed by this run
            - batches_committed: Batches committed in this cycle, all streams

        Raises:
            ETLException: Any fatal error, after the checkpoint was flushed
        """
        started = datetime.utcnow()
        checkpoint = self._open_checkpoint()
        self.records_loaded = 0

        tracker = RunTracker(self.session_factory, self.kind)
        await tracker.start(phase_before=checkpoint.phase.value)
        logger.info(f"[run] {self.kind}: starting at phase '{checkpoint.phase.value}'")

        try:
            await self._download(checkpoint)

            if self.download_only:
                logger.info(f"[run] {self.kind}: download-only mode, stopping after downloads")
                status = "downloaded"
            else:
                await self._load_references(checkpoint)
                await self._load_primary(checkpoint)
                await self._load_secondaries(checkpoint)
                checkpoint.advance(Phase.DONE)
                self.store.save(checkpoint)
                status = "success"

        except (Exception, asyncio.CancelledError) as e:
            self.flush_checkpoint()
            if isinstance(e, ETLException):
                logger.error(
                    f"[run] {self.kind}: failed at phase '{checkpoint.phase.value}': {e.message}",
                    extra={"error_context": e.to_dict()}
                )
            else:
                logger.exception(f"[run] {self.kind}: failed at phase '{checkpoint.phase.value}'")

            await tracker.complete(
                ETLStatus.FAILED,
                records_loaded=self.records_loaded,
                batches_committed=self._batches_committed(checkpoint),
                phase_after=checkpoint.phase.value,
                error=e
            )
            raise

        await tracker.complete(
            ETLStatus.SUCCESS,
            records_loaded=self.records_loaded,
            batches_committed=self._batches_committed(checkpoint),
            phase_after=checkpoint.phase.value
        )

        result = {
            "status": status,
            "dataset_kind": self.kind,
            "phase": checkpoint.phase.value,
            "records_loaded": self.records_loaded,
            "batches_committed": self._batches_committed(checkpoint),
            "duration_seconds": (datetime.utcnow() - started).total_seconds(),
        }
        logger.info(
            f"[run] {self.kind}: {status} - phase={result['phase']}, "
            f"loaded={self.records_loaded:,}, took {result['duration_seconds']:.1f}s"
        )
        return result

    def flush_checkpoint(self) -> None:
        """Persist the in-memory checkpoint; safe to call from signal handlers."""
        if self.checkpoint is None:
            return
        try:
            self.store.save(self.checkpoint)
            logger.info(f"[run] {self.kind}: checkpoint flushed to {self.store.path}")
        except CheckpointError as e:
            logger.error(f"[run] {self.kind}: could not flush checkpoint: {e.message}")

    # --------------------------------------------------
    # Phases
    # --------------------------------------------------

    def _open_checkpoint(self) -> Checkpoint:
        if self.force_reset:
            logger.warning(f"[run] {self.kind}: FORCE_RESET set, discarding recorded progress")
            checkpoint = self.store.reset()
        else:
            checkpoint = self.store.load()
            if checkpoint.reached(Phase.DONE):
                logger.info(f"[run] {self.kind}: previous cycle complete, starting a new one")
                checkpoint = self.store.reset()

        if checkpoint.kind is None:
            checkpoint.kind = self.kind
        if checkpoint.cycle_started_at is None:
            checkpoint.cycle_started_at = datetime.utcnow()
        self.checkpoint = checkpoint
        return checkpoint

    async def _download(self, checkpoint: Checkpoint) -> None:
        if checkpoint.reached(Phase.DOWNLOADED):
            logger.info(f"[download] {self.kind}: artifacts already downloaded this cycle")
            return

        for reference in self.reference_datasets:
            if checkpoint.downloads.get(reference.name):
                continue
            dest = self.fetcher.artifact_path(reference.name)
            if reference.path is None:
                await self.fetcher.download_catalogs(self.catalog_names, dest)
            else:
                await self.fetcher.download_json(f"{self.fetcher.api_url}{reference.path}", dest, reference.name)
            checkpoint.downloads[reference.name] = True
            self.store.save(checkpoint)

        for dataset in [self.primary, *self.secondaries]:
            if checkpoint.downloads.get(dataset.kind):
                continue
            await self.fetcher.fetch(dataset.kind)
            checkpoint.downloads[dataset.kind] = True
            self.store.save(checkpoint)

        checkpoint.advance(Phase.DOWNLOADED)
        self.store.save(checkpoint)

    async def _load_references(self, checkpoint: Checkpoint) -> None:
        if checkpoint.reached(Phase.REFERENCE_LOADED):
            return

        for reference in self.reference_datasets:
            if checkpoint.references.get(reference.name):
                continue

            payload = self._read_json(self.fetcher.artifact_path(reference.name))
            count = await self._in_transaction(
                reference.name,
                lambda session, load=reference.load: load(session, payload)
            )
            checkpoint.references[reference.name] = True
            self.store.save(checkpoint)
            logger.info(f"[db] {reference.name}: {count:,} rows loaded")

        checkpoint.advance(Phase.REFERENCE_LOADED)
        self.store.save(checkpoint)

    async def _load_primary(self, checkpoint: Checkpoint) -> None:
        if checkpoint.reached(Phase.PRIMARY_LOADED):
            return

        dataset = self.primary
        collector = dataset.collector_factory() if dataset.collector_factory else None
        await self._stream(checkpoint, dataset, collector)

        if collector is not None:
            await persist_aggregate(self.session_factory, collector)

        checkpoint.advance(Phase.PRIMARY_LOADED)
        self.store.save(checkpoint)

    async def _load_secondaries(self, checkpoint: Checkpoint) -> None:
        if checkpoint.reached(Phase.SECONDARY_LOADED):
            return

        for dataset in self.secondaries:
            await self._stream(checkpoint, dataset)

        checkpoint.advance(Phase.SECONDARY_LOADED)
        self.store.save(checkpoint)

    async def _stream(
        self,
        checkpoint: Checkpoint,
        dataset: StreamedDataset,
        collector: Optional[DistinctValueCollector] = None
    ) -> int:
        progress = checkpoint.stream(dataset.kind)
        if progress.completed and collector is None:
            logger.info(f"[stream] {dataset.kind}: already loaded this cycle")
            return 0

        path = self.fetcher.artifact_path(dataset.kind)
        fmt = detect_format(path)
        logger.info(f"[stream] {dataset.kind}: format={fmt.value}, resuming after {progress.processed_count:,} records")

        decoded = iter_records(
            path,
            fmt,
            skip=progress.processed_count,
            progress_every=self.progress_every,
            on_skipped=collector.offer if collector is not None else None
        )
        records = collector.observe(decoded) if collector is not None else decoded

        write_batch = dataset.write_batch
        if dataset.prune_stale is not None:
            write_batch = functools.partial(write_batch, cycle=checkpoint.cycle_started_at)

        loader = BatchLoader(
            session_factory=self.session_factory,
            write_batch=write_batch,
            store=self.store,
            checkpoint=checkpoint,
            stream_key=dataset.kind,
            batch_size=dataset.batch_size,
            retry_policy=self.store_retry_policy,
            record_id=dataset.record_id,
            sleep=self._sleep
        )

        try:
            loaded = await loader.load(records)
        finally:
            records.close()
            decoded.close()

        if dataset.prune_stale is not None:
            await self._prune_stale(checkpoint, dataset)

        progress.completed = True
        self.store.save(checkpoint)
        self.records_loaded += loaded

        logger.info(
            f"[db] {dataset.kind}: done, {loaded:,} records this run "
            f"({progress.processed_count:,} total, {progress.batches_committed} batches)"
        )
        return loaded

    async def _prune_stale(self, checkpoint: Checkpoint, dataset: StreamedDataset) -> None:
        """Drop rows of ``dataset`` that this cycle's pass did not write."""
        if checkpoint.stream(dataset.kind).processed_count == 0:
            logger.warning(f"[db] {dataset.kind}: export was empty, keeping existing rows")
            return

        removed = await self._in_transaction(
            f"{dataset.kind} prune",
            lambda session: dataset.prune_stale(session, checkpoint.cycle_started_at)
        )
        logger.info(f"[db] {dataset.kind}: removed {removed:,} rows not present in this cycle")

    # --------------------------------------------------
    # Helpers
    # --------------------------------------------------

    async def _in_transaction(self, label: str, work) -> Any:
        """Run ``work(session)`` in one transaction under the store retry policy."""
        context = {"stream": label}

        async def attempt():
            async with self.session_factory() as session:
                async with session.begin():
                    return await work(session)

        def exhausted(error: Exception, attempts: int) -> StoreFatalError:
            return StoreFatalError(
                f"{label}: write failed after {attempts} attempts",
                context={**context, "attempts": attempts, "last_error": str(error)},
                original_exception=error
            )

        return await retry_async(
            attempt,
            policy=self.store_retry_policy,
            classify=lambda exc: classify_store_error(exc, context),
            on_exhausted=exhausted,
            label=label,
            sleep=self._sleep
        )

    @staticmethod
    def _read_json(path: Path) -> Any:
        try:
            with open(path, "r", encoding="utf-8-sig") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise DecodeError(
                "Failed to read reference document",
                context={"file_path": str(path)},
                original_exception=e
            )

    @staticmethod
    def _batches_committed(checkpoint: Checkpoint) -> int:
        return sum(progress.batches_committed for progress in checkpoint.streams.values())


def build_runners(
    kinds: Optional[Sequence[str]] = None,
    session_factory: Optional[async_sessionmaker] = None,
    transport=None,
    **runner_options
) -> List[CatalogRunner]:
    """
    One runner per primary kind, each with its own checkpoint file.

    With several kinds the artifacts go to ``DATA_DIR/<kind>`` so concurrent
    pipelines never write the same file.
    """
    if session_factory is None:
        from core.database import async_session_maker
        session_factory = async_session_maker

    kinds = list(kinds or settings.bulk_kinds)
    runners = []
    for kind in kinds:
        data_dir = Path(settings.DATA_DIR)
        if len(kinds) > 1:
            data_dir = data_dir / kind
        runners.append(CatalogRunner(
            kind=kind,
            session_factory=session_factory,
            fetcher=CatalogFetcher(data_dir=data_dir, transport=transport),
            store=CheckpointStore(checkpoint_path_for(settings.CHECKPOINT_DIR, kind), kind=kind),
            **runner_options
        ))
    return runners


async def run_all(runners: Sequence[CatalogRunner]) -> List[Dict[str, Any]]:
    """
    Run every pipeline concurrently.

    All pipelines are allowed to finish; the first failure is then re-raised.
    """
    outcomes = await asyncio.gather(*(runner.run() for runner in runners), return_exceptions=True)

    failures = [outcome for outcome in outcomes if isinstance(outcome, BaseException)]
    if failures:
        raise failures[0]
    return list(outcomes)
