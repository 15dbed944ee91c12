"""
Bulk ingestion pipeline for the card catalog.

This package contains every component of the resumable streaming load:

Modules:
    base: Dataset definitions and ETL run tracking
    runner: Phase orchestrator (download, reference, primary, secondary)
    scheduler: APScheduler integration for periodic refresh cycles
    checkpoint: Durable JSON side-file recording per-phase progress
    aggregate: Distinct-value catalogs derived while cards stream past

Subpackages:
    extractors: Fetcher, format detector and streaming decoder
    transformers: Value coercion for table columns
    loaders: Batched, checkpointed writer and dialect-aware upserts
    datasets: Record-to-row mapping and batch writers per dataset

Architecture:
    One refresh cycle moves through fixed phases:

    1. Download - Resolve every dataset and stream it to local disk
    2. Reference - Load sets, symbols and catalogs in one pass each
    3. Primary - Stream cards in batches, one transaction per batch
    4. Secondary - Stream rulings the same way

    The checkpoint is saved after each committed batch and each completed
    phase, so a restart skips finished work and resumes mid-stream.

Usage:
    from ingestion.runner import build_runners, run_all

    runners = build_runners()
    results = await run_all(runners)

    print(f"Loaded {results[0]['records_loaded']} records")

Error Handling:
    All components raise the exceptions from core.exceptions. Transient
    network and storage errors are retried by core.retry; everything else
    stops the run after the checkpoint has been flushed.
"""

__all__ = [
    "CatalogRunner",
    "CheckpointStore",
    "BatchLoader",
    "CatalogFetcher",
    "build_runners",
    "run_all",
]
