"""
Concrete dataset definitions keyed by discovery type.
"""

from typing import Optional, Tuple

from core.config import settings
from ingestion.aggregate import frame_effects_collector
from ingestion.base import ReferenceDataset, StreamedDataset
from ingestion.datasets.cards import write_cards
from ingestion.datasets.reference import load_catalogs, load_sets, load_symbols
from ingestion.datasets.rulings import prune_rulings, write_rulings

REFERENCE_DATASETS: Tuple[ReferenceDataset, ...] = (
    ReferenceDataset("sets", load_sets, "/sets"),
    ReferenceDataset("symbols", load_symbols, "/symbology"),
    ReferenceDataset("catalogs", load_catalogs, None),
)


def primary_dataset(kind: str, batch_size: Optional[int] = None) -> StreamedDataset:
    """Any card export (``default_cards``, ``all_cards``, ...) maps onto the card tables"""
    return StreamedDataset(
        kind=kind,
        write_batch=write_cards,
        batch_size=batch_size or settings.ETL_BATCH_SIZE,
        collector_factory=frame_effects_collector
    )


def secondary_dataset(kind: str, batch_size: Optional[int] = None) -> StreamedDataset:
    """
    Raises:
        ValueError: If no writer is known for ``kind``
    """
    if kind == "rulings":
        return StreamedDataset(
            kind=kind,
            write_batch=write_rulings,
            batch_size=batch_size or settings.SECONDARY_BATCH_SIZE,
            record_id=lambda record: record.get("oracle_id"),
            prune_stale=prune_rulings
        )
    raise ValueError(f"No writer for secondary dataset kind: {kind}")
