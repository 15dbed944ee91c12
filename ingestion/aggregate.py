"""
Distinct-value aggregates derived while a primary dataset streams past.

The collector is fed every decoded record, including the ones skipped on a
resume, so the persisted catalog is complete even when the pass was
interrupted. It holds only the distinct values, never the records.
"""

import logging
from typing import Any, Callable, Dict, Iterable, Iterator, List, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ingestion.loaders.sql import replace_catalog
from models.reference import CatalogItem

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

FRAME_EFFECTS_CATALOG = "frame-effects"


def frame_effects_of(record: Record) -> Iterator[Any]:
    """``frame_effects`` of a card and of each of its faces"""
    effects = record.get("frame_effects")
    if isinstance(effects, list):
        yield from effects
    faces = record.get("card_faces")
    if isinstance(faces, list):
        for face in faces:
            if isinstance(face, dict) and isinstance(face.get("frame_effects"), list):
                yield from face["frame_effects"]


class DistinctValueCollector:
    """Accumulate the distinct values ``extract`` finds in each record."""

    def __init__(self, name: str, extract: Callable[[Record], Iterable[Any]]):
        self.name = name
        self.extract = extract
        self._values: Set[str] = set()

    def offer(self, record: Record) -> None:
        for value in self.extract(record) or ():
            if value is not None and value != "":
                self._values.add(str(value))

    def observe(self, records: Iterable[Record]) -> Iterator[Record]:
        """Pass ``records`` through unchanged, offering each one on the way."""
        for record in records:
            self.offer(record)
            yield record

    @property
    def values(self) -> List[str]:
        return sorted(self._values)

    def __len__(self) -> int:
        return len(self._values)


def frame_effects_collector() -> DistinctValueCollector:
    return DistinctValueCollector(FRAME_EFFECTS_CATALOG, frame_effects_of)


async def persist_aggregate(session_factory: async_sessionmaker, collector: DistinctValueCollector) -> int:
    """
    Replace the collector's catalog in a single transaction.

    Failures are logged and swallowed: the aggregate is derived data and the
    next full pass rebuilds it.

    Returns:
        Number of items written (0 when empty or on failure)
    """
    if not len(collector):
        logger.info(f"[aggregate] {collector.name}: no values collected, skipping")
        return 0

    try:
        async with session_factory() as session:
            async with session.begin():
                count = await replace_catalog(session, CatalogItem, collector.name, collector.values)
    except SQLAlchemyError as e:
        logger.warning(
            f"[aggregate] {collector.name}: failed to persist {len(collector)} values: {e}",
            exc_info=True
        )
        return 0

    logger.info(f"[aggregate] {collector.name}: {count} values persisted")
    return count
