"""
Secondary dataset: rulings attached to oracle cards.

Rulings carry no identifier of their own, so each row is keyed by a digest of
its content. Every row written is stamped with the refresh cycle that wrote
it; once the rulings stream of a cycle completes, ``prune_rulings`` deletes
the rows that were not written again, i.e. rulings edited or withdrawn
upstream.
"""

import hashlib
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, or_
from sqlalchemy.ext.asyncio import AsyncSession

from ingestion.loaders.sql import upsert_rows
from ingestion.transformers.coercion import to_date, to_text
from models.rulings import Ruling

Record = Dict[str, Any]


def ruling_id(record: Record) -> str:
    """Stable content digest; identical rulings collapse to one row"""
    parts = [
        to_text(record.get(field)) or ""
        for field in ("oracle_id", "source", "published_at", "comment")
    ]
    return hashlib.sha1("\x1f".join(parts).encode("utf-8")).hexdigest()


def ruling_row(record: Record, cycle: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "id": ruling_id(record),
        "oracle_id": record.get("oracle_id"),
        "source": record.get("source"),
        "published_at": to_date(record.get("published_at")),
        "comment": record.get("comment"),
        "cycle_started_at": cycle,
    }


async def write_rulings(session: AsyncSession, batch: List[Record], cycle: Optional[datetime] = None) -> int:
    """Upsert a batch of rulings; records without an oracle id are ignored"""
    rows = [ruling_row(record, cycle) for record in batch if record.get("oracle_id")]
    return await upsert_rows(session, Ruling, rows)


async def prune_rulings(session: AsyncSession, cycle: datetime) -> int:
    """Delete rulings last written before ``cycle``; returns the row count."""
    table = Ruling.__table__
    result = await session.execute(
        delete(table).where(or_(table.c.cycle_started_at.is_(None), table.c.cycle_started_at < cycle))
    )
    return result.rowcount or 0
