from sqlalchemy import Column, String, Date, DateTime, Text
from models.base import Base


class Ruling(Base):
    """
    Rules clarifications attached to an oracle card.

    The bulk export has no ruling identifier, so ``id`` is a SHA-1 digest of
    (oracle_id, source, published_at, comment). Rulings for one oracle id may
    straddle two batches; keying on content keeps the write an idempotent
    upsert instead of a per-oracle delete that a later batch could undo.

    ``cycle_started_at`` identifies the refresh cycle that last wrote the
    row. Rows older than the current cycle are deleted once its rulings
    stream has completed.
    """
    __tablename__ = "mtg_card_rulings"

    id = Column(String(40), primary_key=True)
    oracle_id = Column(String(36), nullable=False, index=True)
    source = Column(String(32), nullable=True)
    published_at = Column(Date, nullable=True)
    comment = Column(Text, nullable=True)
    cycle_started_at = Column(DateTime, nullable=True, index=True)
