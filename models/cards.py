from sqlalchemy import (
    Column, String, Integer, Date, Boolean, Float, Text, DateTime,
    BigInteger, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime
from models.base import Base, JSONType


class Card(Base):
    """
    Primary entity of the bulk card export (one row per printing).

    Write Strategy:
    - Upsert by ``id``; every column is overwritten with the incoming value
    - ``faces`` are rewritten wholesale for every card in a committed batch
    - ``price`` is upserted alongside the card in the same transaction
    """
    __tablename__ = "mtg_cards"

    id = Column(String(36), primary_key=True)
    oracle_id = Column(String(36), nullable=True, index=True)
    set_id = Column(String(36), nullable=True)
    set_code = Column(String(16), nullable=True, index=True)
    set_name = Column(Text, nullable=True)
    collector_number = Column(String(32), nullable=True)
    lang = Column(String(8), nullable=True, index=True)

    name = Column(Text, nullable=True, index=True)
    printed_name = Column(Text, nullable=True)
    layout = Column(String(32), nullable=True)
    released_at = Column(Date, nullable=True, index=True)

    mana_cost = Column(Text, nullable=True)
    cmc = Column(Float, nullable=True)
    type_line = Column(Text, nullable=True)
    oracle_text = Column(Text, nullable=True)
    power = Column(String(16), nullable=True)
    toughness = Column(String(16), nullable=True)
    loyalty = Column(String(16), nullable=True)
    defense = Column(String(16), nullable=True)

    colors = Column(JSONType, nullable=True)
    color_identity = Column(JSONType, nullable=True)
    keywords = Column(JSONType, nullable=True)
    legalities = Column(JSONType, nullable=True)
    games = Column(JSONType, nullable=True)

    rarity = Column(String(16), nullable=True)
    artist = Column(Text, nullable=True)
    border_color = Column(String(16), nullable=True)
    frame = Column(String(16), nullable=True)
    frame_effects = Column(JSONType, nullable=True)
    full_art = Column(Boolean, nullable=True)
    promo = Column(Boolean, nullable=True)
    reprint = Column(Boolean, nullable=True)
    reserved = Column(Boolean, nullable=True)
    digital = Column(Boolean, nullable=True)

    edhrec_rank = Column(Integer, nullable=True)
    tcgplayer_id = Column(Integer, nullable=True)
    cardmarket_id = Column(Integer, nullable=True)

    image_uris = Column(JSONType, nullable=True)
    prices = Column(JSONType, nullable=True)
    scryfall_uri = Column(Text, nullable=True)
    card_faces_raw = Column(JSONType, nullable=True)

    # Relationships
    faces = relationship("CardFace", back_populates="card", passive_deletes=True)
    price = relationship("CardPrice", uselist=False, passive_deletes=True)

    __table_args__ = (
        Index("idx_mtg_cards_set_number", "set_code", "collector_number"),
    )


class CardFace(Base):
    """Dependent rows of a multi-faced card (split, transform, MDFC, ...)."""
    __tablename__ = "mtg_card_faces"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    card_id = Column(String(36), ForeignKey("mtg_cards.id", ondelete="CASCADE"), nullable=False, index=True)
    face_index = Column(Integer, nullable=False)

    name = Column(Text, nullable=True)
    printed_name = Column(Text, nullable=True)
    mana_cost = Column(Text, nullable=True)
    type_line = Column(Text, nullable=True)
    oracle_text = Column(Text, nullable=True)
    colors = Column(JSONType, nullable=True)
    power = Column(String(16), nullable=True)
    toughness = Column(String(16), nullable=True)
    loyalty = Column(String(16), nullable=True)
    defense = Column(String(16), nullable=True)
    flavor_text = Column(Text, nullable=True)
    artist = Column(Text, nullable=True)
    illustration_id = Column(String(36), nullable=True)
    image_uris = Column(JSONType, nullable=True)

    card = relationship("Card", back_populates="faces")

    __table_args__ = (
        UniqueConstraint("card_id", "face_index", name="uq_mtg_card_faces_card_face"),
    )


class CardPrice(Base):
    """Latest price snapshot per printing, one-to-one with ``mtg_cards``."""
    __tablename__ = "mtg_card_prices"

    scryfall_id = Column(String(36), ForeignKey("mtg_cards.id", ondelete="CASCADE"), primary_key=True)
    set_code = Column(String(16), nullable=True)
    collector_no = Column(String(32), nullable=True)
    usd = Column(Float, nullable=True)
    usd_foil = Column(Float, nullable=True)
    usd_etched = Column(Float, nullable=True)
    eur = Column(Float, nullable=True)
    eur_foil = Column(Float, nullable=True)
    tix = Column(Float, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_mtg_card_prices_set_number", "set_code", "collector_no"),
    )
