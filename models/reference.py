from sqlalchemy import Column, String, Integer, Date, Boolean, Float, Text, Index
from models.base import Base, JSONType


class CardSet(Base):
    """
    Reference table of card sets.

    Loaded once per refresh cycle from the ``/sets`` endpoint, before any
    card is streamed. Upserted by id.
    """
    __tablename__ = "mtg_sets"

    id = Column(String(36), primary_key=True)
    code = Column(String(16), unique=True, nullable=True)
    tcgplayer_id = Column(Integer, nullable=True)
    mtgo_code = Column(String(16), nullable=True)
    name = Column(Text, nullable=True)
    set_type = Column(String(64), nullable=True)
    released_at = Column(Date, nullable=True)
    card_count = Column(Integer, nullable=True)
    parent_set_code = Column(String(16), nullable=True)
    digital = Column(Boolean, nullable=True)
    foil_only = Column(Boolean, nullable=True)
    nonfoil_only = Column(Boolean, nullable=True)
    block_code = Column(String(16), nullable=True)
    block = Column(Text, nullable=True)
    icon_svg_uri = Column(Text, nullable=True)
    scryfall_uri = Column(Text, nullable=True)
    search_uri = Column(Text, nullable=True)
    uri = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_mtg_sets_release", "released_at"),
    )


class Symbol(Base):
    """Card symbology; rebuilt from scratch on every load."""
    __tablename__ = "mtg_symbols"

    symbol = Column(String(32), primary_key=True)
    loose_variant = Column(String(32), nullable=True)
    english = Column(Text, nullable=True)
    transposable = Column(Boolean, nullable=True)
    represents_mana = Column(Boolean, nullable=True)
    appears_in_mana_costs = Column(Boolean, nullable=True)
    funny = Column(Boolean, nullable=True)
    colors = Column(JSONType, nullable=True)
    gatherer_alternates = Column(JSONType, nullable=True)
    svg_uri = Column(Text, nullable=True)
    mana_value = Column(Float, nullable=True)


class CatalogItem(Base):
    """
    Flat catalogs of distinct values (creature types, keyword abilities, ...).

    Each catalog is replaced as a whole: published catalogs during the
    reference phase, the derived ``frame-effects`` catalog after the card pass.
    """
    __tablename__ = "mtg_catalog_items"

    catalog = Column(String(64), primary_key=True)
    item = Column(Text, primary_key=True)
