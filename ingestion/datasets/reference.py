"""
Reference tables loaded once per cycle before any card is streamed.

These documents are small (a few thousand rows at most) and are read whole
from their downloaded JSON files.
"""

import logging
from typing import Any, Dict, List

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from ingestion.loaders.sql import replace_catalog, upsert_rows
from ingestion.transformers.coercion import to_bool, to_date, to_float, to_int
from models.reference import CardSet, CatalogItem, Symbol

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


def _data(payload: Any) -> List[Record]:
    if isinstance(payload, dict):
        payload = payload.get("data")
    if not isinstance(payload, list):
        return []
    return [item for item in payload if isinstance(item, dict)]


def set_row(card_set: Record) -> Dict[str, Any]:
    return {
        "id": card_set.get("id"),
        "code": card_set.get("code"),
        "tcgplayer_id": to_int(card_set.get("tcgplayer_id")),
        "mtgo_code": card_set.get("mtgo_code"),
        "name": card_set.get("name"),
        "set_type": card_set.get("set_type"),
        "released_at": to_date(card_set.get("released_at")),
        "card_count": to_int(card_set.get("card_count")),
        "parent_set_code": card_set.get("parent_set_code"),
        "digital": to_bool(card_set.get("digital")),
        "foil_only": to_bool(card_set.get("foil_only")),
        "nonfoil_only": to_bool(card_set.get("nonfoil_only")),
        "block_code": card_set.get("block_code"),
        "block": card_set.get("block"),
        "icon_svg_uri": card_set.get("icon_svg_uri"),
        "scryfall_uri": card_set.get("scryfall_uri"),
        "search_uri": card_set.get("search_uri"),
        "uri": card_set.get("uri"),
    }


def symbol_row(symbol: Record) -> Dict[str, Any]:
    return {
        "symbol": symbol.get("symbol"),
        "loose_variant": symbol.get("loose_variant"),
        "english": symbol.get("english"),
        "transposable": symbol.get("transposable"),
        "represents_mana": symbol.get("represents_mana"),
        "appears_in_mana_costs": symbol.get("appears_in_mana_costs"),
        "funny": symbol.get("funny"),
        "colors": symbol.get("colors"),
        "gatherer_alternates": symbol.get("gatherer_alternates"),
        "svg_uri": symbol.get("svg_uri"),
        "mana_value": to_float(symbol.get("mana_value")),
    }


async def load_sets(session: AsyncSession, payload: Any) -> int:
    """Upsert every set by id"""
    rows = [set_row(item) for item in _data(payload) if item.get("id")]
    return await upsert_rows(session, CardSet, rows)


async def load_symbols(session: AsyncSession, payload: Any) -> int:
    """Rebuild the symbology table"""
    rows = [symbol_row(item) for item in _data(payload) if item.get("symbol")]
    if not rows:
        logger.warning("[reference] symbology document is empty; keeping existing rows")
        return 0
    await session.execute(delete(Symbol.__table__))
    return await upsert_rows(session, Symbol, rows)


async def load_catalogs(session: AsyncSession, payload: Any) -> int:
    """Replace each catalog present in the ``[{name, data}]`` document"""
    total = 0
    packs = payload if isinstance(payload, list) else []
    for pack in packs:
        if not isinstance(pack, dict) or not pack.get("name"):
            continue
        items = [str(item) for item in pack.get("data") or [] if item is not None]
        total += await replace_catalog(session, CatalogItem, pack["name"], items)
    return total
