"""
Primary dataset: card printings with their faces and price snapshot.

``write_cards`` is the batch writer handed to ``BatchLoader``. Within the
batch transaction it:

1. upserts one ``mtg_cards`` row per card (all columns overwritten)
2. deletes every ``mtg_card_faces`` row of the batch's cards
3. inserts the faces present in the incoming records
4. upserts one ``mtg_card_prices`` row per card

so that after commit each card's dependent rows mirror exactly the record
that was written last. Objects that are not cards (error objects, entries
without an id) are dropped before the write.
"""

from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from ingestion.loaders.sql import collapse_by_key, delete_where_in, insert_rows, upsert_rows
from ingestion.transformers.coercion import to_bool, to_date, to_float, to_int
from models.cards import Card, CardFace, CardPrice

Record = Dict[str, Any]

PRICE_FIELDS = ("usd", "usd_foil", "usd_etched", "eur", "eur_foil", "tix")


def is_card(record: Record) -> bool:
    return bool(record.get("id")) and record.get("object", "card") == "card"


def card_row(card: Record) -> Dict[str, Any]:
    return {
        "id": card.get("id"),
        "oracle_id": card.get("oracle_id"),
        "set_id": card.get("set_id"),
        "set_code": card.get("set"),
        "set_name": card.get("set_name"),
        "collector_number": card.get("collector_number"),
        "lang": card.get("lang"),
        "name": card.get("name"),
        "printed_name": card.get("printed_name"),
        "layout": card.get("layout"),
        "released_at": to_date(card.get("released_at")),
        "mana_cost": card.get("mana_cost"),
        "cmc": to_float(card.get("cmc")),
        "type_line": card.get("type_line"),
        "oracle_text": card.get("oracle_text"),
        "power": card.get("power"),
        "toughness": card.get("toughness"),
        "loyalty": card.get("loyalty"),
        "defense": card.get("defense"),
        "colors": card.get("colors"),
        "color_identity": card.get("color_identity"),
        "keywords": card.get("keywords"),
        "legalities": card.get("legalities"),
        "games": card.get("games"),
        "rarity": card.get("rarity"),
        "artist": card.get("artist"),
        "border_color": card.get("border_color"),
        "frame": card.get("frame"),
        "frame_effects": card.get("frame_effects"),
        "full_art": to_bool(card.get("full_art")),
        "promo": to_bool(card.get("promo")),
        "reprint": to_bool(card.get("reprint")),
        "reserved": to_bool(card.get("reserved")),
        "digital": to_bool(card.get("digital")),
        "edhrec_rank": to_int(card.get("edhrec_rank")),
        "tcgplayer_id": to_int(card.get("tcgplayer_id")),
        "cardmarket_id": to_int(card.get("cardmarket_id")),
        "image_uris": card.get("image_uris"),
        "prices": card.get("prices"),
        "scryfall_uri": card.get("scryfall_uri"),
        "card_faces_raw": card.get("card_faces"),
    }


def face_rows(card: Record) -> List[Dict[str, Any]]:
    faces = card.get("card_faces")
    if not isinstance(faces, list):
        return []

    rows = []
    for index, face in enumerate(faces):
        if not isinstance(face, dict):
            continue
        rows.append({
            "card_id": card.get("id"),
            "face_index": index,
            "name": face.get("name"),
            "printed_name": face.get("printed_name"),
            "mana_cost": face.get("mana_cost"),
            "type_line": face.get("type_line"),
            "oracle_text": face.get("oracle_text"),
            "colors": face.get("colors"),
            "power": face.get("power"),
            "toughness": face.get("toughness"),
            "loyalty": face.get("loyalty"),
            "defense": face.get("defense"),
            "flavor_text": face.get("flavor_text"),
            "artist": face.get("artist"),
            "illustration_id": face.get("illustration_id"),
            "image_uris": face.get("image_uris"),
        })
    return rows


def price_row(card: Record, now: datetime = None) -> Dict[str, Any]:
    prices = card.get("prices") if isinstance(card.get("prices"), dict) else {}
    row = {
        "scryfall_id": card.get("id"),
        "set_code": card.get("set"),
        "collector_no": card.get("collector_number"),
        "updated_at": now or datetime.utcnow(),
    }
    for field in PRICE_FIELDS:
        row[field] = to_float(prices.get(field))
    return row


async def write_cards(session: AsyncSession, batch: List[Record]) -> int:
    """Write one batch of cards and their dependents; returns the card count"""
    cards = collapse_by_key([record for record in batch if is_card(record)], ["id"])
    now = datetime.utcnow()

    count = await upsert_rows(session, Card, [card_row(card) for card in cards])

    await delete_where_in(session, CardFace.card_id, [card.get("id") for card in cards])
    await insert_rows(session, CardFace, [row for card in cards for row in face_rows(card)])

    await upsert_rows(session, CardPrice, [price_row(card, now) for card in cards])
    return count
