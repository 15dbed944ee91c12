"""
Unit tests for value coercion and record-to-row mapping
"""

from datetime import date, datetime

import pytest

from ingestion.datasets.cards import card_row, face_rows, is_card, price_row
from ingestion.datasets.reference import set_row, symbol_row
from ingestion.datasets.rulings import ruling_id, ruling_row
from ingestion.transformers.coercion import to_bool, to_date, to_float, to_int, to_text


class TestCoercion:
    """Test column coercion helpers"""

    @pytest.mark.parametrize("value,expected", [
        ("0.25", 0.25),
        (3, 3.0),
        ("1e3", 1000.0),
        (None, None),
        ("", None),
        ("n/a", None),
        ("nan", None),
        ("inf", None),
        (True, None),
        (2e9, None),
    ])
    def test_to_float(self, value, expected):
        assert to_float(value) == expected

    def test_to_int(self):
        assert to_int("10.0") == 10
        assert to_int(12345) == 12345
        assert to_int(2 ** 40) is None
        assert to_int("abc") is None

    @pytest.mark.parametrize("value,expected", [
        (True, True),
        ("true", True),
        (1, True),
        (False, False),
        ("false", False),
        (None, False),
        ("yes", False),
        (0, False),
    ])
    def test_to_bool(self, value, expected):
        assert to_bool(value) is expected

    def test_to_date(self):
        assert to_date("2024-02-09") == date(2024, 2, 9)
        assert to_date("2024-02-09T10:00:00+00:00") == date(2024, 2, 9)
        assert to_date(datetime(2024, 2, 9, 10, 0)) == date(2024, 2, 9)
        assert to_date("not a date") is None
        assert to_date("") is None

    def test_to_text(self):
        assert to_text(None) is None
        assert to_text("a") == "a"
        assert to_text(5) == "5"


class TestCardRows:
    """Test mapping of card records onto the card tables"""

    @pytest.mark.parametrize("record,expected", [
        ({"object": "card", "id": "card-001"}, True),
        ({"id": "card-001"}, True),
        ({"object": "error", "status": 404}, False),
        ({"object": "card"}, False),
        ({"object": "card", "id": ""}, False),
    ])
    def test_is_card(self, record, expected):
        assert is_card(record) is expected

    def test_card_row_maps_columns(self, card_factory):
        card = card_factory("card-001", "Llanowar Elves", cmc="2", edhrec_rank="77", full_art="true")

        row = card_row(card)

        assert row["id"] == "card-001"
        assert row["set_code"] == "tst"
        assert row["released_at"] == date(2024, 2, 9)
        assert row["cmc"] == 2.0
        assert row["edhrec_rank"] == 77
        assert row["full_art"] is True
        assert row["promo"] is False
        assert row["colors"] == ["G"]
        assert row["card_faces_raw"] is None

    def test_missing_fields_become_none(self):
        row = card_row({"id": "bare"})

        assert row["name"] is None
        assert row["released_at"] is None
        assert row["reserved"] is False

    def test_face_rows_keep_order(self, sample_cards):
        rows = face_rows(sample_cards[1])

        assert [(r["face_index"], r["name"]) for r in rows] == [(0, "Fire"), (1, "Ice")]
        assert all(r["card_id"] == "card-002" for r in rows)
        assert rows[0]["mana_cost"] == "{1}{R}"

    def test_face_rows_without_faces(self, sample_cards):
        assert face_rows(sample_cards[0]) == []
        assert face_rows({"id": "x", "card_faces": "bogus"}) == []

    def test_price_row_coerces_prices(self, card_factory):
        now = datetime(2024, 2, 9, 12, 0)
        card = card_factory("card-001", "Llanowar Elves", prices={"usd": "0.25", "eur": None, "tix": "abc"})

        row = price_row(card, now)

        assert row["scryfall_id"] == "card-001"
        assert row["collector_no"] == "001"
        assert row["usd"] == 0.25
        assert row["eur"] is None
        assert row["tix"] is None
        assert row["usd_foil"] is None
        assert row["updated_at"] == now

    def test_price_row_without_prices(self):
        row = price_row({"id": "x", "prices": None})

        assert row["usd"] is None
        assert isinstance(row["updated_at"], datetime)


class TestRulingRows:
    """Test the content-derived ruling key"""

    def test_identical_rulings_share_id(self, sample_rulings):
        assert ruling_id(dict(sample_rulings[0])) == ruling_id(sample_rulings[0])

    def test_any_field_changes_id(self, sample_rulings):
        base = sample_rulings[1]

        for field, value in [("comment", "Other text."), ("source", "scryfall"), ("published_at", "2025-01-01")]:
            assert ruling_id({**base, field: value}) != ruling_id(base)

    def test_ruling_row(self, sample_rulings):
        row = ruling_row(sample_rulings[0])

        assert len(row["id"]) == 40
        assert row["oracle_id"] == "oracle-card-001"
        assert row["published_at"] == date(2024, 2, 2)
        assert row["cycle_started_at"] is None

    def test_ruling_row_carries_cycle(self, sample_rulings):
        cycle = datetime(2024, 3, 1, 12, 0)

        assert ruling_row(sample_rulings[0], cycle)["cycle_started_at"] == cycle


class TestReferenceRows:
    """Test set and symbol mapping"""

    def test_set_row(self):
        row = set_row({
            "id": "set-0001",
            "code": "tst",
            "name": "Test Set",
            "released_at": "2024-02-09",
            "card_count": "281",
            "digital": False,
            "foil_only": "true",
        })

        assert row["code"] == "tst"
        assert row["card_count"] == 281
        assert row["released_at"] == date(2024, 2, 9)
        assert row["foil_only"] is True
        assert row["parent_set_code"] is None

    def test_symbol_row(self):
        row = symbol_row({"symbol": "{G}", "english": "one green mana", "mana_value": 1, "colors": ["G"]})

        assert row["symbol"] == "{G}"
        assert row["mana_value"] == 1.0
        assert row["colors"] == ["G"]
