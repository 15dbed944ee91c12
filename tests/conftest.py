"""
Pytest configuration and fixtures
"""

import os

# The application engine is built at import time; keep it off PostgreSQL
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import gzip
import json
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, List

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import build_engine, build_session_maker
from core.retry import RetryPolicy
from ingestion.checkpoint import CheckpointStore
from ingestion.extractors.fetcher import CatalogFetcher
from ingestion.runner import CatalogRunner
from models.base import Base


def write_array(path: Path, records: List[Dict[str, Any]], indent: int = None) -> Path:
    path.write_text(json.dumps(records, indent=indent), encoding="utf-8")
    return path


def write_lines(path: Path, records: List[Dict[str, Any]]) -> Path:
    path.write_text("".join(json.dumps(r) + "\n" for r in records), encoding="utf-8")
    return path


def make_card(card_id: str, name: str, **overrides) -> Dict[str, Any]:
    card = {
        "object": "card",
        "id": card_id,
        "oracle_id": f"oracle-{card_id}",
        "set_id": "set-0001",
        "set": "tst",
        "set_name": "Test Set",
        "collector_number": card_id[-3:],
        "lang": "en",
        "name": name,
        "layout": "normal",
        "released_at": "2024-02-09",
        "mana_cost": "{1}{G}",
        "cmc": 2.0,
        "type_line": "Creature - Elf",
        "oracle_text": "Trample",
        "power": "2",
        "toughness": "2",
        "colors": ["G"],
        "color_identity": ["G"],
        "keywords": ["Trample"],
        "legalities": {"modern": "legal"},
        "games": ["paper"],
        "rarity": "common",
        "artist": "Test Artist",
        "border_color": "black",
        "frame": "2015",
        "full_art": False,
        "promo": False,
        "reprint": False,
        "reserved": False,
        "digital": False,
        "edhrec_rank": 1234,
        "prices": {"usd": "0.25", "usd_foil": "1.10", "eur": None, "tix": "0.03"},
        "image_uris": {"normal": f"https://img.example/{card_id}.jpg"},
        "scryfall_uri": f"https://catalog.example/card/{card_id}",
    }
    card.update(overrides)
    return card


def make_face(name: str, **overrides) -> Dict[str, Any]:
    face = {
        "object": "card_face",
        "name": name,
        "mana_cost": "{U}",
        "type_line": "Instant",
        "oracle_text": "Draw a card.",
        "colors": ["U"],
        "artist": "Face Artist",
    }
    face.update(overrides)
    return face


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Throwaway SQLite database with every catalog table"""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return build_session_maker(test_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def checkpoint_store(tmp_path):
    return CheckpointStore(tmp_path / ".default_cards.checkpoint.json", kind="default_cards")


@pytest.fixture
def sample_cards() -> List[Dict[str, Any]]:
    """Three printings: a plain card, a two-faced card and a showcase frame"""
    return [
        make_card("card-001", "Llanowar Elves"),
        make_card(
            "card-002",
            "Fire // Ice",
            layout="split",
            card_faces=[
                make_face("Fire", mana_cost="{1}{R}", colors=["R"]),
                make_face("Ice", frame_effects=["legendary"]),
            ],
        ),
        make_card("card-003", "Showcase Elf", frame_effects=["showcase", "inverted"]),
    ]


@pytest.fixture
def sample_rulings() -> List[Dict[str, Any]]:
    return [
        {
            "object": "ruling",
            "oracle_id": "oracle-card-001",
            "source": "wotc",
            "published_at": "2024-02-02",
            "comment": "Llanowar Elves can tap for mana the turn it enters if it has haste.",
        },
        {
            "object": "ruling",
            "oracle_id": "oracle-card-002",
            "source": "wotc",
            "published_at": "2024-02-02",
            "comment": "You may cast either half.",
        },
        {
            "object": "ruling",
            "oracle_id": "oracle-card-002",
            "source": "scryfall",
            "published_at": "2024-02-03",
            "comment": "Fire // Ice has a mana value of 4.",
        },
    ]


@pytest.fixture
def card_factory():
    return make_card


@pytest.fixture
def face_factory():
    return make_face


@pytest.fixture
def artifact_writer(tmp_path):
    """write(name, records, fmt="array"|"lines") -> path under tmp_path"""
    def write(name: str, records: List[Dict[str, Any]], fmt: str = "array", indent: int = None) -> Path:
        path = tmp_path / name
        if fmt == "lines":
            return write_lines(path, records)
        return write_array(path, records, indent=indent)
    return write


CATALOG_API = "https://catalog.test"
FILES_HOST = "https://files.test"


class FakeCatalogService:
    """In-process catalog API served through ``httpx.MockTransport``"""

    def __init__(self):
        self.files: Dict[str, bytes] = {}
        self.sets: List[Dict[str, Any]] = []
        self.symbols: List[Dict[str, Any]] = []
        self.catalogs: Dict[str, List[str]] = {}
        self.failures: Dict[str, List[int]] = {}
        self.requests: List[str] = []

    def publish(self, kind: str, records: List[Dict[str, Any]], fmt: str = "array", compress: bool = False):
        if fmt == "lines":
            body = "".join(json.dumps(r) + "\n" for r in records)
        else:
            body = json.dumps(records, indent=1)
        self.publish_raw(kind, body.encode("utf-8"), compress=compress)

    def publish_raw(self, kind: str, body: bytes, compress: bool = False):
        self.files[kind] = gzip.compress(body) if compress else body

    def fail(self, path: str, *statuses: int):
        self.failures.setdefault(path, []).extend(statuses)

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(path)

        queued = self.failures.get(path)
        if queued:
            return httpx.Response(queued.pop(0))

        if path == "/bulk-data":
            return httpx.Response(200, json={
                "object": "list",
                "data": [
                    {"object": "bulk_data", "type": kind, "download_uri": f"{FILES_HOST}/{kind}.json"}
                    for kind in self.files
                ],
            })
        if path == "/sets":
            return httpx.Response(200, json={"object": "list", "data": self.sets})
        if path == "/symbology":
            return httpx.Response(200, json={"object": "list", "data": self.symbols})
        if path.startswith("/catalog/"):
            name = path[len("/catalog/"):]
            if name not in self.catalogs:
                return httpx.Response(404, json={"object": "error", "status": 404})
            return httpx.Response(200, json={"object": "catalog", "data": self.catalogs[name]})

        kind = path.lstrip("/")
        if kind.endswith(".json") and kind[:-len(".json")] in self.files:
            return httpx.Response(200, content=self.files[kind[:-len(".json")]])
        return httpx.Response(404)


async def no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def catalog_service(sample_cards, sample_rulings) -> FakeCatalogService:
    service = FakeCatalogService()
    service.publish("default_cards", sample_cards, compress=True)
    service.publish("rulings", sample_rulings, fmt="lines")
    service.sets = [{
        "object": "set",
        "id": "set-0001",
        "code": "tst",
        "name": "Test Set",
        "set_type": "expansion",
        "released_at": "2024-02-09",
        "card_count": 3,
        "digital": False,
    }]
    service.symbols = [
        {"object": "card_symbol", "symbol": "{G}", "english": "one green mana", "mana_value": 1, "colors": ["G"]},
        {"object": "card_symbol", "symbol": "{U}", "english": "one blue mana", "mana_value": 1, "colors": ["U"]},
    ]
    service.catalogs = {"powers": ["*", "1", "2"], "watermarks": ["set", "planeswalker"]}
    return service


@pytest.fixture
def runner_factory(session_factory, checkpoint_store, catalog_service, tmp_path):
    """build(kind=..., store=..., data_dir=..., **runner_options) -> CatalogRunner"""
    def build(kind: str = "default_cards", store: CheckpointStore = None, data_dir: Path = None, **options):
        fetcher = CatalogFetcher(
            api_url=CATALOG_API,
            data_dir=data_dir or tmp_path / "data",
            retry_policy=RetryPolicy(max_retries=2, base_delay=0, jitter=0),
            timeout=5,
            transport=httpx.MockTransport(catalog_service.handle),
            sleep=no_sleep,
            catalog_pause=0,
        )
        runner_options = {
            "secondary_kinds": ["rulings"],
            "catalog_names": ["powers", "watermarks"],
            "batch_size": 2,
            "secondary_batch_size": 2,
            "progress_every": 0,
            "store_retry_policy": RetryPolicy(max_retries=2, base_delay=0, jitter=0),
            "force_reset": False,
            "download_only": False,
            "sleep": no_sleep,
        }
        runner_options.update(options)
        return CatalogRunner(
            kind=kind,
            session_factory=session_factory,
            fetcher=fetcher,
            store=store or checkpoint_store,
            **runner_options
        )
    return build
