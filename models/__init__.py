"""
SQLAlchemy ORM models for the catalog store.

Models:
    base: Base declarative class, shared JSON type and the ETLStatus enum
    reference: Sets, symbols and flat catalogs (reference-load phase)
    cards: Cards (primary entity) with their faces and prices (dependents)
    rulings: Rulings (secondary streamed dataset)
    etl_run: Orchestrator run audit trail

Database Schema:
    All models inherit from the Base declarative class. JSON columns map to
    JSONB on PostgreSQL and to plain JSON elsewhere.

Usage:
    from models import Card, CardFace, CardPrice, Ruling
    from models.base import Base, ETLStatus

Relationships:
    - Card → CardFace (one-to-many, rewritten per committed batch)
    - Card → CardPrice (one-to-one, upserted per committed batch)
"""

from models.base import Base, ETLStatus
from models.reference import CardSet, Symbol, CatalogItem
from models.cards import Card, CardFace, CardPrice
from models.rulings import Ruling
from models.etl_run import ETLRun

__all__ = [
    "Base",
    "ETLStatus",
    "CardSet",
    "Symbol",
    "CatalogItem",
    "Card",
    "CardFace",
    "CardPrice",
    "Ruling",
    "ETLRun",
]
