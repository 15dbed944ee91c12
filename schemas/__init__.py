"""
Pydantic schemas for data validation and serialization.

Schemas:
    catalog: Documents published by the catalog service (bulk-data listing)
    checkpoint: The checkpoint side-file and its per-stream progress
    api: Health and statistics response models

Usage:
    from schemas.checkpoint import Checkpoint, Phase
    from schemas.catalog import DatasetDescriptor
    from schemas.api import HealthCheckResponse, StatsResponse

Example:
    # Parse a discovery entry; the service calls the kind "type"
    descriptor = DatasetDescriptor.model_validate(
        {"type": "default_cards", "download_uri": "https://example/cards.json"}
    )
    assert descriptor.kind == "default_cards"
"""

__all__ = [
    "DatasetDescriptor",
    "Checkpoint",
    "Phase",
    "StreamProgress",
    "CheckpointStatus",
    "HealthCheckResponse",
    "ETLRunSummary",
    "StatsResponse",
]
