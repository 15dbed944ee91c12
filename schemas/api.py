"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List, Dict
from datetime import datetime
from models.etl_run import ETLStatus
from schemas.checkpoint import StreamProgress

# ============================================================================
# Health Check Schemas
# ============================================================================

class CheckpointStatus(BaseModel):
    """Checkpoint side-file state of one primary dataset"""
    dataset_kind: str
    checkpoint_path: str
    exists: bool = False
    phase: Optional[str] = None
    downloads: Dict[str, bool] = Field(default_factory=dict)
    streams: Dict[str, StreamProgress] = Field(default_factory=dict)
    cycle_started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_run_status: Optional[ETLStatus] = None
    error: Optional[str] = None

    class Config:
        use_enum_values = True


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    checkpoints: List[CheckpointStatus] = Field(default_factory=list)
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")

    @validator("status", pre=True, always=True)
    def determine_status(cls, v, values):
        """Determine overall health status"""
        if not values.get("database_connected", False):
            return "unhealthy"

        checkpoints = values.get("checkpoints") or []
        failing = [
            c for c in checkpoints
            if c.error is not None or c.last_run_status == ETLStatus.FAILED.value
        ]
        if failing:
            return "degraded"
        return "healthy"

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "checkpoints": [
                    {
                        "dataset_kind": "default_cards",
                        "checkpoint_path": "./.default_cards.checkpoint.json",
                        "exists": True,
                        "phase": "primary-loaded",
                        "downloads": {"sets": True, "default_cards": True, "rulings": True},
                        "streams": {
                            "default_cards": {
                                "processed_count": 98000,
                                "batches_committed": 196,
                                "last_record_id": "0000579f-7b35-4ed3-b44c-db2a538066fe",
                                "completed": True
                            }
                        },
                        "last_run_status": "success"
                    }
                ]
            }
        }

# ============================================================================
# Statistics Schemas
# ============================================================================

class ETLRunSummary(BaseModel):
    run_id: str
    dataset_kind: str
    status: ETLStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
    records_loaded: int = 0
    batches_committed: int = 0
    phase_before: Optional[str] = None
    phase_after: Optional[str] = None
    error_message: Optional[str] = None

    class Config:
        from_attributes = True
        use_enum_values = True


class StatsResponse(BaseModel):
    """Statistics response model"""
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    # Row counts per catalog table
    table_counts: Dict[str, int]
    catalog_counts: Dict[str, int] = Field(default_factory=dict)

    # Run history
    total_etl_runs: int
    recent_runs: List[ETLRunSummary] = Field(default_factory=list)
    last_etl_success: Optional[datetime] = None
    last_etl_failure: Optional[datetime] = None
    avg_etl_duration_seconds: Optional[float] = None

    request_id: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "timestamp": "2024-01-15T10:30:00Z",
                "table_counts": {
                    "mtg_cards": 98000,
                    "mtg_card_faces": 4300,
                    "mtg_card_prices": 98000,
                    "mtg_card_rulings": 61000,
                    "mtg_sets": 900,
                    "mtg_symbols": 90,
                    "mtg_catalog_items": 41000
                },
                "catalog_counts": {"creature-types": 320, "frame-effects": 31},
                "total_etl_runs": 12,
                "last_etl_success": "2024-01-15T10:00:00Z",
                "avg_etl_duration_seconds": 845.2
            }
        }

