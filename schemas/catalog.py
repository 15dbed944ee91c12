"""
Pydantic schemas for documents published by the catalog service
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class DatasetDescriptor(BaseModel):
    """One entry of the bulk-data discovery listing"""
    kind: str = Field(..., alias="type")
    download_uri: str
    name: Optional[str] = None
    updated_at: Optional[datetime] = None
    size: Optional[int] = None
    content_type: Optional[str] = None
    content_encoding: Optional[str] = None

    class Config:
        populate_by_name = True
        extra = "ignore"
