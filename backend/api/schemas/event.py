"""Domain event ingestion schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional, Dict, Any


class EventIngest(BaseModel):
    """A business event emitted by the CRM."""

    type: str = Field(description="Event type, e.g. lead_stage_changed")
    organization_id: str = Field(min_length=1, description="Owning organization")
    subject_id: Optional[str] = Field(default=None, description="Lead the event concerns")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Event-specific fields")
    event_id: Optional[str] = Field(default=None, description="Producer-assigned event ID")
    occurred_at: Optional[datetime] = None


class EventAccepted(BaseModel):
    event_id: str
    queued: bool = Field(default=False, description="True when handed to the worker queue")
    run_ids: List[str] = Field(default_factory=list, description="Runs started inline")
