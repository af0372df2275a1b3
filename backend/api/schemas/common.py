"""Schemas shared by the graph and run endpoints."""

from typing import Optional

from pydantic import BaseModel, Field


class PaginationParams(BaseModel):
    """Page-based paging for run listings."""

    page: int = Field(default=1, ge=1, description="Page number (1-indexed)")
    per_page: int = Field(default=20, ge=1, le=100, description="Items per page (max 100)")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


class MessageResponse(BaseModel):
    """Acknowledgement for state-changing calls without a richer body."""

    message: str
    resource_id: Optional[str] = Field(default=None, description="Graph, node, edge or run acted upon")
