# fleet_rollout_service/src/fleet_rollout_service/schemas/common.py
"""
Common Pydantic schemas used across the Fleet Rollout Service.
"""
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field

# Generic type for paginated response items
T = TypeVar("T")


class CountResponse(BaseModel):
    """Response for bulk operations that report how many rows they touched."""

    count: int = Field(..., ge=0)


class PaginatedResponse(BaseModel, Generic[T]):
    """Generic schema for paginated API responses."""

    items: List[T]
    total: int = Field(..., description="Total number of items available.")
    page: int = Field(..., description="Current page number.")
    size: int = Field(..., description="Number of items per page.")
    pages: int = Field(..., description="Total number of pages.")
    has_next: bool = Field(..., description="Indicates if there is a next page.")
    has_prev: bool = Field(..., description="Indicates if there is a previous page.")
    next_page: Optional[int] = Field(None, description="The number of the next page.")
    prev_page: Optional[int] = Field(
        None, description="The number of the previous page."
    )

    @classmethod
    def build(cls, items: List[T], total: int, skip: int, limit: int):
        pages = (total + limit - 1) // limit if limit > 0 else 0
        page = (skip // limit) + 1 if limit > 0 else 1
        return cls(
            items=items,
            total=total,
            page=page,
            size=limit,
            pages=pages,
            has_next=page < pages,
            has_prev=page > 1,
            next_page=page + 1 if page < pages else None,
            prev_page=page - 1 if page > 1 else None,
        )
