"""Common Pydantic schemas."""

from typing import Optional
from pydantic import BaseModel, Field


class Problem(BaseModel):
    """RFC 9457 Problem Details response."""

    type: Optional[str] = Field(None, description="Problem type URI")
    title: str = Field(..., description="Short human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: Optional[str] = Field(None, description="Human-readable explanation")
    instance: Optional[str] = Field(None, description="URI reference for this occurrence")
    code: Optional[str] = Field(None, description="Application-specific error code")
    retryable: Optional[bool] = Field(None, description="Whether the operation can be retried")
    error_id: Optional[str] = Field(None, description="Correlation ID for unexpected errors")


class PageInfo(BaseModel):
    """Page position of a paginated listing."""

    page: int = Field(..., ge=1, description="Current page")
    limit: int = Field(..., ge=1, description="Page size")
    total: int = Field(..., ge=0, description="Total matching items")
    pages: int = Field(..., ge=0, description="Total pages")

    @classmethod
    def of(cls, page: int, limit: int, total: int) -> "PageInfo":
        return cls(page=page, limit=limit, total=total, pages=(total + limit - 1) // limit)


# Error responses documented on every mutating route
PROBLEM_RESPONSES = {
    400: {"model": Problem, "description": "Validation error"},
    401: {"model": Problem, "description": "Missing or invalid bearer token"},
    404: {"model": Problem, "description": "Unknown booking, resource or subscriber"},
    409: {"model": Problem, "description": "Conflict or invalid status transition"},
    502: {"model": Problem, "description": "Booking API unavailable"},
}
