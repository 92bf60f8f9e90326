"""Aggregated booking view schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from .booking import Booking, BookingStatus, ResourceType


class TypeStats(BaseModel):
    """Booking counts per status, plus revenue, for one resource type."""

    pending: int = Field(0, ge=0)
    approved: int = Field(0, ge=0)
    rejected: int = Field(0, ge=0)
    cancelled: int = Field(0, ge=0)
    completed: int = Field(0, ge=0)
    revenue: Decimal = Field(Decimal("0"), description="Sum of totals of approved and completed bookings")

    @property
    def total(self) -> int:
        return self.pending + self.approved + self.rejected + self.cancelled + self.completed

    def count(self, status: BookingStatus) -> int:
        return getattr(self, status.value)

    def __add__(self, other: "TypeStats") -> "TypeStats":
        if not isinstance(other, TypeStats):
            return NotImplemented
        return TypeStats(
            pending=self.pending + other.pending,
            approved=self.approved + other.approved,
            rejected=self.rejected + other.rejected,
            cancelled=self.cancelled + other.cancelled,
            completed=self.completed + other.completed,
            revenue=self.revenue + other.revenue,
        )


class AggregateStats(BaseModel):
    """Per-type statistics summed into one combined total."""

    by_type: dict[ResourceType, TypeStats] = Field(default_factory=dict)
    combined: TypeStats = Field(default_factory=TypeStats)
    degraded: bool = False
    failed_sources: list[ResourceType] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return self.combined.total


class SourceResult(BaseModel):
    """Bookings and stats fetched for one resource type, or the failure that replaced them."""

    resource_type: ResourceType
    bookings: list[Booking] = Field(default_factory=list)
    stats: TypeStats = Field(default_factory=TypeStats)
    server_time: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def failure(cls, resource_type: ResourceType, exc: BaseException) -> "SourceResult":
        return cls(resource_type=resource_type, error=str(exc) or exc.__class__.__name__)


class AggregateView(BaseModel):
    """Merged booking list and statistics shown by the dashboard and profile views."""

    bookings: list[Booking] = Field(default_factory=list)
    stats: AggregateStats = Field(default_factory=AggregateStats)


class BookingFilter(BaseModel):
    """Dashboard filter; applied as a pure function over the merged list."""

    status: Optional[BookingStatus] = None
    resource_type: Optional[ResourceType] = None
    search: Optional[str] = Field(None, max_length=200)


class Snapshot(BaseModel):
    """Full authoritative state pulled in one refresh."""

    server_timestamp: datetime
    campsite: SourceResult
    activity: SourceResult
    equipment: SourceResult

    @property
    def sources(self) -> tuple[SourceResult, SourceResult, SourceResult]:
        return (self.campsite, self.activity, self.equipment)

    @property
    def all_failed(self) -> bool:
        return all(source.failed for source in self.sources)


class DashboardResponse(BaseModel):
    """Filtered booking view plus the freshness of the snapshot behind it."""

    bookings: list[Booking] = Field(default_factory=list)
    stats: AggregateStats = Field(default_factory=AggregateStats)
    last_snapshot_at: Optional[datetime] = Field(None, description="Server time of the applied snapshot")
    pending_overlays: list[str] = Field(default_factory=list, description="Bookings with unconfirmed local changes")
