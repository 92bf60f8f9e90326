"""Resource catalog schemas (read-only view of campsites, activities and equipment)."""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .booking import PricePeriod, ResourceType


class Availability(str, Enum):
    """Availability level published by the resource catalog."""
    AVAILABLE = "Available"
    LIMITED = "Limited"
    UNAVAILABLE = "Unavailable"

    @classmethod
    def parse(cls, value: str) -> "Availability":
        """Accept the catalog's mixed-case spellings ("available", "Limited", ...)."""
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise ValueError(f"Unknown availability: {value!r}")


class ResourceDefinition(BaseModel):
    """Catalog entry for one bookable resource."""

    id: str = Field(..., description="Resource ID")
    resource_type: ResourceType
    name: str = Field(..., description="Display name")
    location: Optional[str] = None
    base_price: Decimal = Field(..., ge=0, description="Listed price")
    price_period: PricePeriod = Field(PricePeriod.DAY, description="Period the listed price covers")
    capacity: Optional[int] = Field(None, ge=1, description="Maximum guests or participants")
    quantity: Optional[int] = Field(None, ge=0, description="Units in stock (equipment)")
    availability: Availability = Availability.AVAILABLE
