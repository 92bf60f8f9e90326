"""HTTP adapters for the upstream booking API and resource catalog."""

from .booking_api import HttpBookingGateway
from .resource_catalog import HttpResourceCatalog

__all__ = ["HttpBookingGateway", "HttpResourceCatalog"]
