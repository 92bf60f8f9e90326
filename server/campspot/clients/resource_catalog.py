"""HTTP adapter for the read-only resource catalog."""

import logging
from typing import Any

import httpx

from ..core.exceptions import NetworkError
from ..schemas.booking import PricePeriod, ResourceType
from ..schemas.resource import Availability, ResourceDefinition
from .api_client import ApiClient

logger = logging.getLogger(__name__)

CATALOG_PATHS = {
    ResourceType.CAMPSITE: "/camping-sites",
    ResourceType.ACTIVITY: "/activities",
    ResourceType.EQUIPMENT: "/equipment",
}

# Keys a single document may be wrapped in
_ENVELOPE_KEYS = ("campingSite", "campsite", "activity", "equipment", "item")
_LIST_KEYS = ("campingSites", "campsites", "activities", "equipment", "items")


def resource_from_payload(payload: dict, resource_type: ResourceType) -> ResourceDefinition:
    """Map a catalog document onto a ResourceDefinition."""
    if resource_type == ResourceType.CAMPSITE:
        capacity = payload.get("capacity")
    elif resource_type == ResourceType.ACTIVITY:
        capacity = payload.get("maxParticipants") or payload.get("capacity")
    else:
        capacity = None

    availability = Availability.AVAILABLE
    if payload.get("availability"):
        availability = Availability.parse(payload["availability"])
    if payload.get("status") == "inactive" or payload.get("isActive") is False:
        availability = Availability.UNAVAILABLE

    return ResourceDefinition(
        id=str(payload.get("_id") or payload.get("id")),
        resource_type=resource_type,
        name=payload.get("name") or "",
        location=payload.get("location"),
        base_price=str(payload.get("price", 0)),
        price_period=payload.get("period") or PricePeriod.DAY.value,
        capacity=capacity or None,
        quantity=payload.get("quantity") if resource_type == ResourceType.EQUIPMENT else None,
        availability=availability,
    )


def _unwrap(data: Any) -> Any:
    if isinstance(data, dict):
        for key in _ENVELOPE_KEYS:
            if isinstance(data.get(key), dict):
                return data[key]
    return data


class HttpResourceCatalog:
    """ResourceCatalog over the public catalog routes."""

    def __init__(self, client: httpx.AsyncClient):
        self.api = ApiClient(client)

    async def get_resource(self, resource_type: ResourceType, resource_id: str) -> ResourceDefinition:
        operation = f"{resource_type.value}.get"
        response = await self.api.request("GET", f"{CATALOG_PATHS[resource_type]}/{resource_id}", operation)
        document = _unwrap(response.data)
        if not isinstance(document, dict):
            raise NetworkError(operation, detail=f"The catalog returned no {resource_type.value}")
        return resource_from_payload(document, resource_type)

    async def list_resources(self, resource_type: ResourceType) -> list[ResourceDefinition]:
        response = await self.api.request("GET", CATALOG_PATHS[resource_type], f"{resource_type.value}.list")
        data = response.data
        if isinstance(data, dict):
            data = next((data[key] for key in _LIST_KEYS if isinstance(data.get(key), list)), [])
        resources = [resource_from_payload(doc, resource_type) for doc in data or []]
        logger.debug(f"Fetched {len(resources)} {resource_type.value} catalog entries")
        return resources
