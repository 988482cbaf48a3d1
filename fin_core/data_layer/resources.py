# =============================================================================
# fin_core/data_layer/resources.py
# Resource registry - per-type envelope shapes and storage keys
# =============================================================================
"""
Table-driven description of every resource kind the data layer serves.

Adding a resource type means adding one ``ResourceSpec`` to ``REGISTRY``;
the API unwrapping, local persistence and cache keys all read from here.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union


class ResourceType(str, Enum):
    """Resource kinds exposed by the backend."""
    TRANSACTIONS = "transactions"
    ACCOUNTS = "accounts"
    GOALS = "goals"
    CONTACTS = "contacts"
    TRIPS = "trips"
    INVESTMENTS = "investments"
    SHARED_DEBTS = "shared-debts"


# Namespace for locally persisted collections
STORAGE_PREFIX = "fin-"


@dataclass(frozen=True)
class ResourceSpec:
    """How one resource kind is shaped on the wire and stored locally."""
    resource: ResourceType
    collection_key: str     # {"transactions": [...]} from the primary backend
    item_key: str           # {"transaction": {...}} from the local API routes
    storage_key: str        # Durable key for the local collection
    prepend: bool = False   # Newest first in the local collection

    @property
    def name(self) -> str:
        return self.resource.value

    @property
    def legacy_storage_key(self) -> str:
        """Plain key older clients wrote the collection under."""
        return self.resource.value

    def unwrap_collection(self, payload: Any) -> Any:
        """Extract the nested array from a list response, if present."""
        if isinstance(payload, dict) and self.collection_key in payload:
            return payload[self.collection_key]
        return payload

    def unwrap_item(self, payload: Any) -> Optional[Dict[str, Any]]:
        """
        Extract a single record from a mutation response.

        Accepts ``{"<item_key>": {...}}``, ``{"data": {...}}`` or a bare
        record; returns None when no record with an ``id`` can be found.
        """
        if not isinstance(payload, dict):
            return None
        for key in (self.item_key, "data"):
            candidate = payload.get(key)
            if isinstance(candidate, dict) and candidate.get("id") is not None:
                return candidate
        if payload.get("id") is not None:
            return payload
        return None


REGISTRY: Dict[ResourceType, ResourceSpec] = {
    spec.resource: spec
    for spec in (
        ResourceSpec(ResourceType.TRANSACTIONS, "transactions", "transaction",
                     f"{STORAGE_PREFIX}transactions", prepend=True),
        ResourceSpec(ResourceType.ACCOUNTS, "accounts", "account",
                     f"{STORAGE_PREFIX}accounts"),
        ResourceSpec(ResourceType.GOALS, "goals", "goal",
                     f"{STORAGE_PREFIX}goals"),
        ResourceSpec(ResourceType.CONTACTS, "contacts", "contact",
                     f"{STORAGE_PREFIX}contacts"),
        # Trips live in their own store, shared with the trip planner
        ResourceSpec(ResourceType.TRIPS, "trips", "trip",
                     f"{STORAGE_PREFIX}trip-data"),
        ResourceSpec(ResourceType.INVESTMENTS, "investments", "investment",
                     f"{STORAGE_PREFIX}investments"),
        ResourceSpec(ResourceType.SHARED_DEBTS, "sharedDebts", "sharedDebt",
                     f"{STORAGE_PREFIX}shared-debts"),
    )
}


def get_resource_spec(resource: Union[ResourceType, str]) -> ResourceSpec:
    """
    Look up the ResourceSpec for a resource.

    Args:
        resource: ResourceType member or its string value ("shared-debts")

    Raises:
        ValueError: if the resource is unknown
    """
    try:
        return REGISTRY[ResourceType(resource)]
    except ValueError:
        raise ValueError(f"Unknown resource type: {resource!r}") from None


def resource_name(resource: Union[ResourceType, str]) -> str:
    """Normalize a resource argument to its string value."""
    return get_resource_spec(resource).name
