# =============================================================================
# fin_core/data_layer/local_store.py
# Local persistence of resource collections
# =============================================================================
"""
LocalStore - the last-resort tier of the data layer.

Every resource kind is stored as a JSON array under the key its
``ResourceSpec`` names. Reads also look at the plain resource-name key older
clients wrote to, so data saved by either convention is found.
"""

from __future__ import annotations
import threading
from typing import Any, Dict, List, Optional, Union
import logging

import pandas as pd

from fin_core.data_layer.resources import ResourceType, get_resource_spec
from fin_core.data_layer.storage import LocalStorage
from fin_core.data_layer.types import Resource, utc_now_iso

logger = logging.getLogger(__name__)


class LocalStore:
    """
    Resource-level CRUD over a LocalStorage.

    Usage:
        store = LocalStore(LocalStorage("local_data/fin_core.db"))
        store.append("accounts", {"id": "a1", "name": "Checking"})
        store.list("accounts")
    """

    def __init__(self, storage: LocalStorage):
        self.storage = storage
        # Held across each load-modify-write
        self._lock = threading.RLock()

    def _read_key(self, key: str) -> Optional[List[Resource]]:
        try:
            value = self.storage.get_json(key)
        except ValueError as e:
            logger.warning(f"Ignoring corrupt local data under '{key}': {e}")
            return None
        if value is None:
            return None
        if not isinstance(value, list):
            logger.warning(f"Ignoring non-list local data under '{key}'")
            return None
        return value

    def list(self, resource: Union[ResourceType, str]) -> Optional[List[Resource]]:
        """
        Return the locally stored collection, or None if nothing was stored.

        The namespaced key is checked first, then the plain resource key.
        """
        spec = get_resource_spec(resource)
        for key in (spec.storage_key, spec.legacy_storage_key):
            items = self._read_key(key)
            if items is not None:
                return items
        return None

    def find(self, resource: Union[ResourceType, str], resource_id: str) -> Optional[Resource]:
        """Return the stored record with the given id, or None."""
        for item in self.list(resource) or []:
            if isinstance(item, dict) and item.get("id") == resource_id:
                return item
        return None

    def _write(self, resource, items: List[Resource]) -> None:
        spec = get_resource_spec(resource)
        self.storage.set_json(spec.storage_key, items)

    def _load_for_write(self, resource) -> List[Resource]:
        # Writes always target the namespaced key, seeded from whatever exists
        spec = get_resource_spec(resource)
        items = self._read_key(spec.storage_key)
        if items is None:
            items = self._read_key(spec.legacy_storage_key) or []
        return list(items)

    def append(self, resource: Union[ResourceType, str], item: Resource) -> Resource:
        """Add a record to the local collection."""
        spec = get_resource_spec(resource)
        with self._lock:
            items = self._load_for_write(resource)
            if spec.prepend:
                items.insert(0, item)
            else:
                items.append(item)
            self._write(resource, items)
        logger.debug(f"Stored {spec.name}/{item.get('id')} locally")
        return item

    def update(
        self,
        resource: Union[ResourceType, str],
        resource_id: str,
        patch: Dict[str, Any],
    ) -> Optional[Resource]:
        """
        Merge patch into the stored record.

        Returns:
            The updated record, or None if no record has that id
        """
        with self._lock:
            items = self._load_for_write(resource)
            for index, item in enumerate(items):
                if isinstance(item, dict) and item.get("id") == resource_id:
                    updated = {**item, **patch, "id": resource_id, "updatedAt": utc_now_iso()}
                    items[index] = updated
                    self._write(resource, items)
                    return updated
        return None

    def delete(self, resource: Union[ResourceType, str], resource_id: str) -> bool:
        """Remove a record. Returns True if something was removed."""
        with self._lock:
            items = self._load_for_write(resource)
            remaining = [
                item for item in items
                if not (isinstance(item, dict) and item.get("id") == resource_id)
            ]
            if len(remaining) == len(items):
                return False
            self._write(resource, remaining)
        return True

    def to_dataframe(self, resource: Union[ResourceType, str]) -> pd.DataFrame:
        """
        Load a local collection as a DataFrame for dashboards and exports.

        ISO date columns (createdAt, updatedAt, date) are parsed.
        """
        df = pd.DataFrame(self.list(resource) or [])
        for column in ("createdAt", "updatedAt", "date"):
            if column in df.columns:
                df[column] = pd.to_datetime(df[column], errors="coerce", utc=True)
        return df
