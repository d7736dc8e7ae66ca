"""
Domain managers over one shared StateStore

Each manager owns exactly one domain of the store tree and adds domain
validation on top of the generic get/set:

    requests    - live RequestRecords and the derived 'processing' flag
    buffers     - activated document handles (positive ints)
    indicators  - in-flight work indicators (spinners, placeholders)
    ui          - current provider/model selection, busy flag

Managers never raise on bad input: like the store, mutators return
(ok, reason).
"""

import time
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

from ..models.requests import RequestRecord
from .errors import KeyNotFound, ValidationError
from .store import Result, StateStore


def identifier_check(value: Any, what: str = "ID") -> Result:
    if not isinstance(value, str) or not value:
        return False, f"{what} must be a non-empty string"
    return True, None


def mapping_check(value: Any, what: str = "data") -> Result:
    if not isinstance(value, dict):
        return False, f"{what.capitalize()} must be a mapping"
    return True, None


def handle_check(handle: Any) -> Result:
    # bool is an int subclass; True is not a buffer handle
    if isinstance(handle, bool) or not isinstance(handle, int) or handle <= 0:
        return False, "Buffer handle must be a positive integer"
    return True, None


class DomainManager:
    """Shared plumbing: a store plus the name of the owned domain"""

    domain: str = ""

    def __init__(self, store: StateStore) -> None:
        self.store = store

    def path(self, *keys: str) -> str:
        return ".".join((self.domain,) + keys)

    def domain_get(self, key: str, default: Any = None) -> Any:
        try:
            return self.store.get(self.path(key))
        except KeyNotFound:
            return default

    def subscribe(self, key: str, callback: Callable[[Any, Any, str], None]) -> Callable[[], bool]:
        return self.store.subscribe(self.path(key), callback)


class RequestManager(DomainManager):
    """
    Table of live requests

    The 'processing' flag is recomputed from the table on every register
    and clear; it is the single value other components poll to learn
    whether asynchronous work is outstanding.
    """

    domain = "requests"

    def __init__(self, store: StateStore) -> None:
        super().__init__(store)
        if not store.has(self.path("active")):
            store.update({self.path("active"): {}, self.path("processing"): False})

    def register(self, request_id: str, data: Union[RequestRecord, Dict[str, Any]]) -> Result:
        """
        Add a request to the table

        Args:
            request_id: Unique, non-empty id
            data: RequestRecord or plain dict; a 'created_at' timestamp is
                  added when missing
        """
        ok, reason = identifier_check(request_id, "Request ID")
        if not ok:
            return ok, reason
        if isinstance(data, RequestRecord):
            data = data.data_make()
        ok, reason = mapping_check(data, "request data")
        if not ok:
            return ok, reason

        record = dict(data)
        record.setdefault("created_at", time.time())
        requests = self.get_all()
        requests[request_id] = record
        ok, reason = self.store.set(self.path("active"), requests)
        if not ok:
            return ok, reason
        return self.processing_refresh(requests)

    def update(self, request_id: str, updates: Dict[str, Any]) -> Result:
        """Merge ``updates`` into an existing request"""
        ok, reason = identifier_check(request_id, "Request ID")
        if not ok:
            return ok, reason
        ok, reason = mapping_check(updates, "updates")
        if not ok:
            return ok, reason
        requests = self.get_all()
        if request_id not in requests:
            return False, f"Request '{request_id}' not found"
        requests[request_id].update(updates)
        return self.store.set(self.path("active"), requests)

    def clear(self, request_id: str) -> Result:
        """Remove a request; clearing an unknown id is a no-op success"""
        ok, reason = identifier_check(request_id, "Request ID")
        if not ok:
            return ok, reason
        requests = self.get_all()
        if request_id not in requests:
            return True, None
        del requests[request_id]
        ok, reason = self.store.set(self.path("active"), requests)
        if not ok:
            return ok, reason
        return self.processing_refresh(requests)

    def processing_refresh(self, requests: Dict[str, Any]) -> Result:
        return self.store.set(self.path("processing"), len(requests) > 0)

    def get(self, request_id: str) -> Optional[Dict[str, Any]]:
        """Copy of one request, or None"""
        return self.get_all().get(request_id)

    def record_get(self, request_id: str) -> Optional[RequestRecord]:
        data = self.get(request_id)
        return RequestRecord.data_load(data) if data is not None else None

    def get_all(self) -> Dict[str, Dict[str, Any]]:
        return self.domain_get("active", {}) or {}

    def has_active(self, kind: Optional[str] = None, predicate: Optional[Callable[[Dict[str, Any]], bool]] = None) -> bool:
        """
        Any live request (optionally of one ``kind`` and matching ``predicate``)
        """
        for data in self.get_all().values():
            if kind is not None and data.get("kind") != kind:
                continue
            if predicate is not None and not predicate(data):
                continue
            return True
        return False

    def is_processing(self) -> bool:
        return bool(self.domain_get("processing", False))

    def clear_all(self) -> Result:
        return self.store.update({self.path("active"): {}, self.path("processing"): False})

    def debug(self) -> Dict[str, Any]:
        requests = self.get_all()
        return {
            "active_count": len(requests),
            "is_processing": self.is_processing(),
            "request_ids": sorted(requests),
        }


class BufferManager(DomainManager):
    """Activated document handles"""

    domain = "buffers"

    def __init__(self, store: StateStore) -> None:
        super().__init__(store)
        if not store.has(self.path("activated")):
            store.set(self.path("activated"), [])

    def activate(self, handle: int) -> Result:
        ok, reason = handle_check(handle)
        if not ok:
            return ok, reason
        handles = self.get_all()
        if handle in handles:
            return True, None
        return self.store.set(self.path("activated"), handles + [handle])

    def deactivate(self, handle: int) -> Result:
        ok, reason = handle_check(handle)
        if not ok:
            return ok, reason
        handles = self.get_all()
        if handle not in handles:
            return True, None
        handles.remove(handle)
        return self.store.set(self.path("activated"), handles)

    def is_activated(self, handle: int) -> bool:
        if not handle_check(handle)[0]:
            return False
        return handle in self.get_all()

    def get_all(self) -> list:
        return self.domain_get("activated", []) or []

    def clear_all(self) -> Result:
        return self.store.set(self.path("activated"), [])


class IndicatorManager(DomainManager):
    """
    Records for in-flight work the editor shows an indicator for

    The core only keeps the records; drawing them is the editor's job.
    """

    domain = "indicators"

    def __init__(self, store: StateStore) -> None:
        super().__init__(store)
        if not store.has(self.path("active")):
            store.set(self.path("active"), {})

    def register(self, indicator_id: str, data: Dict[str, Any]) -> Result:
        ok, reason = identifier_check(indicator_id, "Indicator ID")
        if not ok:
            return ok, reason
        ok, reason = mapping_check(data, "indicator data")
        if not ok:
            return ok, reason
        indicators = self.get_all()
        indicators[indicator_id] = dict(data)
        return self.store.set(self.path("active"), indicators)

    def update(self, indicator_id: str, updates: Dict[str, Any]) -> Result:
        ok, reason = identifier_check(indicator_id, "Indicator ID")
        if not ok:
            return ok, reason
        ok, reason = mapping_check(updates, "updates")
        if not ok:
            return ok, reason
        indicators = self.get_all()
        if indicator_id not in indicators:
            return False, f"Indicator '{indicator_id}' not found"
        indicators[indicator_id].update(updates)
        return self.store.set(self.path("active"), indicators)

    def clear(self, indicator_id: str) -> Result:
        ok, reason = identifier_check(indicator_id, "Indicator ID")
        if not ok:
            return ok, reason
        indicators = self.get_all()
        if indicator_id not in indicators:
            return True, None
        del indicators[indicator_id]
        return self.store.set(self.path("active"), indicators)

    def get(self, indicator_id: str) -> Optional[Dict[str, Any]]:
        return self.get_all().get(indicator_id)

    def get_all(self) -> Dict[str, Dict[str, Any]]:
        return self.domain_get("active", {}) or {}

    def clear_all(self) -> Result:
        return self.store.set(self.path("active"), {})


class UIManager(DomainManager):
    """Current provider/model selection"""

    domain = "ui"

    def __init__(
        self,
        store: StateStore,
        providers: Iterable[str],
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> None:
        super().__init__(store)
        self.providers: Tuple[str, ...] = tuple(providers)
        if not store.has(self.domain):
            store.set(self.domain, {
                "current_provider": provider,
                "current_model": model,
                "is_processing": False,
            })

    def provider_validate(self, provider: Any) -> bool:
        """Store validator: raises ValidationError for unknown providers"""
        if not isinstance(provider, str) or not provider:
            raise ValidationError("Provider must be a non-empty string")
        if provider not in self.providers:
            raise ValidationError(
                f"Provider '{provider}' not recognized. Valid: {', '.join(self.providers)}"
            )
        return True

    @staticmethod
    def model_validate(model: Any) -> Result:
        return identifier_check(model, "Model")

    def set_provider(self, provider: str) -> Result:
        return self.store.set(self.path("current_provider"), provider, self.provider_validate)

    def get_provider(self) -> Optional[str]:
        return self.domain_get("current_provider")

    def set_model(self, model: str) -> Result:
        return self.store.set(self.path("current_model"), model, self.model_validate)

    def get_model(self) -> Optional[str]:
        return self.domain_get("current_model")

    def set_processing(self, is_processing: bool) -> Result:
        if not isinstance(is_processing, bool):
            return False, "Processing state must be a boolean"
        return self.store.set(self.path("is_processing"), is_processing)

    def is_processing(self) -> bool:
        return bool(self.domain_get("is_processing", False))

    def debug(self) -> Dict[str, Any]:
        return {
            "current_provider": self.get_provider(),
            "current_model": self.get_model(),
            "is_processing": self.is_processing(),
        }
