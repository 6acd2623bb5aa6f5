"""Property catalog client - read-only property metadata for booking checks."""

from __future__ import annotations

import threading
from typing import Protocol

import requests

from hostly.domain.booking import PropertyRef
from hostly.domain.errors import NotFound
from hostly.observability.correlation import CORRELATION_ID_HEADER, get_correlation_id
from hostly.observability.logging import get_logger, log_fields

logger = get_logger(__name__)

HTTP_TIMEOUT_SECONDS = 5


class PropertyCatalogError(Exception):
    """Catalog could not be reached or answered with garbage."""


class PropertyCatalog(Protocol):
    def get_property(self, property_id: str) -> PropertyRef: ...


class InMemoryPropertyCatalog:
    """Dict-backed catalog for local runs and tests."""

    def __init__(self, properties: list[PropertyRef] | None = None) -> None:
        self._properties: dict[str, PropertyRef] = {}
        self._lock = threading.Lock()
        for prop in properties or []:
            self.put(prop)

    def put(self, prop: PropertyRef) -> None:
        with self._lock:
            self._properties[prop.id] = prop

    def get_property(self, property_id: str) -> PropertyRef:
        with self._lock:
            prop = self._properties.get(property_id)
        if prop is None:
            raise NotFound(f"Property {property_id} not found")
        return prop


class HttpPropertyCatalog:
    """Fetches ``GET {base_url}/properties/{id}`` from the catalog service.

    Expected body: {"id", "max_guests", "is_active", optional "host_id",
    "nightly_rate_cents", "currency"}.
    """

    def __init__(
        self,
        base_url: str,
        *,
        session: requests.Session | None = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout

    def get_property(self, property_id: str) -> PropertyRef:
        """Fetch a property.

        Raises:
            NotFound: Catalog answered 404.
            PropertyCatalogError: Network failure or malformed response.
        """
        url = f"{self._base_url}/properties/{property_id}"
        headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            headers[CORRELATION_ID_HEADER] = correlation_id

        try:
            response = self._session.get(url, headers=headers, timeout=self._timeout)
        except requests.RequestException as e:
            logger.error(
                "property catalog request failed",
                extra=log_fields(property_id=property_id, error=type(e).__name__),
            )
            raise PropertyCatalogError(f"catalog unreachable: {e}") from e

        if response.status_code == 404:
            raise NotFound(f"Property {property_id} not found")
        if not response.ok:
            logger.error(
                "property catalog error response",
                extra=log_fields(property_id=property_id, status_code=response.status_code),
            )
            raise PropertyCatalogError(f"catalog returned {response.status_code}")

        try:
            body = response.json()
            return PropertyRef(
                id=str(body.get("id", property_id)),
                max_guests=int(body["max_guests"]),
                is_active=bool(body["is_active"]),
                host_id=body.get("host_id"),
                nightly_rate_cents=body.get("nightly_rate_cents"),
                currency=body.get("currency"),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise PropertyCatalogError("malformed catalog response") from e
