"""Tests for property catalog clients."""

from unittest.mock import MagicMock

import pytest
import requests

from hostly.domain.booking import PropertyRef
from hostly.domain.errors import NotFound
from hostly.observability.correlation import CORRELATION_ID_HEADER, correlation_scope
from hostly.services.property_catalog import (
    HttpPropertyCatalog,
    InMemoryPropertyCatalog,
    PropertyCatalogError,
)


def _response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.json.return_value = body or {}
    return response


class TestInMemoryCatalog:
    def test_lookup(self):
        prop = PropertyRef(id="P1", max_guests=2, is_active=True)
        catalog = InMemoryPropertyCatalog([prop])
        assert catalog.get_property("P1") is prop

    def test_unknown(self):
        with pytest.raises(NotFound):
            InMemoryPropertyCatalog().get_property("P1")


class TestHttpCatalog:
    def test_parses_property(self):
        session = MagicMock()
        session.get.return_value = _response(
            body={
                "id": "P1",
                "max_guests": 4,
                "is_active": True,
                "host_id": "host-1",
                "nightly_rate_cents": 12000,
                "currency": "USD",
            }
        )
        catalog = HttpPropertyCatalog("https://catalog.internal/", session=session)

        with correlation_scope("cid-1"):
            prop = catalog.get_property("P1")

        assert prop == PropertyRef(
            id="P1",
            max_guests=4,
            is_active=True,
            host_id="host-1",
            nightly_rate_cents=12000,
            currency="USD",
        )
        url = session.get.call_args[0][0]
        assert url == "https://catalog.internal/properties/P1"
        assert session.get.call_args[1]["headers"] == {CORRELATION_ID_HEADER: "cid-1"}

    def test_not_found(self):
        session = MagicMock()
        session.get.return_value = _response(404)
        with pytest.raises(NotFound):
            HttpPropertyCatalog("http://c", session=session).get_property("P9")

    def test_server_error(self):
        session = MagicMock()
        session.get.return_value = _response(502)
        with pytest.raises(PropertyCatalogError):
            HttpPropertyCatalog("http://c", session=session).get_property("P1")

    def test_network_error(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("refused")
        with pytest.raises(PropertyCatalogError):
            HttpPropertyCatalog("http://c", session=session).get_property("P1")

    def test_malformed_body(self):
        session = MagicMock()
        session.get.return_value = _response(body={"id": "P1"})
        with pytest.raises(PropertyCatalogError):
            HttpPropertyCatalog("http://c", session=session).get_property("P1")
