import itertools
import json

import pytest

from backend.client import BackendUnavailable
from storefront import storage
from storefront.models import CustomProduct, Persisted, SourceImage, SourceProduct
from storefront.overlay import ResolutionGap


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    path = tmp_path / "state" / "storefront.sqlite3"
    monkeypatch.setattr(storage, "DB_PATH", str(path))
    return path


@pytest.fixture
def rose():
    return SourceProduct(
        id=101,
        name="Ramo de rosas",
        price="100",
        regular_price="120",
        description="<p>Doce rosas <b>rojas</b></p>",
        short_description="Rosas",
        sku="ROS-12",
        images=[
            SourceImage(src="https://cdn.example.com/rosas.jpg"),
            SourceImage(src="https://cdn.example.com/rosas-2.jpg"),
        ],
    )


@pytest.fixture
def tulip():
    return SourceProduct(
        id=202,
        name="Tulipanes",
        price="COP 80.000",
        images=[],
    )


class FakeBackend:
    """In-memory stand-in for backend.CatalogBackend."""

    def __init__(self, products=None, rows=None):
        self.products = {p.id: p for p in (products or [])}
        self.rows = rows or []
        self.calls = []
        self.fail_creates_named = set()
        self.unavailable = False
        self.fail_override_writes = False
        self.override_payloads = []
        self._ids = itertools.count(900)

    def _record(self, name, *args):
        self.calls.append((name,) + args)
        if self.unavailable:
            raise BackendUnavailable("No response from server")

    def get_product(self, product_id):
        self.calls.append(("get_product", product_id))
        if product_id not in self.products:
            raise ResolutionGap(Persisted(product_id), "not found")
        return self.products[product_id]

    def list_catalog_products(self, catalog_id):
        self._record("list_catalog_products", catalog_id)
        return self.rows

    def create_catalog(self, name, products):
        self._record("create_catalog", name, json.loads(json.dumps(products)))
        return 55

    def update_catalog(self, catalog_id, name, products):
        self._record("update_catalog", catalog_id, name, products)

    def update_catalog_product(self, catalog_id, override):
        self._record("update_catalog_product", catalog_id, override.ref)
        if self.fail_override_writes:
            raise BackendUnavailable("override write failed")
        self.override_payloads.append(override.to_payload())

    def create_custom_product(self, catalog_id, product):
        self._record("create_custom_product", catalog_id, product.name)
        if product.name in self.fail_creates_named:
            raise BackendUnavailable("create failed")
        return CustomProduct(
            ref=Persisted(next(self._ids)),
            name=product.name,
            price=product.price,
            sku=product.sku,
            description=product.description,
            short_description=product.short_description,
            image=product.image,
            images=list(product.images),
        )

    def update_custom_product(self, catalog_id, product):
        self._record("update_custom_product", catalog_id, product.ref)
        return product

    def delete_custom_product(self, product_id):
        self._record("delete_custom_product", product_id)


@pytest.fixture
def fake_backend(rose, tulip):
    return FakeBackend(products=[rose, tulip])


class FakeResponse:
    def __init__(self, status_code=200, data=None, reason="OK"):
        self.status_code = status_code
        self._data = data
        self.reason = reason
        self.content = b"" if data is None else json.dumps(data).encode()

    def json(self):
        if self._data is None:
            raise ValueError("No JSON body")
        return self._data


class FakeSession:
    """Records requests and replays queued responses (or raises queued exceptions)."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def fake_response():
    return FakeResponse
