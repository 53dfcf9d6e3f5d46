import threading

import pytest

from backend.client import BackendUnavailable
from storefront.aggregate import CatalogAggregate
from storefront.models import OverrideRecord, Pending, Persisted
from storefront.overlay import PLACEHOLDER_NAME


def _ids(aggregate):
    return [v.key for v in aggregate.list_view_products()]


class TestOverrides:
    def test_add_override_twice_keeps_one_entry_with_last_patch(self, rose):
        catalog = CatalogAggregate()
        catalog.add_product(rose)
        catalog.add_override(101, {"catalog_price": 90000})
        catalog.add_override(101, {"catalog_price": 80000, "catalog_name": "Rosas"})

        views = catalog.list_view_products()
        assert len(views) == 1
        assert views[0].price == 80000
        assert views[0].name == "Rosas"
        assert views[0].original_price == 100

    def test_last_patch_replaces_rather_than_merges(self, rose):
        catalog = CatalogAggregate()
        catalog.add_product(rose)
        catalog.add_override(101, {"catalog_name": "Rosas"})
        catalog.add_override(101, {"catalog_price": 50})
        view = catalog.get_view_product(101)
        assert view.name == "Ramo de rosas"
        assert view.price == 50

    def test_accepts_override_records(self, rose):
        catalog = CatalogAggregate()
        catalog.add_product(rose)
        catalog.add_override(Persisted(101), OverrideRecord(ref=Persisted(101), product_id=101, catalog_price=70))
        assert catalog.get_view_product(101).price == 70

    def test_override_for_unknown_id_fetches_source(self, fake_backend):
        catalog = CatalogAggregate(backend=fake_backend)
        view = catalog.add_override(202, {"catalog_price": 60000})
        assert ("get_product", 202) in fake_backend.calls
        assert view.name == "Tulipanes"
        assert view.original_price == 80000
        assert view.price == 60000

    def test_override_for_missing_product_is_placeholder(self, fake_backend):
        catalog = CatalogAggregate(backend=fake_backend)
        view = catalog.add_override(404, {"catalog_price": 1000})
        assert view.is_unavailable is True
        assert view.name == PLACEHOLDER_NAME
        assert _ids(catalog) == ["p:404"]

    def test_persisted_catalog_writes_through_backend(self, rose, fake_backend):
        catalog = CatalogAggregate(catalog_id=12, backend=fake_backend)
        catalog.add_product(rose)
        catalog.add_override(101, {"catalog_price": 80})
        assert ("update_catalog_product", 12, Persisted(101)) in fake_backend.calls

    def test_backend_failure_leaves_state_untouched(self, rose, fake_backend):
        catalog = CatalogAggregate(catalog_id=12, backend=fake_backend)
        catalog.add_product(rose)
        version = catalog.version
        fake_backend.unavailable = True
        with pytest.raises(BackendUnavailable):
            catalog.add_override(101, {"catalog_price": 80})
        assert catalog.get_view_product(101).price == 100
        assert catalog.version == version

    def test_version_increments_on_mutation(self, rose):
        catalog = CatalogAggregate()
        assert catalog.version == 0
        catalog.add_product(rose)
        catalog.add_override(101, {"catalog_price": 1})
        assert catalog.version == 2


class TestRemoval:
    def test_remove_drops_membership_and_override(self, rose):
        catalog = CatalogAggregate()
        catalog.add_product(rose)
        catalog.add_override(101, {"catalog_price": 80})
        assert catalog.remove_product(101) is True
        assert catalog.list_view_products() == []
        assert 101 not in catalog

        catalog.add_product(rose)
        assert catalog.get_view_product(101).price == 100

    def test_remove_unknown_is_false(self):
        assert CatalogAggregate().remove_product(5) is False

    def test_remove_pending_custom_is_local(self, fake_backend):
        catalog = CatalogAggregate(backend=fake_backend)
        custom = catalog.create_custom_product({"name": "Caja", "price": "20.000"})
        assert catalog.remove_product(custom.ref) is True
        assert catalog.pending_custom_products() == []
        assert not any(c[0] == "delete_custom_product" for c in fake_backend.calls)

    def test_remove_persisted_custom_deletes_server_side(self, fake_backend):
        catalog = CatalogAggregate(catalog_id=12, backend=fake_backend)
        custom = catalog.create_custom_product({"name": "Caja", "price": 20000})
        catalog.remove_product(custom.id)
        assert ("delete_custom_product", custom.id) in fake_backend.calls
        assert len(catalog) == 0

    def test_remove_regular_product_does_not_delete_server_side(self, rose, fake_backend):
        catalog = CatalogAggregate(catalog_id=12, backend=fake_backend)
        catalog.add_product(rose)
        catalog.remove_product(101)
        assert not any(c[0] == "delete_custom_product" for c in fake_backend.calls)


class TestCustomProducts:
    def test_unpersisted_catalog_assigns_pending_ids(self):
        catalog = CatalogAggregate()
        first = catalog.create_custom_product({"name": "Caja", "price": "20.000"})
        second = catalog.create_custom_product({"name": "Caja", "price": "20.000"})
        assert isinstance(first.ref, Pending)
        assert first.ref != second.ref
        assert catalog.is_pending(first.ref)
        assert len(catalog.pending_custom_products()) == 2
        view = catalog.get_view_product(first.ref)
        assert view.is_custom is True
        assert view.price == 20000

    def test_persisted_catalog_gets_permanent_id(self, fake_backend):
        catalog = CatalogAggregate(catalog_id=12, backend=fake_backend)
        custom = catalog.create_custom_product({"name": "Caja", "price": 20000})
        assert isinstance(custom.ref, Persisted)
        assert catalog.pending_custom_products() == []
        assert ("create_custom_product", 12, "Caja") in fake_backend.calls

    def test_creation_failure_propagates(self, fake_backend):
        catalog = CatalogAggregate(catalog_id=12, backend=fake_backend)
        fake_backend.unavailable = True
        with pytest.raises(BackendUnavailable):
            catalog.create_custom_product({"name": "Caja", "price": 1})
        assert len(catalog) == 0

    @pytest.mark.parametrize("data", [{"price": 10}, {"name": "  ", "price": 10}, {"name": "Caja", "price": "gratis"}])
    def test_invalid_data_rejected(self, data):
        with pytest.raises(ValueError):
            CatalogAggregate().create_custom_product(data)

    def test_images_are_normalized(self):
        custom = CatalogAggregate().create_custom_product(
            {"name": "Caja", "price": 1, "image": "false", "images": ["cdn.example.com/a.jpg", None]}
        )
        assert custom.image == ""
        assert custom.images == ["http://cdn.example.com/a.jpg"]

    def test_update_custom_product(self):
        catalog = CatalogAggregate()
        custom = catalog.create_custom_product({"name": "Caja", "price": 1000})
        updated = catalog.update_custom_product(custom.ref, {"price": "2.000"})
        assert updated.name == "Caja"
        assert catalog.get_view_product(custom.ref).price == 2000
        assert catalog.pending_custom_products()[0].price == 2000

    def test_override_on_custom_product_is_flagged_custom(self):
        catalog = CatalogAggregate()
        custom = catalog.create_custom_product({"name": "Caja", "price": 1000})
        view = catalog.add_override(custom.ref, {"catalog_price": 900})
        assert view.is_custom is True
        assert view.price == 900
        assert view.original_price == 1000


class TestSave:
    def test_save_creates_catalog_then_pending_products(self, rose, fake_backend):
        catalog = CatalogAggregate(name="Dia de la madre", backend=fake_backend)
        catalog.add_product(rose)
        custom = catalog.create_custom_product({"name": "Caja", "price": 20000})
        catalog.add_override(custom.ref, {"catalog_price": 18000})

        views = catalog.save()

        assert catalog.catalog_id == 55
        name, products = fake_backend.calls[0][1], fake_backend.calls[0][2]
        assert fake_backend.calls[0][0] == "create_catalog"
        assert name == "Dia de la madre"
        assert [p["id"] for p in products] == [101]
        assert catalog.pending_custom_products() == []
        assert [v.key for v in views] == ["p:101", "p:900"]
        assert views[1].price == 18000
        assert views[1].is_custom is True

        assert ("update_catalog_product", 55, Persisted(900)) in fake_backend.calls
        sent = fake_backend.override_payloads[0]
        assert sent["id"] == 900
        assert sent["product_id"] == 0
        assert sent["catalog_price"] == 18000
        assert sent["is_custom"] is True

    def test_custom_product_without_override_sends_no_override(self, fake_backend):
        catalog = CatalogAggregate(backend=fake_backend)
        catalog.create_custom_product({"name": "Caja", "price": 1})
        catalog.save("Catalogo")
        assert [c[0] for c in fake_backend.calls] == ["create_catalog", "create_custom_product"]

    def test_failed_override_write_is_resent_on_next_save(self, fake_backend):
        catalog = CatalogAggregate(backend=fake_backend)
        custom = catalog.create_custom_product({"name": "Caja", "price": 20000})
        catalog.add_override(custom.ref, {"catalog_price": 18000, "catalog_name": "Caja regalo"})
        fake_backend.fail_override_writes = True

        with pytest.raises(BackendUnavailable):
            catalog.save("Catalogo")
        assert catalog.pending_custom_products() == []

        fake_backend.fail_override_writes = False
        catalog.save()
        update = [c for c in fake_backend.calls if c[0] == "update_catalog"][-1]
        products = {p["id"]: p for p in update[3]}
        assert products[900]["catalog_price"] == 18000
        assert products[900]["catalog_name"] == "Caja regalo"

    def test_failed_creates_stay_pending(self, fake_backend):
        catalog = CatalogAggregate(backend=fake_backend)
        catalog.create_custom_product({"name": "Buena", "price": 1})
        bad = catalog.create_custom_product({"name": "Mala", "price": 1})
        fake_backend.fail_creates_named.add("Mala")

        with pytest.raises(BackendUnavailable):
            catalog.save("Catalogo")

        assert catalog.is_persisted
        assert [p.ref for p in catalog.pending_custom_products()] == [bad.ref]
        assert len(catalog) == 2

        fake_backend.fail_creates_named.clear()
        catalog.save()
        assert catalog.pending_custom_products() == []
        assert fake_backend.calls[-2][0] == "update_catalog"

    def test_save_without_backend(self):
        with pytest.raises(RuntimeError):
            CatalogAggregate().save("x")


class TestLoad:
    def test_load_reconciles_rows(self, fake_backend):
        fake_backend.rows = [
            {
                "id": 101, "name": "Ramo de rosas", "price": "100.000",
                "catalog_price": "90.000", "images": [{"id": 1, "src": "https://cdn.example.com/r.jpg"}],
            },
            {"id": 202},
            {
                "id": 31, "product_id": 0, "name": "Caja", "price": "15.000",
                "catalog_name": "Caja regalo", "catalog_images": '["https:\\\\/\\\\/cdn.example.com\\\\/c.jpg"]',
                "is_custom": True,
            },
            {"id": 404, "catalog_name": "Perdido"},
            {"id": 0},
        ]
        catalog = CatalogAggregate.load(12, fake_backend)
        views = {v.key: v for v in catalog.list_view_products()}

        assert list(views) == ["p:101", "p:202", "p:31", "p:404"]
        assert views["p:101"].price == 90000
        assert views["p:101"].original_price == 100000
        assert views["p:101"].image == "https://cdn.example.com/r.jpg"

        assert views["p:202"].name == "Tulipanes"
        assert ("get_product", 202) in fake_backend.calls

        assert views["p:31"].is_custom is True
        assert views["p:31"].name == "Caja regalo"
        assert views["p:31"].price == 15000
        assert views["p:31"].image == "https://cdn.example.com/c.jpg"

        assert views["p:404"].is_unavailable is True
        assert views["p:404"].name == "Perdido"

    def test_duplicate_rows_collapse(self, fake_backend):
        fake_backend.rows = [
            {"id": 101, "name": "Rosas", "price": "1.000", "catalog_price": "900"},
            {"id": 101, "name": "Rosas", "price": "1.000", "catalog_price": "800"},
        ]
        catalog = CatalogAggregate.load(12, fake_backend)
        views = catalog.list_view_products()
        assert len(views) == 1
        assert views[0].price == 800

    def test_catalog_fetch_failure_propagates(self, fake_backend):
        fake_backend.unavailable = True
        with pytest.raises(BackendUnavailable):
            CatalogAggregate.load(12, fake_backend)


def test_membership_queries_wait_for_the_catalog_lock(rose):
    catalog = CatalogAggregate()
    catalog.add_product(rose)
    results = []

    def query():
        results.append((len(catalog), 101 in catalog, catalog.is_pending(101)))

    with catalog._lock:
        worker = threading.Thread(target=query)
        worker.start()
        worker.join(timeout=0.2)
        assert worker.is_alive()
        assert results == []
    worker.join(timeout=5)
    assert results == [(1, True, False)]
