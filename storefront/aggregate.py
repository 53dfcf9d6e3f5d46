# storefront/aggregate.py
import dataclasses
import threading
import uuid
from typing import Any, Dict, List, Optional, Union

from backend.client import BackendError, BackendUnavailable

from .images import is_fallback, normalize_image_urls, resolve_image_field
from .logger import get_logger
from .models import (
    OVERRIDE_FIELDS,
    CustomProduct,
    OverrideRecord,
    Pending,
    Persisted,
    ProductRef,
    SourceProduct,
    ViewProduct,
    as_ref,
)
from .overlay import ResolutionGap, placeholder_view_product, resolve_view_product
from .prices import parse_price

logger = get_logger(__name__)

Patch = Union[OverrideRecord, Dict[str, Any]]


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _custom_from_data(ref: ProductRef, data: Dict[str, Any]) -> CustomProduct:
    """Validate custom product form data; the price must be parseable."""
    name = str(data.get("name") or "").strip()
    if not name:
        raise ValueError("Custom product name is required")
    price = parse_price(data.get("price"))

    image = data.get("image")
    image_url = resolve_image_field(image) if image not in (None, "") else ""
    if image_url and is_fallback(image_url):
        image_url = ""

    return CustomProduct(
        ref=ref,
        name=name,
        price=price,
        sku=str(data.get("sku") or ""),
        description=str(data.get("description") or ""),
        short_description=str(data.get("short_description") or ""),
        image=image_url,
        images=normalize_image_urls(data.get("images") or []),
    )


class CatalogAggregate:
    """
    The products of one catalog: external items and custom items, each with
    at most one override record, keyed by product identity.

    Custom products created before the catalog exists server-side get a
    Pending ref and are created by save(). All mutations are serialized by a
    per-catalog lock and bump `version`.
    """

    def __init__(self, catalog_id: Optional[int] = None, name: str = "", backend=None):
        self.catalog_id = catalog_id
        self.name = name
        self.backend = backend
        self.version = 0
        self._lock = threading.RLock()
        # insertion-ordered membership: key -> ref
        self._members: Dict[str, ProductRef] = {}
        self._sources: Dict[str, Union[SourceProduct, CustomProduct]] = {}
        self._overrides: Dict[str, OverrideRecord] = {}
        self._pending: Dict[str, CustomProduct] = {}

    @property
    def is_persisted(self) -> bool:
        return bool(self.catalog_id) and self.catalog_id > 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)

    def __contains__(self, product_id: Any) -> bool:
        try:
            key = as_ref(product_id).key
        except ValueError:
            return False
        with self._lock:
            return key in self._members

    def _bump(self):
        self.version += 1

    def _fetch_source(self, ref: ProductRef) -> Optional[SourceProduct]:
        """Look up an external product; lookup failures degrade to None."""
        if self.backend is None or not isinstance(ref, Persisted):
            return None
        try:
            return self.backend.get_product(ref.id)
        except (ResolutionGap, BackendError) as e:
            logger.warning("Could not resolve product %s: %s", ref.id, e)
            return None

    def _view(self, key: str) -> ViewProduct:
        ref = self._members[key]
        source = self._sources.get(key)
        override = self._overrides.get(key)
        if source is None and override is None:
            return placeholder_view_product(ref)
        return resolve_view_product(source, override)

    # Queries

    def list_view_products(self) -> List[ViewProduct]:
        with self._lock:
            return [self._view(key) for key in self._members]

    def get_view_product(self, product_id: Any) -> ViewProduct:
        with self._lock:
            key = as_ref(product_id).key
            if key not in self._members:
                raise KeyError(product_id)
            return self._view(key)

    def pending_custom_products(self) -> List[CustomProduct]:
        with self._lock:
            return list(self._pending.values())

    def is_pending(self, product_id: Any) -> bool:
        key = as_ref(product_id).key
        with self._lock:
            return key in self._pending

    # Mutations

    def add_product(self, product: Union[SourceProduct, int]) -> ViewProduct:
        """Add an external catalog item (or its id) without overrides."""
        with self._lock:
            if isinstance(product, SourceProduct):
                ref = Persisted(product.id)
                source = product
            else:
                ref = as_ref(product)
                source = self._fetch_source(ref)
            self._members[ref.key] = ref
            if source is not None:
                self._sources[ref.key] = source
            self._bump()
            return self._view(ref.key)

    def add_override(self, product_id: Any, patch: Patch) -> ViewProduct:
        """
        Set the override record for a product, replacing any previous one.
        Adds the product to the catalog if it is not a member yet. In a
        persisted catalog the record is saved through the backend first.
        """
        with self._lock:
            ref = as_ref(product_id)
            key = ref.key
            if isinstance(patch, OverrideRecord):
                override = dataclasses.replace(patch, ref=ref, catalog_images=list(patch.catalog_images))
            else:
                override = OverrideRecord.from_patch(ref, patch)

            source = self._sources.get(key)
            if isinstance(source, CustomProduct):
                override.is_custom = True
                override.product_id = 0

            if key not in self._members and source is None and not override.is_custom:
                source = self._fetch_source(ref)

            if self.is_persisted and self.backend is not None and isinstance(ref, Persisted):
                self.backend.update_catalog_product(self.catalog_id, override)

            self._members[key] = ref
            if source is not None:
                self._sources[key] = source
            self._overrides[key] = override
            self._bump()
            logger.debug("Override for %s set (catalog version %d).", key, self.version)
            return self._view(key)

    def remove_product(self, product_id: Any) -> bool:
        """
        Drop a product and its override. Persisted custom products are
        deleted through the backend; returns False if it was not a member.
        """
        with self._lock:
            ref = as_ref(product_id)
            key = ref.key
            if key not in self._members:
                return False

            if key in self._pending:
                self._pending.pop(key)
            else:
                source = self._sources.get(key)
                override = self._overrides.get(key)
                is_custom = isinstance(source, CustomProduct) or bool(override and override.is_custom)
                if (
                    is_custom
                    and isinstance(ref, Persisted)
                    and self.is_persisted
                    and self.backend is not None
                ):
                    self.backend.delete_custom_product(ref.id)

            self._members.pop(key)
            self._sources.pop(key, None)
            self._overrides.pop(key, None)
            self._bump()
            return True

    def create_custom_product(self, data: Dict[str, Any]) -> CustomProduct:
        """
        Create a catalog-only product. In a persisted catalog the backend
        assigns its permanent id; otherwise it gets a local temporary id and
        waits for save().
        """
        with self._lock:
            local_ref = Pending(f"tmp-{uuid.uuid4().hex}")
            product = _custom_from_data(local_ref, data)

            if self.is_persisted and self.backend is not None:
                product = self.backend.create_custom_product(self.catalog_id, product)
            else:
                self._pending[local_ref.key] = product
                logger.info(
                    "Custom product %r queued as %s until the catalog is saved.",
                    product.name, local_ref.local_id,
                )

            self._members[product.ref.key] = product.ref
            self._sources[product.ref.key] = product
            self._bump()
            return product

    def update_custom_product(self, product_id: Any, data: Dict[str, Any]) -> CustomProduct:
        with self._lock:
            ref = as_ref(product_id)
            current = self._sources.get(ref.key)
            if not isinstance(current, CustomProduct):
                raise KeyError(f"No custom product {ref.key} in this catalog")

            merged = {
                "name": current.name,
                "price": current.price,
                "sku": current.sku,
                "description": current.description,
                "short_description": current.short_description,
                "image": current.image,
                "images": current.images,
            }
            merged.update(data)
            product = _custom_from_data(ref, merged)

            if isinstance(ref, Persisted) and self.is_persisted and self.backend is not None:
                product = self.backend.update_custom_product(self.catalog_id, product)
            elif ref.key in self._pending:
                self._pending[ref.key] = product

            self._sources[ref.key] = product
            self._bump()
            return product

    def _member_payload(self, key: str) -> Dict[str, Any]:
        override = self._overrides.get(key)
        if override is not None:
            return override.to_payload()
        ref = self._members[key]
        source = self._sources.get(key)
        payload: Dict[str, Any] = {"id": ref.id, "product_id": ref.id}
        if isinstance(source, CustomProduct):
            payload["product_id"] = 0
            payload["is_custom"] = True
        return payload

    def _confirm(self, pending_key: str, created: CustomProduct):
        """Swap a pending custom product for its persisted version, in place."""
        new_key = created.ref.key
        self._members = {
            (new_key if k == pending_key else k): (created.ref if k == pending_key else r)
            for k, r in self._members.items()
        }
        self._sources.pop(pending_key, None)
        self._sources[new_key] = created
        override = self._overrides.pop(pending_key, None)
        if override is not None:
            self._overrides[new_key] = dataclasses.replace(
                override, ref=created.ref, product_id=0, is_custom=True
            )
        self._pending.pop(pending_key, None)

    def save(self, name: Optional[str] = None) -> List[ViewProduct]:
        """
        Persist the catalog: create or update it, then create every pending
        custom product and send the overrides it collected while pending.
        Products that fail to be created stay pending and a
        BackendUnavailable is raised once all have been attempted.
        """
        with self._lock:
            if self.backend is None:
                raise RuntimeError("Catalog has no backend to save to")
            if name is not None:
                self.name = name

            products = [
                self._member_payload(key) for key in self._members if key not in self._pending
            ]
            if self.is_persisted:
                self.backend.update_catalog(self.catalog_id, self.name, products)
            else:
                self.catalog_id = self.backend.create_catalog(self.name, products)

            failed = 0
            for key, custom in list(self._pending.items()):
                try:
                    created = self.backend.create_custom_product(self.catalog_id, custom)
                except (BackendError, ValueError) as e:
                    logger.error(
                        "Failed to create custom product %r for catalog %s: %s",
                        custom.name, self.catalog_id, e,
                    )
                    failed += 1
                    continue
                self._confirm(key, created)

                # Overrides made while pending only exist locally until now
                override = self._overrides.get(created.ref.key)
                if override is None:
                    continue
                try:
                    self.backend.update_catalog_product(self.catalog_id, override)
                except BackendError as e:
                    logger.error(
                        "Failed to save overrides of custom product %s in catalog %s: %s",
                        created.ref.id, self.catalog_id, e,
                    )
                    failed += 1

            self._bump()
            if failed:
                raise BackendUnavailable(
                    f"{failed} custom product(s) could not be fully saved; "
                    "save again to retry"
                )
            return [self._view(key) for key in self._members]

    # Loading

    def _ingest_row(self, row: Dict[str, Any]):
        row_id = _as_int(row.get("id"))
        product_id = _as_int(row.get("product_id"))
        is_custom = bool(row.get("is_custom")) or (
            "product_id" in row and product_id == 0
        )

        try:
            ref = as_ref(row_id if is_custom else (product_id or row_id))
        except ValueError:
            logger.warning("Skipping catalog row without a usable id: %r", row)
            return
        key = ref.key

        if is_custom:
            image = row.get("image") or row.get("catalog_image")
            images = row.get("images") or row.get("catalog_images") or []
            source: Optional[Union[SourceProduct, CustomProduct]] = CustomProduct.from_payload(
                {**row, "image": image, "images": images,
                 "price": row.get("price") or row.get("catalog_price") or 0},
                ref=ref,
            )
            override = OverrideRecord.from_patch(ref, {**row, "is_custom": True, "product_id": 0})
        else:
            if row.get("name"):
                source = SourceProduct.from_payload(
                    {**row, "id": ref.id, "price": row.get("product_price") or row.get("price")}
                )
            else:
                source = self._fetch_source(ref)
            has_override = any(row.get(f) not in (None, "", []) for f in OVERRIDE_FIELDS)
            override = OverrideRecord.from_patch(ref, row) if has_override else None

        if key in self._members:
            logger.debug("Duplicate catalog row for %s; keeping the last one.", key)
        self._members[key] = ref
        if source is not None:
            self._sources[key] = source
        else:
            self._sources.pop(key, None)
        if override is not None:
            self._overrides[key] = override
        else:
            self._overrides.pop(key, None)

    @classmethod
    def load(cls, catalog_id: int, backend, name: str = "") -> "CatalogAggregate":
        """
        Rebuild a persisted catalog from the backend. Fetch failures of the
        catalog itself propagate; individual products that cannot be resolved
        become placeholders.
        """
        aggregate = cls(catalog_id=catalog_id, name=name, backend=backend)
        rows = backend.list_catalog_products(catalog_id)
        with aggregate._lock:
            for row in rows:
                aggregate._ingest_row(row)
            aggregate._bump()
        logger.info("Loaded catalog %s with %d products.", catalog_id, len(aggregate))
        return aggregate
