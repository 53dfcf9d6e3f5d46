# backend/catalogs.py
from typing import Any, Dict, List, Optional

from storefront.logger import get_logger
from storefront.models import CustomProduct, OverrideRecord, Persisted, SourceProduct
from storefront.overlay import ResolutionGap
from storefront.prices import price_or_zero

from .client import BackendClient, BackendError, BackendNotFound

logger = get_logger(__name__)

CATALOG_NAMESPACE = "floresinc/v1/catalogs"
PRODUCTS_PATH = "wc/v3/products"


class CatalogBackend:
    """Catalog and product endpoints of the commerce backend."""

    def __init__(self, client: Optional[BackendClient] = None):
        self.client = client or BackendClient()

    # Reads

    def get_catalog(self, catalog_id: int) -> Dict[str, Any]:
        return self.client.get(f"{CATALOG_NAMESPACE}/{catalog_id}")

    def list_catalog_products(self, catalog_id: int) -> List[Dict[str, Any]]:
        data = self.client.get(f"{CATALOG_NAMESPACE}/{catalog_id}/products")
        if not isinstance(data, list):
            logger.warning(
                "Unexpected products payload for catalog %s: %r", catalog_id, type(data)
            )
            return []
        return [row for row in data if isinstance(row, dict)]

    def get_product(self, product_id: int) -> SourceProduct:
        try:
            data = self.client.get(f"{PRODUCTS_PATH}/{product_id}")
        except BackendNotFound as e:
            raise ResolutionGap(Persisted(product_id), str(e)) from e
        if not isinstance(data, dict) or not data.get("id"):
            raise ResolutionGap(Persisted(product_id), "empty product payload")
        return SourceProduct.from_payload(data)

    # Writes

    def create_catalog(self, name: str, products: List[Dict[str, Any]]) -> int:
        data = self.client.send(
            "POST", CATALOG_NAMESPACE, {"name": name, "products": products}
        )
        if not isinstance(data, dict) or not data.get("id"):
            raise BackendError("Catalog creation response did not include an id")
        logger.info("Created catalog %s (%s) with %d products.", data["id"], name, len(products))
        return int(data["id"])

    def update_catalog(self, catalog_id: int, name: Optional[str], products: List[Dict[str, Any]]) -> Any:
        payload: Dict[str, Any] = {"products": products}
        if name is not None:
            payload["name"] = name
        return self.client.send("PUT", f"{CATALOG_NAMESPACE}/{catalog_id}", payload)

    def delete_catalog(self, catalog_id: int) -> Any:
        return self.client.send("DELETE", f"{CATALOG_NAMESPACE}/{catalog_id}")

    def update_catalog_product(self, catalog_id: int, override: OverrideRecord) -> Any:
        payload = override.to_payload()
        return self.client.send(
            "PUT", f"{CATALOG_NAMESPACE}/{catalog_id}/products/{payload['id']}", payload
        )

    def create_custom_product(self, catalog_id: int, product: CustomProduct) -> CustomProduct:
        if not isinstance(catalog_id, int) or catalog_id <= 0:
            raise ValueError(f"Invalid catalog id: {catalog_id!r}")
        payload = product.to_payload()
        payload["catalog_id"] = catalog_id
        payload["price"] = price_or_zero(product.price, f"custom product {product.name!r}")

        data = self.client.send("POST", f"{CATALOG_NAMESPACE}/custom-products", payload)
        if not isinstance(data, dict) or not data.get("id"):
            logger.error("Unexpected custom product creation response: %r", data)
            raise BackendError("Custom product creation response did not include an id")

        if data.get("catalog_id") not in (None, catalog_id):
            logger.warning(
                "Custom product %s created with catalog_id=%s, expected %s.",
                data["id"], data.get("catalog_id"), catalog_id,
            )
        logger.info("Created custom product %s in catalog %s.", data["id"], catalog_id)
        return CustomProduct.from_payload({**payload, **data}, ref=Persisted(int(data["id"])))

    def update_custom_product(self, catalog_id: int, product: CustomProduct) -> CustomProduct:
        if not isinstance(product.ref, Persisted):
            raise ValueError(f"Custom product {product.ref.key} has not been created yet")
        payload = product.to_payload()
        payload["catalog_id"] = catalog_id
        payload["price"] = price_or_zero(product.price, f"custom product {product.name!r}")
        data = self.client.send(
            "PUT", f"{CATALOG_NAMESPACE}/custom-products/{product.ref.id}", payload
        )
        if isinstance(data, dict) and data.get("id"):
            return CustomProduct.from_payload({**payload, **data}, ref=product.ref)
        return product

    def delete_custom_product(self, product_id: int) -> Any:
        return self.client.send("DELETE", f"{CATALOG_NAMESPACE}/custom-products/{product_id}")
