# storefront/cart.py
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from . import storage
from .diff import diff_cart_prices
from .images import resolve_image
from .logger import get_logger
from .models import CartEntry, CustomProduct, SourceProduct, ViewProduct
from .overlay import source_price
from .prices import ParseError, parse_price, price_or_zero

logger = get_logger(__name__)

CART_STORAGE_KEY = os.getenv("CART_STORAGE_KEY", "cart_items")
COUPON_STORAGE_KEY = os.getenv("COUPON_STORAGE_KEY", "cart_coupon")
FREE_SHIPPING_THRESHOLD = float(os.getenv("FREE_SHIPPING_THRESHOLD", "100000"))
SHIPPING_FEE = float(os.getenv("SHIPPING_FEE", "10000"))


@dataclass
class CartSummary:
    subtotal: float
    discount: float
    shipping: float
    total: float
    item_count: int


def _valid_quantity(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


def _product_fields(product: Any) -> Tuple[Any, Any, str, str]:
    """(product_id, price, name, image) for anything that can go in the cart."""
    if isinstance(product, ViewProduct):
        return product.id, product.price, product.name, product.image
    if isinstance(product, SourceProduct):
        image = product.images[0] if product.images else None
        return product.id, source_price(product), product.name, resolve_image(image)
    if isinstance(product, CustomProduct):
        return product.id, product.price, product.name, resolve_image(product.image)
    if isinstance(product, dict):
        image = product.get("image")
        if image is None and product.get("images"):
            image = product["images"][0]
        return (
            product.get("id"),
            product.get("price"),
            str(product.get("name") or ""),
            resolve_image(image),
        )
    raise TypeError(f"Cannot add {type(product).__name__} to the cart")


class CartLedger:
    """
    Cart persisted in the local key-value store. Every read rehydrates from
    storage and every mutation writes the whole collection back.

    The read-modify-write is not atomic across processes: two writers
    sharing a DB_PATH can lose each other's updates.
    """

    def __init__(self, items_key: str = CART_STORAGE_KEY, coupon_key: str = COUPON_STORAGE_KEY):
        self.items_key = items_key
        self.coupon_key = coupon_key

    def _load(self) -> List[CartEntry]:
        raw = storage.get_json(self.items_key, [])
        if not isinstance(raw, list):
            logger.warning("Cart data under %s is not a list; starting empty.", self.items_key)
            return []

        entries: List[CartEntry] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            entry = CartEntry.from_dict(item)
            if entry.product_id in (None, "", 0):
                continue
            if isinstance(entry.quantity, int) and entry.quantity < 1:
                continue
            entries.append(entry)
        return entries

    def _save(self, entries: List[CartEntry]):
        storage.set_json(self.items_key, [e.to_dict() for e in entries])

    @staticmethod
    def _find(entries: List[CartEntry], product_id: Any) -> Optional[int]:
        for i, entry in enumerate(entries):
            if entry.product_id == product_id:
                return i
        return None

    def items(self) -> List[CartEntry]:
        return self._load()

    def add_item(self, product: Any, qty: int = 1) -> List[CartEntry]:
        if not _valid_quantity(qty):
            raise ValueError(f"Quantity must be a positive integer, got {qty!r}")

        product_id, price, name, image = _product_fields(product)
        if product_id in (None, "", 0):
            raise ValueError("Cannot add a product without an id to the cart")

        entries = self._load()
        idx = self._find(entries, product_id)
        if idx is not None:
            # Price stays as captured when the product was first added
            entry = entries[idx]
            current = entry.quantity if _valid_quantity(entry.quantity) else 0
            entry.quantity = current + qty
        else:
            entries.append(
                CartEntry(
                    product_id=product_id,
                    quantity=qty,
                    captured_price=price_or_zero(price, f"product {product_id}"),
                    name=name,
                    image=image,
                )
            )
        self._save(entries)
        logger.debug("Added %d x %s to cart.", qty, product_id)
        return entries

    def set_quantity(self, product_id: Any, qty: int) -> List[CartEntry]:
        if not isinstance(qty, int) or isinstance(qty, bool):
            raise ValueError(f"Quantity must be an integer, got {qty!r}")
        if qty <= 0:
            return self.remove_item(product_id)

        entries = self._load()
        idx = self._find(entries, product_id)
        if idx is None:
            logger.debug("set_quantity for %s not in cart; ignoring.", product_id)
            return entries
        entries[idx].quantity = qty
        self._save(entries)
        return entries

    def remove_item(self, product_id: Any) -> List[CartEntry]:
        entries = [e for e in self._load() if e.product_id != product_id]
        self._save(entries)
        return entries

    def clear(self):
        """Empty the cart. An applied coupon stays until remove_coupon()."""
        self._save([])

    def total(self) -> float:
        """
        Sum of captured price x quantity. Entries with a malformed price or
        quantity are skipped; this never raises.
        """
        total = 0
        for entry in self._load():
            if not _valid_quantity(entry.quantity):
                logger.warning(
                    "Skipping cart entry %s with invalid quantity %r.",
                    entry.product_id, entry.quantity,
                )
                continue
            try:
                price = parse_price(entry.captured_price)
            except ParseError as e:
                logger.warning("Skipping cart entry %s: %s", entry.product_id, e)
                continue
            total += price * entry.quantity
        return total

    def item_count(self) -> int:
        return sum(e.quantity for e in self._load() if _valid_quantity(e.quantity))

    def coupon(self) -> Optional[Dict[str, Any]]:
        data = storage.get_json(self.coupon_key)
        if not isinstance(data, dict) or not data.get("applied"):
            return None
        return data

    def apply_coupon(self, code: str, percent: float):
        code = (code or "").strip()
        if not code:
            raise ValueError("Coupon code is required")
        if not 0 < percent <= 100:
            raise ValueError(f"Coupon discount must be in (0, 100], got {percent!r}")
        storage.set_json(
            self.coupon_key, {"applied": True, "code": code, "discount": percent}
        )

    def remove_coupon(self):
        storage.delete_value(self.coupon_key)

    def summary(self) -> CartSummary:
        subtotal = self.total()
        coupon = self.coupon()
        discount = 0
        if coupon:
            try:
                discount = subtotal * float(coupon.get("discount", 0)) / 100
            except (TypeError, ValueError):
                logger.warning("Ignoring malformed coupon %r.", coupon)

        if subtotal <= 0 or subtotal > FREE_SHIPPING_THRESHOLD:
            shipping = 0
        else:
            shipping = SHIPPING_FEE

        return CartSummary(
            subtotal=subtotal,
            discount=discount,
            shipping=shipping,
            total=subtotal - discount + shipping,
            item_count=self.item_count(),
        )

    def price_changes(self, current_prices: Dict[Any, Any]) -> List[Tuple[CartEntry, float, float]]:
        """Entries whose captured price no longer matches the catalog."""
        return diff_cart_prices(self._load(), current_prices)
