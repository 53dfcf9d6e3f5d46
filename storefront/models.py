# storefront/models.py
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .images import image_list
from .prices import discount_percentage

# A price as it arrives from the backend or a form: already numeric, or a
# source-formatted string such as "COP 19.000" or "19,99".
PriceValue = Union[int, float, str]


@dataclass(frozen=True)
class Persisted:
    """Product identity assigned by the backend."""
    id: int

    @property
    def key(self) -> str:
        return f"p:{self.id}"


@dataclass(frozen=True)
class Pending:
    """Temporary identity of a custom product not yet created server-side."""
    local_id: str

    @property
    def key(self) -> str:
        return f"l:{self.local_id}"


ProductRef = Union[Persisted, Pending]


def as_ref(value: Any) -> ProductRef:
    """
    Coerce an identifier into a ProductRef.
    Positive integers (or digit strings) are backend ids; any other string is
    a local temporary id.
    """
    if isinstance(value, (Persisted, Pending)):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Invalid product id: {value!r}")
    if isinstance(value, int):
        if value <= 0:
            raise ValueError(f"Invalid product id: {value!r}")
        return Persisted(value)
    if isinstance(value, str) and value.strip():
        s = value.strip()
        if s.isdigit() and int(s) > 0:
            return Persisted(int(s))
        return Pending(s)
    raise ValueError(f"Invalid product id: {value!r}")


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _text(value: Any) -> str:
    if value is None or value is False:
        return ""
    return str(value)


@dataclass
class SourceImage:
    src: str
    id: int = 0
    alt: str = ""


@dataclass
class SourceProduct:
    """
    Item owned by the external commerce catalog. Read-only to this package;
    prices keep the backend's own string formatting.
    """
    id: int
    name: str = ""
    price: PriceValue = ""
    regular_price: Optional[PriceValue] = None
    sale_price: Optional[PriceValue] = None
    description: str = ""
    short_description: str = ""
    sku: str = ""
    images: List[SourceImage] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "SourceProduct":
        images: List[SourceImage] = []
        for img in data.get("images") or []:
            if isinstance(img, dict):
                images.append(
                    SourceImage(
                        src=img.get("src"),
                        id=_as_int(img.get("id")),
                        alt=_text(img.get("alt")),
                    )
                )
            elif isinstance(img, str):
                images.append(SourceImage(src=img))
        return cls(
            id=_as_int(data.get("id")),
            name=_text(data.get("name")),
            price=data.get("price") if data.get("price") is not None else "",
            regular_price=data.get("regular_price") or None,
            sale_price=data.get("sale_price") or None,
            description=_text(data.get("description")),
            short_description=_text(data.get("short_description")),
            sku=_text(data.get("sku")),
            images=images,
        )


@dataclass
class CustomProduct:
    """Item that only exists inside one catalog."""
    ref: ProductRef
    name: str
    price: PriceValue = 0
    sku: str = ""
    description: str = ""
    short_description: str = ""
    image: Any = None
    images: List[Any] = field(default_factory=list)
    is_custom: bool = True

    @property
    def id(self):
        return self.ref.id if isinstance(self.ref, Persisted) else self.ref.local_id

    @classmethod
    def from_payload(cls, data: Dict[str, Any], ref: Optional[ProductRef] = None) -> "CustomProduct":
        if ref is None:
            ref = as_ref(data.get("id"))
        return cls(
            ref=ref,
            name=_text(data.get("name")),
            price=data.get("price") if data.get("price") is not None else 0,
            sku=_text(data.get("sku")),
            description=_text(data.get("description")),
            short_description=_text(data.get("short_description")),
            image=data.get("image"),
            images=image_list(data.get("images")),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "price": self.price,
            "sku": self.sku,
            "description": self.description,
            "short_description": self.short_description,
            "image": self.image or "",
            "images": list(self.images),
            "is_custom": True,
        }


OVERRIDE_FIELDS = (
    "catalog_price",
    "catalog_name",
    "catalog_description",
    "catalog_short_description",
    "catalog_sku",
    "catalog_image",
    "catalog_images",
)


@dataclass
class OverrideRecord:
    """
    Per-catalog overrides for one product. Every field is optional: None
    (or an empty value) means "use the product's own field".
    """
    ref: ProductRef
    product_id: int = 0
    catalog_price: Optional[PriceValue] = None
    catalog_name: Optional[str] = None
    catalog_description: Optional[str] = None
    catalog_short_description: Optional[str] = None
    catalog_sku: Optional[str] = None
    catalog_image: Any = None
    catalog_images: List[Any] = field(default_factory=list)
    is_custom: bool = False
    product_price: Optional[PriceValue] = None

    @classmethod
    def from_patch(cls, ref: ProductRef, patch: Dict[str, Any]) -> "OverrideRecord":
        is_custom = bool(patch.get("is_custom", False))
        backing_id = ref.id if isinstance(ref, Persisted) and not is_custom else 0
        return cls(
            ref=ref,
            product_id=_as_int(patch.get("product_id"), backing_id),
            catalog_price=patch.get("catalog_price"),
            catalog_name=patch.get("catalog_name"),
            catalog_description=patch.get("catalog_description"),
            catalog_short_description=patch.get("catalog_short_description"),
            catalog_sku=patch.get("catalog_sku"),
            catalog_image=patch.get("catalog_image"),
            catalog_images=image_list(patch.get("catalog_images")),
            is_custom=is_custom,
            product_price=patch.get("product_price"),
        )

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.ref.id if isinstance(self.ref, Persisted) else 0,
            "product_id": self.product_id,
        }
        for name in OVERRIDE_FIELDS:
            payload[name] = getattr(self, name)
        payload["catalog_images"] = list(self.catalog_images)
        if self.is_custom:
            payload["is_custom"] = True
        return payload


@dataclass
class ViewProduct:
    """
    Unified product as shown inside a catalog: resolved display fields plus
    the unresolved source so callers can show "was/now" prices.
    """
    ref: ProductRef
    product_id: int
    name: str
    price: float
    original_price: float
    description: str = ""
    short_description: str = ""
    # plain-text teaser of the short description, else the description
    excerpt: str = ""
    sku: str = ""
    image: str = ""
    images: List[str] = field(default_factory=list)
    regular_price: Optional[float] = None
    sale_price: Optional[float] = None
    is_custom: bool = False
    is_unavailable: bool = False
    source: Union[SourceProduct, CustomProduct, None] = None

    @property
    def id(self):
        return self.ref.id if isinstance(self.ref, Persisted) else self.ref.local_id

    @property
    def key(self) -> str:
        return self.ref.key

    @property
    def has_price_override(self) -> bool:
        return self.original_price != self.price

    @property
    def discount_percentage(self) -> int:
        return discount_percentage(self.original_price, self.price)


@dataclass
class CartEntry:
    product_id: Any
    quantity: int
    captured_price: PriceValue
    name: str = ""
    image: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "captured_price": self.captured_price,
            "name": self.name,
            "image": self.image,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CartEntry":
        return cls(
            product_id=data.get("product_id"),
            quantity=data.get("quantity"),
            captured_price=data.get("captured_price"),
            name=_text(data.get("name")),
            image=_text(data.get("image")),
        )
