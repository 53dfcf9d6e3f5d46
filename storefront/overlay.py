# storefront/overlay.py
"""
Merge a product's source of truth with the catalog's per-product overrides.

Every overridable field follows the same rule, independently of the others:
the override's value if present, else the source product's value, else a
field default ("" for text, the fallback image, 0 for prices).
"""
from typing import Any, List, Optional, Union

from bs4 import BeautifulSoup

from .images import FALLBACK_IMAGE, is_fallback, resolve_image_field
from .logger import get_logger
from .models import (
    CustomProduct,
    OverrideRecord,
    Persisted,
    ProductRef,
    SourceProduct,
    ViewProduct,
)
from .prices import Number, ParseError, parse_price

logger = get_logger(__name__)

PLACEHOLDER_NAME = "Producto no disponible"

Source = Union[SourceProduct, CustomProduct, None]


class ResolutionGap(LookupError):
    """A catalog entry references a product that has no source record."""

    def __init__(self, ref: ProductRef, reason: str = ""):
        self.ref = ref
        msg = f"No source product for {ref.key}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


def _present(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return bool(value)
    return True


def _first_present(*candidates: Any, default: Any = "") -> Any:
    for candidate in candidates:
        if _present(candidate):
            return candidate
    return default


def _parse_optional(value: Any, what: str) -> Optional[Number]:
    if not _present(value):
        return None
    try:
        return parse_price(value)
    except ParseError as e:
        logger.warning("Ignoring unparseable %s %r: %s", what, value, e)
        return None


def source_price(source: Source) -> Optional[Number]:
    """Own price of a source: price, then sale price, then regular price."""
    if isinstance(source, SourceProduct):
        for value, what in (
            (source.price, "source price"),
            (source.sale_price, "source sale price"),
            (source.regular_price, "source regular price"),
        ):
            parsed = _parse_optional(value, f"{what} of product {source.id}")
            if parsed is not None:
                return parsed
        return None
    if isinstance(source, CustomProduct):
        return _parse_optional(source.price, f"price of custom product {source.ref.key}")
    return None


def _source_images(source: Source) -> tuple[Any, List[Any]]:
    """(primary, positional list) of the source's own images."""
    if isinstance(source, SourceProduct):
        srcs = [img.src for img in source.images]
        return (srcs[0] if srcs else None), srcs
    if isinstance(source, CustomProduct):
        return source.image, list(source.images)
    return None, []


def _first_image(*candidates: Any) -> str:
    for candidate in candidates:
        url = resolve_image_field(candidate)
        if not is_fallback(url):
            return url
    return FALLBACK_IMAGE


def _resolve_images(source: Source, override: Optional[OverrideRecord]) -> tuple[str, List[str]]:
    catalog_image = override.catalog_image if override else None
    catalog_images = list(override.catalog_images) if override else []
    source_primary, source_list = _source_images(source)

    primary = _first_image(
        catalog_image,
        catalog_images[0] if catalog_images else None,
        source_primary,
    )

    secondary: List[str] = []
    for i in range(max(len(catalog_images), len(source_list))):
        url = _first_image(
            catalog_images[i] if i < len(catalog_images) else None,
            source_list[i] if i < len(source_list) else None,
        )
        if is_fallback(url) or url == primary or url in secondary:
            continue
        secondary.append(url)
    return primary, secondary


def placeholder_view_product(ref: ProductRef, override: Optional[OverrideRecord] = None) -> ViewProduct:
    """
    Stand-in for a catalog entry whose product could not be found, so the
    entry stays visible instead of silently disappearing.
    """
    price = 0
    if override is not None:
        parsed = _parse_optional(override.catalog_price, f"catalog price of {ref.key}")
        price = parsed if parsed is not None else 0
    image, images = _resolve_images(None, override)
    description = _first_present(override.catalog_description if override else None)
    short_description = _first_present(
        override.catalog_short_description if override else None
    )
    return ViewProduct(
        ref=ref,
        product_id=override.product_id if override else (
            ref.id if isinstance(ref, Persisted) else 0
        ),
        name=_first_present(override.catalog_name if override else None,
                            default=PLACEHOLDER_NAME),
        price=price,
        original_price=price,
        description=description,
        short_description=short_description,
        excerpt=text_excerpt(short_description or description),
        sku=_first_present(override.catalog_sku if override else None),
        image=image,
        images=images,
        is_custom=True,
        is_unavailable=True,
    )


def resolve_view_product(source: Source, override: Optional[OverrideRecord]) -> ViewProduct:
    """
    Build the unified view of one catalog entry.

    source is the external catalog item, the custom product record, or None
    (custom products known only through their override, or products whose
    lookup failed). Pure: no I/O.
    """
    if source is None and override is None:
        raise ValueError("A view product needs a source product or an override record")

    if isinstance(source, SourceProduct):
        ref: ProductRef = Persisted(source.id)
        if override is not None and override.ref != ref:
            raise ValueError(
                f"Override {override.ref.key} does not belong to product {source.id}"
            )
    elif isinstance(source, CustomProduct):
        ref = source.ref
    else:
        ref = override.ref

    if source is None and not override.is_custom and override.product_id > 0:
        logger.warning(
            "Catalog entry %s references product %d with no source; using placeholder.",
            ref.key, override.product_id,
        )
        return placeholder_view_product(ref, override)

    own_price = source_price(source)
    if own_price is None and override is not None and source is None:
        own_price = _parse_optional(override.product_price, f"product price of {ref.key}")

    catalog_price = None
    if override is not None:
        catalog_price = _parse_optional(override.catalog_price, f"catalog price of {ref.key}")

    original_price = own_price if own_price is not None else (
        catalog_price if source is None and catalog_price is not None else 0
    )
    price = catalog_price if catalog_price is not None else original_price

    image, images = _resolve_images(source, override)
    description = _first_present(
        override.catalog_description if override else None,
        getattr(source, "description", None),
    )
    short_description = _first_present(
        override.catalog_short_description if override else None,
        getattr(source, "short_description", None),
    )

    is_source_product = isinstance(source, SourceProduct)
    return ViewProduct(
        ref=ref,
        product_id=source.id if is_source_product else 0,
        name=_first_present(
            override.catalog_name if override else None,
            getattr(source, "name", None),
        ),
        price=price,
        original_price=original_price,
        description=description,
        short_description=short_description,
        excerpt=text_excerpt(short_description or description),
        sku=_first_present(
            override.catalog_sku if override else None,
            getattr(source, "sku", None),
        ),
        image=image,
        images=images,
        regular_price=_parse_optional(source.regular_price, "regular price")
        if is_source_product else None,
        sale_price=_parse_optional(source.sale_price, "sale price")
        if is_source_product else None,
        is_custom=not is_source_product or bool(override and override.is_custom),
        source=source,
    )


def plain_text(html: Optional[str]) -> str:
    """Visible text of an HTML description."""
    if not html:
        return ""
    return BeautifulSoup(html, "html.parser").get_text(" ", strip=True)


def text_excerpt(html: Optional[str], max_length: int = 120) -> str:
    text = plain_text(html)
    if len(text) <= max_length:
        return text
    return text[:max_length].rstrip() + "..."
