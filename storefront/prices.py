# storefront/prices.py
import math
import os
import re
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Union

from .logger import get_logger

logger = get_logger(__name__)

CURRENCY_CODE = os.getenv("CURRENCY_CODE", "COP")

# Leading currency code and/or symbol: "COP 19.000", "$ 19.000", "COP$19.000"
_CURRENCY_PREFIX_RE = re.compile(r"^\s*(?:[A-Za-z]{3}\.?)?\s*\$?\s*")
_CURRENCY_SUFFIX_RE = re.compile(r"\s*[A-Za-z]{3}\s*$")

Number = Union[int, float]


class ParseError(ValueError):
    """A price string could not be interpreted as a number."""


def parse_price(value: Any) -> Number:
    """
    Parse a price into a number.

    Numbers pass through unchanged. Strings follow the storefront's Latin
    American convention:
      - a leading currency code / symbol is dropped
      - every "." is a thousands separator ("19.000" -> 19000, and also
        "19.99" -> 1999)
      - a "," outside the final three characters makes every comma a
        thousands separator ("19,000" -> 19000); otherwise it is the
        decimal mark ("19,99" -> 19.99)

    Raises ParseError for anything else.
    """
    if isinstance(value, bool):
        raise ParseError(f"Not a price: {value!r}")
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            raise ParseError(f"Not a finite price: {value!r}")
        return value
    if isinstance(value, Decimal):
        return float(value)
    if not isinstance(value, str):
        raise ParseError(f"Unsupported price type {type(value).__name__}: {value!r}")

    s = _CURRENCY_PREFIX_RE.sub("", value, count=1)
    s = _CURRENCY_SUFFIX_RE.sub("", s).strip()
    if "." in s:
        s = s.replace(".", "")
    if "," in s:
        if s.index(",") < len(s) - 3:
            s = s.replace(",", "")
        else:
            s = s.replace(",", ".")

    try:
        number = float(s)
    except ValueError:
        raise ParseError(f"Could not parse price {value!r}") from None
    if not math.isfinite(number):
        raise ParseError(f"Not a finite price: {value!r}")
    return int(number) if number.is_integer() else number


def price_or_zero(value: Any, context: str = "") -> Number:
    """parse_price for rendering paths: never raises, unparseable -> 0."""
    try:
        return parse_price(value)
    except ParseError as e:
        if context:
            logger.warning("Invalid price for %s, using 0: %s", context, e)
        else:
            logger.warning("Invalid price, using 0: %s", e)
        return 0


def _round_half_up(number: Number) -> int:
    return int(Decimal(str(number)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def format_price(value: Any) -> str:
    """
    Render a price as "COP 19.000": integer-rounded, "." thousands grouping.
    Already formatted input is parsed again, so formatting is idempotent.
    """
    number = 0 if value is None else price_or_zero(value)
    rounded = _round_half_up(number)
    grouped = f"{abs(rounded):,}".replace(",", ".")
    sign = "-" if rounded < 0 else ""
    return f"{CURRENCY_CODE} {sign}{grouped}"


def discount_percentage(regular: Any, sale: Any) -> int:
    """Rounded percentage saved going from regular to sale; 0 if not a discount."""
    regular_value = price_or_zero(regular) if regular is not None else 0
    sale_value = price_or_zero(sale) if sale is not None else 0
    if regular_value <= 0 or sale_value <= 0 or sale_value >= regular_value:
        return 0
    return _round_half_up((regular_value - sale_value) * 100 / regular_value)
