# storefront/diff.py
import os
from typing import Any, Dict, List, Tuple

from .models import CartEntry
from .prices import ParseError, parse_price, price_or_zero

PRICE_NOTIFY_THRESHOLD = float(os.getenv("PRICE_NOTIFY_THRESHOLD", "0"))


def diff_cart_prices(
    entries: List[CartEntry], current_prices: Dict[Any, Any]
) -> List[Tuple[CartEntry, float, float]]:
    """
    Compare the prices captured in the cart against current catalog prices.
    - entries: cart entries
    - current_prices: mapping product_id -> current price (any price format)
    Returns:
      [(entry, captured, current)] for entries whose price moved by at least
      PRICE_NOTIFY_THRESHOLD percent. Products missing from current_prices
      are not reported.
    """
    changes: List[Tuple[CartEntry, float, float]] = []

    for entry in entries:
        if entry.product_id not in current_prices:
            continue
        try:
            after = parse_price(current_prices[entry.product_id])
        except ParseError:
            continue
        before = price_or_zero(entry.captured_price, f"cart entry {entry.product_id}")

        if before == after:
            continue

        if before == 0:
            pct = 100.0
        else:
            pct = abs(after - before) * 100.0 / abs(before)

        if pct >= PRICE_NOTIFY_THRESHOLD:
            changes.append((entry, before, after))

    return changes
