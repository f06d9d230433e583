"""Product catalog price lookup.

Resolves a unit price for an item id when the agent does not send one.
The catalog is a static JSON document (a list of products, or an object
with an ``items`` or ``products`` list) whose entries carry
``{"id": ..., "price": {"amount": 12.5, "currency": "USD"}}`` with the
amount in major units.
"""

import json
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class Price:
    """Unit price in minor units with its currency."""

    unit_cents: int
    currency: str


class InMemoryProductCatalog:
    """Catalog of product prices held in memory."""

    def __init__(self, prices: dict[str, Price] | None = None) -> None:
        """Initialize catalog.

        Args:
            prices: Mapping of item id to price.
        """
        self._prices: dict[str, Price] = dict(prices or {})

    @classmethod
    def from_feed(cls, feed: Any) -> "InMemoryProductCatalog":
        """Build a catalog from a parsed product feed.

        Args:
            feed: List of products or an object wrapping one.

        Returns:
            Catalog with every product that carries a price.
        """
        items: list[dict[str, Any]] = []
        if isinstance(feed, list):
            items = feed
        elif isinstance(feed, dict):
            wrapped = feed.get("items", feed.get("products"))
            if isinstance(wrapped, list):
                items = wrapped

        prices: dict[str, Price] = {}
        for item in items:
            if not isinstance(item, dict) or item.get("id") is None:
                continue
            price = item.get("price")
            if not isinstance(price, dict):
                continue
            amount = Decimal(str(price.get("amount", 0)))
            cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
            currency = str(price.get("currency", "usd")).lower()
            prices[str(item["id"])] = Price(unit_cents=cents, currency=currency)

        return cls(prices)

    @classmethod
    def from_file(cls, path: str) -> "InMemoryProductCatalog":
        """Load a catalog from a JSON file.

        Args:
            path: Path of the JSON product feed.

        Returns:
            Loaded catalog.
        """
        with Path(path).open(encoding="utf-8") as fh:
            feed = json.load(fh)
        catalog = cls.from_feed(feed)
        logger.info("Product catalog loaded", path=path, product_count=len(catalog))
        return catalog

    def find_price(self, item_id: str) -> Price | None:
        """Look up the unit price of an item.

        Args:
            item_id: Item identifier.

        Returns:
            Price, or None for unknown items.
        """
        return self._prices.get(item_id)

    def set_price(self, item_id: str, unit_cents: int, currency: str = "usd") -> None:
        """Register or replace an item price."""
        self._prices[item_id] = Price(unit_cents=unit_cents, currency=currency.lower())

    def __len__(self) -> int:
        return len(self._prices)
