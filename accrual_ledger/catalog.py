"""
catalog.py - Read-only catalog of purchasable income-producing items

Classes:
- Catalog: Immutable id -> CatalogItem lookup with shop paging

Functions:
- default_catalog(): The GPU table of the mining game (59 models, MNT prices)

Prices are in the catalog's instrument; income rates are in that instrument
per second.
"""

from __future__ import annotations
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Tuple, Union
import json
import math

from .core import CatalogItem, NotFound, GAME_INSTRUMENT, ZERO


DEFAULT_PAGE_SIZE = 10


class Catalog:
    """
    Immutable lookup of CatalogItems by id.

    Iteration yields items ordered by id.

    Example:
        catalog = Catalog([CatalogItem(1, "GT 710", "5", "0.000001")])
        catalog.get(1).unit_price  # Decimal("5")
    """

    def __init__(self, items: Iterable[CatalogItem], currency: str = GAME_INSTRUMENT):
        by_id: Dict[int, CatalogItem] = {}
        for item in items:
            if item.id in by_id:
                raise ValueError(f"duplicate catalog item id {item.id}")
            by_id[item.id] = item
        self._items: Tuple[CatalogItem, ...] = tuple(sorted(by_id.values(), key=lambda i: i.id))
        self._by_id = by_id
        self.currency = currency

    def get(self, item_id: int) -> CatalogItem:
        try:
            return self._by_id[item_id]
        except KeyError:
            raise NotFound(f"catalog item {item_id} not found") from None

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._by_id

    def __iter__(self) -> Iterator[CatalogItem]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def page(self, page: int, page_size: int = DEFAULT_PAGE_SIZE) -> Tuple[List[CatalogItem], int, int]:
        """
        One page of the shop listing.

        The page number is clamped into [1, pages], so asking for page 0 or a
        page past the end returns the first or last page.

        Returns:
            (items on the page, effective page number, total pages)
        """
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")
        pages = max(1, math.ceil(len(self._items) / page_size))
        page = min(max(page, 1), pages)
        start = (page - 1) * page_size
        return list(self._items[start:start + page_size]), page, pages

    def income_rate(self, owned_items: Iterable[int]) -> Decimal:
        """
        Total income per second of a multiset of item ids.

        Ids no longer present in the catalog contribute nothing.
        """
        rate = ZERO
        for item_id in owned_items:
            item = self._by_id.get(item_id)
            if item is not None:
                rate += item.income_rate
        return rate

    def nominal_value(self, owned_items: Iterable[int]) -> Decimal:
        """Sum of unit prices of a multiset of item ids."""
        total = ZERO
        for item_id in owned_items:
            item = self._by_id.get(item_id)
            if item is not None:
                total += item.unit_price
        return total

    # ------------------------------------------------------------------------
    # Loaders
    # ------------------------------------------------------------------------

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Any]], currency: str = GAME_INSTRUMENT) -> Catalog:
        """
        Build from mappings with keys id, name, price and rate.

        Numbers may be ints, strings or floats; floats go through str() first.
        """
        return cls(
            (CatalogItem(
                id=int(row['id']),
                name=str(row['name']),
                unit_price=row['price'],
                income_rate=row['rate'],
            ) for row in rows),
            currency=currency,
        )

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> Catalog:
        """
        Load a JSON document that is either a list of rows or
        {"currency": ..., "items": [rows]}.
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, list):
            return cls.from_rows(data)
        return cls.from_rows(data['items'], currency=data.get('currency', GAME_INSTRUMENT))

    def __repr__(self) -> str:
        return f"Catalog({len(self._items)} items, currency={self.currency})"


# ============================================================================
# DEFAULT GPU CATALOG
# ============================================================================
#
# (name, MNT per second, price in MNT). Rates grow roughly exponentially from
# the weakest card to the strongest; price is about 5,000,000 x rate.
#
_GPU_TABLE = (
    ("GeForce GT 710 1GB", "0.0000010", "5"),
    ("GeForce GT 730 2GB", "0.0000018", "9"),
    ("Radeon R7 240", "0.0000025", "12"),
    ("GeForce GTX 750 Ti", "0.0000040", "20"),
    ("Radeon RX 460", "0.0000060", "30"),
    ("GeForce GTX 950", "0.0000085", "42"),
    ("Radeon RX 560", "0.0000120", "60"),
    ("GeForce GTX 1050", "0.0000180", "90"),
    ("GeForce GTX 1050 Ti", "0.0000250", "125"),
    ("Radeon RX 570 4GB", "0.0000400", "200"),
    ("GeForce GTX 1060 3GB", "0.0000500", "250"),
    ("GeForce GTX 1060 6GB", "0.0000600", "300"),
    ("Radeon RX 580 8GB", "0.0000750", "375"),
    ("GeForce GTX 1070", "0.0001000", "500"),
    ("GeForce GTX 1070 Ti", "0.0001200", "600"),
    ("Radeon VII", "0.0001500", "750"),
    ("GeForce GTX 1080", "0.0001800", "900"),
    ("GeForce GTX 1080 Ti", "0.0002200", "1100"),
    ("Radeon RX 5600 XT", "0.0002600", "1300"),
    ("Radeon RX 5700", "0.0003000", "1500"),
    ("Radeon RX 5700 XT", "0.0003500", "1750"),
    ("GeForce RTX 2060", "0.0004000", "2000"),
    ("GeForce RTX 2060 Super", "0.0004700", "2350"),
    ("GeForce RTX 2070", "0.0005400", "2700"),
    ("GeForce RTX 2070 Super", "0.0006200", "3100"),
    ("GeForce RTX 2080", "0.0007000", "3500"),
    ("GeForce RTX 2080 Super", "0.0007800", "3900"),
    ("GeForce RTX 2080 Ti", "0.0009000", "4500"),
    ("Radeon RX 6600", "0.0010000", "5000"),
    ("Radeon RX 6600 XT", "0.0011500", "5750"),
    ("Radeon RX 6700 XT", "0.0013500", "6750"),
    ("GeForce RTX 3060 12GB", "0.0015000", "7500"),
    ("GeForce RTX 3060 Ti", "0.0018000", "9000"),
    ("GeForce RTX 3070", "0.0021000", "10500"),
    ("GeForce RTX 3070 Ti", "0.0024000", "12000"),
    ("GeForce RTX 3080 10GB", "0.0028000", "14000"),
    ("GeForce RTX 3080 Ti", "0.0032000", "16000"),
    ("Radeon RX 6800", "0.0034000", "17000"),
    ("Radeon RX 6800 XT", "0.0038000", "19000"),
    ("Radeon RX 6900 XT", "0.0042000", "21000"),
    ("GeForce RTX 3090", "0.0048000", "24000"),
    ("GeForce RTX 3090 Ti", "0.0055000", "27500"),
    ("Radeon RX 7600", "0.0060000", "30000"),
    ("Radeon RX 7700 XT", "0.0070000", "35000"),
    ("Radeon RX 7800 XT", "0.0080000", "40000"),
    ("GeForce RTX 4060", "0.0085000", "42500"),
    ("GeForce RTX 4060 Ti", "0.0095000", "47500"),
    ("GeForce RTX 4070", "0.0105000", "52500"),
    ("GeForce RTX 4070 Ti", "0.0120000", "60000"),
    ("GeForce RTX 4070 Ti Super", "0.0135000", "67500"),
    ("Radeon RX 7900 GRE", "0.0140000", "70000"),
    ("Radeon RX 7900 XT", "0.0155000", "77500"),
    ("Radeon RX 7900 XTX", "0.0170000", "85000"),
    ("GeForce RTX 4080 12GB (Super)", "0.0180000", "90000"),
    ("GeForce RTX 4080 16GB", "0.0190000", "95000"),
    ("GeForce RTX 4080 Super", "0.0200000", "100000"),
    ("GeForce RTX 4090", "0.0220000", "110000"),
    ("GeForce RTX 4090 D", "0.0230000", "115000"),
    ("GeForce RTX 4090 Ti (myth)", "0.0250000", "125000"),
)


def default_catalog() -> Catalog:
    """The mining game's GPU catalog; ids are 1-based table positions."""
    return Catalog(
        (CatalogItem(id=i, name=name, unit_price=price, income_rate=rate)
         for i, (name, rate, price) in enumerate(_GPU_TABLE, start=1)),
        currency=GAME_INSTRUMENT,
    )
