"""
Input collaborators of the analytics engine.

The engine never talks to storage itself. Surrounding layers hand it three
readers; everything they return is materialised before a run starts.

    TransactionHistoryReader  -> raw transactions for a SKU set and time range
    CurrentStockReader        -> on-hand quantity per SKU
    BookMetadataReader        -> catalogue data (price, pack size) per SKU
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional

from bookstore_analytics.inventory_analytics.aggregation import to_naive_utc
from bookstore_analytics.inventory_analytics.models import BookMetadata, InventoryTransaction


class TransactionHistoryReader(ABC):

    @abstractmethod
    def read_transactions(
        self,
        sku_ids: Iterable[str],
        start: datetime,
        end: datetime,
    ) -> List[InventoryTransaction]:
        """Transactions of the given SKUs with start <= timestamp <= end."""


class CurrentStockReader(ABC):

    @abstractmethod
    def read_stock(self, sku_ids: Iterable[str]) -> Dict[str, float]:
        """Live on-hand quantity per SKU (missing SKUs are unknown)."""


class BookMetadataReader(ABC):

    @abstractmethod
    def read_metadata(self) -> Dict[str, BookMetadata]:
        """Catalogue entry per SKU; defines the SKU population of a run."""


class InMemoryInventorySource(TransactionHistoryReader, CurrentStockReader, BookMetadataReader):
    """All three readers over plain Python collections (tests, batch scripts)."""

    def __init__(
        self,
        transactions: Iterable[InventoryTransaction] = (),
        stock: Optional[Mapping[str, float]] = None,
        metadata: Optional[Iterable[BookMetadata]] = None,
    ):
        self.transactions = list(transactions)
        self.stock = dict(stock or {})
        if metadata is None:
            skus = {tx.sku_id for tx in self.transactions} | set(self.stock)
            metadata = [BookMetadata(sku_id=sku) for sku in sorted(skus)]
        self.metadata = {m.sku_id: m for m in metadata}

    def read_transactions(self, sku_ids, start, end):
        wanted = set(sku_ids)
        lo, hi = to_naive_utc(start), to_naive_utc(end)
        return [
            tx for tx in self.transactions
            if tx.sku_id in wanted and lo <= to_naive_utc(tx.timestamp) <= hi
        ]

    def read_stock(self, sku_ids):
        return {sku: self.stock[sku] for sku in sku_ids if sku in self.stock}

    def read_metadata(self):
        return dict(self.metadata)
