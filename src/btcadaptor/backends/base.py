"""
Base ledger backend interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from btcadaptor.config import MAX_SEARCH_COUNT
from btcadaptor.models import BlockInfo, LedgerTransaction


class LedgerBackend(ABC):
    """
    Abstract ledger query interface.
    Implementations answer address-history and transaction/block lookups
    against a remote node. They hold no state beyond their connection.
    """

    @abstractmethod
    async def search_transactions(
        self,
        address: str,
        min_confirmations: int = 0,
        max_count: int = MAX_SEARCH_COUNT,
        newest_first: bool = False,
    ) -> list[LedgerTransaction]:
        """
        Get transactions touching an address.

        Args:
            address: Address to search for
            min_confirmations: Drop transactions with fewer confirmations
            max_count: Maximum number of transactions to fetch
            newest_first: Fetch the most recent max_count instead of the oldest

        Returns:
            Transactions ordered oldest to newest, regardless of newest_first
        """

    @abstractmethod
    async def get_transaction(self, txid: str) -> LedgerTransaction:
        """Get transaction by txid"""

    @abstractmethod
    async def get_block(
        self, block_hash: str | None = None, height: int | None = None
    ) -> BlockInfo:
        """Get block by hash or height (exactly one must be given)"""

    @abstractmethod
    async def get_best_block_hash(self) -> str:
        """Get hash of the chain tip"""

    async def close(self) -> None:
        """Close backend connection"""
        pass
