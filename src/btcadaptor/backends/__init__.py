"""
Ledger backend implementations.

Available backends:
- BtcdBackend: btcd full node via JSON-RPC (requires --addrindex)
"""

from btcadaptor.backends.base import LedgerBackend
from btcadaptor.backends.btcd import BtcdBackend

__all__ = [
    "BtcdBackend",
    "LedgerBackend",
]
