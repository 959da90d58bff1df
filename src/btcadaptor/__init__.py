"""
btcadaptor - Bitcoin ledger adaptor

Reconstructs spendable outputs from address history, selects coins and
assembles unsigned transfer transactions against a btcd node.
"""

__version__ = "0.1.0"

from btcadaptor.adaptor import BitcoinAdaptor
from btcadaptor.config import AdaptorConfig, NetworkType, RPCConfig
from btcadaptor.errors import (
    AdaptorError,
    InsufficientFunds,
    InvalidAddress,
    InvalidAmount,
    InvalidArgument,
    LookupFailure,
    MalformedLedgerData,
    NoInputsSelected,
    NoOutputsProduced,
    NotImplementedCapability,
)
from btcadaptor.models import (
    OutputRef,
    SelectionRequest,
    SelectionResult,
    SpendableOutput,
    TransactionRecord,
    UnsignedTransaction,
)

__all__ = [
    "AdaptorConfig",
    "AdaptorError",
    "BitcoinAdaptor",
    "InsufficientFunds",
    "InvalidAddress",
    "InvalidAmount",
    "InvalidArgument",
    "LookupFailure",
    "MalformedLedgerData",
    "NetworkType",
    "NoInputsSelected",
    "NoOutputsProduced",
    "NotImplementedCapability",
    "OutputRef",
    "RPCConfig",
    "SelectionRequest",
    "SelectionResult",
    "SpendableOutput",
    "TransactionRecord",
    "UnsignedTransaction",
]
