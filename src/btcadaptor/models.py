"""
Adaptor data models.
"""

from __future__ import annotations

import re
import struct
from dataclasses import dataclass, field

from btcadaptor.errors import InvalidAmount

OUTPUT_REF_SIZE = 36

_TXID_RE = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True, order=True)
class OutputRef:
    """Identity of one transaction output (txid:vout)"""

    txid: str
    vout: int

    def __post_init__(self) -> None:
        txid = self.txid.lower()
        if not _TXID_RE.match(txid):
            raise ValueError(f"Invalid txid: {self.txid!r}")
        if not 0 <= self.vout <= 0xFFFFFFFF:
            raise ValueError(f"Invalid output index: {self.vout}")
        object.__setattr__(self, "txid", txid)

    def to_bytes(self) -> bytes:
        """Fixed-width encoding: 32-byte hash (display order) + uint32 LE index."""
        return bytes.fromhex(self.txid) + struct.pack("<I", self.vout)

    @classmethod
    def from_bytes(cls, data: bytes) -> OutputRef:
        if len(data) != OUTPUT_REF_SIZE:
            raise InvalidAmount(
                f"Output reference must be {OUTPUT_REF_SIZE} bytes, got {len(data)}"
            )
        return cls(txid=data[:32].hex(), vout=struct.unpack("<I", data[32:])[0])

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass
class SpendableOutput:
    ref: OutputRef
    value: int
    address: str

    @property
    def txid(self) -> str:
        return self.ref.txid

    @property
    def vout(self) -> int:
        return self.ref.vout


@dataclass
class LedgerInput:
    """Input as reported by the node (previous outpoint only)"""

    txid: str = ""
    vout: int = 0
    coinbase: bool = False

    @property
    def ref(self) -> OutputRef:
        return OutputRef(self.txid, self.vout)


@dataclass
class LedgerOutput:
    n: int
    value: int
    address: str | None
    script_type: str = ""
    script_hex: str = ""
    script_asm: str = ""

    @property
    def is_data_carrier(self) -> bool:
        return self.script_type == "nulldata" or self.script_asm.startswith("OP_RETURN")


@dataclass
class LedgerTransaction:
    """Verbose transaction as returned by the ledger"""

    txid: str
    inputs: list[LedgerInput]
    outputs: list[LedgerOutput]
    confirmations: int = 0
    block_hash: str | None = None
    block_time: int | None = None
    hex: str = ""

    def output(self, index: int) -> LedgerOutput | None:
        for out in self.outputs:
            if out.n == index:
                return out
        return None


@dataclass
class BlockInfo:
    block_hash: str
    height: int
    timestamp: int
    previous_hash: str
    merkle_root: str
    confirmations: int
    header_hex: str = ""
    producer_address: str | None = None
    is_stable: bool = False


@dataclass
class InputRecord:
    txid: str
    vout: int
    address: str
    value: int


@dataclass
class OutputRecord:
    index: int
    address: str | None
    value: int


@dataclass
class TransactionRecord:
    """One history entry with its balance effect on the tracked address"""

    txid: str
    confirmations: int
    inputs: list[InputRecord] = field(default_factory=list)
    outputs: list[OutputRecord] = field(default_factory=list)
    balance_delta: int = 0
    is_spend: bool = False
    counterparty: str | None = None


@dataclass(frozen=True)
class SelectionRequest:
    target_amount: int
    address: str
    excluded: frozenset[OutputRef] = frozenset()


@dataclass
class SelectionResult:
    """Result of coin selection"""

    outputs: list[SpendableOutput]
    total_value: int

    @property
    def refs(self) -> list[OutputRef]:
        return [utxo.ref for utxo in self.outputs]


@dataclass
class PaymentOutput:
    address: str
    value: int


@dataclass
class UnsignedTransaction:
    """Assembled transaction ready for signing"""

    inputs: list[OutputRef]
    outputs: list[PaymentOutput]
    consumed_refs: bytes
    raw: bytes = b""
    txid: str = ""

    @property
    def change_output(self) -> PaymentOutput | None:
        return self.outputs[1] if len(self.outputs) > 1 else None


@dataclass
class DecodedTransaction:
    txid: str
    inputs: list[OutputRef]
    outputs: list[OutputRecord]


@dataclass
class TransferTransaction:
    """Transfer already recorded on the ledger, seen from its sender"""

    txid: str
    from_address: str
    to_address: str
    amount: int | None = None
    fee: int | None = None
    attach_data: bytes = b""
    raw: bytes = b""
    block_hash: str | None = None
    block_height: int | None = None
    is_in_block: bool = False
    is_stable: bool = False
    timestamp: int = 0
