"""
Raw transaction wire format.

Encodes unsigned transactions in the legacy (non-witness) layout, decodes
both legacy and SegWit-marked transactions, and computes txids.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass

from btcadaptor.errors import MalformedLedgerData

DEFAULT_VERSION = 1
DEFAULT_SEQUENCE = 0xFFFFFFFF


@dataclass
class TxInput:
    """Transaction input."""

    txid: str
    vout: int
    script_sig: bytes = b""
    sequence: int = DEFAULT_SEQUENCE


@dataclass
class TxOutput:
    """Transaction output."""

    value: int
    script_pubkey: bytes


def varint(n: int) -> bytes:
    """Encode integer as Bitcoin varint."""
    if n < 0xFD:
        return bytes([n])
    elif n <= 0xFFFF:
        return bytes([0xFD]) + struct.pack("<H", n)
    elif n <= 0xFFFFFFFF:
        return bytes([0xFE]) + struct.pack("<I", n)
    else:
        return bytes([0xFF]) + struct.pack("<Q", n)


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    """Read varint and return (value, bytes_consumed)."""
    first = data[offset]
    if first < 0xFD:
        return first, 1
    elif first == 0xFD:
        return struct.unpack("<H", data[offset + 1 : offset + 3])[0], 3
    elif first == 0xFE:
        return struct.unpack("<I", data[offset + 1 : offset + 5])[0], 5
    else:
        return struct.unpack("<Q", data[offset + 1 : offset + 9])[0], 9


def serialize_outpoint(txid: str, vout: int) -> bytes:
    """Serialize outpoint (txid:vout)."""
    # txid is in RPC format (big-endian), need to reverse for raw tx
    return bytes.fromhex(txid)[::-1] + struct.pack("<I", vout)


def _serialize(
    version: int, inputs: list[TxInput], outputs: list[TxOutput], locktime: int
) -> bytes:
    result = struct.pack("<I", version)

    result += varint(len(inputs))
    for inp in inputs:
        result += serialize_outpoint(inp.txid, inp.vout)
        result += varint(len(inp.script_sig))
        result += inp.script_sig
        result += struct.pack("<I", inp.sequence)

    result += varint(len(outputs))
    for out in outputs:
        result += struct.pack("<Q", out.value)
        result += varint(len(out.script_pubkey))
        result += out.script_pubkey

    result += struct.pack("<I", locktime)
    return result


def encode_transaction(
    inputs: list[TxInput],
    outputs: list[TxOutput],
    version: int = DEFAULT_VERSION,
    locktime: int = 0,
) -> bytes:
    """Serialize an unsigned transaction to bytes."""
    for out in outputs:
        if out.value < 0:
            raise ValueError(f"Negative output value: {out.value}")
    return _serialize(version, inputs, outputs, locktime)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def take(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise MalformedLedgerData(
                f"Transaction truncated at byte {self.offset} (need {size} more)"
            )
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk

    def uint32(self) -> int:
        return struct.unpack("<I", self.take(4))[0]

    def uint64(self) -> int:
        return struct.unpack("<Q", self.take(8))[0]

    def varint(self) -> int:
        if self.offset >= len(self.data):
            raise MalformedLedgerData(f"Transaction truncated at byte {self.offset}")
        try:
            value, size = read_varint(self.data, self.offset)
        except struct.error as e:
            raise MalformedLedgerData(f"Transaction truncated at byte {self.offset}") from e
        self.take(size)
        return value


def _parse(raw: bytes) -> tuple[int, list[TxInput], list[TxOutput], int]:
    reader = _Reader(raw)
    version = reader.uint32()

    # Check for SegWit marker
    has_witness = raw[reader.offset : reader.offset + 2] == bytes([0x00, 0x01])
    if has_witness:
        reader.take(2)

    inputs = []
    for _ in range(reader.varint()):
        txid = reader.take(32)[::-1].hex()
        vout = reader.uint32()
        script_sig = reader.take(reader.varint())
        sequence = reader.uint32()
        inputs.append(TxInput(txid=txid, vout=vout, script_sig=script_sig, sequence=sequence))

    outputs = []
    for _ in range(reader.varint()):
        value = reader.uint64()
        script_pubkey = reader.take(reader.varint())
        outputs.append(TxOutput(value=value, script_pubkey=script_pubkey))

    if has_witness:
        for _ in inputs:
            for _ in range(reader.varint()):
                reader.take(reader.varint())

    locktime = reader.uint32()
    if reader.offset != len(raw):
        raise MalformedLedgerData(f"{len(raw) - reader.offset} trailing bytes after transaction")

    return version, inputs, outputs, locktime


def decode_transaction(raw: bytes) -> tuple[list[TxInput], list[TxOutput]]:
    """
    Parse a transaction from bytes.

    Raises:
        MalformedLedgerData: If the bytes are not a complete transaction
    """
    _, inputs, outputs, _ = _parse(raw)
    return inputs, outputs


def txid(raw: bytes) -> str:
    """Calculate txid (double SHA256 of non-witness data)."""
    version, inputs, outputs, locktime = _parse(raw)
    data = _serialize(version, inputs, outputs, locktime)
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()[::-1].hex()
