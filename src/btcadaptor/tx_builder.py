"""
Transaction builder for transfers.

Builds the unsigned transfer transaction from:
- The outputs picked by coin selection (inputs, in selection order)
- The destination address and amount (payment output)
- The source address (change output, only when there is leftover value)
"""

from __future__ import annotations

from collections.abc import Iterable

from loguru import logger

from btcadaptor.address import decode_address
from btcadaptor.config import NetworkType
from btcadaptor.errors import InsufficientFunds, InvalidAmount, InvalidArgument, NoInputsSelected
from btcadaptor.models import (
    OUTPUT_REF_SIZE,
    OutputRef,
    PaymentOutput,
    SelectionResult,
    UnsignedTransaction,
)
from btcadaptor.selection import check_amount
from btcadaptor.wire import TxInput, TxOutput, encode_transaction, txid


def pack_output_refs(refs: Iterable[OutputRef]) -> bytes:
    """Concatenate fixed-width OutputRef encodings."""
    return b"".join(ref.to_bytes() for ref in refs)


def unpack_output_refs(blob: bytes) -> list[OutputRef]:
    """
    Split a consumed-refs blob back into OutputRefs, one record per
    OUTPUT_REF_SIZE bytes.

    Raises:
        InvalidAmount: If the blob is not a whole number of records
    """
    if len(blob) % OUTPUT_REF_SIZE != 0:
        raise InvalidAmount(
            f"Excluded refs length {len(blob)} is not a multiple of {OUTPUT_REF_SIZE}"
        )
    return [
        OutputRef.from_bytes(blob[i : i + OUTPUT_REF_SIZE])
        for i in range(0, len(blob), OUTPUT_REF_SIZE)
    ]


class TransferTxBuilder:
    """
    Builds unsigned transfer transactions.

    The transaction structure:
    - Inputs: selected outputs, in selection order
    - Outputs: payment, then change (if any)
    """

    def __init__(self, network: NetworkType = NetworkType.MAINNET):
        self.network = network

    def build(
        self,
        selection: SelectionResult,
        destination: str,
        amount: int,
        source: str,
    ) -> UnsignedTransaction:
        """
        Build an unsigned transfer transaction.

        Args:
            selection: Coin selection covering amount
            destination: Payment address
            amount: Payment value in sats
            source: Address receiving the change

        Returns:
            UnsignedTransaction with raw bytes, txid and consumed refs

        Raises:
            InvalidAddress: If destination or source is not valid for the network
            InvalidAmount: If amount is not a positive integer
            InvalidArgument: If selection.total_value disagrees with its outputs
            InsufficientFunds: If the selection does not cover amount
            NoInputsSelected: If the selection is empty
        """
        destination_script = decode_address(destination, self.network)
        source_script = decode_address(source, self.network)

        check_amount(amount)
        if not selection.outputs:
            raise NoInputsSelected("Selection contains no outputs")

        total_input = sum(utxo.value for utxo in selection.outputs)
        if total_input != selection.total_value:
            raise InvalidArgument(
                f"Selection total {selection.total_value} disagrees with inputs {total_input}"
            )
        if total_input < amount:
            raise InsufficientFunds(required=amount, available=total_input)

        refs = selection.refs
        wire_inputs = [TxInput(txid=ref.txid, vout=ref.vout) for ref in refs]

        outputs = [PaymentOutput(address=destination, value=amount)]
        wire_outputs = [TxOutput(value=amount, script_pubkey=destination_script)]

        change = total_input - amount
        if change > 0:
            outputs.append(PaymentOutput(address=source, value=change))
            wire_outputs.append(TxOutput(value=change, script_pubkey=source_script))

        raw = encode_transaction(wire_inputs, wire_outputs)
        tx = UnsignedTransaction(
            inputs=refs,
            outputs=outputs,
            consumed_refs=pack_output_refs(refs),
            raw=raw,
            txid=txid(raw),
        )
        logger.info(
            f"Built transfer {tx.txid}: {len(refs)} inputs, amount {amount}, change {change}"
        )
        return tx
