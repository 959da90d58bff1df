"""
Spendable output reconstruction from address history.
"""

from __future__ import annotations

from collections.abc import Iterable

from loguru import logger

from btcadaptor.errors import MalformedLedgerData
from btcadaptor.models import LedgerTransaction, OutputRef, SpendableOutput

UTXOSet = dict[OutputRef, SpendableOutput]


def _check_outputs(tx: LedgerTransaction) -> None:
    for out in tx.outputs:
        if out.address is None and not out.is_data_carrier:
            raise MalformedLedgerData(f"Output {tx.txid}:{out.n} has no resolvable address")


def _replay(
    history: Iterable[LedgerTransaction], address: str, min_confirmations: int
) -> tuple[UTXOSet, dict[str, int]]:
    utxos: UTXOSet = {}
    deltas: dict[str, int] = {}

    for tx in history:
        # Below threshold counts as not yet happened, for spends and outputs alike
        if tx.confirmations < min_confirmations:
            logger.debug(
                f"Skipping {tx.txid}: {tx.confirmations} < {min_confirmations} confirmations"
            )
            continue
        _check_outputs(tx)

        delta = 0
        for inp in tx.inputs:
            if inp.coinbase:
                continue
            spent = utxos.pop(inp.ref, None)
            if spent is not None:
                delta -= spent.value

        for out in tx.outputs:
            if out.address == address:
                ref = OutputRef(tx.txid, out.n)
                utxos[ref] = SpendableOutput(ref=ref, value=out.value, address=address)
                delta += out.value

        deltas[tx.txid] = delta

    return utxos, deltas


def reconstruct_utxo_set(
    history: Iterable[LedgerTransaction], address: str, min_confirmations: int = 0
) -> UTXOSet:
    """
    Replay an address's history (oldest first) into its spendable outputs.

    An output is in the result iff it paid ``address`` and no later applied
    transaction spends it. Transactions with fewer than ``min_confirmations``
    are ignored entirely.

    Raises:
        MalformedLedgerData: If an applied transaction has an output with
            no resolvable address that is not a data carrier
    """
    utxos, _ = _replay(history, address, min_confirmations)
    logger.debug(f"Reconstructed {len(utxos)} spendable outputs")
    return utxos


def balance_deltas(
    history: Iterable[LedgerTransaction], address: str, min_confirmations: int = 0
) -> dict[str, int]:
    """Net balance change per applied transaction, keyed by txid."""
    _, deltas = _replay(history, address, min_confirmations)
    return deltas


def utxo_balance(utxos: UTXOSet) -> int:
    return sum(utxo.value for utxo in utxos.values())


def sorted_outputs(utxos: UTXOSet) -> list[SpendableOutput]:
    """Spendable outputs in OutputRef order."""
    return [utxos[ref] for ref in sorted(utxos)]
