"""
Per-transaction history with balance deltas for a tracked address.
"""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from btcadaptor.backends.base import LedgerBackend
from btcadaptor.errors import MalformedLedgerData
from btcadaptor.models import (
    InputRecord,
    LedgerInput,
    LedgerTransaction,
    OutputRecord,
    OutputRef,
    TransactionRecord,
)


class HistoryReconciler:
    """
    Walks an address's history (oldest first) and builds TransactionRecords.

    Input values are resolved from outputs seen earlier in the walk, falling
    back to fetching the previous transaction from the backend. Fetched
    transactions are cached only for the duration of one walk.
    """

    def __init__(self, backend: LedgerBackend):
        self.backend = backend

    async def _resolve_input(
        self,
        inp: LedgerInput,
        seen: dict[OutputRef, OutputRecord],
        fetched: dict[str, LedgerTransaction],
    ) -> tuple[OutputRecord, bool]:
        """Return (previous output, seen_in_walk)."""
        ref = inp.ref
        if ref in seen:
            return seen[ref], True

        prev = fetched.get(ref.txid)
        if prev is None:
            prev = await self.backend.get_transaction(ref.txid)
            fetched[ref.txid] = prev

        out = prev.output(ref.vout)
        if out is None:
            raise MalformedLedgerData(f"Input {ref} references a missing output")
        return OutputRecord(index=out.n, address=out.address, value=out.value), False

    async def reconcile(
        self, history: Sequence[LedgerTransaction], address: str
    ) -> list[TransactionRecord]:
        """
        Build history records for ``address``.

        A transaction is a spend when one of its inputs is an output to
        ``address`` seen earlier in this walk. Spends report
        outputs-to-address minus inputs-from-address and must pay at most one
        external address; receives report outputs-to-address.

        Raises:
            MalformedLedgerData: On unresolvable outputs or inputs, or a spend
                paying more than one external address
            LookupFailure: If a previous transaction cannot be fetched
        """
        seen: dict[OutputRef, OutputRecord] = {}
        fetched: dict[str, LedgerTransaction] = {}
        records: list[TransactionRecord] = []

        for tx in history:
            record = TransactionRecord(txid=tx.txid, confirmations=tx.confirmations)

            for inp in tx.inputs:
                if inp.coinbase:
                    continue
                prev, in_walk = await self._resolve_input(inp, seen, fetched)
                if prev.address is None:
                    raise MalformedLedgerData(
                        f"Input {inp.ref} spends an output with no resolvable address"
                    )
                record.inputs.append(
                    InputRecord(
                        txid=inp.txid, vout=inp.vout, address=prev.address, value=prev.value
                    )
                )
                if in_walk and prev.address == address:
                    record.is_spend = True

            for out in tx.outputs:
                if out.address is None and not out.is_data_carrier:
                    raise MalformedLedgerData(
                        f"Output {tx.txid}:{out.n} has no resolvable address"
                    )
                output = OutputRecord(index=out.n, address=out.address, value=out.value)
                record.outputs.append(output)
                seen[OutputRef(tx.txid, out.n)] = output

            received = sum(o.value for o in record.outputs if o.address == address)
            if record.is_spend:
                sent = sum(i.value for i in record.inputs if i.address == address)
                record.balance_delta = received - sent
                destinations = {
                    o.address
                    for o in record.outputs
                    if o.address is not None and o.address != address
                }
                if len(destinations) > 1:
                    raise MalformedLedgerData(
                        f"Transaction {tx.txid} pays {len(destinations)} external addresses"
                    )
                record.counterparty = next(iter(destinations), None)
            else:
                record.balance_delta = received
                record.counterparty = record.inputs[0].address if record.inputs else None

            records.append(record)

        logger.debug(f"Reconciled {len(records)} transactions, {len(fetched)} side lookups")
        return records
