"""
Bitcoin adaptor: the public operation surface.

Every operation rebuilds what it needs from the ledger; nothing is cached
between calls. Concurrent transfers from the same address are not
coordinated here: callers pass the consumed refs of transfers the ledger has
not seen yet back in as ``excluded_refs``.
"""

from __future__ import annotations

import re
from typing import Any

from loguru import logger

from btcadaptor.address import decode_address, encode_address
from btcadaptor.backends.base import LedgerBackend
from btcadaptor.backends.btcd import BtcdBackend
from btcadaptor.config import AdaptorConfig, NetworkType
from btcadaptor.errors import InvalidArgument, MalformedLedgerData, NotImplementedCapability
from btcadaptor.history import HistoryReconciler
from btcadaptor.models import (
    BlockInfo,
    DecodedTransaction,
    LedgerOutput,
    LedgerTransaction,
    OutputRecord,
    OutputRef,
    SpendableOutput,
    TransactionRecord,
    TransferTransaction,
    UnsignedTransaction,
)
from btcadaptor.selection import check_amount, select_coins
from btcadaptor.tx_builder import TransferTxBuilder, unpack_output_refs
from btcadaptor.utxo import UTXOSet, reconstruct_utxo_set, sorted_outputs, utxo_balance
from btcadaptor.wire import decode_transaction, txid

_HEX_TOKEN = re.compile(r"^(?:[0-9a-fA-F]{2})+$")


def op_return_data(out: LedgerOutput) -> bytes:
    """Bytes pushed after OP_RETURN, taken from the script's asm."""
    tokens = out.script_asm.split()
    if not tokens or tokens[0] != "OP_RETURN":
        return b""
    return b"".join(bytes.fromhex(t) for t in tokens[1:] if _HEX_TOKEN.match(t))


def calc_tx_hash(raw: bytes) -> str:
    """
    Txid of a raw transaction.

    Raises:
        MalformedLedgerData: If raw is not a complete transaction
    """
    return txid(raw)


def decode_raw_transaction(raw: bytes, network: NetworkType) -> DecodedTransaction:
    """Decode a raw transaction, resolving output addresses where standard."""
    inputs, outputs = decode_transaction(raw)
    records = []
    for index, out in enumerate(outputs):
        try:
            address: str | None = encode_address(out.script_pubkey, network)
        except ValueError:
            address = None
        records.append(OutputRecord(index=index, address=address, value=out.value))
    return DecodedTransaction(
        txid=txid(raw),
        inputs=[OutputRef(inp.txid, inp.vout) for inp in inputs],
        outputs=records,
    )


class BitcoinAdaptor:
    """
    Transfer and query operations for one Bitcoin network.

    Usage:
        async with BitcoinAdaptor(config) as adaptor:
            balance = await adaptor.get_account_balance(address)
    """

    def __init__(self, config: AdaptorConfig, backend: LedgerBackend | None = None):
        self.config = config
        self.network = config.network
        self.backend = backend or BtcdBackend(config.rpc, config.network)
        self.builder = TransferTxBuilder(config.network)

    async def __aenter__(self) -> BitcoinAdaptor:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close backend connection"""
        await self.backend.close()

    def _min_conf(self, min_confirmations: int | None) -> int:
        if min_confirmations is None:
            return self.config.min_confirmations
        if min_confirmations < 0:
            raise InvalidArgument(f"min_confirmations must be >= 0, got {min_confirmations}")
        return min_confirmations

    async def _utxo_set(self, address: str, min_confirmations: int) -> UTXOSet:
        decode_address(address, self.network)
        history = await self.backend.search_transactions(
            address, min_confirmations=min_confirmations, max_count=self.config.max_history
        )
        return reconstruct_utxo_set(history, address, min_confirmations)

    async def get_utxos(
        self, address: str, min_confirmations: int | None = None
    ) -> list[SpendableOutput]:
        """Spendable outputs of an address, in OutputRef order."""
        utxos = await self._utxo_set(address, self._min_conf(min_confirmations))
        return sorted_outputs(utxos)

    async def get_account_balance(
        self, address: str, min_confirmations: int | None = None
    ) -> int:
        """Sum of spendable outputs in sats."""
        min_conf = self._min_conf(min_confirmations)
        balance = utxo_balance(await self._utxo_set(address, min_conf))
        logger.debug(f"Balance with >= {min_conf} confirmations: {balance} sats")
        return balance

    async def list_transactions(
        self, address: str, count: int | None = None
    ) -> list[TransactionRecord]:
        """Most recent ``count`` transactions of an address, oldest first."""
        decode_address(address, self.network)
        if count is None:
            count = self.config.default_history_count
        if count < 1:
            raise InvalidArgument(f"count must be >= 1, got {count}")

        history = await self.backend.search_transactions(
            address, max_count=count, newest_first=True
        )
        return await HistoryReconciler(self.backend).reconcile(history, address)

    async def create_transfer_transaction(
        self,
        from_address: str,
        to_address: str,
        amount: int,
        excluded_refs: bytes = b"",
    ) -> UnsignedTransaction:
        """
        Select inputs from ``from_address`` and build an unsigned transfer.

        Args:
            from_address: Paying address, also receives the change
            to_address: Destination address
            amount: Payment in sats
            excluded_refs: consumed_refs of earlier transfers not yet on the ledger

        Returns:
            UnsignedTransaction whose consumed_refs can be passed back as
            excluded_refs by follow-up calls

        Raises:
            InvalidAddress, InvalidAmount, InsufficientFunds, LookupFailure,
            MalformedLedgerData
        """
        decode_address(from_address, self.network)
        decode_address(to_address, self.network)
        check_amount(amount)
        excluded = frozenset(unpack_output_refs(excluded_refs))

        min_conf = self.config.min_confirmations
        utxos = await self._utxo_set(from_address, min_conf)
        logger.debug(
            f"Selecting {amount} sats from {len(utxos)} outputs, {len(excluded)} excluded"
        )
        selection = select_coins(utxos.values(), amount, excluded)
        return self.builder.build(selection, to_address, amount, from_address)

    def calc_tx_hash(self, raw: bytes) -> str:
        """Txid of a raw transaction."""
        return calc_tx_hash(raw)

    def decode_transaction(self, raw: bytes) -> DecodedTransaction:
        return decode_raw_transaction(raw, self.network)

    async def _previous_output(
        self, tx: LedgerTransaction, index: int, cache: dict[str, LedgerTransaction]
    ) -> LedgerOutput:
        inp = tx.inputs[index]
        if inp.coinbase:
            raise MalformedLedgerData(f"Transaction {tx.txid} is a coinbase transaction")
        prev = cache.get(inp.txid)
        if prev is None:
            prev = await self.backend.get_transaction(inp.txid)
            cache[inp.txid] = prev
        out = prev.output(inp.vout)
        if out is None:
            raise MalformedLedgerData(f"Input {inp.ref} references a missing output")
        return out

    async def _inspect_transfer(self, tx_id: str, with_amounts: bool) -> TransferTransaction:
        tx = await self.backend.get_transaction(tx_id)
        if not tx.inputs:
            raise MalformedLedgerData(f"Transaction {tx_id} has no inputs")

        cache: dict[str, LedgerTransaction] = {}
        first = await self._previous_output(tx, 0, cache)
        if first.address is None:
            raise MalformedLedgerData(f"Sender of {tx_id} has no resolvable address")
        sender = first.address

        result = TransferTransaction(txid=tx.txid, from_address=sender, to_address="")
        change = 0
        amount = 0
        for out in tx.outputs:
            if out.is_data_carrier:
                result.attach_data += op_return_data(out)
                continue
            if out.address is None:
                logger.warning(f"Output {tx_id}:{out.n} has no resolvable address, ignored")
                continue
            if out.address == sender:
                change += out.value
                continue
            if result.to_address and result.to_address != out.address:
                raise MalformedLedgerData(f"Transaction {tx_id} pays more than one destination")
            result.to_address = out.address
            amount += out.value

        if with_amounts:
            input_total = first.value
            for index in range(1, len(tx.inputs)):
                input_total += (await self._previous_output(tx, index, cache)).value
            result.amount = amount
            result.fee = input_total - change - amount

        result.raw = bytes.fromhex(tx.hex) if tx.hex else b""
        result.is_stable = tx.confirmations >= self.config.stable_confirmations
        result.timestamp = tx.block_time or 0
        if tx.block_hash:
            result.is_in_block = True
            result.block_hash = tx.block_hash
            block = await self.backend.get_block(block_hash=tx.block_hash)
            result.block_height = block.height
        return result

    async def get_transfer_tx(self, tx_id: str) -> TransferTransaction:
        """Sender, destination, amount and fee of a transfer on the ledger."""
        return await self._inspect_transfer(tx_id, with_amounts=True)

    async def get_tx_basic_info(self, tx_id: str) -> TransferTransaction:
        """Like get_transfer_tx, without resolving every input's value."""
        return await self._inspect_transfer(tx_id, with_amounts=False)

    async def get_block_info(
        self, block_hash: str | None = None, height: int | None = None, latest: bool = False
    ) -> BlockInfo:
        if latest:
            block_hash = await self.backend.get_best_block_hash()
            height = None
        block = await self.backend.get_block(block_hash=block_hash, height=height)
        block.is_stable = block.confirmations >= self.config.stable_confirmations
        return block

    def sign_transaction(self, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedCapability("sign_transaction")

    def send_transaction(self, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedCapability("send_transaction")

    def create_multisig_address(self, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedCapability("create_multisig_address")

    def bind_signature(self, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedCapability("bind_signature")
