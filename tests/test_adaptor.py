"""
Tests for the BitcoinAdaptor operation surface.
"""

from __future__ import annotations

import pytest

from btcadaptor.adaptor import BitcoinAdaptor, op_return_data
from btcadaptor.config import AdaptorConfig
from btcadaptor.errors import (
    AdaptorError,
    InsufficientFunds,
    InvalidAddress,
    InvalidAmount,
    InvalidArgument,
    MalformedLedgerData,
    NotImplementedCapability,
)
from btcadaptor.models import BlockInfo, LedgerOutput, OutputRef
from btcadaptor.tx_builder import pack_output_refs, unpack_output_refs
from tests.fakes import ADDR_A, ADDR_B, ADDR_C, ADDR_D, FakeLedger, make_tx, tx_hash

BLOCK_HASH = "00" * 8 + "11" * 24


@pytest.fixture
def funded_ledger() -> FakeLedger:
    """Address A holds 10M, 20M and 5M in three confirmed outputs."""
    return FakeLedger(
        [
            make_tx("txA", inputs=[(tx_hash("f"), 0)], outputs=[(ADDR_A, 10_000_000)]),
            make_tx("txB", inputs=[(tx_hash("f"), 1)], outputs=[(ADDR_A, 20_000_000)]),
            make_tx("txC", inputs=[(tx_hash("f"), 2)], outputs=[(ADDR_A, 5_000_000)]),
        ]
    )


@pytest.fixture
def adaptor(funded_ledger: FakeLedger, config: AdaptorConfig) -> BitcoinAdaptor:
    return BitcoinAdaptor(config, backend=funded_ledger)


def ref(label: str, vout: int = 0) -> OutputRef:
    return OutputRef(tx_hash(label), vout)


class TestBalance:
    @pytest.mark.asyncio
    async def test_balance(self, adaptor: BitcoinAdaptor) -> None:
        assert await adaptor.get_account_balance(ADDR_A) == 35_000_000
        assert await adaptor.get_account_balance(ADDR_B) == 0

    @pytest.mark.asyncio
    async def test_unconfirmed_excluded(
        self, adaptor: BitcoinAdaptor, funded_ledger: FakeLedger
    ) -> None:
        funded_ledger.add(
            make_tx(
                "pending", inputs=[(tx_hash("f"), 3)], outputs=[(ADDR_A, 1_000)], confirmations=0
            )
        )

        assert await adaptor.get_account_balance(ADDR_A) == 35_000_000
        assert await adaptor.get_account_balance(ADDR_A, min_confirmations=0) == 35_001_000

    @pytest.mark.asyncio
    async def test_negative_min_confirmations(self, adaptor: BitcoinAdaptor) -> None:
        """Test a bad threshold surfaces as an adaptor error."""
        with pytest.raises(InvalidArgument) as exc_info:
            await adaptor.get_account_balance(ADDR_A, min_confirmations=-1)

        assert isinstance(exc_info.value, AdaptorError)
        assert isinstance(exc_info.value, ValueError)

    @pytest.mark.asyncio
    async def test_invalid_address(self, adaptor: BitcoinAdaptor) -> None:
        with pytest.raises(InvalidAddress):
            await adaptor.get_account_balance("tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx")

    @pytest.mark.asyncio
    async def test_utxos_sorted(self, adaptor: BitcoinAdaptor) -> None:
        utxos = await adaptor.get_utxos(ADDR_A)

        assert {u.value for u in utxos} == {10_000_000, 20_000_000, 5_000_000}
        assert [u.ref for u in utxos] == sorted(u.ref for u in utxos)


class TestCreateTransfer:
    @pytest.mark.asyncio
    async def test_greedy_with_change(self, adaptor: BitcoinAdaptor) -> None:
        tx = await adaptor.create_transfer_transaction(ADDR_A, ADDR_B, 25_000_000)

        assert tx.inputs == [ref("txB"), ref("txA")]
        assert [(o.address, o.value) for o in tx.outputs] == [
            (ADDR_B, 25_000_000),
            (ADDR_A, 5_000_000),
        ]
        assert tx.consumed_refs == pack_output_refs([ref("txB"), ref("txA")])
        assert tx.txid == adaptor.calc_tx_hash(tx.raw)

    @pytest.mark.asyncio
    async def test_exact_match(self, adaptor: BitcoinAdaptor) -> None:
        tx = await adaptor.create_transfer_transaction(ADDR_A, ADDR_B, 20_000_000)

        assert tx.inputs == [ref("txB")]
        assert tx.change_output is None

    @pytest.mark.asyncio
    async def test_consumed_refs_excluded_next_time(self, adaptor: BitcoinAdaptor) -> None:
        """Test that passing consumed refs back prevents double use."""
        first = await adaptor.create_transfer_transaction(ADDR_A, ADDR_B, 25_000_000)

        second = await adaptor.create_transfer_transaction(
            ADDR_A, ADDR_C, 5_000_000, first.consumed_refs
        )

        assert second.inputs == [ref("txC")]
        assert not set(second.inputs) & set(unpack_output_refs(first.consumed_refs))

    @pytest.mark.asyncio
    async def test_every_excluded_entry_applies(self, adaptor: BitcoinAdaptor) -> None:
        excluded = pack_output_refs([ref("txA"), ref("txB")])

        with pytest.raises(InsufficientFunds) as exc_info:
            await adaptor.create_transfer_transaction(ADDR_A, ADDR_B, 6_000_000, excluded)

        assert exc_info.value.available == 5_000_000

    @pytest.mark.asyncio
    async def test_excluded_largest_output(self, adaptor: BitcoinAdaptor) -> None:
        with pytest.raises(InsufficientFunds):
            await adaptor.create_transfer_transaction(
                ADDR_A, ADDR_B, 25_000_000, pack_output_refs([ref("txB")])
            )

    @pytest.mark.asyncio
    async def test_insufficient(self, adaptor: BitcoinAdaptor) -> None:
        with pytest.raises(InsufficientFunds):
            await adaptor.create_transfer_transaction(ADDR_A, ADDR_B, 35_000_001)

    @pytest.mark.asyncio
    async def test_decoded_transaction(self, adaptor: BitcoinAdaptor) -> None:
        tx = await adaptor.create_transfer_transaction(ADDR_A, ADDR_B, 25_000_000)

        decoded = adaptor.decode_transaction(tx.raw)

        assert decoded.txid == tx.txid
        assert decoded.inputs == tx.inputs
        assert [(o.address, o.value) for o in decoded.outputs] == [
            (ADDR_B, 25_000_000),
            (ADDR_A, 5_000_000),
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -1, 1.5, True])
    async def test_invalid_amount(self, adaptor: BitcoinAdaptor, amount) -> None:
        with pytest.raises(InvalidAmount):
            await adaptor.create_transfer_transaction(ADDR_A, ADDR_B, amount)

    @pytest.mark.asyncio
    async def test_malformed_exclusions(self, adaptor: BitcoinAdaptor) -> None:
        with pytest.raises(InvalidAmount):
            await adaptor.create_transfer_transaction(ADDR_A, ADDR_B, 1_000, b"\x00" * 40)

    @pytest.mark.asyncio
    async def test_invalid_destination(self, adaptor: BitcoinAdaptor) -> None:
        with pytest.raises(InvalidAddress):
            await adaptor.create_transfer_transaction(ADDR_A, "nope", 1_000)


class TestListTransactions:
    @pytest.mark.asyncio
    async def test_most_recent(self, adaptor: BitcoinAdaptor, funded_ledger: FakeLedger) -> None:
        funded_ledger.by_id[tx_hash("f")] = make_tx(
            "f", outputs=[(ADDR_C, 10_000_000), (ADDR_C, 20_000_000), (ADDR_C, 5_000_000)]
        )

        records = await adaptor.list_transactions(ADDR_A, count=2)

        assert [r.txid for r in records] == [tx_hash("txB"), tx_hash("txC")]
        assert [r.balance_delta for r in records] == [20_000_000, 5_000_000]
        assert all(r.counterparty == ADDR_C for r in records)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [0, -1])
    async def test_invalid_count(self, adaptor: BitcoinAdaptor, count: int) -> None:
        """Test zero is rejected instead of falling back to the default."""
        with pytest.raises(InvalidArgument):
            await adaptor.list_transactions(ADDR_A, count=count)


@pytest.fixture
def transfer_ledger() -> FakeLedger:
    """A pays B 30_000 with 9_000 change, an OP_RETURN and a 1_000 fee."""
    fund = make_tx("fund", inputs=[(tx_hash("f"), 0)], outputs=[(ADDR_A, 40_000)])
    pay = make_tx(
        "pay",
        inputs=[(fund.txid, 0)],
        outputs=[(ADDR_B, 30_000), (ADDR_A, 9_000)],
        confirmations=7,
        block_hash=BLOCK_HASH,
    )
    pay.outputs.append(
        LedgerOutput(
            n=2, value=0, address=None, script_type="nulldata", script_asm="OP_RETURN 68656c6c6f"
        )
    )
    pay.block_time = 1_700_000_000
    block = BlockInfo(
        block_hash=BLOCK_HASH,
        height=820_000,
        timestamp=1_700_000_000,
        previous_hash="00" * 32,
        merkle_root="22" * 32,
        confirmations=7,
    )
    return FakeLedger([fund, pay], blocks=[block])


class TestTransferInspection:
    @pytest.mark.asyncio
    async def test_get_transfer_tx(
        self, transfer_ledger: FakeLedger, config: AdaptorConfig
    ) -> None:
        adaptor = BitcoinAdaptor(config, backend=transfer_ledger)

        transfer = await adaptor.get_transfer_tx(tx_hash("pay"))

        assert transfer.from_address == ADDR_A
        assert transfer.to_address == ADDR_B
        assert transfer.amount == 30_000
        assert transfer.fee == 1_000
        assert transfer.attach_data == b"hello"
        assert transfer.is_in_block
        assert transfer.block_height == 820_000
        assert transfer.is_stable
        assert transfer.timestamp == 1_700_000_000

    @pytest.mark.asyncio
    async def test_basic_info_skips_amounts(
        self, transfer_ledger: FakeLedger, config: AdaptorConfig
    ) -> None:
        adaptor = BitcoinAdaptor(config, backend=transfer_ledger)

        transfer = await adaptor.get_tx_basic_info(tx_hash("pay"))

        assert transfer.to_address == ADDR_B
        assert transfer.amount is None
        assert transfer.fee is None

    @pytest.mark.asyncio
    async def test_unconfirmed_transfer(self, config: AdaptorConfig) -> None:
        fund = make_tx("fund", inputs=[(tx_hash("f"), 0)], outputs=[(ADDR_A, 40_000)])
        pay = make_tx(
            "pay", inputs=[(fund.txid, 0)], outputs=[(ADDR_B, 39_000)], confirmations=0
        )
        adaptor = BitcoinAdaptor(config, backend=FakeLedger([fund, pay]))

        transfer = await adaptor.get_transfer_tx(pay.txid)

        assert not transfer.is_in_block
        assert not transfer.is_stable
        assert transfer.block_height is None
        assert transfer.fee == 1_000

    @pytest.mark.asyncio
    async def test_multiple_destinations(self, config: AdaptorConfig) -> None:
        fund = make_tx("fund", inputs=[(tx_hash("f"), 0)], outputs=[(ADDR_A, 40_000)])
        pay = make_tx(
            "pay", inputs=[(fund.txid, 0)], outputs=[(ADDR_B, 10_000), (ADDR_D, 10_000)]
        )
        adaptor = BitcoinAdaptor(config, backend=FakeLedger([fund, pay]))

        with pytest.raises(MalformedLedgerData):
            await adaptor.get_transfer_tx(pay.txid)

    @pytest.mark.asyncio
    async def test_coinbase_has_no_sender(self, config: AdaptorConfig) -> None:
        mined = make_tx("mined", outputs=[(ADDR_A, 625_000_000)])
        adaptor = BitcoinAdaptor(config, backend=FakeLedger([mined]))

        with pytest.raises(MalformedLedgerData):
            await adaptor.get_transfer_tx(mined.txid)


class TestOpReturnData:
    def test_pushed_bytes(self) -> None:
        out = LedgerOutput(n=0, value=0, address=None, script_asm="OP_RETURN 6869 ff")
        assert op_return_data(out) == b"hi\xff"

    def test_not_op_return(self) -> None:
        out = LedgerOutput(n=0, value=0, address=None, script_asm="OP_DUP OP_HASH160")
        assert op_return_data(out) == b""


class TestBlockInfo:
    @pytest.mark.asyncio
    async def test_latest(self, transfer_ledger: FakeLedger, config: AdaptorConfig) -> None:
        adaptor = BitcoinAdaptor(config, backend=transfer_ledger)

        block = await adaptor.get_block_info(latest=True)

        assert block.block_hash == BLOCK_HASH
        assert block.is_stable

    @pytest.mark.asyncio
    async def test_by_height_not_stable(
        self, transfer_ledger: FakeLedger, config: AdaptorConfig
    ) -> None:
        transfer_ledger.blocks[0].confirmations = 2
        adaptor = BitcoinAdaptor(config, backend=transfer_ledger)

        block = await adaptor.get_block_info(height=820_000)

        assert block.height == 820_000
        assert not block.is_stable


class TestUnsupported:
    @pytest.mark.parametrize(
        "operation",
        ["sign_transaction", "send_transaction", "create_multisig_address", "bind_signature"],
    )
    def test_not_implemented(self, adaptor: BitcoinAdaptor, operation: str) -> None:
        with pytest.raises(NotImplementedCapability):
            getattr(adaptor, operation)(b"")


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager_closes_backend(
        self, funded_ledger: FakeLedger, config: AdaptorConfig
    ) -> None:
        async with BitcoinAdaptor(config, backend=funded_ledger) as adaptor:
            await adaptor.get_account_balance(ADDR_A)

        assert funded_ledger.closed
