"""
btcd JSON-RPC ledger backend.
Requires a node with the address index enabled (searchrawtransactions).
"""

from __future__ import annotations

import os
import ssl
from decimal import Decimal
from typing import Any

import httpx
from loguru import logger

from btcadaptor.address import encode_address
from btcadaptor.backends.base import LedgerBackend
from btcadaptor.config import MAX_SEARCH_COUNT, NetworkType, RPCConfig
from btcadaptor.errors import InvalidArgument, LookupFailure, MalformedLedgerData
from btcadaptor.models import BlockInfo, LedgerInput, LedgerOutput, LedgerTransaction

SATS_PER_BTC = Decimal(100_000_000)

# RPC_INVALID_ADDRESS_OR_KEY, returned by searchrawtransactions for unseen addresses
RPC_NO_TX_INFO = -5

# Environment variable to enable sensitive logging (addresses)
SENSITIVE_LOGGING = os.environ.get("SENSITIVE_LOGGING", "").lower() in ("1", "true", "yes")


def to_satoshis(amount: Decimal | int | str) -> int:
    """
    Convert a BTC amount from the node into integer satoshis.

    Raises:
        MalformedLedgerData: If the amount is not a whole number of satoshis
    """
    sats = Decimal(amount) * SATS_PER_BTC
    if sats != sats.to_integral_value():
        raise MalformedLedgerData(f"Amount {amount} is not a whole number of satoshis")
    return int(sats)


def parse_transaction(data: dict[str, Any], network: NetworkType) -> LedgerTransaction:
    """Convert a verbose transaction object into a LedgerTransaction."""
    try:
        txid = data["txid"]

        inputs = []
        for vin in data.get("vin", []):
            if "coinbase" in vin:
                inputs.append(LedgerInput(coinbase=True))
            else:
                inputs.append(LedgerInput(txid=vin["txid"], vout=int(vin["vout"])))

        outputs = []
        for vout in data.get("vout", []):
            script = vout.get("scriptPubKey", {})
            script_hex = script.get("hex", "")
            address = script.get("address")
            if not address and script.get("addresses"):
                address = script["addresses"][0]
            if not address and script_hex:
                try:
                    address = encode_address(bytes.fromhex(script_hex), network)
                except ValueError:
                    address = None
            outputs.append(
                LedgerOutput(
                    n=int(vout["n"]),
                    value=to_satoshis(vout["value"]),
                    address=address or None,
                    script_type=script.get("type", ""),
                    script_hex=script_hex,
                    script_asm=script.get("asm", ""),
                )
            )
    except (KeyError, TypeError, ValueError, ArithmeticError) as e:
        raise MalformedLedgerData(f"Unexpected transaction shape: {e!r}") from e

    return LedgerTransaction(
        txid=txid,
        inputs=inputs,
        outputs=outputs,
        confirmations=int(data.get("confirmations") or 0),
        block_hash=data.get("blockhash") or None,
        block_time=data.get("blocktime"),
        hex=data.get("hex", ""),
    )


class BtcdBackend(LedgerBackend):
    """
    Ledger backend using btcd's JSON-RPC interface.
    Every call is a single request; nothing is retried.
    """

    def __init__(self, rpc: RPCConfig, network: NetworkType = NetworkType.MAINNET):
        self.rpc_url = rpc.url.rstrip("/")
        self.network = network
        verify: ssl.SSLContext | bool = True
        if rpc.cert_path is not None:
            verify = ssl.create_default_context(cafile=str(rpc.cert_path.expanduser()))
        self.client = httpx.AsyncClient(
            timeout=rpc.timeout, auth=(rpc.user, rpc.password), verify=verify
        )
        self._request_id = 0

    async def _rpc_call(self, method: str, params: list | None = None) -> Any:
        """
        Make an RPC call to the node.

        Raises:
            LookupFailure: On transport errors or RPC error responses
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "1.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        try:
            response = await self.client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            logger.error(f"RPC call failed: {method} - {e}")
            raise LookupFailure(method, str(e)) from e

        # btcd reports RPC errors with a non-2xx status and a JSON body
        try:
            data = response.json(parse_float=Decimal)
        except ValueError as e:
            logger.error(f"RPC call failed: {method} - HTTP {response.status_code}")
            raise LookupFailure(method, f"HTTP {response.status_code}: non-JSON response") from e

        if not isinstance(data, dict):
            raise LookupFailure(method, "response is not a JSON-RPC object")

        error_info = data.get("error")
        if error_info:
            error_code = error_info.get("code") if isinstance(error_info, dict) else None
            error_msg = (
                error_info.get("message", str(error_info))
                if isinstance(error_info, dict)
                else str(error_info)
            )
            raise LookupFailure(method, f"RPC error {error_code}: {error_msg}", code=error_code)

        return data.get("result")

    async def search_transactions(
        self,
        address: str,
        min_confirmations: int = 0,
        max_count: int = MAX_SEARCH_COUNT,
        newest_first: bool = False,
    ) -> list[LedgerTransaction]:
        # searchrawtransactions address verbose skip count vinextra reverse
        params = [address, 1, 0, max_count, 0, newest_first]
        try:
            result = await self._rpc_call("searchrawtransactions", params)
        except LookupFailure as e:
            if e.code == RPC_NO_TX_INFO:
                logger.debug("No transactions found for address")
                return []
            raise

        if result is None:
            return []
        if not isinstance(result, list):
            raise MalformedLedgerData("searchrawtransactions did not return a list")

        txs = [parse_transaction(item, self.network) for item in result]
        if newest_first:
            txs.reverse()

        filtered = [tx for tx in txs if tx.confirmations >= min_confirmations]
        if SENSITIVE_LOGGING:
            logger.debug(f"Transactions for {address}: {[tx.txid for tx in filtered]}")
        logger.debug(
            f"Fetched {len(txs)} transactions, {len(filtered)} with "
            f">= {min_confirmations} confirmations"
        )
        return filtered

    async def get_transaction(self, txid: str) -> LedgerTransaction:
        result = await self._rpc_call("getrawtransaction", [txid, 1])
        if not isinstance(result, dict):
            raise MalformedLedgerData(f"getrawtransaction returned no object for {txid}")
        return parse_transaction(result, self.network)

    async def get_block(
        self, block_hash: str | None = None, height: int | None = None
    ) -> BlockInfo:
        if (block_hash is None) == (height is None):
            raise InvalidArgument("Exactly one of block_hash or height is required")

        if block_hash is None:
            block_hash = await self._rpc_call("getblockhash", [height])

        block = await self._rpc_call("getblock", [block_hash, True, False])
        header_hex = await self._rpc_call("getblockheader", [block_hash, False])
        if not isinstance(block, dict):
            raise MalformedLedgerData(f"getblock returned no object for {block_hash}")

        try:
            info = BlockInfo(
                block_hash=block["hash"],
                height=int(block["height"]),
                timestamp=int(block["time"]),
                previous_hash=block.get("previousblockhash", ""),
                merkle_root=block.get("merkleroot", ""),
                confirmations=int(block.get("confirmations", 0)),
                header_hex=header_hex or "",
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedLedgerData(f"Unexpected block shape: {e!r}") from e

        # Producer is whoever the coinbase pays first
        txids = block.get("tx") or []
        if txids:
            coinbase = await self.get_transaction(txids[0])
            if coinbase.outputs and coinbase.outputs[0].address:
                info.producer_address = coinbase.outputs[0].address

        logger.debug(f"Block {info.height}: {info.block_hash}")
        return info

    async def get_best_block_hash(self) -> str:
        return await self._rpc_call("getbestblockhash", [])

    async def close(self) -> None:
        await self.client.aclose()
