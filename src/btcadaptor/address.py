"""
Bitcoin address <-> scriptPubKey conversion, checked against a network.

Supports:
- P2WPKH / P2WSH (bech32, witness v0)
- P2PKH / P2SH (base58check)

Witness v1+ (bech32m, e.g. P2TR) is rejected: the bech32 library only
implements the BIP-173 checksum.
"""

from __future__ import annotations

import base58
import bech32

from btcadaptor.config import NetworkType
from btcadaptor.errors import InvalidAddress

BECH32_HRP: dict[NetworkType, str] = {
    NetworkType.MAINNET: "bc",
    NetworkType.TESTNET: "tb",
    NetworkType.SIGNET: "tb",
    NetworkType.REGTEST: "bcrt",
}

# (P2PKH, P2SH) version bytes
BASE58_VERSIONS: dict[NetworkType, tuple[int, int]] = {
    NetworkType.MAINNET: (0x00, 0x05),
    NetworkType.TESTNET: (0x6F, 0xC4),
    NetworkType.SIGNET: (0x6F, 0xC4),
    NetworkType.REGTEST: (0x6F, 0xC4),
}


def _network(network: NetworkType | str) -> NetworkType:
    return network if isinstance(network, NetworkType) else NetworkType(network)


def decode_address(address: str, network: NetworkType | str = NetworkType.MAINNET) -> bytes:
    """
    Convert an address to its scriptPubKey.

    Raises:
        InvalidAddress: If the address is malformed or belongs to another network
    """
    net = _network(network)
    text = address.strip()
    if not text:
        raise InvalidAddress(address, "empty")

    lowered = text.lower()
    if "1" in lowered and lowered.rsplit("1", 1)[0] in ("bc", "tb", "bcrt"):
        hrp = lowered.rsplit("1", 1)[0]
        if hrp != BECH32_HRP[net]:
            raise InvalidAddress(address, f"not a {net.value} address")

        # First data character is the witness version, "q" is v0
        if lowered[len(hrp) + 1 : len(hrp) + 2] != "q":
            raise InvalidAddress(address, "only witness v0 addresses are supported")

        witver, witprog = bech32.decode(hrp, text)
        if witver is None or witprog is None:
            raise InvalidAddress(address, "bad bech32 encoding")
        program = bytes(witprog)

        if len(program) == 20:
            # P2WPKH: OP_0 <20-byte-pubkeyhash>
            return bytes([0x00, 0x14]) + program
        if len(program) == 32:
            # P2WSH: OP_0 <32-byte-scripthash>
            return bytes([0x00, 0x20]) + program

        raise InvalidAddress(address, f"bad witness v0 program length {len(program)}")

    try:
        decoded = base58.b58decode_check(text)
    except ValueError as e:
        raise InvalidAddress(address, str(e)) from e

    if len(decoded) != 21:
        raise InvalidAddress(address, "bad payload length")

    version, payload = decoded[0], decoded[1:]
    p2pkh_version, p2sh_version = BASE58_VERSIONS[net]
    if version == p2pkh_version:
        # OP_DUP OP_HASH160 <20-byte-pubkeyhash> OP_EQUALVERIFY OP_CHECKSIG
        return bytes([0x76, 0xA9, 0x14]) + payload + bytes([0x88, 0xAC])
    if version == p2sh_version:
        # OP_HASH160 <20-byte-scripthash> OP_EQUAL
        return bytes([0xA9, 0x14]) + payload + bytes([0x87])

    raise InvalidAddress(address, f"version byte {version:#04x} is not {net.value}")


def encode_address(scriptpubkey: bytes, network: NetworkType | str = NetworkType.MAINNET) -> str:
    """
    Convert a scriptPubKey to its address.

    Raises:
        ValueError: If the script is not a standard single-address script
    """
    net = _network(network)
    hrp = BECH32_HRP[net]
    p2pkh_version, p2sh_version = BASE58_VERSIONS[net]

    result: str | None = None
    if len(scriptpubkey) == 22 and scriptpubkey[:2] == bytes([0x00, 0x14]):
        result = bech32.encode(hrp, 0, scriptpubkey[2:])
    elif len(scriptpubkey) == 34 and scriptpubkey[:2] == bytes([0x00, 0x20]):
        result = bech32.encode(hrp, 0, scriptpubkey[2:])
    elif (
        len(scriptpubkey) == 25
        and scriptpubkey[:3] == bytes([0x76, 0xA9, 0x14])
        and scriptpubkey[23:] == bytes([0x88, 0xAC])
    ):
        result = base58.b58encode_check(bytes([p2pkh_version]) + scriptpubkey[3:23]).decode()
    elif (
        len(scriptpubkey) == 23
        and scriptpubkey[:2] == bytes([0xA9, 0x14])
        and scriptpubkey[22] == 0x87
    ):
        result = base58.b58encode_check(bytes([p2sh_version]) + scriptpubkey[2:22]).decode()

    if result is None:
        raise ValueError(f"Unsupported scriptPubKey: {scriptpubkey.hex()}")
    return result


def is_valid_address(address: str, network: NetworkType | str = NetworkType.MAINNET) -> bool:
    try:
        decode_address(address, network)
    except InvalidAddress:
        return False
    return True
