"""
Output scripts watched by the wallet and their bech32 addresses.
"""

from __future__ import annotations

import hashlib

OP_0 = 0x00
OP_1 = 0x51
OP_1NEGATE = 0x4F
OP_DROP = 0x75
OP_CHECKSIG = 0xAC
OP_CHECKSEQUENCEVERIFY = 0xB2

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"

NETWORK_HRP = {
    "mainnet": "bc",
    "testnet": "tb",
    "signet": "tb",
    "regtest": "bcrt",
}


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def push_data(data: bytes) -> bytes:
    """Minimal push of data up to 75 bytes"""
    if len(data) > 75:
        raise ValueError(f"Push too large for direct push opcode: {len(data)} bytes")
    return bytes([len(data)]) + data


def encode_script_number(value: int) -> bytes:
    """Push a number as a minimally encoded script integer"""
    if value == 0:
        return bytes([OP_0])
    if value == -1:
        return bytes([OP_1NEGATE])
    if 1 <= value <= 16:
        return bytes([OP_1 + value - 1])

    negative = value < 0
    magnitude = abs(value)
    result = bytearray()
    while magnitude:
        result.append(magnitude & 0xFF)
        magnitude >>= 8
    if result[-1] & 0x80:
        result.append(0x80 if negative else 0x00)
    elif negative:
        result[-1] |= 0x80
    return push_data(bytes(result))


def p2wpkh_script(pubkey: bytes) -> bytes:
    """OP_0 <20-byte pubkey hash>"""
    if len(pubkey) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")
    return bytes([OP_0, 0x14]) + hash160(pubkey)


def csv_locked_script(pubkey: bytes, csv: int) -> bytes:
    """<csv> OP_CHECKSEQUENCEVERIFY OP_DROP <pubkey> OP_CHECKSIG"""
    return (
        encode_script_number(csv)
        + bytes([OP_CHECKSEQUENCEVERIFY, OP_DROP])
        + push_data(pubkey)
        + bytes([OP_CHECKSIG])
    )


def p2wsh_script(witness_script: bytes) -> bytes:
    """OP_0 <32-byte sha256 of the witness script>"""
    return bytes([OP_0, 0x20]) + hashlib.sha256(witness_script).digest()


def bech32_polymod(values: list[int]) -> int:
    gen = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for v in values:
        b = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ v
        for i in range(5):
            chk ^= gen[i] if ((b >> i) & 1) else 0
    return chk


def bech32_hrp_expand(hrp: str) -> list[int]:
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def bech32_encode(hrp: str, data: list[int]) -> str:
    values = bech32_hrp_expand(hrp) + data
    polymod = bech32_polymod(values + [0, 0, 0, 0, 0, 0]) ^ 1
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + "1" + "".join(BECH32_CHARSET[d] for d in data + checksum)


def convertbits(data: bytes, frombits: int, tobits: int) -> list[int]:
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1

    for value in data:
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)
    if bits:
        ret.append((acc << (tobits - bits)) & maxv)
    return ret


def script_to_address(script_pubkey: bytes, network: str = "mainnet") -> str | None:
    """Bech32 address of a segwit v0 script, None for anything else"""
    if len(script_pubkey) not in (22, 34) or script_pubkey[0] != OP_0:
        return None
    if script_pubkey[1] != len(script_pubkey) - 2:
        return None

    hrp = NETWORK_HRP[network]
    return bech32_encode(hrp, [0] + convertbits(script_pubkey[2:], 8, 5))
