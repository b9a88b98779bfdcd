"""
Ledger data models.

Transactions and blocks carry their own consensus (de)serialization so that
txids and block hashes are always computed from the canonical encoding.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import NamedTuple

from coinledger.serialization import (
    SerializationError,
    encode_var_bytes,
    encode_varint,
    hash256,
    hash_to_hex,
    hex_to_hash,
    read_bytes,
    read_uint,
    read_var_bytes,
    read_varint,
)

NULL_TXID = "00" * 32
NULL_VOUT = 0xFFFFFFFF
BLOCK_HEADER_SIZE = 80


@dataclass(frozen=True, order=True)
class OutPoint:
    """Reference to a transaction output: (txid, output index)"""

    txid: str
    vout: int

    @classmethod
    def null(cls) -> OutPoint:
        return cls(NULL_TXID, NULL_VOUT)

    def is_null(self) -> bool:
        return self.txid == NULL_TXID and self.vout == NULL_VOUT

    def serialize(self) -> bytes:
        return hex_to_hash(self.txid) + self.vout.to_bytes(4, "little")

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass(frozen=True)
class TxOut:
    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        return self.value.to_bytes(8, "little") + encode_var_bytes(self.script_pubkey)


@dataclass
class TxIn:
    previous_output: OutPoint
    script_sig: bytes = b""
    sequence: int = 0xFFFFFFFF
    witness: list[bytes] = field(default_factory=list)

    def serialize(self) -> bytes:
        return (
            self.previous_output.serialize()
            + encode_var_bytes(self.script_sig)
            + self.sequence.to_bytes(4, "little")
        )


@dataclass
class Transaction:
    version: int = 2
    inputs: list[TxIn] = field(default_factory=list)
    outputs: list[TxOut] = field(default_factory=list)
    lock_time: int = 0

    @property
    def txid(self) -> str:
        """Double-SHA256 of the witness-stripped encoding, display order"""
        return hash_to_hex(hash256(self.serialize(include_witness=False)))

    def has_witness(self) -> bool:
        return any(txin.witness for txin in self.inputs)

    def is_coinbase(self) -> bool:
        return len(self.inputs) == 1 and self.inputs[0].previous_output.is_null()

    def serialize(self, include_witness: bool = True) -> bytes:
        segwit = include_witness and self.has_witness()
        parts = [self.version.to_bytes(4, "little", signed=True)]
        if segwit:
            parts.append(b"\x00\x01")
        parts.append(encode_varint(len(self.inputs)))
        parts.extend(txin.serialize() for txin in self.inputs)
        parts.append(encode_varint(len(self.outputs)))
        parts.extend(txout.serialize() for txout in self.outputs)
        if segwit:
            for txin in self.inputs:
                parts.append(encode_varint(len(txin.witness)))
                parts.extend(encode_var_bytes(item) for item in txin.witness)
        parts.append(self.lock_time.to_bytes(4, "little"))
        return b"".join(parts)

    @classmethod
    def read(cls, data: bytes, offset: int = 0) -> tuple[Transaction, int]:
        """Parse a transaction starting at offset, returning it and the new offset"""
        raw_version, offset = read_bytes(data, offset, 4)
        version = int.from_bytes(raw_version, "little", signed=True)

        segwit = False
        if offset + 1 < len(data) and data[offset] == 0x00 and data[offset + 1] == 0x01:
            segwit = True
            offset += 2

        input_count, offset = read_varint(data, offset)
        inputs: list[TxIn] = []
        for _ in range(input_count):
            txid_le, offset = read_bytes(data, offset, 32)
            vout, offset = read_uint(data, offset, 4)
            script_sig, offset = read_var_bytes(data, offset)
            sequence, offset = read_uint(data, offset, 4)
            inputs.append(TxIn(OutPoint(hash_to_hex(txid_le), vout), script_sig, sequence))

        output_count, offset = read_varint(data, offset)
        outputs: list[TxOut] = []
        for _ in range(output_count):
            value, offset = read_uint(data, offset, 8)
            script_pubkey, offset = read_var_bytes(data, offset)
            outputs.append(TxOut(value, script_pubkey))

        if segwit:
            for txin in inputs:
                stack_count, offset = read_varint(data, offset)
                for _ in range(stack_count):
                    item, offset = read_var_bytes(data, offset)
                    txin.witness.append(item)

        lock_time, offset = read_uint(data, offset, 4)
        return cls(version, inputs, outputs, lock_time), offset

    @classmethod
    def from_bytes(cls, data: bytes) -> Transaction:
        tx, offset = cls.read(data)
        if offset != len(data):
            raise SerializationError(f"Trailing data after transaction: {len(data) - offset} bytes")
        return tx

    @classmethod
    def from_hex(cls, value: str) -> Transaction:
        try:
            raw = bytes.fromhex(value.strip())
        except ValueError as e:
            raise SerializationError(f"Invalid transaction hex: {e}") from e
        return cls.from_bytes(raw)


@dataclass(frozen=True)
class BlockHeader:
    version: int
    prev_blockhash: str
    merkle_root: str
    time: int
    bits: int
    nonce: int

    @property
    def block_hash(self) -> str:
        return hash_to_hex(hash256(self.serialize()))

    def serialize(self) -> bytes:
        return (
            self.version.to_bytes(4, "little", signed=True)
            + hex_to_hash(self.prev_blockhash)
            + hex_to_hash(self.merkle_root)
            + self.time.to_bytes(4, "little")
            + self.bits.to_bytes(4, "little")
            + self.nonce.to_bytes(4, "little")
        )

    @classmethod
    def read(cls, data: bytes, offset: int = 0) -> tuple[BlockHeader, int]:
        raw, offset = read_bytes(data, offset, BLOCK_HEADER_SIZE)
        header = cls(
            version=int.from_bytes(raw[0:4], "little", signed=True),
            prev_blockhash=hash_to_hex(raw[4:36]),
            merkle_root=hash_to_hex(raw[36:68]),
            time=int.from_bytes(raw[68:72], "little"),
            bits=int.from_bytes(raw[72:76], "little"),
            nonce=int.from_bytes(raw[76:80], "little"),
        )
        return header, offset


@dataclass
class Block:
    header: BlockHeader
    txdata: list[Transaction] = field(default_factory=list)

    @property
    def block_hash(self) -> str:
        return self.header.block_hash

    def serialize(self) -> bytes:
        return (
            self.header.serialize()
            + encode_varint(len(self.txdata))
            + b"".join(tx.serialize() for tx in self.txdata)
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> Block:
        header, offset = BlockHeader.read(data)
        tx_count, offset = read_varint(data, offset)
        txdata: list[Transaction] = []
        for _ in range(tx_count):
            tx, offset = Transaction.read(data, offset)
            txdata.append(tx)
        if offset != len(data):
            raise SerializationError(f"Trailing data after block: {len(data) - offset} bytes")
        return cls(header, txdata)

    @classmethod
    def from_hex(cls, value: str) -> Block:
        try:
            raw = bytes.fromhex(value.strip())
        except ValueError as e:
            raise SerializationError(f"Invalid block hex: {e}") from e
        return cls.from_bytes(raw)


@dataclass(frozen=True)
class KeyDerivation:
    """Where the key owning a script comes from"""

    account: int
    sub: int
    kix: int
    tweak: bytes | None = None
    csv: int | None = None  # relative timelock in blocks

    def with_kix(self, kix: int) -> KeyDerivation:
        return replace(self, kix=kix)


@dataclass(frozen=True)
class Coin:
    """A spendable output together with the derivation of the key that spends it"""

    output: TxOut
    derivation: KeyDerivation

    @property
    def value(self) -> int:
        return self.output.value


class SelectedCoin(NamedTuple):
    """Coin selection result entry"""

    outpoint: OutPoint
    coin: Coin
    height: int
