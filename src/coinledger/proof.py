"""
SPV inclusion proofs.

A proof keeps the block header, the proved transaction, its position in the
block and the Merkle branch from the transaction up to the header's merkle
root. Hashes inside the tree are handled in internal byte order; txids and
block hashes at the API surface are display-order hex.
"""

from __future__ import annotations

from collections.abc import Sequence

from coinledger.models import Block, BlockHeader, Transaction
from coinledger.serialization import hash256, hash_to_hex, hex_to_hash


def _next_level(level: list[bytes]) -> list[bytes]:
    if len(level) % 2:
        level = level + [level[-1]]
    return [hash256(level[i] + level[i + 1]) for i in range(0, len(level), 2)]


def merkle_root(txids: Sequence[str]) -> str:
    """Compute the Bitcoin merkle root of txids (last node duplicated on odd levels)"""
    if not txids:
        raise ValueError("Cannot compute merkle root of an empty transaction list")

    level = [hex_to_hash(txid) for txid in txids]
    while len(level) > 1:
        level = _next_level(level)
    return hash_to_hex(level[0])


def merkle_branch(txids: Sequence[str], index: int) -> list[bytes]:
    """Sibling hashes from leaf index up to (excluding) the root"""
    if not 0 <= index < len(txids):
        raise IndexError(f"Transaction index {index} out of range for {len(txids)} transactions")

    level = [hex_to_hash(txid) for txid in txids]
    branch: list[bytes] = []
    while len(level) > 1:
        if len(level) % 2:
            level.append(level[-1])
        branch.append(level[index ^ 1])
        level = _next_level(level)
        index >>= 1
    return branch


def root_from_branch(txid: str, branch: Sequence[bytes], index: int) -> str:
    node = hex_to_hash(txid)
    for sibling in branch:
        if index & 1:
            node = hash256(sibling + node)
        else:
            node = hash256(node + sibling)
        index >>= 1
    return hash_to_hex(node)


class ProvedTransaction:
    """A transaction together with the proof that it is included in a block."""

    def __init__(self, block: Block, txnr: int):
        txids = [tx.txid for tx in block.txdata]
        self.merkle_path = merkle_branch(txids, txnr)
        self.header = block.header
        self.transaction = block.txdata[txnr]
        self.txnr = txnr

    @classmethod
    def from_parts(
        cls,
        header: BlockHeader,
        transaction: Transaction,
        txnr: int,
        merkle_path: Sequence[bytes],
    ) -> ProvedTransaction:
        """Rebuild a proof from previously stored components"""
        proof = cls.__new__(cls)
        proof.header = header
        proof.transaction = transaction
        proof.txnr = txnr
        proof.merkle_path = list(merkle_path)
        return proof

    def get_transaction(self) -> Transaction:
        return self.transaction

    def get_block_hash(self) -> str:
        return self.header.block_hash

    def verify(self) -> bool:
        """Check the merkle branch leads to the header's merkle root"""
        root = root_from_branch(self.transaction.txid, self.merkle_path, self.txnr)
        return root == self.header.merkle_root

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ProvedTransaction):
            return NotImplemented
        return (
            self.header == other.header
            and self.transaction == other.transaction
            and self.txnr == other.txnr
            and self.merkle_path == other.merkle_path
        )

    def __repr__(self) -> str:
        return (
            f"ProvedTransaction(txid={self.transaction.txid}, "
            f"block={self.get_block_hash()}, index={self.txnr})"
        )
