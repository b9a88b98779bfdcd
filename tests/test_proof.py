"""
Tests for merkle proofs of transaction inclusion.
"""

from __future__ import annotations

import pytest

from coinledger.models import Block, OutPoint
from coinledger.proof import ProvedTransaction, merkle_branch, merkle_root, root_from_branch
from coinledger.serialization import hash256, hash_to_hex, hex_to_hash

GENESIS_BLOCK_HEX = (
    "0100000000000000000000000000000000000000000000000000000000000000"
    "000000003ba3edfd7a7b12b27ac72c3e67768f617fc81bc3888a51323a9fb8aa"
    "4b1e5e4a29ab5f49ffff001d1dac2b7c01010000000100000000000000000000"
    "00000000000000000000000000000000000000000000ffffffff4d04ffff001d"
    "0104455468652054696d65732030332f4a616e2f32303039204368616e63656c"
    "6c6f72206f6e206272696e6b206f66207365636f6e64206261696c6f75742066"
    "6f722062616e6b73ffffffff0100f2052a01000000434104678afdb0fe554827"
    "1967f1a67130b7105cd6a828e03909a67962e0ea1f61deb649f6bc3f4cef38c4"
    "f35504e51ec112de5c384df7ba0b8d578a4c702b6bf11d5fac00000000"
)
GENESIS_HASH = "000000000019d6689c085ae165831e934ff763ae46a2a6c172b3f1b60a8ce26f"
GENESIS_TXID = "4a5e1e4baab89f3a32518a88c31bc87f618f76673e2cc77ab2127b7afdeda33b"


def fake_txids(count: int) -> list[str]:
    return [hash_to_hex(hash256(i.to_bytes(4, "little"))) for i in range(count)]


class TestMerkleRoot:
    def test_single_transaction_root_is_txid(self):
        (txid,) = fake_txids(1)
        assert merkle_root([txid]) == txid

    def test_two_transactions(self):
        a, b = fake_txids(2)
        assert merkle_root([a, b]) == hash_to_hex(hash256(hex_to_hash(a) + hex_to_hash(b)))

    def test_odd_level_duplicates_last(self):
        a, b, c = fake_txids(3)
        assert merkle_root([a, b, c]) == merkle_root([a, b, c, c])

    def test_empty_list(self):
        with pytest.raises(ValueError):
            merkle_root([])

    def test_genesis_merkle_root(self):
        block = Block.from_hex(GENESIS_BLOCK_HEX)
        assert merkle_root([tx.txid for tx in block.txdata]) == block.header.merkle_root


class TestMerkleBranch:
    @pytest.mark.parametrize("count", [1, 2, 3, 5, 8, 11])
    def test_every_index_leads_to_root(self, count):
        txids = fake_txids(count)
        root = merkle_root(txids)

        for index, txid in enumerate(txids):
            branch = merkle_branch(txids, index)
            assert root_from_branch(txid, branch, index) == root

    def test_branch_depth(self):
        assert len(merkle_branch(fake_txids(1), 0)) == 0
        assert len(merkle_branch(fake_txids(5), 4)) == 3

    def test_wrong_index_does_not_verify(self):
        txids = fake_txids(4)
        branch = merkle_branch(txids, 1)
        assert root_from_branch(txids[1], branch, 2) != merkle_root(txids)

    def test_index_out_of_range(self):
        with pytest.raises(IndexError):
            merkle_branch(fake_txids(3), 3)


class TestProvedTransaction:
    def test_genesis_coinbase(self):
        block = Block.from_hex(GENESIS_BLOCK_HEX)
        proof = ProvedTransaction(block, 0)

        assert proof.get_transaction().txid == GENESIS_TXID
        assert proof.get_block_hash() == GENESIS_HASH
        assert proof.merkle_path == []
        assert proof.verify()
        assert block.serialize().hex() == GENESIS_BLOCK_HEX

    def test_proves_each_transaction(self, chain):
        txs = [chain.tx([OutPoint("aa" * 32, i)], [(1000 + i, b"\x51")]) for i in range(4)]
        block = chain.block(*txs)

        for txnr, tx in enumerate(block.txdata):
            proof = ProvedTransaction(block, txnr)
            assert proof.get_transaction() is tx
            assert proof.get_block_hash() == block.block_hash
            assert proof.verify()

    def test_tampered_transaction_fails(self, chain):
        tx = chain.tx([OutPoint("aa" * 32, 0)], [(1000, b"\x51")])
        block = chain.block(tx)
        proof = ProvedTransaction(block, 1)

        forged = chain.tx([OutPoint("aa" * 32, 0)], [(9999, b"\x51")])
        forged_proof = ProvedTransaction.from_parts(
            proof.header, forged, proof.txnr, proof.merkle_path
        )

        assert not forged_proof.verify()

    def test_from_parts_equals_constructed(self, chain):
        block = chain.block(chain.tx([OutPoint("aa" * 32, 0)], [(1000, b"\x51")]))
        proof = ProvedTransaction(block, 1)

        restored = ProvedTransaction.from_parts(
            proof.header, proof.transaction, proof.txnr, proof.merkle_path
        )

        assert restored == proof
        assert restored.verify()

    def test_index_out_of_range(self, chain):
        block = chain.block()
        with pytest.raises(IndexError):
            ProvedTransaction(block, 1)
