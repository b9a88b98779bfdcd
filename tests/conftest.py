"""
Pytest configuration and fixtures for coin ledger tests.
"""

from __future__ import annotations

import pytest

from coinledger.account import MasterAccount
from coinledger.models import Block, BlockHeader, OutPoint, Transaction, TxIn, TxOut
from coinledger.proof import merkle_root

# Output script of somebody else's wallet
FOREIGN_SCRIPT = bytes([0x00, 0x14]) + b"\x11" * 20

GENESIS_PREV_HASH = "00" * 32


class ChainBuilder:
    """Builds a linear chain of regtest-like blocks for scanning tests."""

    def __init__(self, start_height: int = 1):
        self.next_height = start_height
        self.prev_hash = GENESIS_PREV_HASH
        self.heights: dict[str, int] = {}
        self.blocks: list[Block] = []

    @staticmethod
    def tx(inputs: list[OutPoint], outputs: list[tuple[int, bytes]]) -> Transaction:
        return Transaction(
            version=2,
            inputs=[TxIn(point) for point in inputs],
            outputs=[TxOut(value, script) for value, script in outputs],
        )

    @staticmethod
    def coinbase(height: int, script: bytes = FOREIGN_SCRIPT, value: int = 50_000) -> Transaction:
        # height in the script_sig keeps coinbase txids unique
        return Transaction(
            version=2,
            inputs=[TxIn(OutPoint.null(), script_sig=height.to_bytes(4, "little"))],
            outputs=[TxOut(value, script)],
        )

    def block(self, *txs: Transaction, coinbase: Transaction | None = None) -> Block:
        height = self.next_height
        txdata = [coinbase or self.coinbase(height), *txs]
        header = BlockHeader(
            version=0x20000000,
            prev_blockhash=self.prev_hash,
            merkle_root=merkle_root([tx.txid for tx in txdata]),
            time=1_700_000_000 + height * 600,
            bits=0x207FFFFF,
            nonce=height,
        )
        block = Block(header, txdata)

        self.heights[block.block_hash] = height
        self.blocks.append(block)
        self.prev_hash = block.block_hash
        self.next_height += 1
        return block

    def block_height(self, block_hash: str) -> int | None:
        return self.heights.get(block_hash)

    @property
    def tip_height(self) -> int:
        return self.next_height - 1


@pytest.fixture
def test_mnemonic() -> str:
    """BIP39 test vector mnemonic (not for production use!)."""
    return (
        "abandon abandon abandon abandon abandon abandon "
        "abandon abandon abandon abandon abandon about"
    )


@pytest.fixture
def master_account(test_mnemonic: str) -> MasterAccount:
    """Regtest master account with a receive and a change branch, 5 key lookahead."""
    master = MasterAccount.from_mnemonic(test_mnemonic, network="regtest")
    master.add_account(0, 0, look_ahead=5)
    master.add_account(0, 1, look_ahead=5)
    return master


@pytest.fixture
def chain() -> ChainBuilder:
    return ChainBuilder()


@pytest.fixture
def receive_script(master_account: MasterAccount):
    """Script of receive key kix."""

    def _script(kix: int) -> bytes:
        return master_account.get((0, 0)).script(kix)

    return _script
