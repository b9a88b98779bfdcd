"""
Owned coins of an SPV wallet.

The ledger tracks outputs paying to watched scripts in two states:
- unconfirmed: seen in a transaction that is not (or no longer) in the best chain
- confirmed: included in a processed block, backed by an inclusion proof

Proofs are kept per transaction and live exactly as long as at least one
confirmed output of that transaction is owned.
"""

from __future__ import annotations

import random
from collections.abc import Callable
from types import MappingProxyType

from loguru import logger

from coinledger.account import ScriptProvider
from coinledger.models import Block, Coin, KeyDerivation, OutPoint, SelectedCoin, Transaction
from coinledger.proof import ProvedTransaction


class LedgerConsistencyError(Exception):
    """The confirmed coin, proof and chain views disagree. Not recoverable."""

    pass


class Coins:
    """
    Coin ledger.

    Blocks must be processed in ascending height order. Blocks known to hold
    nothing of interest may be skipped. Processing the same block again is
    harmless: spends are already gone and outputs and proofs are re-installed
    under the same keys.

    Not thread safe: callers serialize all mutating calls.
    """

    def __init__(self) -> None:
        self._unconfirmed: dict[OutPoint, Coin] = {}
        self._confirmed: dict[OutPoint, Coin] = {}
        self._proofs: dict[str, ProvedTransaction] = {}

    @property
    def confirmed(self) -> MappingProxyType[OutPoint, Coin]:
        return MappingProxyType(self._confirmed)

    @property
    def unconfirmed(self) -> MappingProxyType[OutPoint, Coin]:
        return MappingProxyType(self._unconfirmed)

    @property
    def proofs(self) -> MappingProxyType[str, ProvedTransaction]:
        return MappingProxyType(self._proofs)

    def get_proof(self, txid: str) -> ProvedTransaction | None:
        return self._proofs.get(txid)

    def confirmed_balance(self) -> int:
        return sum(coin.output.value for coin in self._confirmed.values())

    def unconfirmed_balance(self) -> int:
        return sum(coin.output.value for coin in self._unconfirmed.values())

    def __len__(self) -> int:
        return len(self._confirmed) + len(self._unconfirmed)

    def __contains__(self, point: object) -> bool:
        return point in self._confirmed or point in self._unconfirmed

    def add_confirmed(self, point: OutPoint, coin: Coin, proof: ProvedTransaction) -> None:
        """Restore previously computed state. The proof is trusted as is."""
        self._confirmed[point] = coin
        self._proofs[proof.get_transaction().txid] = proof

    def remove_confirmed(self, point: OutPoint) -> bool:
        """Forget a confirmed coin, and its proof once no sibling output is left"""
        if self._confirmed.pop(point, None) is None:
            return False

        if not any(p.txid == point.txid for p in self._confirmed):
            self._proofs.pop(point.txid, None)
        logger.debug(f"Removed confirmed coin {point}")
        return True

    def process_unconfirmed_transaction(
        self, master_account: ScriptProvider, transaction: Transaction
    ) -> bool:
        """Process a transaction not yet in a block, e.g. an own spend. True if modified."""
        scripts = dict(master_account.get_scripts())
        txid = transaction.txid
        modified = False

        for txin in transaction.inputs:
            modified |= self.remove_confirmed(txin.previous_output)

        for vout, output in enumerate(transaction.outputs):
            derivation = scripts.get(output.script_pubkey)
            if derivation is None:
                continue

            point = OutPoint(txid, vout)
            if point not in self._confirmed:
                self._unconfirmed[point] = Coin(output, derivation)
                logger.debug(f"Found unconfirmed coin {point} value={output.value}")
            self._extend_scripts(master_account, scripts, derivation)
            modified = True

        return modified

    def process(self, master_account: ScriptProvider, block: Block) -> bool:
        """Process a block of the best chain to find own coins. True if modified."""
        scripts = dict(master_account.get_scripts())
        modified = False
        found = 0

        for txnr, tx in enumerate(block.txdata):
            if txnr > 0:
                for txin in tx.inputs:
                    modified |= self.remove_confirmed(txin.previous_output)

            txid = tx.txid
            for vout, output in enumerate(tx.outputs):
                derivation = scripts.get(output.script_pubkey)
                if derivation is None:
                    continue

                point = OutPoint(txid, vout)
                self._unconfirmed.pop(point, None)
                self._confirmed[point] = Coin(output, derivation)
                if txid not in self._proofs:
                    self._proofs[txid] = ProvedTransaction(block, txnr)
                self._extend_scripts(master_account, scripts, derivation)
                logger.debug(f"Confirmed coin {point} value={output.value}")
                modified = True
                found += 1

        if modified:
            logger.info(
                f"Block {block.block_hash}: {found} coins found, "
                f"confirmed balance {self.confirmed_balance()}"
            )
        return modified

    @staticmethod
    def _extend_scripts(
        master_account: ScriptProvider,
        scripts: dict[bytes, KeyDerivation],
        derivation: KeyDerivation,
    ) -> None:
        # later outputs of the same scan may pay to the freshly derived scripts
        for script, new_derivation in master_account.look_ahead(derivation):
            scripts[script] = new_derivation

    def unwind_tip(self, block_hash: str) -> None:
        """Downgrade coins confirmed by a block that left the best chain"""
        lost_txids = {
            txid for txid, proof in self._proofs.items() if proof.get_block_hash() == block_hash
        }
        lost_coins = [point for point in self._confirmed if point.txid in lost_txids]

        for point in lost_coins:
            self._proofs.pop(point.txid, None)
            self._unconfirmed[point] = self._confirmed.pop(point)

        if lost_coins:
            logger.warning(
                f"Unwound block {block_hash}: {len(lost_coins)} coins back to unconfirmed"
            )

    def get_confirmed_coins(
        self,
        minimum: int,
        height: int,
        block_height: Callable[[str], int | None],
    ) -> list[SelectedCoin]:
        """
        Select confirmed coins summing to at least minimum.

        Greedy heuristic, not an optimal subset sum: smallest coins first until
        the minimum is reached, then coins no larger than the overshoot are
        dropped again, smallest first. The result is shuffled so that the
        input order reveals nothing about values. If the eligible coins do not
        cover minimum all of them are returned; compare the sum to tell.

        Args:
            minimum: Target amount in satoshis
            height: Current chain height
            block_height: Maps a block hash to its height, None if unknown

        Returns:
            Selected (outpoint, coin, confirmation height) entries

        Raises:
            LedgerConsistencyError: A confirmed coin has no proof or its block is unknown
        """
        candidates: list[SelectedCoin] = []
        for point, coin in self._confirmed.items():
            proof = self._proofs.get(point.txid)
            if proof is None:
                raise LedgerConsistencyError(f"Missing proof of confirmed transaction {point.txid}")
            confirmed_at = block_height(proof.get_block_hash())
            if confirmed_at is None:
                raise LedgerConsistencyError(
                    f"Coin {point} confirmed in unknown block {proof.get_block_hash()}"
                )
            csv = coin.derivation.csv
            if csv is not None and confirmed_at + csv <= height:
                continue
            candidates.append(SelectedCoin(point, coin, confirmed_at))

        candidates.sort(key=lambda c: c.coin.output.value)

        total = 0
        inputs: list[SelectedCoin] = []
        for candidate in candidates:
            total += candidate.coin.output.value
            inputs.append(candidate)
            if total >= minimum:
                break

        if total > minimum:
            change = total - minimum
            while True:
                index = next(
                    (i for i, c in enumerate(inputs) if c.coin.output.value <= change), None
                )
                if index is None:
                    break
                change -= inputs.pop(index).coin.output.value

        random.SystemRandom().shuffle(inputs)
        logger.debug(
            f"Selected {len(inputs)} of {len(candidates)} eligible coins "
            f"for {minimum} sats: {sum(c.coin.output.value for c in inputs)}"
        )
        return inputs

    def check_invariants(self) -> None:
        """Raise LedgerConsistencyError unless confirmed, unconfirmed and proofs agree"""
        both = self._confirmed.keys() & self._unconfirmed.keys()
        if both:
            raise LedgerConsistencyError(f"Coins both confirmed and unconfirmed: {sorted(both)}")

        confirmed_txids = {point.txid for point in self._confirmed}
        unproved = confirmed_txids - self._proofs.keys()
        if unproved:
            raise LedgerConsistencyError(
                f"Confirmed transactions without proof: {sorted(unproved)}"
            )

        orphaned = self._proofs.keys() - confirmed_txids
        if orphaned:
            raise LedgerConsistencyError(f"Proofs without confirmed coins: {sorted(orphaned)}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Coins):
            return NotImplemented
        return (
            self._confirmed == other._confirmed
            and self._unconfirmed == other._unconfirmed
            and self._proofs == other._proofs
        )
