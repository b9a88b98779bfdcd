"""
coinledger - Owned coin ledger for SPV Bitcoin wallets

Tracks confirmed and unconfirmed outputs paying to watched HD scripts, their
inclusion proofs, chain reorganizations and coin selection.
"""

__version__ = "0.1.0"

from coinledger.account import Account, HDKey, MasterAccount, ScriptProvider, mnemonic_to_seed
from coinledger.coins import Coins, LedgerConsistencyError
from coinledger.models import (
    Block,
    BlockHeader,
    Coin,
    KeyDerivation,
    OutPoint,
    SelectedCoin,
    Transaction,
    TxIn,
    TxOut,
)
from coinledger.proof import ProvedTransaction, merkle_root
from coinledger.serialization import SerializationError

__all__ = [
    "Account",
    "Block",
    "BlockHeader",
    "Coin",
    "Coins",
    "HDKey",
    "KeyDerivation",
    "LedgerConsistencyError",
    "MasterAccount",
    "OutPoint",
    "ProvedTransaction",
    "ScriptProvider",
    "SelectedCoin",
    "SerializationError",
    "Transaction",
    "TxIn",
    "TxOut",
    "merkle_root",
    "mnemonic_to_seed",
]
