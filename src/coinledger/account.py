"""
HD accounts that derive the scripts the ledger watches.

Derivation path: m/84'/{coin_type}'/{account}'/{sub}/{kix}
- account: hardened account number
- sub: sub-account (0 receive, 1 change, any other branch is allowed)
- kix: key index

Each account keeps a lookahead window of derived but unused keys so that
payments to fresh addresses are detected while scanning.
"""

from __future__ import annotations

import hashlib
import hmac
from abc import ABC, abstractmethod
from collections.abc import Iterator

from coincurve import PrivateKey, PublicKey
from loguru import logger

from coinledger.models import KeyDerivation
from coinledger.script import csv_locked_script, p2wpkh_script, p2wsh_script

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)
HARDENED = 0x80000000
PURPOSE = 84
DEFAULT_LOOK_AHEAD = 10


class HDKey:
    """BIP32 extended private key."""

    def __init__(self, private_key: PrivateKey, chain_code: bytes, depth: int = 0):
        self.private_key = private_key
        self.chain_code = chain_code
        self.depth = depth

    @classmethod
    def from_seed(cls, seed: bytes) -> HDKey:
        hmac_result = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        return cls(PrivateKey(hmac_result[:32]), hmac_result[32:], depth=0)

    def derive(self, path: str) -> HDKey:
        """Derive from path notation, e.g. "m/84'/0'/0'/0". ' or h marks hardened"""
        if not path.startswith("m"):
            raise ValueError("Path must start with 'm'")

        key = self
        for part in path.split("/")[1:]:
            if not part:
                continue
            hardened = part.endswith(("'", "h"))
            index = int(part.rstrip("'h"))
            key = key.child(index + HARDENED if hardened else index)
        return key

    def child(self, index: int) -> HDKey:
        if index >= HARDENED:
            data = b"\x00" + self.private_key.secret + index.to_bytes(4, "big")
        else:
            data = self.public_key_bytes() + index.to_bytes(4, "big")

        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        offset = int.from_bytes(hmac_result[:32], "big")
        if offset >= SECP256K1_N:
            raise ValueError("Invalid child key")

        child_int = (int.from_bytes(self.private_key.secret, "big") + offset) % SECP256K1_N
        if child_int == 0:
            raise ValueError("Invalid child key")

        return HDKey(PrivateKey(child_int.to_bytes(32, "big")), hmac_result[32:], self.depth + 1)

    def public_key_bytes(self) -> bytes:
        return self.private_key.public_key.format(compressed=True)


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """BIP39 seed from a mnemonic phrase (the phrase itself is not checksum-validated)"""
    normalized = " ".join(mnemonic.split())
    salt = ("mnemonic" + passphrase).encode("utf-8")
    return hashlib.pbkdf2_hmac("sha512", normalized.encode("utf-8"), salt, 2048, dklen=64)


class ScriptProvider(ABC):
    """
    Source of watched scripts for the coin ledger.

    The ledger only reads the current script set and asks for the window to be
    extended when it sees a script in use.
    """

    @abstractmethod
    def get_scripts(self) -> Iterator[tuple[bytes, KeyDerivation]]:
        """Yield every watched script with the derivation of its key"""

    @abstractmethod
    def look_ahead(self, derivation: KeyDerivation) -> list[tuple[bytes, KeyDerivation]]:
        """Extend the window past derivation.kix, returning only newly watched scripts"""


class Account:
    """One (account, sub) branch of the wallet with its lookahead window."""

    def __init__(
        self,
        master_key: HDKey,
        account: int,
        sub: int,
        network: str = "mainnet",
        look_ahead: int = DEFAULT_LOOK_AHEAD,
        csv: int | None = None,
        tweak: bytes | None = None,
    ):
        if look_ahead < 1:
            raise ValueError(f"look_ahead must be positive, got {look_ahead}")
        if csv is not None and not 0 < csv <= 0xFFFF:
            raise ValueError(f"csv must be between 1 and 65535 blocks, got {csv}")
        if tweak is not None and len(tweak) != 32:
            raise ValueError(f"tweak must be 32 bytes, got {len(tweak)}")

        self.account = account
        self.sub = sub
        self.network = network
        self.look_ahead = look_ahead
        self.csv = csv
        self.tweak = tweak

        coin_type = 0 if network == "mainnet" else 1
        self.path = f"m/{PURPOSE}'/{coin_type}'/{account}'/{sub}"
        self._branch_key = master_key.derive(self.path)
        self.instantiated: list[bytes] = []

        self.do_look_ahead(None)

    def derivation(self, kix: int) -> KeyDerivation:
        return KeyDerivation(self.account, self.sub, kix, self.tweak, self.csv)

    def public_key(self, kix: int) -> bytes:
        pubkey = self._branch_key.child(kix).public_key_bytes()
        if self.tweak is not None:
            pubkey = PublicKey(pubkey).add(self.tweak).format(compressed=True)
        return pubkey

    def private_key(self, kix: int) -> PrivateKey:
        key = self._branch_key.child(kix).private_key
        if self.tweak is not None:
            key = key.add(self.tweak)
        return key

    def script(self, kix: int) -> bytes:
        pubkey = self.public_key(kix)
        if self.csv is not None:
            return p2wsh_script(csv_locked_script(pubkey, self.csv))
        return p2wpkh_script(pubkey)

    def do_look_ahead(self, seen: int | None) -> list[tuple[int, bytes]]:
        """
        Make sure look_ahead keys exist past the highest seen key index.

        Returns the (kix, script) pairs derived by this call.
        """
        have = len(self.instantiated)
        need = self.look_ahead if seen is None else seen + 1 + self.look_ahead

        new_scripts: list[tuple[int, bytes]] = []
        for kix in range(have, max(need, have)):
            script = self.script(kix)
            self.instantiated.append(script)
            new_scripts.append((kix, script))

        if new_scripts:
            logger.debug(
                f"Account {self.account}/{self.sub}: derived {len(new_scripts)} keys, "
                f"now watching {len(self.instantiated)}"
            )
        return new_scripts

    def get_scripts(self) -> Iterator[tuple[bytes, KeyDerivation]]:
        for kix, script in enumerate(self.instantiated):
            yield script, self.derivation(kix)


class MasterAccount(ScriptProvider):
    """
    All accounts derived from one seed.

    Accounts are keyed by (account, sub).
    """

    def __init__(self, seed: bytes, network: str = "mainnet"):
        self.master_key = HDKey.from_seed(seed)
        self.network = network
        self.accounts: dict[tuple[int, int], Account] = {}

    @classmethod
    def from_mnemonic(
        cls, mnemonic: str, passphrase: str = "", network: str = "mainnet"
    ) -> MasterAccount:
        return cls(mnemonic_to_seed(mnemonic, passphrase), network)

    def add_account(
        self,
        account: int,
        sub: int,
        look_ahead: int = DEFAULT_LOOK_AHEAD,
        csv: int | None = None,
        tweak: bytes | None = None,
    ) -> Account:
        if (account, sub) in self.accounts:
            raise ValueError(f"Account {account}/{sub} already exists")

        acct = Account(self.master_key, account, sub, self.network, look_ahead, csv, tweak)
        self.accounts[(account, sub)] = acct
        logger.info(f"Added account {acct.path} watching {len(acct.instantiated)} scripts")
        return acct

    def get(self, key: tuple[int, int]) -> Account:
        return self.accounts[key]

    def get_scripts(self) -> Iterator[tuple[bytes, KeyDerivation]]:
        for acct in self.accounts.values():
            yield from acct.get_scripts()

    def look_ahead(self, derivation: KeyDerivation) -> list[tuple[bytes, KeyDerivation]]:
        acct = self.accounts[(derivation.account, derivation.sub)]
        return [
            (script, derivation.with_kix(kix)) for kix, script in acct.do_look_ahead(derivation.kix)
        ]
