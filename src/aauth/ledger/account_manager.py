from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from aauth.codec.borsh import U64_MAX, BorshReader, BorshWriter
from aauth.ledger.account import AccountId, Nonce, record_discriminator
from aauth.runtime.errors import CodecError, ResourceError

Json = Dict[str, Any]

ACCOUNT_MANAGER_SEED = b"account_manager"


@dataclass
class AccountManager:
    """Singleton tracking account id allocation and the replay floor.

    next_account_id increments on every creation. Deleting an account leaves
    a gap; ids are never reused.

    max_nonce is the highest final nonce of any deleted account. New accounts
    start from it, so a signature produced for a deleted account can never
    be replayed against a later one.
    """

    next_account_id: AccountId = 0
    max_nonce: Nonce = 0
    bump: int = 255

    DISCRIMINATOR = record_discriminator("AccountManager")

    DISCRIMINATOR_SIZE = 8
    ACCOUNT_ID_SIZE = 8
    NONCE_SIZE = 16
    BUMP_SIZE = 1

    INIT_SIZE = DISCRIMINATOR_SIZE + ACCOUNT_ID_SIZE + NONCE_SIZE + BUMP_SIZE

    def increment_next_account_id(self) -> AccountId:
        """Return the id to use now and advance the counter."""
        if self.next_account_id >= U64_MAX:
            raise ResourceError("account_ids_exhausted", "no account ids left")
        current = self.next_account_id
        self.next_account_id = current + 1
        return current

    def record_deleted_nonce(self, nonce: Nonce) -> None:
        if nonce > self.max_nonce:
            self.max_nonce = nonce

    # [discriminator:8][next_account_id:8][max_nonce:16][bump:1]

    def to_bytes(self) -> bytes:
        w = BorshWriter()
        w.raw(self.DISCRIMINATOR)
        w.u64(self.next_account_id)
        w.u128(self.max_nonce)
        w.u8(self.bump)
        return w.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> "AccountManager":
        r = BorshReader(data)
        if r.fixed(cls.DISCRIMINATOR_SIZE) != cls.DISCRIMINATOR:
            raise CodecError("invalid_discriminator", "record is not an AccountManager")
        return cls(next_account_id=r.u64(), max_nonce=r.u128(), bump=r.u8())

    def to_json(self) -> Json:
        return {"next_account_id": self.next_account_id, "max_nonce": str(self.max_nonce)}
