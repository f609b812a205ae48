from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from aauth.codec.borsh import U128_MAX, BorshReader, BorshWriter
from aauth.ledger.identity import (
    Identity,
    IdentityWithPermissions,
    read_identity_with_permissions,
    write_identity_with_permissions,
)
from aauth.runtime.errors import CodecError

Json = Dict[str, Any]

AccountId = int
Nonce = int

ACCOUNT_SEED = b"account"


def record_discriminator(type_name: str) -> bytes:
    """8-byte record type tag: sha256("account:<TypeName>")[:8]."""
    return hashlib.sha256(f"account:{type_name}".encode("utf-8")).digest()[:8]


def account_seed(account_id: AccountId) -> bytes:
    return ACCOUNT_SEED + int(account_id).to_bytes(8, "little")


@dataclass
class AccountRecord:
    """Abstract account state.

    Accounts are numbered sequentially by the AccountManager; a deleted id is
    never reused. A list is used for identities because accounts are expected
    to hold around ten of them.
    """

    account_id: AccountId
    nonce: Nonce = 0
    identities: List[IdentityWithPermissions] = field(default_factory=list)
    bump: int = 255

    DISCRIMINATOR = record_discriminator("AbstractAccount")

    DISCRIMINATOR_SIZE = 8
    ACCOUNT_ID_SIZE = 8
    NONCE_SIZE = 16
    VEC_SIZE = 4
    BUMP_SIZE = 1

    INIT_SIZE = DISCRIMINATOR_SIZE + ACCOUNT_ID_SIZE + NONCE_SIZE + VEC_SIZE + BUMP_SIZE

    def increment_nonce(self) -> None:
        self.nonce = min(self.nonce + 1, U128_MAX)

    def has_identity(self, identity: Identity) -> bool:
        return any(i.identity == identity for i in self.identities)

    def find_identity(self, identity: Identity) -> Optional[IdentityWithPermissions]:
        for i in self.identities:
            if i.identity == identity:
                return i
        return None

    def add_identity(self, iwp: IdentityWithPermissions) -> bool:
        """Append iwp unless its identity is already bound. Returns True if appended."""
        if self.has_identity(iwp.identity):
            return False
        self.identities.append(iwp)
        return True

    def remove_identity(self, identity: Identity) -> Optional[IdentityWithPermissions]:
        """Remove the entry bound to identity; returns it, or None if absent."""
        for idx, i in enumerate(self.identities):
            if i.identity == identity:
                return self.identities.pop(idx)
        return None

    def byte_size(self) -> int:
        return self.INIT_SIZE + sum(i.byte_size() for i in self.identities)

    # ---- persisted layout ----
    # [discriminator:8][account_id:8][nonce:16][count:4][entries...][bump:1]

    def to_bytes(self) -> bytes:
        w = BorshWriter()
        w.raw(self.DISCRIMINATOR)
        w.u64(self.account_id)
        w.u128(self.nonce)
        w.vec(self.identities, write_identity_with_permissions)
        w.u8(self.bump)
        return w.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> "AccountRecord":
        r = BorshReader(data)
        disc = r.fixed(cls.DISCRIMINATOR_SIZE)
        if disc != cls.DISCRIMINATOR:
            raise CodecError("invalid_discriminator", "record is not an AbstractAccount")
        account_id = r.u64()
        nonce = r.u128()
        identities = r.vec(read_identity_with_permissions)
        bump = r.u8()
        # Records may carry zero padding when allocated larger than needed.
        return cls(account_id=account_id, nonce=nonce, identities=identities, bump=bump)

    def to_json(self) -> Json:
        return {
            "account_id": self.account_id,
            "nonce": str(self.nonce),
            "identities": [i.to_json() for i in self.identities],
        }
