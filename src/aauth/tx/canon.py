# src/aauth/tx/canon.py
from __future__ import annotations

import base64
import hashlib
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional, Union

from aauth.codec.borsh import BorshReader, BorshWriter
from aauth.ledger.account import AccountId, Nonce
from aauth.ledger.identity import (
    Identity,
    IdentityWithPermissions,
    identity_from_json,
    identity_with_permissions_from_json,
    read_identity,
    read_identity_with_permissions,
    write_identity,
    write_identity_with_permissions,
)
from aauth.runtime.errors import CodecError

Json = Dict[str, Any]


class ActionKind(IntEnum):
    REMOVE_ACCOUNT = 0
    ADD_IDENTITY = 1
    REMOVE_IDENTITY = 2


@dataclass(frozen=True)
class RemoveAccount:
    def to_json(self) -> Json:
        return {"kind": "remove_account"}


@dataclass(frozen=True)
class AddIdentity:
    identity_with_permissions: IdentityWithPermissions

    def to_json(self) -> Json:
        return {"kind": "add_identity", "identity_with_permissions": self.identity_with_permissions.to_json()}


@dataclass(frozen=True)
class RemoveIdentity:
    identity: Identity

    def to_json(self) -> Json:
        return {"kind": "remove_identity", "identity": self.identity.to_json()}


Action = Union[RemoveAccount, AddIdentity, RemoveIdentity]


@dataclass(frozen=True)
class Transaction:
    """State transition an account owner signs.

    The signed payload is canonical_bytes(): a Borsh encoding with fixed field
    order (account_id, nonce, action), so the same logical transaction always
    produces the same bytes regardless of how it was built.
    """

    account_id: AccountId
    nonce: Nonce
    action: Action

    def canonical_bytes(self) -> bytes:
        w = BorshWriter()
        w.u64(self.account_id)
        w.u128(self.nonce)
        write_action(w, self.action)
        return w.getvalue()

    @classmethod
    def from_canonical_bytes(cls, data: bytes) -> "Transaction":
        r = BorshReader(data)
        account_id = r.u64()
        nonce = r.u128()
        action = read_action(r)
        r.expect_end()
        return cls(account_id=account_id, nonce=nonce, action=action)

    def challenge(self) -> bytes:
        """sha256 of the canonical bytes; the value a WebAuthn client must sign over."""
        return hashlib.sha256(self.canonical_bytes()).digest()

    def to_json(self) -> Json:
        return {"account_id": self.account_id, "nonce": str(self.nonce), "action": self.action.to_json()}

    @staticmethod
    def from_json(j: Any) -> "Transaction":
        if isinstance(j, Transaction):
            return j
        if not isinstance(j, dict):
            raise CodecError("invalid_transaction", "transaction must be an object")
        try:
            account_id = int(j.get("account_id"))
            nonce = int(j.get("nonce"))
        except (TypeError, ValueError) as e:
            raise CodecError("invalid_transaction", "account_id and nonce must be integers") from e
        return Transaction(account_id=account_id, nonce=nonce, action=action_from_json(j.get("action")))


@dataclass(frozen=True)
class WebAuthnVerificationContext:
    # JSON string exactly as produced by the browser; the authenticator
    # signed its sha256, so it cannot be re-serialized.
    client_data: str

    def to_json(self) -> Json:
        return {"kind": "webauthn", "client_data": self.client_data}


VerificationContext = WebAuthnVerificationContext


@dataclass(frozen=True)
class Auth:
    verification_context: Optional[VerificationContext] = None

    def to_json(self) -> Json:
        vc = self.verification_context
        return {"verification_context": None if vc is None else vc.to_json()}


@dataclass(frozen=True)
class UserOp:
    transaction: Transaction
    auth: Auth = Auth()
    # Delegated identity intent. Carried but not enforced yet.
    act_as: Optional[Identity] = None

    def to_json(self) -> Json:
        return {
            "auth": self.auth.to_json(),
            "act_as": None if self.act_as is None else self.act_as.to_json(),
            "transaction": self.transaction.to_json(),
        }

    @staticmethod
    def from_json(j: Any) -> "UserOp":
        if isinstance(j, UserOp):
            return j
        if not isinstance(j, dict):
            raise CodecError("invalid_user_op", "user_op must be an object")
        auth_j = j.get("auth") if isinstance(j.get("auth"), dict) else {}
        vc_j = auth_j.get("verification_context")
        vc: Optional[VerificationContext] = None
        if isinstance(vc_j, dict):
            kind = str(vc_j.get("kind") or "webauthn").strip().lower()
            if kind != "webauthn":
                raise CodecError("unknown_verification_context", "unsupported verification context", {"kind": kind})
            cd = vc_j.get("client_data")
            if not isinstance(cd, str):
                raise CodecError("invalid_user_op", "client_data must be a string")
            vc = WebAuthnVerificationContext(client_data=cd)
        act_as_j = j.get("act_as")
        return UserOp(
            transaction=Transaction.from_json(j.get("transaction")),
            auth=Auth(verification_context=vc),
            act_as=None if act_as_j is None else identity_from_json(act_as_j),
        )


# ---- Borsh ----


def write_action(w: BorshWriter, action: Action) -> None:
    if isinstance(action, RemoveAccount):
        w.u8(ActionKind.REMOVE_ACCOUNT)
    elif isinstance(action, AddIdentity):
        w.u8(ActionKind.ADD_IDENTITY)
        write_identity_with_permissions(w, action.identity_with_permissions)
    elif isinstance(action, RemoveIdentity):
        w.u8(ActionKind.REMOVE_IDENTITY)
        write_identity(w, action.identity)
    else:
        raise CodecError("unknown_action", "unsupported action type", {"type": type(action).__name__})


def read_action(r: BorshReader) -> Action:
    tag = r.u8()
    if tag == ActionKind.REMOVE_ACCOUNT:
        return RemoveAccount()
    if tag == ActionKind.ADD_IDENTITY:
        return AddIdentity(identity_with_permissions=read_identity_with_permissions(r))
    if tag == ActionKind.REMOVE_IDENTITY:
        return RemoveIdentity(identity=read_identity(r))
    raise CodecError("unknown_action", "unknown action variant", {"tag": tag})


def action_from_json(j: Any) -> Action:
    if not isinstance(j, dict):
        raise CodecError("invalid_action", "action must be an object")
    kind = str(j.get("kind") or "").strip().lower()
    if kind == "remove_account":
        return RemoveAccount()
    if kind == "add_identity":
        return AddIdentity(identity_with_permissions=identity_with_permissions_from_json(j.get("identity_with_permissions")))
    if kind == "remove_identity":
        return RemoveIdentity(identity=identity_from_json(j.get("identity")))
    raise CodecError("unknown_action", "unknown action kind", {"kind": kind})


def b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).decode("ascii").rstrip("=")


def b64url_decode(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    try:
        return base64.b64decode((s + pad).encode("ascii"), altchars=b"-_", validate=True)
    except (ValueError, UnicodeEncodeError) as e:
        raise CodecError("invalid_base64url", "not valid base64url", {"value": s}) from e
