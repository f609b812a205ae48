"""aauth.ledger.identity

Identity and permission value types bound to an abstract account.

An identity is a closed tagged union:
  - WalletIdentity:   Ethereum-style secp256k1 key, stored as its 20-byte address
  - WebAuthnIdentity: passkey, stored by key_id with a lazily populated
                      33-byte compressed secp256r1 public key

The Borsh encoding of IdentityWithPermissions is load-bearing: its length is
what the engine asks the record store to grow or shrink by.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional, Union

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from eth_utils import keccak

from aauth.codec.borsh import BorshReader, BorshWriter
from aauth.runtime.errors import CodecError

Json = Dict[str, Any]

ETH_ADDRESS_LEN = 20
COMPRESSED_PUBKEY_LEN = 33


class WalletType(IntEnum):
    ETHEREUM = 0


class IdentityKind(IntEnum):
    WALLET = 0
    WEBAUTHN = 1


def decode_hex(s: str, *, field: str = "hex") -> bytes:
    """Decode a 0x-prefixed (or bare) hex string."""
    if not isinstance(s, str):
        raise CodecError("invalid_hex_encoding", f"{field} must be a hex string")
    raw = s.strip()
    if raw[:2] in ("0x", "0X"):
        raw = raw[2:]
    try:
        return bytes.fromhex(raw)
    except ValueError as e:
        raise CodecError("invalid_hex_encoding", f"{field} is not valid hex", {"value": s}) from e


def encode_hex(b: bytes) -> str:
    return "0x" + bytes(b).hex()


def normalize_compressed_public_key(s: str) -> str:
    """Canonical form of a passkey key: "0x" + 66 lowercase hex digits."""
    try:
        raw = decode_hex(s, field="compressed_public_key")
    except CodecError as e:
        raise CodecError("invalid_public_key", "compressed_public_key is not hex", {"value": s}) from e
    if len(raw) != COMPRESSED_PUBKEY_LEN or raw[0] not in (0x02, 0x03):
        raise CodecError(
            "invalid_public_key",
            "compressed_public_key must be a 33-byte SEC1 compressed point",
            {"len": len(raw)},
        )
    return encode_hex(raw)


@dataclass(frozen=True)
class WalletIdentity:
    address: bytes
    wallet_type: WalletType = WalletType.ETHEREUM

    def __post_init__(self) -> None:
        if len(self.address) != ETH_ADDRESS_LEN:
            raise CodecError(
                "invalid_address_length",
                "wallet address must be 20 bytes",
                {"len": len(self.address)},
            )
        object.__setattr__(self, "address", bytes(self.address))

    @classmethod
    def from_hex(cls, address: str) -> "WalletIdentity":
        return cls(address=decode_hex(address, field="address"))

    @classmethod
    def from_public_key(cls, public_key: bytes) -> "WalletIdentity":
        """Derive the Ethereum address of a secp256k1 public key.

        Accepts SEC1 compressed (33 bytes) or uncompressed (65 bytes) points.
        """
        try:
            pk = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), bytes(public_key))
        except ValueError as e:
            raise CodecError("invalid_public_key", "not a secp256k1 point") from e
        point = pk.public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
        return cls(address=keccak(point[1:])[12:])

    @property
    def address_hex(self) -> str:
        return encode_hex(self.address)

    def to_json(self) -> Json:
        return {"kind": "wallet", "wallet_type": self.wallet_type.name.lower(), "address": self.address_hex}


@dataclass(frozen=True, eq=False)
class WebAuthnIdentity:
    key_id: str
    # Passkey creation does not always expose the public key; it is
    # persisted after the first successful authentication.
    compressed_public_key: Optional[str] = None

    def __post_init__(self) -> None:
        if self.compressed_public_key is not None:
            pk = normalize_compressed_public_key(self.compressed_public_key)
            object.__setattr__(self, "compressed_public_key", pk)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WebAuthnIdentity):
            return NotImplemented
        if self.key_id != other.key_id:
            return False
        if self.compressed_public_key is None or other.compressed_public_key is None:
            return True
        return self.compressed_public_key == other.compressed_public_key

    def __hash__(self) -> int:
        return hash(("webauthn", self.key_id))

    def to_json(self) -> Json:
        return {
            "kind": "webauthn",
            "key_id": self.key_id,
            "compressed_public_key": self.compressed_public_key,
        }


Identity = Union[WalletIdentity, WebAuthnIdentity]


@dataclass(frozen=True)
class IdentityPermissions:
    enable_act_as: bool = False

    def to_json(self) -> Json:
        return {"enable_act_as": bool(self.enable_act_as)}


@dataclass(frozen=True)
class IdentityWithPermissions:
    identity: Identity
    permissions: Optional[IdentityPermissions] = None

    def to_bytes(self) -> bytes:
        w = BorshWriter()
        write_identity_with_permissions(w, self)
        return w.getvalue()

    def byte_size(self) -> int:
        return len(self.to_bytes())

    def to_json(self) -> Json:
        return {
            "identity": self.identity.to_json(),
            "permissions": None if self.permissions is None else self.permissions.to_json(),
        }


# ---- Borsh ----


def write_identity(w: BorshWriter, identity: Identity) -> None:
    if isinstance(identity, WalletIdentity):
        w.u8(IdentityKind.WALLET)
        w.u8(identity.wallet_type)
        w.fixed(identity.address, ETH_ADDRESS_LEN)
    elif isinstance(identity, WebAuthnIdentity):
        w.u8(IdentityKind.WEBAUTHN)
        w.string(identity.key_id)
        w.option(identity.compressed_public_key, BorshWriter.string)
    else:
        raise CodecError("unknown_identity", "unsupported identity type", {"type": type(identity).__name__})


def read_identity(r: BorshReader) -> Identity:
    tag = r.u8()
    if tag == IdentityKind.WALLET:
        wt = r.u8()
        if wt != WalletType.ETHEREUM:
            raise CodecError("unknown_wallet_type", "unsupported wallet type", {"tag": wt})
        return WalletIdentity(address=r.fixed(ETH_ADDRESS_LEN), wallet_type=WalletType(wt))
    if tag == IdentityKind.WEBAUTHN:
        key_id = r.string()
        pk = r.option(BorshReader.string)
        return WebAuthnIdentity(key_id=key_id, compressed_public_key=pk)
    raise CodecError("unknown_identity", "unknown identity variant", {"tag": tag})


def write_permissions(w: BorshWriter, p: IdentityPermissions) -> None:
    w.boolean(p.enable_act_as)


def read_permissions(r: BorshReader) -> IdentityPermissions:
    return IdentityPermissions(enable_act_as=r.boolean())


def write_identity_with_permissions(w: BorshWriter, iwp: IdentityWithPermissions) -> None:
    write_identity(w, iwp.identity)
    w.option(iwp.permissions, write_permissions)


def read_identity_with_permissions(r: BorshReader) -> IdentityWithPermissions:
    identity = read_identity(r)
    permissions = r.option(read_permissions)
    return IdentityWithPermissions(identity=identity, permissions=permissions)


# ---- JSON interop ----


def identity_from_json(j: Any) -> Identity:
    if isinstance(j, (WalletIdentity, WebAuthnIdentity)):
        return j
    if not isinstance(j, dict):
        raise CodecError("invalid_identity", "identity must be an object")
    kind = str(j.get("kind") or "").strip().lower()
    if kind == "wallet":
        wt = str(j.get("wallet_type") or "ethereum").strip().lower()
        if wt != "ethereum":
            raise CodecError("unknown_wallet_type", "unsupported wallet type", {"wallet_type": wt})
        return WalletIdentity.from_hex(str(j.get("address") or ""))
    if kind == "webauthn":
        key_id = j.get("key_id")
        if not isinstance(key_id, str) or not key_id:
            raise CodecError("invalid_identity", "webauthn key_id is required")
        pk = j.get("compressed_public_key")
        return WebAuthnIdentity(key_id=key_id, compressed_public_key=None if pk is None else str(pk))
    raise CodecError("unknown_identity", "unknown identity kind", {"kind": kind})


def identity_with_permissions_from_json(j: Any) -> IdentityWithPermissions:
    if isinstance(j, IdentityWithPermissions):
        return j
    if not isinstance(j, dict):
        raise CodecError("invalid_identity", "identity_with_permissions must be an object")
    perms = j.get("permissions")
    permissions: Optional[IdentityPermissions] = None
    if isinstance(perms, dict):
        permissions = IdentityPermissions(enable_act_as=bool(perms.get("enable_act_as", False)))
    elif perms is not None:
        raise CodecError("invalid_identity", "permissions must be an object or null")
    return IdentityWithPermissions(identity=identity_from_json(j.get("identity")), permissions=permissions)
