from __future__ import annotations

import pytest
from eth_utils import keccak

from aauth.codec.borsh import BorshWriter
from aauth.ledger.identity import (
    IdentityPermissions,
    IdentityWithPermissions,
    WalletIdentity,
    WebAuthnIdentity,
    identity_from_json,
    identity_with_permissions_from_json,
    write_identity,
)
from aauth.runtime.errors import CodecError
from aauth.testing.sigtools import deterministic_wallet_key

ADDR = bytes(range(20))
PK_A = "0x02" + "11" * 32
PK_B = "0x03" + "22" * 32


def test_wallet_identity_equality_is_structural() -> None:
    assert WalletIdentity(address=ADDR) == WalletIdentity.from_hex("0x" + ADDR.hex())
    assert WalletIdentity(address=ADDR) != WalletIdentity(address=bytes(20))


def test_wallet_identity_requires_twenty_bytes() -> None:
    with pytest.raises(CodecError) as ei:
        WalletIdentity(address=b"\x01" * 19)
    assert ei.value.code == "invalid_address_length"

    with pytest.raises(CodecError) as ei2:
        WalletIdentity.from_hex("0xzz")
    assert ei2.value.code == "invalid_hex_encoding"


def test_wallet_address_derivation_matches_keccak_of_uncompressed_point() -> None:
    sk = deterministic_wallet_key(label="alice")
    raw = sk.public_key.to_bytes()  # 64 bytes x || y
    ident = WalletIdentity.from_public_key(b"\x04" + raw)
    assert ident.address == keccak(raw)[12:]
    assert ident.address == sk.public_key.to_canonical_address()

    # compressed form of the same point derives the same address
    prefix = b"\x02" if raw[-1] % 2 == 0 else b"\x03"
    assert WalletIdentity.from_public_key(prefix + raw[:32]) == ident


def test_webauthn_unset_key_matches_any_key_with_same_key_id() -> None:
    unset = WebAuthnIdentity(key_id="passkey-1")
    a = WebAuthnIdentity(key_id="passkey-1", compressed_public_key=PK_A)
    b = WebAuthnIdentity(key_id="passkey-1", compressed_public_key=PK_B)

    assert unset == a
    assert a == unset
    assert unset == b
    assert a != b
    assert WebAuthnIdentity(key_id="other", compressed_public_key=PK_A) != a
    assert hash(unset) == hash(a)


def test_webauthn_key_is_normalized_to_lowercase() -> None:
    upper = WebAuthnIdentity(key_id="k", compressed_public_key="0x02" + "AB" * 32)
    assert upper.compressed_public_key == "0x02" + "ab" * 32
    assert upper == WebAuthnIdentity(key_id="k", compressed_public_key="0x02" + "ab" * 32)


def test_webauthn_key_accepts_bare_hex() -> None:
    bare = WebAuthnIdentity(key_id="k", compressed_public_key="03" + "CD" * 32)
    assert bare.compressed_public_key == "0x03" + "cd" * 32
    assert bare == WebAuthnIdentity(key_id="k", compressed_public_key="0x03" + "cd" * 32)
    assert bare != WebAuthnIdentity(key_id="k", compressed_public_key=PK_B)


@pytest.mark.parametrize(
    "key",
    [
        "not-a-key",
        "0x02" + "11" * 31,
        "0x02" + "11" * 33,
        "0x04" + "11" * 32,
        "",
    ],
)
def test_webauthn_key_rejects_malformed_values(key: str) -> None:
    with pytest.raises(CodecError) as ei:
        WebAuthnIdentity(key_id="k", compressed_public_key=key)
    assert ei.value.code == "invalid_public_key"
    assert ei.value.kind == "malformed_proof"


def test_wallet_never_equals_webauthn() -> None:
    assert WalletIdentity(address=ADDR) != WebAuthnIdentity(key_id="k")


def _encode(identity) -> bytes:
    w = BorshWriter()
    write_identity(w, identity)
    return w.getvalue()


def test_identity_encoding_layout() -> None:
    wallet = _encode(WalletIdentity(address=ADDR))
    assert wallet == b"\x00\x00" + ADDR

    webauthn = _encode(WebAuthnIdentity(key_id="ab"))
    assert webauthn == b"\x01" + b"\x02\x00\x00\x00ab" + b"\x00"


def test_byte_size_tracks_encoding_length() -> None:
    bare = IdentityWithPermissions(identity=WalletIdentity(address=ADDR))
    with_perms = IdentityWithPermissions(
        identity=WalletIdentity(address=ADDR),
        permissions=IdentityPermissions(enable_act_as=True),
    )
    assert bare.byte_size() == 1 + 1 + 20 + 1
    assert with_perms.byte_size() == bare.byte_size() + 1
    assert with_perms.to_bytes()[-2:] == b"\x01\x01"

    # same logical value, same size, every time
    assert bare.byte_size() == IdentityWithPermissions(identity=WalletIdentity(address=ADDR)).byte_size()


def test_passkey_size_grows_when_key_is_populated() -> None:
    unset = IdentityWithPermissions(identity=WebAuthnIdentity(key_id="k"))
    set_ = IdentityWithPermissions(identity=WebAuthnIdentity(key_id="k", compressed_public_key=PK_A))
    assert set_.byte_size() - unset.byte_size() == 4 + len(PK_A)


def test_identity_json_round_trip() -> None:
    iwp = IdentityWithPermissions(
        identity=WebAuthnIdentity(key_id="k", compressed_public_key=PK_A),
        permissions=IdentityPermissions(enable_act_as=False),
    )
    assert identity_with_permissions_from_json(iwp.to_json()) == iwp
    assert identity_from_json({"kind": "wallet", "address": "0x" + ADDR.hex()}) == WalletIdentity(address=ADDR)


@pytest.mark.parametrize("perms", [True, "yes", 1, ["enable_act_as"]])
def test_identity_json_rejects_non_object_permissions(perms) -> None:
    with pytest.raises(CodecError) as ei:
        identity_with_permissions_from_json(
            {"identity": {"kind": "wallet", "address": "0x" + ADDR.hex()}, "permissions": perms}
        )
    assert ei.value.code == "invalid_identity"


def test_identity_json_null_permissions_stay_unset() -> None:
    iwp = identity_with_permissions_from_json(
        {"identity": {"kind": "wallet", "address": "0x" + ADDR.hex()}, "permissions": None}
    )
    assert iwp.permissions is None


def test_identity_json_rejects_unknown_kind() -> None:
    with pytest.raises(CodecError) as ei:
        identity_from_json({"kind": "oidc"})
    assert ei.value.code == "unknown_identity"
