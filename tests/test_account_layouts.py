from __future__ import annotations

import pytest

from aauth.codec.borsh import U128_MAX
from aauth.ledger.account import AccountRecord, account_seed, record_discriminator
from aauth.ledger.account_manager import AccountManager
from aauth.ledger.identity import IdentityWithPermissions, WalletIdentity, WebAuthnIdentity
from aauth.runtime.errors import CodecError, ResourceError


def _wallet(n: int) -> IdentityWithPermissions:
    return IdentityWithPermissions(identity=WalletIdentity(address=bytes([n]) * 20))


def test_empty_account_size_is_init_size() -> None:
    acct = AccountRecord(account_id=3)
    assert AccountRecord.INIT_SIZE == 8 + 8 + 16 + 4 + 1
    assert acct.byte_size() == AccountRecord.INIT_SIZE
    assert len(acct.to_bytes()) == acct.byte_size()


def test_account_size_is_sum_of_entries() -> None:
    acct = AccountRecord(account_id=1, identities=[_wallet(1), _wallet(2)])
    assert acct.byte_size() == AccountRecord.INIT_SIZE + 2 * _wallet(1).byte_size()
    assert len(acct.to_bytes()) == acct.byte_size()


def test_account_layout_round_trips_with_zero_padding() -> None:
    acct = AccountRecord(
        account_id=7,
        nonce=42,
        identities=[_wallet(9), IdentityWithPermissions(identity=WebAuthnIdentity(key_id="pk"))],
    )
    raw = acct.to_bytes()
    assert raw[:8] == record_discriminator("AbstractAccount")
    assert raw[8:16] == (7).to_bytes(8, "little")
    assert raw[16:32] == (42).to_bytes(16, "little")

    back = AccountRecord.from_bytes(raw + bytes(16))
    assert back.account_id == 7
    assert back.nonce == 42
    assert back.identities == acct.identities


def test_account_rejects_foreign_discriminator() -> None:
    with pytest.raises(CodecError) as ei:
        AccountRecord.from_bytes(AccountManager().to_bytes())
    assert ei.value.code == "invalid_discriminator"


def test_nonce_saturates_at_u128_max() -> None:
    acct = AccountRecord(account_id=0, nonce=U128_MAX)
    acct.increment_nonce()
    assert acct.nonce == U128_MAX


def test_add_identity_is_idempotent_and_remove_returns_entry() -> None:
    acct = AccountRecord(account_id=0)
    assert acct.add_identity(_wallet(1)) is True
    assert acct.add_identity(_wallet(1)) is False
    assert len(acct.identities) == 1

    removed = acct.remove_identity(WalletIdentity(address=bytes([1]) * 20))
    assert removed == _wallet(1)
    assert acct.remove_identity(WalletIdentity(address=bytes([1]) * 20)) is None


def test_account_seed_is_deterministic() -> None:
    assert account_seed(5) == b"account" + (5).to_bytes(8, "little")
    assert account_seed(5) != account_seed(6)


def test_manager_layout_and_counters() -> None:
    m = AccountManager()
    assert len(m.to_bytes()) == AccountManager.INIT_SIZE
    assert m.increment_next_account_id() == 0
    assert m.increment_next_account_id() == 1

    m.record_deleted_nonce(9)
    m.record_deleted_nonce(4)
    assert m.max_nonce == 9

    back = AccountManager.from_bytes(m.to_bytes())
    assert back.next_account_id == 2
    assert back.max_nonce == 9


def test_manager_refuses_to_wrap_account_ids() -> None:
    m = AccountManager(next_account_id=(1 << 64) - 1)
    with pytest.raises(ResourceError) as ei:
        m.increment_next_account_id()
    assert ei.value.code == "account_ids_exhausted"
