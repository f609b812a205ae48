from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Callable

import pytest
from eth_keys import keys as eth_keys

from aauth.auth.instructions import AAUTH_PROGRAM_ID, Instruction, InstructionBundle
from aauth.ledger.account import AccountRecord, account_seed
from aauth.ledger.account_manager import ACCOUNT_MANAGER_SEED
from aauth.ledger.identity import IdentityWithPermissions, WalletIdentity
from aauth.ledger.record_store import InMemoryRecordStore, RecordStore, RentPolicy
from aauth.runtime.engine import AccountEngine, ExecutionProof
from aauth.runtime.sqlite_store import SqliteDB, SqliteRecordStore
from aauth.testing.sigtools import deterministic_wallet_key, secp256k1_instruction, wallet_identity
from aauth.tx.canon import AddIdentity, Transaction

RENT = RentPolicy(per_byte=10, overhead_bytes=100)


def _memory(tmp_path: Path) -> RecordStore:
    return InMemoryRecordStore(rent=RENT)


def _sqlite(tmp_path: Path) -> RecordStore:
    return SqliteRecordStore(db=SqliteDB(path=str(tmp_path / "records.db")), rent=RENT)


STORES = [pytest.param(_memory, id="memory"), pytest.param(_sqlite, id="sqlite")]


def _engine(store: RecordStore) -> AccountEngine:
    store.fund("payer", 10**9)
    engine = AccountEngine(store=store, payer="payer")
    engine.init_contract()
    return engine


def _wallet(n: int) -> IdentityWithPermissions:
    return IdentityWithPermissions(identity=WalletIdentity(address=bytes([n]) * 20))


def _wallet_proof(sk: eth_keys.PrivateKey, tx: Transaction) -> ExecutionProof:
    ix = secp256k1_instruction(sk, tx.canonical_bytes(), instruction_index=0)
    bundle = InstructionBundle(instructions=[ix, Instruction(program_id=AAUTH_PROGRAM_ID)], current=1)
    return ExecutionProof(scheme="wallet", instructions=bundle)


def _fail_writes_to(monkeypatch: pytest.MonkeyPatch, store: RecordStore, seed: bytes) -> None:
    real_write = store.write

    def write(s: bytes, data: bytes) -> None:
        if bytes(s) == seed:
            raise sqlite3.OperationalError("database is locked")
        real_write(s, data)

    monkeypatch.setattr(store, "write", write)


@pytest.mark.parametrize("make", STORES)
def test_failed_manager_write_keeps_deleted_account(
    make: Callable[[Path], RecordStore], tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = make(tmp_path)
    engine = _engine(store)
    sk = deterministic_wallet_key(label="owner")
    engine.create_account(IdentityWithPermissions(identity=wallet_identity(sk)))
    tx = Transaction(account_id=0, nonce=0, action=AddIdentity(identity_with_permissions=_wallet(2)))
    engine.execute_transaction(0, _wallet_proof(sk, tx))
    assert engine.get_account(0).nonce == 1

    record = store.read(account_seed(0))
    balance = store.balance("payer")

    _fail_writes_to(monkeypatch, store, ACCOUNT_MANAGER_SEED)
    with pytest.raises(sqlite3.OperationalError):
        engine.delete_account(0)

    assert store.read(account_seed(0)) == record
    assert store.balance("payer") == balance
    assert engine.get_account_manager().max_nonce == 0

    monkeypatch.undo()
    engine.delete_account(0)
    assert engine.get_account_manager().max_nonce == 1
    assert engine.create_account(_wallet(3)).nonce == 1


@pytest.mark.parametrize("make", STORES)
def test_failed_account_write_after_resize_restores_record(
    make: Callable[[Path], RecordStore], tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = make(tmp_path)
    engine = _engine(store)
    engine.create_account(_wallet(1))
    engine.add_identity(0, _wallet(2))

    seed = account_seed(0)
    record = store.read(seed)
    balance = store.balance("payer")

    _fail_writes_to(monkeypatch, store, seed)
    with pytest.raises(sqlite3.OperationalError):
        engine.remove_identity(0, WalletIdentity(address=bytes([2]) * 20))
    with pytest.raises(sqlite3.OperationalError):
        engine.add_identity(0, _wallet(3))

    assert store.read(seed) == record
    assert store.size(seed) == len(record)
    assert store.balance("payer") == balance
    assert AccountRecord.from_bytes(store.read(seed)).identities == [_wallet(1), _wallet(2)]


@pytest.mark.parametrize("make", STORES)
def test_failed_manager_write_leaves_no_orphan_account(
    make: Callable[[Path], RecordStore], tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = make(tmp_path)
    engine = _engine(store)
    balance = store.balance("payer")

    _fail_writes_to(monkeypatch, store, ACCOUNT_MANAGER_SEED)
    with pytest.raises(sqlite3.OperationalError):
        engine.create_account(_wallet(1))

    assert not store.exists(account_seed(0))
    assert store.balance("payer") == balance
    assert engine.get_account_manager().next_account_id == 0

    monkeypatch.undo()
    assert engine.create_account(_wallet(1)).account_id == 0


@pytest.mark.parametrize("make", STORES)
def test_failed_execution_write_keeps_nonce(
    make: Callable[[Path], RecordStore], tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    store = make(tmp_path)
    engine = _engine(store)
    sk = deterministic_wallet_key(label="owner")
    engine.create_account(IdentityWithPermissions(identity=wallet_identity(sk)))
    tx = Transaction(account_id=0, nonce=0, action=AddIdentity(identity_with_permissions=_wallet(2)))

    _fail_writes_to(monkeypatch, store, account_seed(0))
    with pytest.raises(sqlite3.OperationalError):
        engine.execute_transaction(0, _wallet_proof(sk, tx))
    assert engine.get_account(0).nonce == 0
    assert len(engine.get_account(0).identities) == 1

    # the same signed transaction is still valid once storage recovers
    monkeypatch.undo()
    engine.execute_transaction(0, _wallet_proof(sk, tx))
    assert engine.get_account(0).nonce == 1
