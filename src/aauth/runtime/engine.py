"""aauth.runtime.engine

AccountEngine owns the account lifecycle on top of a RecordStore.

Every mutating operation follows the same shape:
  1) decode the stored record into a working copy
  2) validate (proof, identity, nonce, presence) against the copy
  3) mutate the copy
  4) ask the store to resize to the copy's exact encoded size
  5) write the encoded copy

Steps 1-5 run inside one store transaction, so a refused resize or a failed
write leaves every record and balance at its previous value.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from aauth.auth import rsa_stepwise
from aauth.auth.instructions import InstructionIntrospector
from aauth.auth.oidc_keys import ProviderKeys, load_provider_keys
from aauth.auth.oidc_rsa import OidcVerificationData
from aauth.auth.oidc_rsa import verify_oidc_signature as _verify_oidc
from aauth.auth.secp256k1 import get_secp256k1_data
from aauth.auth.secp256k1 import verify_wallet_signature as _verify_wallet
from aauth.auth.secp256r1 import get_secp256r1_data
from aauth.auth.webauthn import check_challenge, expected_signed_message
from aauth.auth.webauthn import verify_webauthn_signature as _verify_webauthn
from aauth.ledger.account import AccountId, AccountRecord, account_seed
from aauth.ledger.account_manager import ACCOUNT_MANAGER_SEED, AccountManager
from aauth.ledger.identity import (
    Identity,
    IdentityWithPermissions,
    WalletIdentity,
    WebAuthnIdentity,
    encode_hex,
)
from aauth.ledger.record_store import InMemoryRecordStore, RecordStore
from aauth.runtime.authorize import is_transaction_authorized
from aauth.runtime.engine_config import EngineConfig, default_engine_config
from aauth.runtime.errors import (
    AuthError,
    AuthorizationError,
    MalformedProofError,
    NotFoundError,
    ResourceError,
)
from aauth.tx.canon import AddIdentity, RemoveAccount, RemoveIdentity, Transaction, UserOp
from aauth.util.logging import log_event

Json = Dict[str, Any]

MODPOW_SEED = b"rsa_modpow"

SCHEME_WALLET = "wallet"
SCHEME_WEBAUTHN = "webauthn"


def modpow_seed(operation_id: str) -> bytes:
    return MODPOW_SEED + operation_id.encode("utf-8")


@dataclass(frozen=True)
class ExecutionProof:
    """Everything needed to authorize one transaction.

    wallet:   the preceding secp256k1 instruction signed the canonical
              transaction bytes; user_op is optional since the transaction
              is decoded from the signed message.
    webauthn: the preceding secp256r1 instruction signed
              authenticator_data || sha256(client_data); user_op carries the
              transaction and the client data. key_id selects the bound
              passkey; without it the passkey is looked up by public key.
    """

    scheme: str
    instructions: InstructionIntrospector
    user_op: Optional[UserOp] = None
    authenticator_data: Optional[bytes] = None
    key_id: Optional[str] = None


class AccountEngine:
    def __init__(
        self,
        *,
        store: Optional[RecordStore] = None,
        payer: Optional[str] = None,
        config: Optional[EngineConfig] = None,
        oidc_keys: Optional[ProviderKeys] = None,
    ) -> None:
        self.config = config or default_engine_config()
        self.store = store or InMemoryRecordStore(
            rent=self.config.rent_policy(),
            max_record_bytes=self.config.max_record_bytes,
        )
        self.payer = str(payer or self.config.payer)
        self.oidc_keys = oidc_keys if oidc_keys is not None else load_provider_keys(self.config.oidc_keys_path or None)
        self._log = logging.getLogger("aauth.engine")

    # ---- record access ----

    def get_account_manager(self) -> AccountManager:
        if not self.store.exists(ACCOUNT_MANAGER_SEED):
            raise NotFoundError("contract_not_initialized", "account manager does not exist")
        return AccountManager.from_bytes(self.store.read(ACCOUNT_MANAGER_SEED))

    def get_account(self, account_id: AccountId) -> AccountRecord:
        seed = account_seed(account_id)
        if not self.store.exists(seed):
            raise NotFoundError("account_not_found", "account does not exist", {"account_id": account_id})
        return AccountRecord.from_bytes(self.store.read(seed))

    def _save_account(self, account: AccountRecord) -> None:
        seed = account_seed(account.account_id)
        data = account.to_bytes()
        if len(data) != self.store.size(seed):
            self.store.resize(seed, len(data), payer=self.payer)
        self.store.write(seed, data)

    def _save_manager(self, manager: AccountManager) -> None:
        self.store.write(ACCOUNT_MANAGER_SEED, manager.to_bytes())

    # ---- contract lifecycle ----

    def init_contract(self) -> AccountManager:
        with self.store.transaction():
            if self.store.exists(ACCOUNT_MANAGER_SEED):
                raise ResourceError("contract_already_initialized", "account manager already exists")
            manager = AccountManager()
            self.store.create(ACCOUNT_MANAGER_SEED, manager.to_bytes(), payer=self.payer)
        log_event(self._log, "contract_initialized", payer=self.payer)
        return manager

    def close_contract(self) -> int:
        """Destroy the account manager; returns the refunded deposit."""
        with self.store.transaction():
            self.get_account_manager()
            refund = self.store.close(ACCOUNT_MANAGER_SEED, beneficiary=self.payer)
        log_event(self._log, "contract_closed", refund=refund)
        return refund

    # ---- administrative paths (no signature check at this layer) ----

    def create_account(self, identity_with_permissions: IdentityWithPermissions) -> AccountRecord:
        with self.store.transaction():
            manager = self.get_account_manager()
            account_id = manager.increment_next_account_id()
            account = AccountRecord(
                account_id=account_id, nonce=manager.max_nonce, identities=[identity_with_permissions]
            )

            self.store.create(account_seed(account_id), account.to_bytes(), payer=self.payer)
            self._save_manager(manager)

        log_event(self._log, "account_created", account_id=account_id, nonce=str(account.nonce))
        return account

    def add_identity(self, account_id: AccountId, identity_with_permissions: IdentityWithPermissions) -> AccountRecord:
        with self.store.transaction():
            account = self.get_account(account_id)
            self._apply_add_identity(account, identity_with_permissions)
            self._save_account(account)
        return account

    def remove_identity(self, account_id: AccountId, identity: Identity) -> AccountRecord:
        with self.store.transaction():
            account = self.get_account(account_id)
            self._apply_remove_identity(account, identity)
            self._save_account(account)
        return account

    def delete_account(self, account_id: AccountId) -> int:
        with self.store.transaction():
            account = self.get_account(account_id)
            return self._close_account(account)

    # ---- action helpers; mutate the working copy only ----

    def _apply_add_identity(self, account: AccountRecord, iwp: IdentityWithPermissions) -> None:
        added = account.add_identity(iwp)
        log_event(
            self._log,
            "identity_added",
            account_id=account.account_id,
            identity=iwp.identity.to_json(),
            already_bound=not added,
        )

    def _apply_remove_identity(self, account: AccountRecord, identity: Identity) -> None:
        entry = account.find_identity(identity)
        if entry is None:
            raise NotFoundError(
                "identity_not_found",
                "identity is not bound to account",
                {"account_id": account.account_id, "identity": identity.to_json()},
            )
        if len(account.identities) == 1:
            raise AuthorizationError(
                "cannot_remove_last_identity",
                "an account must keep one identity; delete the account instead",
                {"account_id": account.account_id},
            )
        account.remove_identity(identity)
        log_event(self._log, "identity_removed", account_id=account.account_id, identity=identity.to_json())

    def _close_account(self, account: AccountRecord) -> int:
        with self.store.transaction():
            manager = self.get_account_manager()
            manager.record_deleted_nonce(account.nonce)
            refund = self.store.close(account_seed(account.account_id), beneficiary=self.payer)
            self._save_manager(manager)
        log_event(
            self._log,
            "account_deleted",
            account_id=account.account_id,
            nonce=str(account.nonce),
            max_nonce=str(manager.max_nonce),
            refund=refund,
        )
        return refund

    # ---- authorized execution ----

    def _wallet_signer(self, proof: ExecutionProof) -> Tuple[Identity, Transaction]:
        address, message = get_secp256k1_data(proof.instructions)
        if proof.user_op is None:
            transaction = Transaction.from_canonical_bytes(message)
        else:
            transaction = proof.user_op.transaction
            if message != transaction.canonical_bytes():
                raise AuthorizationError("message_mismatch", "signed message is not the canonical transaction")
        return WalletIdentity(address=address), transaction

    def _webauthn_signer(self, account: AccountRecord, proof: ExecutionProof) -> Tuple[Identity, Transaction]:
        user_op = proof.user_op
        if user_op is None:
            raise MalformedProofError("missing_user_op", "webauthn execution requires a user_op")
        vc = user_op.auth.verification_context
        if vc is None:
            raise MalformedProofError("missing_verification_context", "webauthn execution requires client data")
        if proof.authenticator_data is None:
            raise MalformedProofError("missing_authenticator_data", "webauthn execution requires authenticator data")

        pubkey, message = get_secp256r1_data(proof.instructions)
        transaction = user_op.transaction
        check_challenge(vc.client_data, transaction)
        if message != expected_signed_message(proof.authenticator_data, vc.client_data):
            raise AuthorizationError("message_mismatch", "signed message does not match authenticator payload")

        pubkey_hex = encode_hex(pubkey)
        if proof.key_id is not None:
            return WebAuthnIdentity(key_id=proof.key_id, compressed_public_key=pubkey_hex), transaction

        for entry in account.identities:
            ident = entry.identity
            if isinstance(ident, WebAuthnIdentity) and ident.compressed_public_key == pubkey_hex:
                return ident, transaction
        raise AuthorizationError("identity_not_found", "no passkey with this public key is bound to account")

    @staticmethod
    def _persist_passkey(account: AccountRecord, signer: WebAuthnIdentity) -> None:
        """Store the compressed key on a passkey registered without one."""
        for idx, entry in enumerate(account.identities):
            ident = entry.identity
            if isinstance(ident, WebAuthnIdentity) and ident == signer and ident.compressed_public_key is None:
                account.identities[idx] = IdentityWithPermissions(identity=signer, permissions=entry.permissions)
                return

    def execute_transaction(self, account_id: AccountId, proof: ExecutionProof) -> Json:
        try:
            with self.store.transaction():
                return self._execute_transaction(account_id, proof)
        except AuthError as e:
            log_event(
                self._log,
                "transaction_rejected",
                level=logging.WARNING,
                account_id=account_id,
                scheme=proof.scheme,
                code=e.code,
                kind=e.kind,
            )
            raise

    def _execute_transaction(self, account_id: AccountId, proof: ExecutionProof) -> Json:
        account = self.get_account(account_id)

        scheme = str(proof.scheme or "").strip().lower()
        if scheme == SCHEME_WALLET:
            signer, transaction = self._wallet_signer(proof)
        elif scheme == SCHEME_WEBAUTHN:
            signer, transaction = self._webauthn_signer(account, proof)
        else:
            raise MalformedProofError("unknown_scheme", "unsupported proof scheme", {"scheme": proof.scheme})

        is_transaction_authorized(account, account_id, signer, transaction)
        if isinstance(signer, WebAuthnIdentity):
            self._persist_passkey(account, signer)

        action = transaction.action
        if isinstance(action, RemoveAccount):
            refund = self._close_account(account)
            result: Json = {"account_id": account_id, "deleted": True, "refund": refund}
        else:
            if isinstance(action, AddIdentity):
                self._apply_add_identity(account, action.identity_with_permissions)
            elif isinstance(action, RemoveIdentity):
                self._apply_remove_identity(account, action.identity)
            else:
                raise MalformedProofError("unknown_action", "unsupported action", {"type": type(action).__name__})
            self._save_account(account)
            result = {"account_id": account_id, "deleted": False, "account": account.to_json()}

        log_event(
            self._log,
            "transaction_executed",
            account_id=account_id,
            scheme=scheme,
            action=action.to_json()["kind"],
            nonce=str(transaction.nonce),
        )
        return result

    # ---- standalone verification ----

    def verify_wallet_signature(
        self, instructions: InstructionIntrospector, signed_message: bytes, signer_address: str
    ) -> bool:
        return _verify_wallet(instructions, signed_message, signer_address)

    def verify_webauthn_signature(
        self,
        instructions: InstructionIntrospector,
        authenticator_data: bytes,
        client_data: str,
        compressed_public_key: str,
    ) -> bool:
        return _verify_webauthn(instructions, authenticator_data, client_data, compressed_public_key)

    def verify_oidc_signature(self, data: OidcVerificationData) -> bool:
        return _verify_oidc(data, keys=self.oidc_keys)

    # ---- stepwise OIDC verification, state parked in the record store ----

    def begin_oidc_verification(self, operation_id: str, data: OidcVerificationData) -> rsa_stepwise.ModpowState:
        state = rsa_stepwise.begin(data, keys=self.oidc_keys)
        self.store.create(modpow_seed(operation_id), state.to_bytes(), payer=self.payer)
        return state

    def continue_oidc_verification(self, operation_id: str, max_bits: int = 1) -> rsa_stepwise.ModpowState:
        seed = modpow_seed(operation_id)
        with self.store.transaction():
            if not self.store.exists(seed):
                raise NotFoundError(
                    "verification_not_found", "no verification in progress", {"operation_id": operation_id}
                )
            state = rsa_stepwise.step(rsa_stepwise.ModpowState.from_bytes(self.store.read(seed)), max_bits)
            self.store.write(seed, state.to_bytes())
        return state

    def finalize_oidc_verification(self, operation_id: str, data: OidcVerificationData) -> bool:
        """Check the parked state and release its record."""
        seed = modpow_seed(operation_id)
        with self.store.transaction():
            if not self.store.exists(seed):
                raise NotFoundError(
                    "verification_not_found", "no verification in progress", {"operation_id": operation_id}
                )
            ok = rsa_stepwise.finalize(rsa_stepwise.ModpowState.from_bytes(self.store.read(seed)), data)
            self.store.close(seed, beneficiary=self.payer)
        return ok
