# src/aauth/runtime/authorize.py
from __future__ import annotations

from aauth.ledger.account import AccountId, AccountRecord
from aauth.ledger.identity import Identity
from aauth.runtime.errors import AuthorizationError
from aauth.tx.canon import Transaction


def is_transaction_authorized(
    account: AccountRecord,
    account_id: AccountId,
    identity: Identity,
    transaction: Transaction,
) -> None:
    """Check a verified signer may apply `transaction` to `account`, then consume the nonce.

    Order matters: target account, bound identity, exact nonce. On success
    the nonce is incremented in place before the caller dispatches the
    action, so the same signature can never be applied twice.

    act_as delegation and per-identity permissions are not enforced here.
    """
    if transaction.account_id != account_id or account.account_id != account_id:
        raise AuthorizationError(
            "account_mismatch",
            "transaction targets a different account",
            {"account_id": account_id, "tx_account_id": transaction.account_id},
        )

    if not account.has_identity(identity):
        raise AuthorizationError("identity_not_found", "signer is not bound to account", {"account_id": account_id})

    if account.nonce != transaction.nonce:
        raise AuthorizationError(
            "nonce_mismatch",
            "transaction nonce does not match account nonce",
            {"expected": str(account.nonce), "got": str(transaction.nonce)},
        )

    account.increment_nonce()
