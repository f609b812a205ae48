from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from aauth.api.errors import ApiError
from aauth.api.schemas import (
    AddIdentityRequest,
    CreateAccountRequest,
    ExecuteRequest,
    RemoveIdentityRequest,
    VerifyOidcRequest,
    VerifyWalletRequest,
    VerifyWebauthnRequest,
)
from aauth.auth.instructions import InstructionBundle
from aauth.auth.oidc_rsa import OidcVerificationData
from aauth.ledger.identity import decode_hex, identity_from_json, identity_with_permissions_from_json
from aauth.runtime.engine import AccountEngine, ExecutionProof
from aauth.tx.canon import UserOp

Json = Dict[str, Any]

router = APIRouter()


def _engine(request: Request) -> AccountEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise ApiError.internal("not_ready", "engine not attached to app.state")
    return engine


@router.get("/v1/health")
def v1_health(request: Request) -> Json:
    return {"ok": True, "engine": getattr(request.app.state, "engine", None) is not None}


@router.post("/v1/contract/init")
def v1_contract_init(request: Request) -> Json:
    manager = _engine(request).init_contract()
    return {"ok": True, "account_manager": manager.to_json()}


@router.get("/v1/contract")
def v1_contract_get(request: Request) -> Json:
    return {"ok": True, "account_manager": _engine(request).get_account_manager().to_json()}


@router.post("/v1/accounts")
def v1_accounts_create(body: CreateAccountRequest, request: Request) -> Json:
    iwp = identity_with_permissions_from_json(body.identity_with_permissions)
    account = _engine(request).create_account(iwp)
    return {"ok": True, "account": account.to_json()}


@router.get("/v1/accounts/{account_id}")
def v1_accounts_get(account_id: int, request: Request) -> Json:
    return {"ok": True, "account": _engine(request).get_account(account_id).to_json()}


@router.delete("/v1/accounts/{account_id}")
def v1_accounts_delete(account_id: int, request: Request) -> Json:
    refund = _engine(request).delete_account(account_id)
    return {"ok": True, "account_id": account_id, "refund": refund}


@router.post("/v1/accounts/{account_id}/identities")
def v1_identities_add(account_id: int, body: AddIdentityRequest, request: Request) -> Json:
    iwp = identity_with_permissions_from_json(body.identity_with_permissions)
    account = _engine(request).add_identity(account_id, iwp)
    return {"ok": True, "account": account.to_json()}


@router.post("/v1/accounts/{account_id}/identities/remove")
def v1_identities_remove(account_id: int, body: RemoveIdentityRequest, request: Request) -> Json:
    account = _engine(request).remove_identity(account_id, identity_from_json(body.identity))
    return {"ok": True, "account": account.to_json()}


@router.post("/v1/accounts/{account_id}/execute")
def v1_accounts_execute(account_id: int, body: ExecuteRequest, request: Request) -> Json:
    proof = ExecutionProof(
        scheme=body.scheme,
        instructions=InstructionBundle.from_json(body.bundle.to_json()),
        user_op=None if body.user_op is None else UserOp.from_json(body.user_op),
        authenticator_data=None
        if body.authenticator_data is None
        else decode_hex(body.authenticator_data, field="authenticator_data"),
        key_id=body.key_id,
    )
    result = _engine(request).execute_transaction(account_id, proof)
    return {"ok": True, **result}


@router.post("/v1/verify/wallet")
def v1_verify_wallet(body: VerifyWalletRequest, request: Request) -> Json:
    ok = _engine(request).verify_wallet_signature(
        InstructionBundle.from_json(body.bundle.to_json()),
        decode_hex(body.signed_message, field="signed_message"),
        body.address,
    )
    return {"ok": True, "verified": ok}


@router.post("/v1/verify/webauthn")
def v1_verify_webauthn(body: VerifyWebauthnRequest, request: Request) -> Json:
    ok = _engine(request).verify_webauthn_signature(
        InstructionBundle.from_json(body.bundle.to_json()),
        decode_hex(body.authenticator_data, field="authenticator_data"),
        body.client_data,
        body.compressed_public_key,
    )
    return {"ok": True, "verified": ok}


@router.post("/v1/verify/oidc")
def v1_verify_oidc(body: VerifyOidcRequest, request: Request) -> Json:
    data = OidcVerificationData.from_json(body.model_dump())
    return {"ok": True, "verified": _engine(request).verify_oidc_signature(data)}
