"""aauth.auth.webauthn

WebAuthn assertions over secp256r1.

An authenticator signs `authenticator_data || sha256(client_data_json)`. The
secp256r1 precompile instruction preceding the call has already checked that
signature; here we only make sure it covered the data we expect, and that the
client data challenge commits to the transaction being executed.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Dict

from aauth.auth.instructions import InstructionIntrospector
from aauth.auth.secp256r1 import get_secp256r1_data, parse_compressed_public_key
from aauth.runtime.errors import AuthorizationError, MalformedProofError
from aauth.tx.canon import Transaction, b64url_decode

Json = Dict[str, Any]


def expected_signed_message(authenticator_data: bytes, client_data: str) -> bytes:
    return bytes(authenticator_data) + hashlib.sha256(client_data.encode("utf-8")).digest()


def parse_client_data(client_data: str) -> Json:
    try:
        obj = json.loads(client_data)
    except (TypeError, ValueError) as e:
        raise MalformedProofError("invalid_client_data", "client data is not JSON") from e
    if not isinstance(obj, dict):
        raise MalformedProofError("invalid_client_data", "client data must be a JSON object")
    return obj


def client_data_challenge(client_data: str) -> bytes:
    challenge = parse_client_data(client_data).get("challenge")
    if not isinstance(challenge, str) or not challenge:
        raise MalformedProofError("invalid_client_data", "client data has no challenge")
    return b64url_decode(challenge)


def check_challenge(client_data: str, transaction: Transaction) -> None:
    """The base64url challenge must be sha256 of the transaction's canonical bytes."""
    if not hmac.compare_digest(client_data_challenge(client_data), transaction.challenge()):
        raise AuthorizationError(
            "challenge_mismatch",
            "client data challenge does not commit to the transaction",
            {"account_id": transaction.account_id, "nonce": str(transaction.nonce)},
        )


def verify_webauthn_signature(
    introspector: InstructionIntrospector,
    authenticator_data: bytes,
    client_data: str,
    compressed_public_key: str,
) -> bool:
    pubkey, message = get_secp256r1_data(introspector)
    expected_pk = parse_compressed_public_key(compressed_public_key)
    if pubkey != expected_pk:
        raise AuthorizationError("public_key_mismatch", "verified key does not match signer")

    ad = bytes(authenticator_data)
    cd_hash = hashlib.sha256(client_data.encode("utf-8")).digest()
    if len(message) != len(ad) + len(cd_hash):
        raise AuthorizationError("signed_data_mismatch", "signed data length does not match")
    if message[: len(ad)] != ad or message[len(ad) :] != cd_hash:
        raise AuthorizationError("signed_data_mismatch", "signed data does not match")
    return True
