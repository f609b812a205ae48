from __future__ import annotations

import json

import pytest

from aauth.auth.instructions import AAUTH_PROGRAM_ID, SECP256R1_PROGRAM_ID, Instruction, InstructionBundle
from aauth.auth.secp256r1 import (
    CURRENT_INSTRUCTION,
    Secp256r1SignatureOffsets,
    get_secp256r1_data,
    verify_secp256r1_signature,
)
from aauth.auth.webauthn import check_challenge, client_data_challenge, verify_webauthn_signature
from aauth.ledger.identity import encode_hex
from aauth.runtime.errors import AuthorizationError, CodecError, MalformedProofError
from aauth.testing.sigtools import (
    compressed_public_key,
    deterministic_p256_key,
    secp256r1_instruction,
    verify_secp256r1_instruction,
    webauthn_assertion,
    webauthn_client_data,
)
from aauth.tx.canon import RemoveAccount, Transaction


def _bundle(verify_ix: Instruction) -> InstructionBundle:
    return InstructionBundle(instructions=[verify_ix, Instruction(program_id=AAUTH_PROGRAM_ID)], current=1)


def _tx(nonce: int = 0) -> Transaction:
    return Transaction(account_id=0, nonce=nonce, action=RemoveAccount())


def test_assertion_over_transaction_verifies() -> None:
    sk = deterministic_p256_key(label="phone")
    tx = _tx()
    ix, ad, cd = webauthn_assertion(sk, tx)

    assert verify_secp256r1_instruction(ix.data) is True
    assert client_data_challenge(cd) == tx.challenge()

    check_challenge(cd, tx)
    assert verify_webauthn_signature(_bundle(ix), ad, cd, encode_hex(compressed_public_key(sk))) is True


def test_tampered_client_data_is_rejected() -> None:
    sk = deterministic_p256_key(label="phone")
    ix, ad, cd = webauthn_assertion(sk, _tx())
    tampered = cd.replace("wallet.example", "wa11et.example")
    assert tampered != cd

    with pytest.raises(AuthorizationError) as ei:
        verify_webauthn_signature(_bundle(ix), ad, tampered, encode_hex(compressed_public_key(sk)))
    assert ei.value.code == "signed_data_mismatch"


def test_tampered_authenticator_data_is_rejected() -> None:
    sk = deterministic_p256_key(label="phone")
    ix, ad, cd = webauthn_assertion(sk, _tx())

    with pytest.raises(AuthorizationError) as ei:
        verify_webauthn_signature(_bundle(ix), ad[:-1] + b"\x09", cd, encode_hex(compressed_public_key(sk)))
    assert ei.value.code == "signed_data_mismatch"


def test_other_passkey_is_rejected() -> None:
    sk = deterministic_p256_key(label="phone")
    other = deterministic_p256_key(label="laptop")
    ix, ad, cd = webauthn_assertion(sk, _tx())

    with pytest.raises(AuthorizationError) as ei:
        verify_webauthn_signature(_bundle(ix), ad, cd, encode_hex(compressed_public_key(other)))
    assert ei.value.code == "public_key_mismatch"


def test_challenge_must_commit_to_the_transaction() -> None:
    cd = webauthn_client_data(_tx(nonce=1))
    with pytest.raises(AuthorizationError) as ei:
        check_challenge(cd, _tx(nonce=2))
    assert ei.value.code == "challenge_mismatch"


def test_client_data_without_challenge_is_malformed() -> None:
    with pytest.raises(MalformedProofError) as ei:
        client_data_challenge(json.dumps({"type": "webauthn.get"}))
    assert ei.value.code == "invalid_client_data"

    with pytest.raises(MalformedProofError):
        client_data_challenge("not json")

    with pytest.raises(CodecError) as ei2:
        client_data_challenge(json.dumps({"challenge": "***"}))
    assert ei2.value.code == "invalid_base64url"


def test_raw_secp256r1_verification() -> None:
    sk = deterministic_p256_key(label="phone")
    ix = secp256r1_instruction(sk, b"payload")
    pk = encode_hex(compressed_public_key(sk))

    assert verify_secp256r1_signature(_bundle(ix), b"payload", pk) is True
    with pytest.raises(AuthorizationError) as ei:
        verify_secp256r1_signature(_bundle(ix), b"other", pk)
    assert ei.value.code == "signed_data_mismatch"


def test_secp256r1_instruction_shape_errors() -> None:
    with pytest.raises(MalformedProofError) as ei:
        get_secp256r1_data(_bundle(Instruction(program_id=SECP256R1_PROGRAM_ID, data=b"\x01")))
    assert ei.value.code == "invalid_instruction_data"

    sk = deterministic_p256_key(label="phone")
    data = bytearray(secp256r1_instruction(sk, b"payload").data)
    data[0] = 3
    with pytest.raises(MalformedProofError) as ei2:
        get_secp256r1_data(_bundle(Instruction(program_id=SECP256R1_PROGRAM_ID, data=bytes(data))))
    assert ei2.value.code == "multiple_signatures_not_supported"


def test_secp256r1_offsets_must_stay_inside_instruction() -> None:
    offsets = Secp256r1SignatureOffsets(
        signature_offset=16,
        signature_instruction_index=CURRENT_INSTRUCTION,
        public_key_offset=500,
        public_key_instruction_index=CURRENT_INSTRUCTION,
        message_data_offset=16,
        message_data_size=0,
        message_instruction_index=CURRENT_INSTRUCTION,
    )
    data = b"\x01\x00" + offsets.to_bytes() + bytes(100)
    with pytest.raises(MalformedProofError) as ei:
        get_secp256r1_data(_bundle(Instruction(program_id=SECP256R1_PROGRAM_ID, data=data)))
    assert ei.value.code == "invalid_offsets"

    remote = Secp256r1SignatureOffsets(
        signature_offset=16,
        signature_instruction_index=0,
        public_key_offset=16,
        public_key_instruction_index=CURRENT_INSTRUCTION,
        message_data_offset=16,
        message_data_size=0,
        message_instruction_index=CURRENT_INSTRUCTION,
    )
    data2 = b"\x01\x00" + remote.to_bytes() + bytes(100)
    with pytest.raises(MalformedProofError) as ei2:
        get_secp256r1_data(_bundle(Instruction(program_id=SECP256R1_PROGRAM_ID, data=data2)))
    assert ei2.value.code == "data_in_other_instructions_not_supported"
