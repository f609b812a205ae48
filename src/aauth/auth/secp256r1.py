# src/aauth/auth/secp256r1.py
from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Tuple

from aauth.auth.instructions import SECP256R1_PROGRAM_ID, InstructionIntrospector, load_preceding_instruction
from aauth.runtime.errors import AuthorizationError, MalformedProofError

COMPRESSED_PUBKEY_LEN = 33
SIGNATURE_LEN = 64

# [count:u8][padding:u8] then one offsets record
OFFSETS_START = 2
OFFSETS_SIZE = 14

# instruction index meaning "this instruction"
CURRENT_INSTRUCTION = 0xFFFF


@dataclass(frozen=True)
class Secp256r1SignatureOffsets:
    signature_offset: int
    signature_instruction_index: int
    public_key_offset: int
    public_key_instruction_index: int
    message_data_offset: int
    message_data_size: int
    message_instruction_index: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "Secp256r1SignatureOffsets":
        if len(data) != OFFSETS_SIZE:
            raise MalformedProofError("invalid_offsets", "secp256r1 offsets must be 14 bytes")
        return cls(*struct.unpack("<7H", data))

    def to_bytes(self) -> bytes:
        return struct.pack(
            "<7H",
            self.signature_offset,
            self.signature_instruction_index,
            self.public_key_offset,
            self.public_key_instruction_index,
            self.message_data_offset,
            self.message_data_size,
            self.message_instruction_index,
        )


def get_secp256r1_data(introspector: InstructionIntrospector) -> Tuple[bytes, bytes]:
    """Return (compressed_public_key, signed_message) from the preceding secp256r1 instruction."""
    _, ix = load_preceding_instruction(introspector, program_id=SECP256R1_PROGRAM_ID)

    data = ix.data
    if len(data) < OFFSETS_START:
        raise MalformedProofError("invalid_instruction_data", "secp256r1 instruction too short")

    if data[0] != 1:
        raise MalformedProofError(
            "multiple_signatures_not_supported",
            "exactly one signature is supported",
            {"count": data[0]},
        )

    offsets_end = OFFSETS_START + OFFSETS_SIZE
    if len(data) < offsets_end:
        raise MalformedProofError("invalid_instruction_data", "truncated secp256r1 offsets")
    offsets = Secp256r1SignatureOffsets.from_bytes(data[OFFSETS_START:offsets_end])

    if (
        offsets.signature_instruction_index != CURRENT_INSTRUCTION
        or offsets.public_key_instruction_index != CURRENT_INSTRUCTION
        or offsets.message_instruction_index != CURRENT_INSTRUCTION
    ):
        raise MalformedProofError(
            "data_in_other_instructions_not_supported",
            "signature data must live in the verification instruction",
        )

    pk_start = offsets.public_key_offset
    pk_end = pk_start + COMPRESSED_PUBKEY_LEN
    if pk_end > len(data):
        raise MalformedProofError("invalid_offsets", "public key out of range")

    msg_start = offsets.message_data_offset
    msg_end = msg_start + offsets.message_data_size
    if msg_end > len(data):
        raise MalformedProofError("invalid_offsets", "message out of range")

    return bytes(data[pk_start:pk_end]), bytes(data[msg_start:msg_end])


def parse_compressed_public_key(public_key: str) -> bytes:
    if not isinstance(public_key, str) or not public_key.startswith("0x"):
        raise MalformedProofError("invalid_hex_encoding", "public key must be 0x-prefixed hex")
    try:
        raw = bytes.fromhex(public_key[2:])
    except ValueError as e:
        raise MalformedProofError("invalid_hex_encoding", "public key is not valid hex") from e
    if len(raw) != COMPRESSED_PUBKEY_LEN:
        raise MalformedProofError("invalid_hex_encoding", "public key must be 33 bytes", {"len": len(raw)})
    return raw


def verify_secp256r1_signature(
    introspector: InstructionIntrospector,
    signed_message: bytes,
    signer_compressed_public_key: str,
) -> bool:
    pubkey, message = get_secp256r1_data(introspector)
    expected = parse_compressed_public_key(signer_compressed_public_key)

    if pubkey != expected:
        raise AuthorizationError("public_key_mismatch", "verified key does not match signer")
    if message != bytes(signed_message):
        raise AuthorizationError("signed_data_mismatch", "signed data does not match")
    return True
