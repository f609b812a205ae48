"""Wallet (secp256k1 over Keccak256) adapter.

ek256 = secp256k1 + keccak256. The precompile instruction layout is:

  [count:u8]
  [signature_offset:u16][signature_instruction_index:u8]
  [eth_address_offset:u16][eth_address_instruction_index:u8]
  [message_data_offset:u16][message_data_size:u16][message_instruction_index:u8]
  ...payload referenced by the offsets...

All multi-byte integers are little endian.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Tuple

from aauth.auth.instructions import SECP256K1_PROGRAM_ID, InstructionIntrospector, load_preceding_instruction
from aauth.ledger.identity import ETH_ADDRESS_LEN
from aauth.runtime.errors import AuthorizationError, MalformedProofError

OFFSETS_START = 1
OFFSETS_SIZE = 11


@dataclass(frozen=True)
class Secp256k1SignatureOffsets:
    signature_offset: int
    signature_instruction_index: int
    eth_address_offset: int
    eth_address_instruction_index: int
    message_data_offset: int
    message_data_size: int
    message_instruction_index: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "Secp256k1SignatureOffsets":
        if len(data) != OFFSETS_SIZE:
            raise MalformedProofError("invalid_instruction_data", "secp256k1 offsets must be 11 bytes")
        return cls(*struct.unpack("<HBHBHHB", data))

    def to_bytes(self) -> bytes:
        return struct.pack(
            "<HBHBHHB",
            self.signature_offset,
            self.signature_instruction_index,
            self.eth_address_offset,
            self.eth_address_instruction_index,
            self.message_data_offset,
            self.message_data_size,
            self.message_instruction_index,
        )


def get_secp256k1_data(introspector: InstructionIntrospector) -> Tuple[bytes, bytes]:
    """Return (eth_address, signed_message) from the preceding secp256k1 instruction."""
    secp_index, ix = load_preceding_instruction(introspector, program_id=SECP256K1_PROGRAM_ID)

    data = ix.data
    if not data:
        raise MalformedProofError("invalid_instruction_data", "empty secp256k1 instruction")

    if data[0] != 1:
        raise MalformedProofError(
            "multiple_signatures_not_supported",
            "exactly one signature is supported",
            {"count": data[0]},
        )

    offsets_end = OFFSETS_START + OFFSETS_SIZE
    if len(data) < offsets_end:
        raise MalformedProofError("invalid_instruction_data", "truncated secp256k1 offsets")
    offsets = Secp256k1SignatureOffsets.from_bytes(data[OFFSETS_START:offsets_end])

    if (
        offsets.signature_instruction_index != secp_index
        or offsets.eth_address_instruction_index != secp_index
        or offsets.message_instruction_index != secp_index
    ):
        raise MalformedProofError(
            "data_in_other_instructions_not_supported",
            "signature data must live in the verification instruction",
            {"expected_index": secp_index},
        )

    addr_start = offsets.eth_address_offset
    addr_end = addr_start + ETH_ADDRESS_LEN
    if addr_end > len(data):
        raise MalformedProofError("invalid_offsets", "eth address out of range")
    eth_address = data[addr_start:addr_end]

    msg_start = offsets.message_data_offset
    msg_end = msg_start + offsets.message_data_size
    if msg_end > len(data):
        raise MalformedProofError("invalid_message_size", "message out of range")
    message = data[msg_start:msg_end]

    return bytes(eth_address), bytes(message)


def parse_eth_address(address: str) -> bytes:
    if not isinstance(address, str) or not address.startswith("0x"):
        raise MalformedProofError("invalid_hex_encoding", "address must be 0x-prefixed hex")
    try:
        raw = bytes.fromhex(address[2:])
    except ValueError as e:
        raise MalformedProofError("invalid_hex_encoding", "address is not valid hex") from e
    if len(raw) != ETH_ADDRESS_LEN:
        raise MalformedProofError("invalid_address_length", "address must be 20 bytes", {"len": len(raw)})
    return raw


def verify_wallet_signature(introspector: InstructionIntrospector, signed_message: bytes, signer_eth_address: str) -> bool:
    """Check the preceding precompile proved `signed_message` was signed by `signer_eth_address`."""
    eth_address, message = get_secp256k1_data(introspector)
    expected = parse_eth_address(signer_eth_address)

    if eth_address != expected:
        raise AuthorizationError("address_mismatch", "recovered address does not match signer")
    if message != bytes(signed_message):
        raise AuthorizationError("message_mismatch", "signed message does not match")
    return True
