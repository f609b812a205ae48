"""aauth.auth.rsa_stepwise

Incremental sig^e mod n for hosts that bound the work done per call.

begin() captures everything needed to resume, step() consumes a bounded
number of exponent bits (left-to-right square-and-multiply), finalize()
checks the integrity hash against the caller's verification data and runs
the same padding check as the single-call path. ModpowState round-trips
through to_bytes()/from_bytes() so it can be parked in a record between
calls.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, replace
from typing import Optional

from aauth.auth.oidc_keys import ProviderKeys
from aauth.auth.oidc_rsa import (
    RSA_2048_SIGNATURE_LENGTH,
    OidcVerificationData,
    decrypted_block_matches,
    integrity_hash_input,
    resolve_key,
)
from aauth.codec.borsh import BorshReader, BorshWriter
from aauth.runtime.errors import MalformedProofError


def _int_to_bytes(v: int) -> bytes:
    return v.to_bytes(max(1, (v.bit_length() + 7) // 8), "big")


@dataclass(frozen=True)
class ModpowState:
    current_result: int
    exponent: bytes
    modulus: int
    base: int
    bit_position: int
    total_bits: int
    is_complete: bool
    verification_data_hash: bytes

    @property
    def remaining_bits(self) -> int:
        return self.total_bits - self.bit_position

    def to_bytes(self) -> bytes:
        # result and base are written at modulus width so the encoded size
        # does not change between steps
        width = len(_int_to_bytes(self.modulus))
        w = BorshWriter()
        w.bytes_vec(self.current_result.to_bytes(width, "big"))
        w.bytes_vec(self.exponent)
        w.bytes_vec(_int_to_bytes(self.modulus))
        w.bytes_vec(self.base.to_bytes(width, "big"))
        w.u32(self.bit_position)
        w.u32(self.total_bits)
        w.boolean(self.is_complete)
        w.fixed(self.verification_data_hash, 32)
        return w.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes) -> "ModpowState":
        r = BorshReader(data)
        current = int.from_bytes(r.bytes_vec(), "big")
        exponent = r.bytes_vec()
        modulus = int.from_bytes(r.bytes_vec(), "big")
        base = int.from_bytes(r.bytes_vec(), "big")
        state = cls(
            current_result=current,
            exponent=exponent,
            modulus=modulus,
            base=base,
            bit_position=r.u32(),
            total_bits=r.u32(),
            is_complete=r.boolean(),
            verification_data_hash=r.fixed(32),
        )
        r.expect_end()
        if state.total_bits != len(state.exponent) * 8 or state.bit_position > state.total_bits:
            raise MalformedProofError("invalid_modpow_state", "bit cursor is inconsistent with exponent")
        return state


def verification_data_hash(data: OidcVerificationData) -> bytes:
    return hashlib.sha256(integrity_hash_input(data)).digest()


def begin(data: OidcVerificationData, *, keys: Optional[ProviderKeys] = None) -> ModpowState:
    n, e = resolve_key(data, keys)
    exponent = _int_to_bytes(e)
    return ModpowState(
        current_result=1,
        exponent=exponent,
        modulus=n,
        base=int.from_bytes(data.signature, "big") % n,
        bit_position=0,
        total_bits=len(exponent) * 8,
        is_complete=False,
        verification_data_hash=verification_data_hash(data),
    )


def step(state: ModpowState, max_bits: int = 1) -> ModpowState:
    if state.is_complete:
        return state
    if max_bits < 1:
        raise ValueError("max_bits must be >= 1")

    result = state.current_result
    pos = state.bit_position
    end = min(state.total_bits, pos + int(max_bits))
    while pos < end:
        bit = (state.exponent[pos // 8] >> (7 - pos % 8)) & 1
        result = (result * result) % state.modulus
        if bit:
            result = (result * state.base) % state.modulus
        pos += 1

    return replace(state, current_result=result, bit_position=pos, is_complete=pos >= state.total_bits)


def run_to_completion(state: ModpowState, max_bits: int = 8) -> ModpowState:
    while not state.is_complete:
        state = step(state, max_bits)
    return state


def finalize(state: ModpowState, data: OidcVerificationData) -> bool:
    if not state.is_complete:
        raise MalformedProofError(
            "modpow_not_complete",
            "modular exponentiation has remaining bits",
            {"remaining_bits": state.remaining_bits},
        )
    if not hmac.compare_digest(state.verification_data_hash, verification_data_hash(data)):
        raise MalformedProofError("verification_data_mismatch", "state was started for different verification data")

    block = state.current_result.to_bytes(RSA_2048_SIGNATURE_LENGTH, "big")
    return decrypted_block_matches(block, data.signing_input_hash)
