"""aauth.auth.instructions

Sibling-instruction introspection.

A call bundle is an ordered list of instructions executed atomically. The
ECDSA adapters never check curve signatures themselves: they read the output
of a signature-verification precompile instruction co-submitted in the same
bundle, which the host has already verified.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol

from aauth.runtime.errors import MalformedProofError

Json = Dict[str, Any]

SECP256K1_PROGRAM_ID = "KeccakSecp256k11111111111111111111111111111"
SECP256R1_PROGRAM_ID = "Secp256r1SigVerify1111111111111111111111111"
AAUTH_PROGRAM_ID = "AAuth11111111111111111111111111111111111111"


@dataclass(frozen=True)
class Instruction:
    program_id: str
    data: bytes = b""

    def to_json(self) -> Json:
        return {"program_id": self.program_id, "data": "0x" + self.data.hex()}


class InstructionIntrospector(Protocol):
    def current_index(self) -> int: ...

    def instruction_at(self, index: int) -> Instruction: ...


@dataclass
class InstructionBundle:
    """In-process introspector over an explicit instruction list."""

    instructions: List[Instruction] = field(default_factory=list)
    current: int = 0

    def current_index(self) -> int:
        return int(self.current)

    def instruction_at(self, index: int) -> Instruction:
        if index < 0 or index >= len(self.instructions):
            raise MalformedProofError(
                "instruction_index_out_of_range",
                "no instruction at index",
                {"index": index, "count": len(self.instructions)},
            )
        return self.instructions[index]

    @staticmethod
    def from_json(j: Any) -> "InstructionBundle":
        if not isinstance(j, dict):
            raise MalformedProofError("invalid_bundle", "instruction bundle must be an object")
        raw = j.get("instructions")
        if not isinstance(raw, list):
            raise MalformedProofError("invalid_bundle", "instructions must be a list")
        out: List[Instruction] = []
        for item in raw:
            if not isinstance(item, dict):
                raise MalformedProofError("invalid_bundle", "instruction must be an object")
            data = str(item.get("data") or "")
            if data[:2] in ("0x", "0X"):
                data = data[2:]
            try:
                out.append(Instruction(program_id=str(item.get("program_id") or ""), data=bytes.fromhex(data)))
            except ValueError as e:
                raise MalformedProofError("invalid_hex_encoding", "instruction data is not hex") from e
        try:
            current = int(j.get("current_index", len(out) - 1))
        except (TypeError, ValueError) as e:
            raise MalformedProofError("invalid_bundle", "current_index must be an integer") from e
        return InstructionBundle(instructions=out, current=current)


def load_preceding_instruction(introspector: InstructionIntrospector, *, program_id: str) -> tuple[int, Instruction]:
    """Return (index, instruction) for the instruction right before the current one.

    Any other position is unsupported so instructions cannot be reordered
    to point the adapter at an unrelated verification.
    """
    current = introspector.current_index()
    if current < 1:
        raise MalformedProofError("missing_verification_instruction", "no verification instruction precedes this call")
    index = current - 1
    ix = introspector.instruction_at(index)
    if ix.program_id != program_id:
        raise MalformedProofError(
            "invalid_verification_instruction",
            "preceding instruction is not the expected precompile",
            {"expected": program_id, "got": ix.program_id},
        )
    return index, ix
