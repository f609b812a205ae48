from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar


@dataclass
class AuthError(Exception):
    """Canonical error type for authorization, verification and storage failures.

    `kind` groups codes so callers can tell a structurally broken proof
    apart from a well-formed but unauthorized one.
    """

    code: str
    reason: str
    details: Any | None = None

    kind: ClassVar[str] = "error"

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"

    def to_json(self) -> dict:
        return {
            "code": self.code,
            "message": self.reason,
            "kind": self.kind,
            "details": self.details if self.details is not None else {},
        }


class MalformedProofError(AuthError):
    """Wrong program id, wrong position, truncated offsets, bad lengths."""

    kind: ClassVar[str] = "malformed_proof"


class CodecError(MalformedProofError):
    """Bytes that do not decode to the expected layout."""

    kind: ClassVar[str] = "malformed_proof"


class AuthorizationError(AuthError):
    """Proof is well-formed but does not authorize the requested change."""

    kind: ClassVar[str] = "unauthorized"


class ResourceError(AuthError):
    kind: ClassVar[str] = "resource"


class NotFoundError(AuthError):
    kind: ClassVar[str] = "not_found"
