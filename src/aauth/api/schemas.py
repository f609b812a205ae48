"""Pydantic request schemas for the HTTP API.

These validate envelope shape only. Identity, transaction and user_op
objects stay plain JSON here and are decoded by their own from_json
functions, so the HTTP layer and the engine share one decoder.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class InstructionIn(BaseModel):
    program_id: str = Field(..., description="Program id of the instruction")
    data: str = Field(default="", description="0x-prefixed hex instruction data")


class InstructionBundleIn(BaseModel):
    instructions: List[InstructionIn] = Field(default_factory=list)
    current_index: Optional[int] = Field(default=None, description="Defaults to the last instruction")

    def to_json(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"instructions": [i.model_dump() for i in self.instructions]}
        if self.current_index is not None:
            out["current_index"] = self.current_index
        return out


class CreateAccountRequest(BaseModel):
    identity_with_permissions: Dict[str, Any]


class AddIdentityRequest(BaseModel):
    identity_with_permissions: Dict[str, Any]


class RemoveIdentityRequest(BaseModel):
    identity: Dict[str, Any]


class ExecuteRequest(BaseModel):
    scheme: str = Field(..., description="wallet | webauthn")
    bundle: InstructionBundleIn
    user_op: Optional[Dict[str, Any]] = None
    authenticator_data: Optional[str] = Field(default=None, description="0x-prefixed hex")
    key_id: Optional[str] = None


class VerifyWalletRequest(BaseModel):
    bundle: InstructionBundleIn
    signed_message: str = Field(..., description="0x-prefixed hex")
    address: str = Field(..., description="0x-prefixed 20-byte address")


class VerifyWebauthnRequest(BaseModel):
    bundle: InstructionBundleIn
    authenticator_data: str = Field(..., description="0x-prefixed hex")
    client_data: str
    compressed_public_key: str = Field(..., description="0x-prefixed 33-byte key")


class VerifyOidcRequest(BaseModel):
    signing_input_hash: str = Field(..., description="0x-prefixed sha256 of header.payload")
    signature: str = Field(..., description="0x-prefixed RSA signature")
    provider: str = "google"
    key_index: int = 0
