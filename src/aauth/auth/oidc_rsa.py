"""aauth.auth.oidc_rsa

RSA PKCS#1 v1.5 / SHA-256 verification of OIDC ID token signatures.

The caller hashes the JWT signing input (`header.payload`) and passes the
32-byte digest with the raw signature. We decode the provider key, compute
sig^e mod n, and check the padded block ourselves:

    00 01 FF..FF 00 | DigestInfo(sha256, 19 bytes) | hash(32 bytes)

All structural validation (signature presence, length, key index) happens
before any big-number work.
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey
from cryptography.hazmat.primitives.serialization import load_der_public_key

from aauth.auth.oidc_keys import OidcProvider, ProviderKeys, default_provider_keys, keys_for
from aauth.runtime.errors import AuthorizationError, MalformedProofError

Json = Dict[str, Any]

RSA_2048_SIGNATURE_LENGTH = 256
SHA256_DIGEST_INFO = bytes.fromhex("3031300d060960864801650304020105000420")
SHA256_DIGEST_INFO_LENGTH = 19
FULL_DIGEST_INFO_LENGTH = 51


@dataclass(frozen=True)
class OidcVerificationData:
    signing_input_hash: bytes
    signature: bytes
    provider: OidcProvider = OidcProvider.GOOGLE
    key_index: int = 0

    def validate(self, keys: Optional[Mapping[OidcProvider, Sequence[bytes]]] = None) -> None:
        if not self.signature:
            raise MalformedProofError("invalid_signature_format", "signature is empty")
        if len(self.signature) != RSA_2048_SIGNATURE_LENGTH:
            raise MalformedProofError(
                "invalid_signature_length",
                "signature must be 256 bytes",
                {"len": len(self.signature)},
            )
        available = keys_for(keys if keys is not None else default_provider_keys(), self.provider)
        if self.key_index < 0 or self.key_index >= len(available):
            raise MalformedProofError(
                "invalid_key_index",
                "no key at index for provider",
                {"provider": self.provider.value, "key_index": self.key_index, "keys": len(available)},
            )
        if len(self.signing_input_hash) != 32:
            raise MalformedProofError("invalid_hash_length", "signing_input_hash must be 32 bytes")

    def to_json(self) -> Json:
        return {
            "signing_input_hash": "0x" + self.signing_input_hash.hex(),
            "signature": "0x" + self.signature.hex(),
            "provider": self.provider.value,
            "key_index": self.key_index,
        }

    @staticmethod
    def from_json(j: Any) -> "OidcVerificationData":
        if not isinstance(j, dict):
            raise MalformedProofError("invalid_verification_data", "verification data must be an object")

        def _hex(name: str) -> bytes:
            s = str(j.get(name) or "")
            if s[:2] in ("0x", "0X"):
                s = s[2:]
            try:
                return bytes.fromhex(s)
            except ValueError as e:
                raise MalformedProofError("invalid_hex_encoding", f"{name} is not valid hex") from e

        try:
            key_index = int(j.get("key_index", 0))
        except (TypeError, ValueError) as e:
            raise MalformedProofError("invalid_key_index", "key_index must be an integer") from e

        return OidcVerificationData(
            signing_input_hash=_hex("signing_input_hash"),
            signature=_hex("signature"),
            provider=OidcProvider.parse(j.get("provider", "google")),
            key_index=key_index,
        )


def integrity_hash_input(data: OidcVerificationData) -> bytes:
    return bytes(data.signing_input_hash) + bytes(data.signature) + bytes([data.key_index & 0xFF])


def load_rsa_public_numbers(der: bytes) -> Tuple[int, int]:
    """Return (n, e) for a PKCS#1 or SubjectPublicKeyInfo DER key."""
    try:
        key = load_der_public_key(bytes(der))
    except (ValueError, TypeError) as e:
        raise MalformedProofError("invalid_der_encoding", "provider key is not valid DER") from e
    if not isinstance(key, RSAPublicKey):
        raise MalformedProofError("invalid_der_encoding", "provider key is not an RSA key")
    nums = key.public_numbers()
    if nums.n.bit_length() > RSA_2048_SIGNATURE_LENGTH * 8:
        raise MalformedProofError("invalid_modulus", "only 2048-bit provider keys are supported")
    return nums.n, nums.e


def resolve_key(data: OidcVerificationData, keys: Optional[ProviderKeys] = None) -> Tuple[int, int]:
    keys = keys if keys is not None else default_provider_keys()
    data.validate(keys)
    return load_rsa_public_numbers(keys_for(keys, data.provider)[data.key_index])


def validate_pkcs1_padding(block: bytes) -> bytes:
    """Check the EMSA-PKCS1-v1_5 structure and return the embedded SHA-256 hash."""
    if len(block) != RSA_2048_SIGNATURE_LENGTH:
        raise AuthorizationError("invalid_signature_length", "decrypted block must be 256 bytes")
    if block[0] != 0x00 or block[1] != 0x01:
        raise AuthorizationError("invalid_signature_format", "bad PKCS#1 block type")

    sep = block.find(b"\x00", 2)
    if sep < 0:
        raise AuthorizationError("invalid_signature_format", "missing padding separator")

    padding = block[2:sep]
    if not padding or padding.strip(b"\xff"):
        raise AuthorizationError("invalid_signature_format", "padding must be non-empty 0xFF bytes")

    digest_info = block[sep + 1 :]
    if len(digest_info) != FULL_DIGEST_INFO_LENGTH:
        raise AuthorizationError("invalid_signature_format", "unexpected DigestInfo length")
    if digest_info[:SHA256_DIGEST_INFO_LENGTH] != SHA256_DIGEST_INFO:
        raise AuthorizationError("invalid_signature_format", "DigestInfo is not SHA-256")

    return digest_info[SHA256_DIGEST_INFO_LENGTH:]


def decrypted_block_matches(block: bytes, signing_input_hash: bytes) -> bool:
    return hmac.compare_digest(validate_pkcs1_padding(block), bytes(signing_input_hash))


def verify_oidc_signature(data: OidcVerificationData, *, keys: Optional[ProviderKeys] = None) -> bool:
    n, e = resolve_key(data, keys)
    m = pow(int.from_bytes(data.signature, "big"), e, n)
    block = m.to_bytes(RSA_2048_SIGNATURE_LENGTH, "big")
    return decrypted_block_matches(block, data.signing_input_hash)
