"""aauth.auth.oidc_keys

Trusted RSA public keys per OIDC provider, indexed by position.

Keys are PKCS#1 DER (RSAPublicKey). The built-in Google set comes from the
provider's published JWKS; an operator can replace it with a YAML document:

    providers:
      google:
        - "3082010a0282010100..."
        - "3082010a0282010100..."

Fetching or rotating JWKS automatically is not done here.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

from aauth.runtime.errors import MalformedProofError


class OidcProvider(str, Enum):
    GOOGLE = "google"

    @classmethod
    def parse(cls, v: Any) -> "OidcProvider":
        if isinstance(v, OidcProvider):
            return v
        s = str(v or "").strip().lower()
        for p in cls:
            if p.value == s:
                return p
        raise MalformedProofError("unknown_provider", "unsupported OIDC provider", {"provider": v})


ProviderKeys = Dict[OidcProvider, List[bytes]]

# kid=89ce3598c473af1bda4bff95e6c8736450206fba
_GOOGLE_KEY_1 = (
    "3082010a0282010100c2f2d49b2025461264160a24f7bae88ed834c64aac43a08f3e8a915125c32187237d558ccb5678864ffef746"
    "39e78293b800df4ffd05038e8559bfa9af849c9b4d200770a733cc062d989a51e0d43aef38fd98e1f983d502e6ba873e9515aedca4"
    "e50e439642c4290440c8edae67a2db56ba8a3cb92d2d67f5f76252c8ceb985994a82100948f9a30e63d9ab2a6182d17e9d0e7b2998"
    "7fabe7b6d630cf78d2e785deeed6075b6649fc32c28daea6cfef47cc87091f94e6bf9b50461014b376a83caa0243c71e0c731b9435"
    "cd576841a64bfd07a3e4e50564a034f212cee56cf6a0590d6ecfa6dd93133e0e78dc3142769e1f3447f0dc6e1caa90ae1cacdaccd7"
    "0203010001"
)

# kid=dd125d5f462fbc6014aedab81ddf3bcedab70847
_GOOGLE_KEY_2 = (
    "3082010a02820101008f0b2da88e30d9daea6d34d5443ae216a7a9c15548d72d390f94d90a61af80c2b98723ac556d2d051898f499"
    "3d1ca0d1b9edef75788c81aaf0a991033b2380d2ba5687e33be9e6ae161465f654d77798245f4a29c21dbe754d63e94b1d5a631ae4"
    "ea5598fb6a5e5e28ad8af6ff7880c4c3a11d9fefb93783d0a19e0206de69beffe228f22de27e6bc52658f5648259cd6f92661bc4e8"
    "efbb525c670fa41700169748fe37ed096afae5e2f5be60243cd260513808e2c1ae9f36b26dff7c2d2bffc3820405cdfe9d8e467cbf"
    "a68cf46a54244b52d6e11ceff90180e9a868face42ab789f7e2aca1050fe91ac057190db8e1d5f60d46f821e284ab320227f134dd9"
    "0203010001"
)


def default_provider_keys() -> ProviderKeys:
    return {OidcProvider.GOOGLE: [bytes.fromhex(_GOOGLE_KEY_1), bytes.fromhex(_GOOGLE_KEY_2)]}


def _decode_key_list(provider: str, raw: Any) -> List[bytes]:
    if not isinstance(raw, list):
        raise ValueError(f"providers.{provider} must be a list of hex DER keys")
    out: List[bytes] = []
    for i, item in enumerate(raw):
        s = str(item or "").strip()
        if s[:2] in ("0x", "0X"):
            s = s[2:]
        try:
            out.append(bytes.fromhex(s))
        except ValueError as e:
            raise ValueError(f"providers.{provider}[{i}] is not valid hex") from e
    return out


def provider_keys_from_obj(obj: Any) -> ProviderKeys:
    if not isinstance(obj, dict) or not isinstance(obj.get("providers"), dict):
        raise ValueError("oidc key file must be a mapping with a 'providers' mapping")
    keys = default_provider_keys()
    for name, raw in obj["providers"].items():
        provider = OidcProvider.parse(name)
        keys[provider] = _decode_key_list(provider.value, raw)
    return keys


def read_provider_keys_file(path: str) -> ProviderKeys:
    raw = Path(path).read_text(encoding="utf-8")
    return provider_keys_from_obj(yaml.safe_load(raw))


def load_provider_keys(path: Optional[str] = None) -> ProviderKeys:
    if path:
        return read_provider_keys_file(path)
    return default_provider_keys()


def keys_for(keys: Mapping[OidcProvider, Sequence[bytes]], provider: OidcProvider) -> Sequence[bytes]:
    return keys.get(provider) or ()
