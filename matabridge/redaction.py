from __future__ import annotations

import re
from typing import Any

REDACTION_PATTERNS = [
    re.compile(r"(private[_-]?key|secret|password)\s*[:=]\s*['\"]?[^'\",\s}]{8,}", re.IGNORECASE),
    re.compile(r"-----BEGIN [A-Z ]*PRIVATE KEY-----[\s\S]*?-----END [A-Z ]*PRIVATE KEY-----"),
]

_SECRET_FIELD_MARKERS = ("private", "secret", "password", "token", "mnemonic")


def redact(text: str) -> str:
    redacted = text
    for pattern in REDACTION_PATTERNS:
        redacted = pattern.sub("[REDACTED]", redacted)
    return redacted


def describe_bundle(bundle: Any) -> dict[str, Any]:
    """Existence flags for a key bundle, safe to log."""
    if isinstance(bundle, dict):
        fields = sorted(str(name) for name in bundle)
        return {
            "type": "object",
            "hasPublicKey": bool(bundle.get("publicKey")),
            "hasPrivateKey": any(
                bundle.get(name)
                for name in bundle
                if any(marker in str(name).lower() for marker in _SECRET_FIELD_MARKERS)
            ),
            "hasSalt": bool(bundle.get("salt")),
            "fields": fields,
        }
    if isinstance(bundle, str):
        return {"type": "string", "length": len(bundle)}
    if bundle is None:
        return {"type": "missing"}
    return {"type": type(bundle).__name__}
