"""Redact sensitive fields before they reach the logs.

Gateway responses and provisioning payloads carry WireGuard keys and bearer
tokens. Anything logged from them goes through :func:`redact_text` or
:func:`redact_payload` first.
"""

from __future__ import annotations

import re
from typing import Any

KEY_REGEX = re.compile(r"(?<![A-Za-z0-9+/=])[A-Za-z0-9+/=]{32,64}(?![A-Za-z0-9+/=])")
TOKEN_REGEX = re.compile(r"(?i)(bearer|token|authorization)\s+([A-Za-z0-9._\-]+)")
JWT_REGEX = re.compile(r"\beyJ[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+")

SENSITIVE_FIELDS = {
    "privatekey",
    "private_key",
    "presharedkey",
    "preshared_key",
    "token",
    "api_key",
    "apikey",
}


def redact_text(text: str) -> str:
    result = JWT_REGEX.sub("***TOKEN***", text)
    result = KEY_REGEX.sub("***KEY_REDACTED***", result)

    def token_replacer(match: re.Match[str]) -> str:
        prefix = match.group(1).upper()
        return f"{prefix} ***TOKEN***"

    return TOKEN_REGEX.sub(token_replacer, result)


def redact_payload(obj: Any) -> Any:
    """Return a copy of ``obj`` with secret-bearing values masked."""

    if isinstance(obj, str):
        return redact_text(obj)
    if isinstance(obj, list):
        return [redact_payload(item) for item in obj]
    if isinstance(obj, dict):
        sanitized = {}
        for key, value in obj.items():
            if isinstance(key, str) and key.lower() in SENSITIVE_FIELDS and value:
                sanitized[key] = "***REDACTED***"
            else:
                sanitized[key] = redact_payload(value)
        return sanitized
    return obj
