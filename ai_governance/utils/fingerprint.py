"""Request fingerprints used as response cache keys.

Two requests that normalize identically hash to the same key. The hash is a
short, non-cryptographic rolling hash; it only has to be stable and cheap.
"""

from __future__ import annotations

import json
import struct
from dataclasses import dataclass
from typing import Any

from ai_governance.schemas.generation import GenerationRequest

DEFAULT_MODEL = "mistral-small"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000
DEFAULT_KEY_PREFIX = "ai_cache_"

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"

# Serialization order is part of the key identity; never reorder.
_FIELD_ORDER = ("prompt", "model", "systemPrompt", "temperature", "maxTokens")


@dataclass(frozen=True)
class RequestFingerprint:
    """The subset of request parameters that identifies a memoizable response."""

    prompt: str
    model: str | None = None
    system_prompt: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None

    @classmethod
    def from_request(cls, request: GenerationRequest) -> RequestFingerprint:
        return cls(
            prompt=request.prompt,
            model=request.model,
            system_prompt=request.system_prompt,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
        )


def normalize_fingerprint(fingerprint: RequestFingerprint) -> dict[str, Any]:
    """Normalize a fingerprint into its canonical mapping.

    Prompts are trimmed and case-folded, temperature is rounded to two
    decimals, and missing values take their defaults. An explicit
    temperature of 0 is kept as 0.
    """

    temperature = DEFAULT_TEMPERATURE if fingerprint.temperature is None else fingerprint.temperature
    values = {
        "prompt": fingerprint.prompt.strip().casefold(),
        "model": fingerprint.model or DEFAULT_MODEL,
        "systemPrompt": (fingerprint.system_prompt or "").strip().casefold(),
        "temperature": round(float(temperature), 2),
        "maxTokens": int(fingerprint.max_tokens or DEFAULT_MAX_TOKENS),
    }
    return {name: values[name] for name in _FIELD_ORDER}


def _utf16_code_units(text: str) -> tuple[int, ...]:
    data = text.encode("utf-16-le", errors="surrogatepass")
    return struct.unpack(f"<{len(data) // 2}H", data)


def rolling_hash(text: str) -> int:
    """32-bit signed ``h * 31 + c`` rolling hash over UTF-16 code units."""

    value = 0
    for unit in _utf16_code_units(text):
        value = ((value << 5) - value + unit) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def build_cache_key(fingerprint: RequestFingerprint, *, prefix: str = DEFAULT_KEY_PREFIX) -> str:
    """Build a stable cache key from a request fingerprint.

    Args:
        fingerprint: Request parameters identifying the response.
        prefix: Namespace prefix, also used to list keys in the durable tier.

    Returns:
        ``prefix`` followed by the base-36 absolute value of the rolling hash.
    """

    serialized = json.dumps(normalize_fingerprint(fingerprint), separators=(",", ":"), ensure_ascii=False)
    return f"{prefix}{_to_base36(abs(rolling_hash(serialized)))}"
