"""
Text sanitizer applied to every extracted document and every chunk before it
reaches the database or the embedding provider.

PostgreSQL text columns reject NUL bytes and some JSON encoders choke on lone
surrogates, so those are removed along with control characters. Typographic
punctuation is folded to ASCII so that the same passage always embeds the same
way regardless of the editor it was written in.
"""

import re

_LITERAL_NUL_ESCAPE = "\\u0000"

# ASCII control characters except \t (0x09) and \n (0x0A), plus DEL
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")

# Lone surrogates and Unicode non-characters
_INVALID_CODEPOINTS = re.compile(
    "[\ud800-\udfff\ufdd0-\ufdef\ufffe\uffff"
    "\U0001fffe\U0001ffff\U0002fffe\U0002ffff\U0003fffe\U0003ffff"
    "\U0004fffe\U0004ffff\U0005fffe\U0005ffff\U0006fffe\U0006ffff"
    "\U0007fffe\U0007ffff\U0008fffe\U0008ffff\U0009fffe\U0009ffff"
    "\U000afffe\U000affff\U000bfffe\U000bffff\U000cfffe\U000cffff"
    "\U000dfffe\U000dffff\U000efffe\U000effff\U000ffffe\U000fffff"
    "\U0010fffe\U0010ffff]"
)

_PUNCTUATION = {
    "\u2018": "'",  # left single quote
    "\u2019": "'",
    "\u201a": "'",
    "\u201b": "'",
    "\u201c": '"',  # left double quote
    "\u201d": '"',
    "\u201e": '"',
    "\u201f": '"',
    "\u2013": "-",  # en dash
    "\u2014": "--",  # em dash
    "\u2026": "...",
}
_PUNCTUATION_TABLE = str.maketrans(_PUNCTUATION)


def sanitize(text: str) -> str:
    """Return ``text`` safe for storage and embedding.

    Total (never raises for a ``str``) and idempotent:
    ``sanitize(sanitize(x)) == sanitize(x)``.
    """
    if not text:
        return ""

    cleaned = text.replace("\r\n", "\n")
    cleaned = _CONTROL_CHARS.sub("", cleaned)
    cleaned = _INVALID_CODEPOINTS.sub("", cleaned)

    # Removing one escape can join two halves into a new one
    while _LITERAL_NUL_ESCAPE in cleaned:
        cleaned = cleaned.replace(_LITERAL_NUL_ESCAPE, "")

    cleaned = cleaned.translate(_PUNCTUATION_TABLE)
    return cleaned.strip()
