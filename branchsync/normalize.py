"""Text canonicalization used only on the comparison path.

Two files that differ only by a byte-order mark, line endings, trailing
whitespace or repeated blank lines are reported as "identical after normalization".
Nothing in this module may feed into a content address.
"""

from __future__ import annotations

import re

from branchsync.errors import EncodingError

_BOM = "\ufeff"
_TRAILING_WS_RE = re.compile(r"[ \t]+$")
# Characters that show up when UTF-8 bytes were decoded as a single-byte codepage
_MOJIBAKE_RE = re.compile("[\u00c2-\u00c5][\u0080-\u00bf\u0152-\u2122]")


def decode_text(data: bytes, encoding: str = "utf-8") -> str:
    """Decode *data* strictly, raising EncodingError instead of guessing."""
    try:
        return data.decode(encoding)
    except (UnicodeDecodeError, LookupError) as e:
        raise EncodingError(f"cannot decode content as {encoding}: {e}", operation="decode") from e


def normalize_text(text: str) -> str:
    """Canonicalize *text* so formatting noise does not register as a change.

    Strips leading byte-order marks, converts CRLF/CR to LF, removes trailing
    spaces and tabs on every line, collapses runs of blank lines into one,
    drops leading and trailing blank lines and terminates non-empty output
    with a single newline. ``normalize_text(normalize_text(x)) ==
    normalize_text(x)`` for every input.
    """
    if not text:
        return ""
    text = text.lstrip(_BOM)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [_TRAILING_WS_RE.sub("", line) for line in text.split("\n")]
    kept: list[str] = []
    for line in lines:
        if not line and (not kept or not kept[-1]):
            continue
        kept.append(line)
    while kept and not kept[-1]:
        kept.pop()
    if not kept:
        return ""
    return "\n".join(kept) + "\n"


def repair_mojibake(text: str) -> str:
    """Undo UTF-8-read-as-cp1252 damage (``Ã¡`` -> ``á``) when it round-trips cleanly."""
    if not _MOJIBAKE_RE.search(text):
        return text
    for codec in ("cp1252", "latin-1"):
        try:
            return text.encode(codec).decode("utf-8")
        except (UnicodeEncodeError, UnicodeDecodeError):
            continue
    return text


class TextNormalizer:
    """Decode + normalize pipeline with a pluggable codec."""

    def __init__(self, encoding: str = "utf-8", repair: bool = False) -> None:
        self.encoding = encoding
        self.repair = repair

    def normalize(self, text: str) -> str:
        if self.repair:
            text = repair_mojibake(text)
        return normalize_text(text)

    def normalize_bytes(self, data: bytes) -> str:
        return self.normalize(decode_text(data, self.encoding))

    def equivalent(self, left: bytes, right: bytes) -> bool | None:
        """Compare two byte strings after normalization.

        Returns None when either side cannot be decoded, so the caller can
        fall back to raw byte equality.
        """
        try:
            return self.normalize_bytes(left) == self.normalize_bytes(right)
        except EncodingError:
            return None


def texts_equivalent(left: bytes, right: bytes, encoding: str = "utf-8") -> bool | None:
    """Module-level shortcut for ``TextNormalizer(encoding).equivalent``."""
    return TextNormalizer(encoding).equivalent(left, right)
