"""Best-effort text normalisation for message bodies.

The signature and quote heuristics reduce noise for search and
categorisation; they are not guaranteed to remove every reply or footer.
"""

from __future__ import annotations

import re

_BLOCK_ELEMENTS = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.I | re.S)
_TAG = re.compile(r"<[^>]*>")
_ENTITIES = {
    "&amp;": "&",
    "&lt;": "<",
    "&gt;": ">",
    "&quot;": '"',
    "&#39;": "'",
    "&nbsp;": " ",
    "&copy;": "©",
    "&reg;": "®",
    "&trade;": "™",
}
_ENTITY = re.compile("|".join(re.escape(entity) for entity in _ENTITIES), re.I)
_WHITESPACE = re.compile(r"\s+")
_INLINE_WHITESPACE = re.compile(r"[^\S\n]+")

_SIGNATURE_DELIMITER = re.compile(r"^--")
_CLIENT_FOOTER = re.compile(
    r"^(Sent from my |Get Outlook for |This email was sent from )", re.I
)
_QUOTE_HEADER = re.compile(r"^(On .* wrote:$|From:|To:|Subject:|Date:)")


def collapse_whitespace(text: str) -> str:
    """Replace whitespace runs with a single space and trim."""
    return _WHITESPACE.sub(" ", text).strip()


def strip_html(html: str) -> str:
    """Remove markup, decode common named entities, and collapse whitespace."""
    if not html:
        return ""
    text = _BLOCK_ELEMENTS.sub("", html)
    text = _TAG.sub("", text)
    text = _ENTITY.sub(lambda match: _ENTITIES[match.group(0).lower()], text)
    return collapse_whitespace(text)


def clean_text(text: str) -> str:
    """Drop signatures, client footers, and quoted reply headers."""
    if not text:
        return ""
    kept: list[str] = []
    for raw_line in text.splitlines():
        line = _INLINE_WHITESPACE.sub(" ", raw_line).strip()
        if not line:
            continue
        if _SIGNATURE_DELIMITER.match(line):
            break
        if _CLIENT_FOOTER.match(line) or _QUOTE_HEADER.match(line):
            continue
        kept.append(line)
    return collapse_whitespace(" ".join(kept))


__all__ = ["clean_text", "collapse_whitespace", "strip_html"]
