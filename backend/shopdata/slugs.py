from __future__ import annotations

import re
import unicodedata


_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def slugify(value: str | None) -> str:
    """
    URL-safe slug: accents folded, lower-cased, runs of anything else
    collapsed to a single hyphen.

    'Tài khoản Gaming' -> 'tai-khoan-gaming'
    """
    if not value:
        return ""
    # đ/Đ has no combining-mark decomposition
    text = value.replace("đ", "d").replace("Đ", "D")
    text = unicodedata.normalize("NFD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return _NON_ALNUM_RE.sub("-", text.lower()).strip("-")
