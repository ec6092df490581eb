from __future__ import annotations

import re
from collections.abc import Iterable
from typing import TypeAlias
from urllib.parse import urlsplit

UrlPattern: TypeAlias = str | re.Pattern[str]


def matches_any(value: str, patterns: Iterable[UrlPattern]) -> bool:
    """Substring match for strings, `re.search` for compiled patterns."""
    for pattern in patterns:
        if isinstance(pattern, str):
            if pattern in value:
                return True
        elif pattern.search(value):
            return True
    return False


def url_path(url: str) -> str:
    """Path component of `url`; relative URLs are returned without their query."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    return parts.path or url
