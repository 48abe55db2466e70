from __future__ import annotations

import re
from urllib.parse import urlparse


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlparse(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def clean_content(text: str, max_length: int = 8000) -> str:
    """Collapse runs of blank space while keeping paragraph breaks, trim to max length."""
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n\s*\n+", "\n\n", text).strip()
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return text


def dedupe_urls(urls: list[str]) -> list[str]:
    """Drop repeats and surrounding whitespace, keeping first-seen order."""
    seen: set[str] = set()
    unique: list[str] = []
    for url in urls:
        url = url.strip()
        if url and url not in seen:
            seen.add(url)
            unique.append(url)
    return unique
