from __future__ import annotations

import re
from dataclasses import dataclass

from bs4 import BeautifulSoup

DROP_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "aside", "form", "svg")


@dataclass
class ExtractedContent:
    url: str
    title: str
    text: str
    method: str
    raw_length: int


def _normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _extract_title(soup: BeautifulSoup) -> str:
    title = soup.title.string if soup.title and soup.title.string else ""
    return _normalize_text(title)


def _extract_with_trafilatura(raw_html: str, url: str) -> str:
    import trafilatura

    extracted = trafilatura.extract(
        raw_html,
        url=url,
        output_format="markdown",
        include_links=True,
    )
    if not isinstance(extracted, str):
        return ""
    return _normalize_text(extracted)


def _extract_with_soup(soup: BeautifulSoup) -> str:
    for tag in soup(list(DROP_TAGS)):
        tag.decompose()
    root = soup.find("main") or soup.find("article") or soup.body or soup
    return _normalize_text(root.get_text("\n"))


def extract_main_content(url: str, raw_content: str) -> ExtractedContent:
    """Reduce a fetched page to readable text, preferring trafilatura's markdown."""
    seems_html = "<html" in raw_content.lower() or "<body" in raw_content.lower()
    if not seems_html:
        return ExtractedContent(
            url=url,
            title="",
            text=_normalize_text(raw_content),
            method="raw",
            raw_length=len(raw_content),
        )

    soup = BeautifulSoup(raw_content, "html.parser")
    title = _extract_title(soup)

    primary_text = _extract_with_trafilatura(raw_content, url)
    if primary_text:
        return ExtractedContent(
            url=url,
            title=title,
            text=primary_text,
            method="trafilatura",
            raw_length=len(raw_content),
        )

    return ExtractedContent(
        url=url,
        title=title,
        text=_extract_with_soup(soup),
        method="soup",
        raw_length=len(raw_content),
    )
