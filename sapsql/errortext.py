"""Human-readable error messages from SAP error responses."""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ElementTree
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

from bs4 import BeautifulSoup

LOG = logging.getLogger(__name__)

HTML_ERROR_SELECTORS: tuple[str, ...] = (
    "h1",  # generic NetWeaver errors
    ".errorTextHeader",  # ITSmobile and older services
)


class ContentKind(str, Enum):
    """Shapes of error bodies we know how to read."""

    JSON = "json"
    HTML = "html"
    XML = "xml"
    PLAIN = "plain"


@dataclass(frozen=True, slots=True)
class ErrorText:
    """Extracted message plus whether it is fit to be shown as a title."""

    text: str
    kind: ContentKind
    meaningful_title: bool = False


def classify(body: str, content_type: str | None) -> tuple[ContentKind, ...]:
    """Return the content kinds that apply to a response, in extraction order."""

    declared = (content_type or "").lower()
    head = body.lstrip()[:6].lower()
    kinds: list[ContentKind] = []
    if "json" in declared:
        kinds.append(ContentKind.JSON)
    if "html" in declared or head.startswith("<html>"):
        kinds.append(ContentKind.HTML)
    if "xml" in declared or head.startswith("<?xml"):
        kinds.append(ContentKind.XML)
    return tuple(kinds)


def text_from_json(body: str) -> str | None:
    payload = json.loads(body)
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if not isinstance(error, dict):
        return None
    message = error.get("message")
    if isinstance(message, dict):
        value = message.get("value")
        return value if isinstance(value, str) and value else None
    return None


def text_from_html(body: str, selectors: Sequence[str] = HTML_ERROR_SELECTORS) -> str | None:
    soup = BeautifulSoup(body, "html.parser")
    for selector in selectors:
        node = soup.select_one(selector)
        if node is None:
            continue
        text = node.get_text(strip=True)
        if text:
            return text
    return None


def text_from_xml(body: str) -> str | None:
    root = ElementTree.fromstring(body.strip())
    for element in root.iter():
        if not isinstance(element.tag, str):
            continue
        if element.tag.rsplit("}", 1)[-1] == "message":
            text = "".join(element.itertext()).strip()
            if text:
                return text
    return None


Extractor = Callable[[str], str | None]


class ErrorTextExtractor:
    """Picks the most useful message out of an error response body.

    Extractors run in a fixed order (JSON, HTML, XML) for every content kind
    that applies. The first non-empty result wins; otherwise the trimmed raw
    body is returned. Parsing errors never escape this class.
    """

    def __init__(self, html_selectors: Sequence[str] = HTML_ERROR_SELECTORS) -> None:
        self._extractors: tuple[tuple[ContentKind, Extractor], ...] = (
            (ContentKind.JSON, text_from_json),
            (ContentKind.HTML, lambda body: text_from_html(body, html_selectors)),
            (ContentKind.XML, text_from_xml),
        )

    def extract(self, body: str, content_type: str | None) -> str:
        return self.describe(body, content_type).text

    def describe(self, body: str, content_type: str | None) -> ErrorText:
        text = (body or "").strip()
        kinds = classify(text, content_type)
        for kind, extractor in self._extractors:
            if kind not in kinds:
                continue
            try:
                message = extractor(text)
            except Exception as exc:  # malformed payloads fall back to the raw body
                LOG.debug("Could not read %s error body: %s", kind.value, exc)
                continue
            if message:
                return ErrorText(text=message, kind=kind, meaningful_title=kind is ContentKind.JSON)
        return ErrorText(text=text, kind=ContentKind.PLAIN)


__all__ = [
    "ContentKind",
    "ErrorText",
    "ErrorTextExtractor",
    "HTML_ERROR_SELECTORS",
    "classify",
    "text_from_html",
    "text_from_json",
    "text_from_xml",
]
