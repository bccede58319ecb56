"""Value extraction from fetched HTML or JSON documents."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Tuple, Union

from bs4 import BeautifulSoup
from soupsieve import SelectorSyntaxError

from services.errors import ExtractionError

logger = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = 150


@dataclass(frozen=True, slots=True)
class JsonTarget:
    """Dotted key path walked through a parsed JSON document."""

    path: Tuple[str, ...]

    @classmethod
    def from_selector(cls, selector: str) -> "JsonTarget":
        return cls(tuple(part for part in selector.strip().split(".") if part))


@dataclass(frozen=True, slots=True)
class HtmlTarget:
    """CSS selector run against a parsed HTML document."""

    selector: str


Target = Union[JsonTarget, HtmlTarget]


def resolve_target(raw: str, selector: str) -> tuple[Target, Any]:
    """Decide how ``selector`` should be read by sniffing the document.

    Text that starts with ``{`` or ``[`` and parses as JSON yields a JsonTarget
    with the decoded document; anything else falls through to HTML.
    """
    text = raw.strip()
    if text.startswith(("{", "[")):
        try:
            document = json.loads(text)
        except ValueError:
            logger.debug("Content looks like JSON but does not parse, treating as HTML")
        else:
            return JsonTarget.from_selector(selector), document
    return HtmlTarget(selector.strip()), raw


def extract(raw: str, selector: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Extract a single string value from ``raw`` using ``selector``.

    Raises ExtractionError for every failure, including malformed selectors and
    parser exceptions.
    """
    if not selector or not selector.strip():
        raise ExtractionError("empty selector")

    try:
        target, document = resolve_target(raw or "", selector)
        if isinstance(target, JsonTarget):
            return _extract_json(document, target, selector)
        return _extract_html(document, target, max_length)
    except ExtractionError:
        raise
    except Exception as exc:
        raise ExtractionError(f"extraction failed: {exc}", selector) from exc


def _extract_json(document: Any, target: JsonTarget, selector: str) -> str:
    if not target.path:
        raise ExtractionError("key not found", selector)

    current = document
    for key in target.path:
        if isinstance(current, dict):
            if key not in current:
                raise ExtractionError("key not found", selector)
            current = current[key]
        elif isinstance(current, list):
            try:
                current = current[int(key)]
            except (ValueError, IndexError):
                raise ExtractionError("key not found", selector) from None
        else:
            raise ExtractionError("key not found", selector)

    return _render_json_value(current)


def _render_json_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    # numbers, booleans and null keep their JSON literal spelling
    return json.dumps(value)


def _extract_html(raw: str, target: HtmlTarget, max_length: int) -> str:
    soup = BeautifulSoup(raw, "html.parser")
    try:
        element = soup.select_one(target.selector)
    except SelectorSyntaxError as exc:
        raise ExtractionError(f"invalid selector: {exc}", target.selector) from exc

    if element is None:
        raise ExtractionError("element not found", target.selector)

    text = " ".join(element.get_text().split())
    if len(text) > max_length:
        text = text[:max_length].rstrip()
    return text


__all__ = ["DEFAULT_MAX_LENGTH", "HtmlTarget", "JsonTarget", "Target", "extract", "resolve_target"]
