from __future__ import annotations

import warnings
from typing import Mapping

from bs4 import (
    BeautifulSoup,
    FeatureNotFound,
    NavigableString,
    Tag,
    XMLParsedAsHTMLWarning,
)  # type: ignore
from bs4.element import PreformattedString, TemplateString  # type: ignore

# Elements whose subtree (text and attributes) is never rewritten.
EXCLUDED_TAGS = frozenset({"SCRIPT", "STYLE", "NOSCRIPT"})
# Attributes rewritten on every other element, in this order.
TEXT_ATTRIBUTES = ("alt", "title", "placeholder")


def substitute_text(text: str, mapping: Mapping[str, str]) -> str:
    """
    Replace every character of ``text`` that is a key of ``mapping``.

    Characters are visited one code point at a time; an entry whose value
    is empty leaves the character as is. Returns ``text`` itself when no
    character matched so callers can skip the write.
    """
    if not text or not mapping:
        return text
    changed = False
    parts: list[str] = []
    for ch in text:
        replacement = mapping.get(ch)
        if replacement:
            parts.append(replacement)
            if replacement != ch:
                changed = True
        else:
            parts.append(ch)
    if not changed:
        return text
    return "".join(parts)


def _is_text_node(node: object) -> bool:
    # Comments, CDATA, doctypes and template contents are markup, not page text.
    return isinstance(node, NavigableString) and not isinstance(
        node, (PreformattedString, TemplateString)
    )


def _is_excluded(tag: Tag) -> bool:
    return (tag.name or "").upper() in EXCLUDED_TAGS


def _substitute_attributes(tag: Tag, mapping: Mapping[str, str]) -> int:
    writes = 0
    for attr in TEXT_ATTRIBUTES:
        value = tag.attrs.get(attr)
        if not isinstance(value, str):
            continue
        new_value = substitute_text(value, mapping)
        if new_value != value:
            tag[attr] = new_value
            writes += 1
    return writes


def substitute_tree(root: Tag | NavigableString, mapping: Mapping[str, str]) -> int:
    """
    Rewrite the visible text below ``root`` in place.

    Depth first: an element's children are handled before its own ``alt``,
    ``title`` and ``placeholder`` attributes. ``script``, ``style`` and
    ``noscript`` subtrees are skipped whole. Returns the number of writes.
    """
    if root is None:
        raise TypeError("substitute_tree() requires a document node, not None")
    writes = 0
    stack: list[tuple[object, bool]] = [(root, False)]
    while stack:
        node, children_done = stack.pop()
        if isinstance(node, Tag):
            if children_done:
                writes += _substitute_attributes(node, mapping)
                continue
            if _is_excluded(node):
                continue
            stack.append((node, True))
            for child in reversed(list(node.children)):
                stack.append((child, False))
        elif _is_text_node(node):
            original = str(node)
            updated = substitute_text(original, mapping)
            if updated != original:
                node.replace_with(NavigableString(updated))
                writes += 1
    return writes


def parse_document(html: str) -> BeautifulSoup:
    for parser in ("lxml", "html.parser"):
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
                return BeautifulSoup(html, parser)
        except FeatureNotFound:
            continue
    # Last resort without suppression; if this raises, propagate upstream.
    return BeautifulSoup(html, "html.parser")


def document_root(soup: BeautifulSoup) -> Tag:
    body = soup.body
    return body if body is not None else soup


def substitute_html(html: str, mapping: Mapping[str, str]) -> str:
    soup = parse_document(html)
    substitute_tree(document_root(soup), mapping)
    return str(soup)


__all__ = [
    "EXCLUDED_TAGS",
    "TEXT_ATTRIBUTES",
    "document_root",
    "parse_document",
    "substitute_html",
    "substitute_text",
    "substitute_tree",
]
