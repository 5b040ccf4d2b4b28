"""Page-level metadata: title, author, publication date, site name and language.

Each field is looked up through a chain of conventions (OpenGraph, JSON-LD,
Twitter cards, plain meta tags, semantic markup) and the first non-empty
value wins.
"""
import json
import logging
import re
from typing import Any

from lxml import etree
from lxml.html import HtmlElement

logger = logging.getLogger(__name__)

ARTICLE_TYPES = {"article", "newsarticle", "blogposting", "reportagenewsarticle", "techarticle"}


def clean_text(value: str) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


def node_text(node: Any) -> str:
    """Text of an XPath result: an element, an attribute value or a string."""
    if node is None:
        return ""
    if isinstance(node, str):
        return clean_text(node)
    if isinstance(node, etree._Element):
        if node.tag == "meta":
            return clean_text(node.get("content") or "")
        return clean_text(node.text_content())
    return clean_text(str(node))


def first_xpath_text(root: HtmlElement, xpath: str) -> str:
    """Text of the first non-empty match of ``xpath``; "" on no match."""
    if not xpath:
        return ""
    try:
        found = root.xpath(xpath)
    except etree.XPathError as exc:
        logger.warning("Invalid XPath %r: %s", xpath, exc)
        return ""
    if not isinstance(found, list):
        return node_text(found)
    for node in found:
        text = node_text(node)
        if text:
            return text
    return ""


def iter_article_candidates(payload):
    stack = [payload]
    while stack:
        node = stack.pop()
        if isinstance(node, dict):
            types = node.get("@type")
            if isinstance(types, str):
                type_list = [types]
            elif isinstance(types, list):
                type_list = [str(t) for t in types]
            else:
                type_list = []
            lowered = {t.lower() for t in type_list}
            if ARTICLE_TYPES & lowered:
                yield node
            if "@graph" in node and isinstance(node["@graph"], list):
                stack.extend(reversed(node["@graph"]))
            for v in node.values():
                if isinstance(v, (dict, list)) and v is not node.get("@graph"):
                    stack.append(v)
        elif isinstance(node, list):
            stack.extend(reversed(node))


def _string_value(value: Any) -> str:
    if isinstance(value, str):
        return clean_text(value)
    if isinstance(value, dict):
        name = value.get("name")
        if isinstance(name, str):
            return clean_text(name)
        return ""
    if isinstance(value, list) and value:
        return _string_value(value[0])
    return ""


class MetadataExtractor:
    """Reads metadata conventions from a parsed document."""

    def __init__(self, doc: HtmlElement):
        self.doc = doc
        self._jsonld: list[dict] | None = None

    def meta(self, attr: str, value: str) -> str:
        for node in self.doc.xpath(f"//meta[@{attr}=$value]", value=value):
            content = clean_text(node.get("content") or "")
            if content:
                return content
        return ""

    def _articles(self) -> list[dict]:
        if self._jsonld is None:
            found: list[dict] = []
            for script in self.doc.xpath("//script[@type='application/ld+json']"):
                content = (script.text or "").strip()
                if not content:
                    continue
                try:
                    payload = json.loads(content)
                except json.JSONDecodeError:
                    continue
                found.extend(item for item in iter_article_candidates(payload) if isinstance(item, dict))
            self._jsonld = found
        return self._jsonld

    def schema_field(self, name: str) -> str:
        for item in self._articles():
            if name in item:
                value = _string_value(item[name])
                if value:
                    return value
        return ""

    def title(self) -> str:
        for value in (
            self.meta("property", "og:title"),
            self.schema_field("headline"),
            self.schema_field("name"),
            self.meta("name", "twitter:title"),
            first_xpath_text(self.doc, "//title"),
            first_xpath_text(self.doc, "//h1"),
        ):
            if value:
                return value
        return ""

    def author(self) -> str:
        for value in (
            self.meta("property", "og:author"),
            self.schema_field("author"),
            self.meta("property", "article:author"),
            self.meta("name", "author"),
            self.meta("name", "twitter:creator"),
            first_xpath_text(self.doc, "//a[@rel='author']"),
            first_xpath_text(self.doc, "//*[@itemprop='author']"),
            first_xpath_text(self.doc, "//*[self::span or self::div or self::p]"
                                       "[contains(concat(' ', normalize-space(@class), ' '), ' author ')"
                                       " or contains(concat(' ', normalize-space(@class), ' '), ' byline ')]"),
        ):
            if value and not value.startswith(("http://", "https://")):
                return value
        return ""

    def published_date(self) -> str:
        for value in (
            self.meta("property", "article:published_time"),
            self.meta("property", "og:published_time"),
            self.schema_field("datePublished"),
            self.meta("name", "publication_date"),
            self.meta("name", "date"),
            self.meta("itemprop", "datePublished"),
            first_xpath_text(self.doc, "//time/@datetime"),
        ):
            if value:
                return value
        return ""

    def site_name(self) -> str:
        for value in (
            self.meta("property", "og:site_name"),
            self.schema_field("publisher"),
            self.meta("name", "application-name"),
        ):
            if value:
                return value
        return ""

    def language(self) -> str:
        """Document language: ``<html lang>``, og:locale, then Content-Language."""
        lang = clean_text(self.doc.get("lang") or "")
        if lang:
            return lang
        locale = self.meta("property", "og:locale")
        if locale:
            return locale
        for node in self.doc.xpath("//meta[@http-equiv]"):
            if (node.get("http-equiv") or "").strip().lower() == "content-language":
                content = clean_text(node.get("content") or "")
                if content:
                    return content
        return ""
