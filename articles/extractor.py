import copy
import logging
import re
from typing import Iterator, Optional
from urllib.parse import unquote, urlparse

import lxml.html
from lxml import etree
from lxml.html import HtmlElement

from core import ExtractedContent, ExtractionError

from .heuristics import (
    HEURISTIC_FALLBACK,
    HEURISTIC_PREFERRED,
    MIN_CONTENT_LENGTH,
    Scorer,
    compare_extractions,
    densest_paragraph_block,
    inner_text,
    is_hidden,
)
from .markdown import MarkdownConverter
from .metadata import MetadataExtractor, first_xpath_text
from .rules import ExtractionRule, RuleRegistry, default_registry

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 300
MAX_AUTHOR_LENGTH = 200

NOISE_TAGS = {
    "script", "style", "noscript", "iframe", "embed", "object", "template", "svg",
    "form", "nav", "aside", "footer", "button", "input", "select", "textarea",
}
NOISE_KEYWORDS = {
    "menu",
    "nav",
    "footer",
    "sidebar",
    "comment",
    "comments",
    "related",
    "share",
    "social",
    "cookie",
    "newsletter",
    "promo",
    "advert",
    "ads",
}
KEEP_ATTRIBUTES = {"href", "src", "alt", "title", "datetime", "colspan", "rowspan", "lang"}


def parse_document(raw_html: str) -> HtmlElement:
    # lxml refuses str input that still carries an XML encoding declaration.
    text = re.sub(r"^\s*<\?xml[^>]*\?>", "", raw_html or "")
    if not text.strip():
        raise ExtractionError("empty document")
    try:
        return lxml.html.document_fromstring(text)
    except (etree.ParserError, ValueError) as exc:
        raise ExtractionError("unparseable document", cause=exc) from exc


def title_from_url(url: str) -> str:
    """Placeholder title: the last path segment, else the host."""
    parsed = urlparse(url)
    segments = [s for s in unquote(parsed.path).split("/") if s]
    if segments:
        name = re.sub(r"(?i)\.(html?|php|aspx?)$", "", segments[-1])
        name = " ".join(re.split(r"[-_+.]+", name)).strip()
        if name:
            return name
    return parsed.hostname or "Untitled"


def _truncate(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return value[: limit - 1].rstrip() + "…"


def _is_noise(node: HtmlElement) -> bool:
    if node.tag in NOISE_TAGS:
        return True
    if is_hidden(node):
        return True
    hint = " ".join([node.get("id") or "", node.get("class") or "", node.get("role") or ""]).lower()
    tokens = set(re.findall(r"[a-z0-9]+", hint))
    return bool(tokens & NOISE_KEYWORDS)


def _matches_id_or_class(node: HtmlElement, names: set[str]) -> bool:
    if (node.get("id") or "") in names:
        return True
    return bool(set((node.get("class") or "").split()) & names)


class ContentExtractor:
    """Turns raw HTML into an ExtractedContent record.

    Site rules come first; any field a rule does not yield falls back to page
    metadata, and the body falls back to structural heuristics. A body found
    by a rule is cross-checked against the heuristic pick, and the verdict is
    reported as the extraction method. Extraction only fails when no text can
    be isolated at all.
    """

    def __init__(self, registry: Optional[RuleRegistry] = None):
        self.registry = registry if registry is not None else default_registry()
        self.scorer = Scorer()

    def extract(self, raw_html: str, source_url: str) -> ExtractedContent:
        rule = self.registry.rules_for(source_url)
        doc = parse_document(raw_html)
        meta = MetadataExtractor(doc)

        title = first_xpath_text(doc, rule.title) or meta.title() or title_from_url(source_url)
        author = first_xpath_text(doc, rule.author) or meta.author()
        date = first_xpath_text(doc, rule.date) or meta.published_date()

        for node, method, confidence in self._body_candidates(doc, rule):
            body = self._prepare(node, rule, source_url)
            if method == "rule":
                body, method, confidence = self._cross_check(doc, body, rule, source_url)
            markdown = MarkdownConverter(source_url).convert(body)
            if not markdown:
                logger.debug("%s candidate for %s has no text, trying next", method, source_url)
                continue
            logger.debug("Body for %s located by %s (confidence %.2f)", source_url, method, confidence)
            return ExtractedContent(
                url=source_url,
                title=_truncate(title, MAX_TITLE_LENGTH),
                author=_truncate(author, MAX_AUTHOR_LENGTH),
                date=date,
                site_name=_truncate(meta.site_name(), MAX_AUTHOR_LENGTH),
                language=meta.language(),
                markdown=markdown,
                html=lxml.html.tostring(body, encoding="unicode", method="html", with_tail=False),
                method=method,
                confidence=confidence,
            )
        raise ExtractionError("no readable content", url=source_url)

    def _body_candidates(self, doc: HtmlElement, rule: ExtractionRule) -> Iterator[tuple[HtmlElement, str, float]]:
        if rule.body:
            try:
                found = doc.xpath(rule.body)
            except etree.XPathError as exc:
                logger.warning("Invalid body XPath for %s: %s", rule.domain, exc)
                found = []
            if isinstance(found, list):
                for node in found:
                    if isinstance(node, HtmlElement):
                        yield node, "rule", 1.0
                        break

        for tag, confidence in (("article", 0.9), ("main", 0.88)):
            for node in doc.iter(tag):
                if len(inner_text(node)) > MIN_CONTENT_LENGTH:
                    yield node, "semantic-html", confidence
                    break

        candidate = self.scorer.best_candidate(doc)
        if candidate is not None:
            yield candidate.node, "heuristic", candidate.confidence

        dense = densest_paragraph_block(doc)
        if dense is not None:
            yield dense, "paragraph-density", 0.5

        body = doc.find("body")
        yield (body if body is not None else doc), "document-text", 0.2

    def _cross_check(self, doc: HtmlElement, body: HtmlElement, rule: ExtractionRule,
                     source_url: str) -> tuple[HtmlElement, str, float]:
        """Compare a rule-located body with the heuristic pick for the page.

        The rule body is kept unless the heuristics found clearly more text,
        or text of similar length that disagrees with it.
        """
        candidate = self.scorer.best_candidate(doc)
        heuristic = self._prepare(candidate.node, rule, source_url) if candidate is not None else None
        heuristic_text = inner_text(heuristic) if heuristic is not None else ""
        verdict, confidence = compare_extractions(inner_text(body), heuristic_text)
        logger.debug("Rule body for %s cross-checked: %s", source_url, verdict)
        if verdict in (HEURISTIC_PREFERRED, HEURISTIC_FALLBACK) and heuristic_text:
            return heuristic, verdict, confidence
        return body, verdict, confidence

    def _prepare(self, node: HtmlElement, rule: ExtractionRule, source_url: str) -> HtmlElement:
        """Detached, cleaned copy of a body candidate."""
        body = copy.deepcopy(node)
        body.tail = None
        # On the copy, "//" expressions only see the candidate's own subtree.
        for xpath in rule.strip:
            try:
                matches = body.xpath(xpath)
            except etree.XPathError as exc:
                logger.warning("Invalid strip XPath %r for %s: %s", xpath, rule.domain, exc)
                continue
            if not isinstance(matches, list):
                continue
            for match in matches:
                if isinstance(match, HtmlElement) and match is not body and match.getparent() is not None:
                    match.drop_tree()

        names = set(rule.strip_id_or_class)
        for el in list(body.iterdescendants()):
            if not isinstance(el.tag, str) or el.getparent() is None:
                continue
            if (names and _matches_id_or_class(el, names)) or (rule.prune and _is_noise(el)):
                el.drop_tree()

        if rule.tidy:
            for el in list(body.iter()):
                if not isinstance(el.tag, str):
                    if el.getparent() is not None:
                        # Comments and processing instructions.
                        el.drop_tree()
                    continue
                for attr in list(el.attrib):
                    if attr not in KEEP_ATTRIBUTES:
                        del el.attrib[attr]
        body.make_links_absolute(source_url, resolve_base_href=False, handle_failures="ignore")
        return body
