"""Readability-style scoring for pages where no site rule locates the body,
and for cross-checking the bodies rules do locate.

Elements are scored by tag, class/id hints, paragraph count, text length
and link density; scores propagate to ancestors with decay and the best
candidate is taken as the article container.
"""
import copy
import math
import re
from dataclasses import dataclass
from typing import Optional

from lxml.html import HtmlElement

MIN_CONTENT_LENGTH = 140
MIN_SCORE = 20.0
LINK_DENSITY_THRESHOLD = 0.75
ANCESTOR_DECAY = 0.5
MAX_ANCESTOR_LEVELS = 5
SIMILARITY_THRESHOLD = 0.8
LENGTH_RATIO = 1.5

DUAL_VALIDATED = "dual-validated"
XPATH_PREFERRED = "xpath-preferred"
HEURISTIC_PREFERRED = "heuristic-preferred"
HEURISTIC_FALLBACK = "heuristic-fallback"

POSITIVE_PATTERN = re.compile(
    r"(?i)(article|body|content|entry|hentry|h-entry|main|page|pagination|post|text|blog|story)"
)
NEGATIVE_PATTERN = re.compile(
    r"(?i)(combx|comment|com-|contact|foot|footer|footnote|masthead|media|meta|outbrain|promo|related|"
    r"scroll|share|shoutbox|sidebar|skyscraper|sponsor|shopping|tags|tool|widget|ad-|advertisement|"
    r"breadcrumb|hidden|nav|menu|header)"
)
UNLIKELY_PATTERN = re.compile(r"(?i)(banner|cookie|popup|modal)")

SKIP_TAGS = {"script", "style", "noscript", "iframe", "embed", "object", "template", "svg"}

TAG_SCORES = {
    "main": 40.0,
    "article": 30.0,
    "section": 15.0,
    "div": 5.0,
    "p": 3.0,
    "pre": 3.0,
    "td": 3.0,
    "blockquote": 3.0,
    "address": -3.0,
    "ol": -3.0,
    "ul": -3.0,
    "dl": -3.0,
    "dd": -3.0,
    "dt": -3.0,
    "li": -3.0,
    "form": -3.0,
    "h1": -5.0,
    "h2": -5.0,
    "h3": -5.0,
    "h4": -5.0,
    "h5": -5.0,
    "h6": -5.0,
    "th": -5.0,
}


@dataclass
class ContentScore:
    node: HtmlElement
    score: float
    text_length: int
    link_density: float
    paragraph_count: int
    confidence: float = 0.0


def is_element(node) -> bool:
    return isinstance(node.tag, str)


def inner_text(node: HtmlElement) -> str:
    return " ".join("".join(node.itertext()).split())


def class_and_id(node: HtmlElement) -> str:
    return " ".join(v for v in (node.get("class"), node.get("id")) if v)


def class_id_score(node: HtmlElement) -> float:
    hint = class_and_id(node)
    if not hint:
        return 0.0
    if UNLIKELY_PATTERN.search(hint):
        return -50.0
    score = 0.0
    if NEGATIVE_PATTERN.search(hint):
        score -= 25.0
    if POSITIVE_PATTERN.search(hint):
        score += 25.0
    return score


def link_density(node: HtmlElement) -> float:
    total = len(inner_text(node))
    if total == 0:
        return 0.0
    link_len = sum(len(inner_text(a)) for a in node.iter("a"))
    return min(1.0, link_len / total)


def paragraph_count(node: HtmlElement) -> int:
    return sum(1 for _ in node.iter("p"))


def is_hidden(node: HtmlElement) -> bool:
    if node.get("hidden") is not None or node.get("aria-hidden") == "true":
        return True
    style = (node.get("style") or "").lower().replace(" ", "")
    return "display:none" in style or "visibility:hidden" in style


def drop(node: HtmlElement) -> None:
    """Remove ``node`` and its subtree, keeping the text that follows it."""
    if node.getparent() is not None:
        node.drop_tree()


class Scorer:
    def score_node(self, node: HtmlElement) -> ContentScore:
        text_len = len(inner_text(node))
        density = link_density(node)
        paragraphs = paragraph_count(node)
        score = TAG_SCORES.get(node.tag, 0.0) + class_id_score(node)
        score -= density
        score += paragraphs
        if text_len >= 25:
            score += math.log10(text_len) * 2.0
        result = ContentScore(node, score, text_len, density, paragraphs)
        result.confidence = self.confidence(result)
        return result

    def confidence(self, s: ContentScore) -> float:
        confidence = 0.0
        if s.score > MIN_SCORE * 2:
            confidence += 0.3
        elif s.score > MIN_SCORE:
            confidence += 0.15
        if s.text_length > MIN_CONTENT_LENGTH * 3:
            confidence += 0.3
        elif s.text_length > MIN_CONTENT_LENGTH:
            confidence += 0.15
        if s.link_density < 0.2:
            confidence += 0.2
        elif s.link_density < 0.4:
            confidence += 0.1
        if s.paragraph_count >= 3:
            confidence += 0.2
        elif s.paragraph_count >= 1:
            confidence += 0.1
        return min(confidence, 1.0)

    def is_probably_readable(self, doc: HtmlElement) -> bool:
        return paragraph_count(doc) >= 3 and len(inner_text(doc)) >= MIN_CONTENT_LENGTH

    def best_candidate(self, doc: HtmlElement) -> Optional[ContentScore]:
        """The top-scoring container of ``doc``, or None when the page does
        not look like an article at all."""
        cleaned = cleaned_copy(doc)
        if not self.is_probably_readable(cleaned):
            return None
        candidates = self.top_candidates(cleaned, n=1)
        return candidates[0] if candidates else None

    def top_candidates(self, root: HtmlElement, n: int = 5) -> list[ContentScore]:
        scores: dict[HtmlElement, ContentScore] = {}
        order: list[HtmlElement] = []

        def scored(node: HtmlElement) -> ContentScore:
            if node not in scores:
                scores[node] = self.score_node(node)
                order.append(node)
            return scores[node]

        for node in root.iter():
            if not is_element(node) or node.tag in SKIP_TAGS:
                continue
            base = scored(node)
            if base.score <= 0:
                continue
            level = 0
            for parent in node.iterancestors():
                if level >= MAX_ANCESTOR_LEVELS:
                    break
                scored(parent).score += base.score * ANCESTOR_DECAY ** (level + 1)
                level += 1

        candidates = [
            scores[node] for node in order
            if scores[node].score >= MIN_SCORE and scores[node].text_length >= MIN_CONTENT_LENGTH
        ]
        # Stable sort keeps document order among equal scores.
        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates[:n]


def cleaned_copy(doc: HtmlElement) -> HtmlElement:
    """A clone of ``doc`` without scripts, hidden nodes, unlikely candidates
    and link farms."""
    clone = copy.deepcopy(doc)
    for node in list(clone.iter()):
        if not is_element(node):
            continue
        if node.tag in SKIP_TAGS:
            drop(node)
    for node in list(clone.iter()):
        if not is_element(node) or node.getparent() is None:
            continue
        if node.tag in {"html", "body"}:
            continue
        if is_hidden(node) or class_id_score(node) < -40:
            drop(node)
    for node in list(clone.iter()):
        if not is_element(node) or node.getparent() is None or node.tag in {"a", "html", "body"}:
            continue
        if link_density(node) > LINK_DENSITY_THRESHOLD and len(inner_text(node)) < 500:
            drop(node)
    return clone


def word_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the lowercase word sets of two texts."""
    if not a or not b:
        return 1.0 if not a and not b else 0.0
    words_a = set(a.lower().split())
    words_b = set(b.lower().split())
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


def compare_extractions(rule_text: str, heuristic_text: str) -> tuple[str, float]:
    """Verdict and confidence for a rule-located body checked against the
    heuristic pick for the same page.

    Returns one of ``dual-validated``, ``xpath-preferred``,
    ``heuristic-preferred`` or ``heuristic-fallback``.
    """
    if word_similarity(rule_text, heuristic_text) > SIMILARITY_THRESHOLD:
        return DUAL_VALIDATED, 0.95
    if len(rule_text) > len(heuristic_text) * LENGTH_RATIO:
        return XPATH_PREFERRED, 0.85
    if len(heuristic_text) > len(rule_text) * LENGTH_RATIO:
        return HEURISTIC_PREFERRED, 0.80
    return HEURISTIC_FALLBACK, 0.70


def densest_paragraph_block(doc: HtmlElement) -> Optional[HtmlElement]:
    """The element whose direct paragraphs hold the most text."""
    totals: dict[HtmlElement, int] = {}
    order: list[HtmlElement] = []
    for p in doc.iter("p"):
        parent = p.getparent()
        if parent is None:
            continue
        length = len(inner_text(p))
        if not length:
            continue
        if parent not in totals:
            totals[parent] = 0
            order.append(parent)
        totals[parent] += length
    if not order:
        return None
    return max(order, key=lambda node: totals[node])
