"""Convert a cleaned article element into Markdown.

The element tree is first flattened into ``(tag, text)`` blocks with inline
formatting already applied, then the blocks are rendered one after another.
"""
import re
from typing import Optional
from urllib.parse import urljoin

from lxml.html import HtmlElement

HEADINGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
SKIP_TAGS = {
    "script", "style", "noscript", "iframe", "embed", "object", "template", "svg",
    "button", "input", "select", "textarea", "form", "head", "title", "meta", "link",
}
BLOCK_TAGS = HEADINGS | {
    "p", "div", "section", "article", "main", "header", "footer", "aside", "nav",
    "ul", "ol", "li", "dl", "dt", "dd", "pre", "blockquote", "table", "hr",
    "figure", "figcaption", "address", "details", "summary",
}
LIST_ITEM_TAGS = ("li", "ol:")


def detect_code_lang(node: HtmlElement) -> str:
    """Best-effort language of a ``<pre>`` block from its (or its code child's) attributes."""
    nodes = [node]
    code = node.find("code")
    if code is not None:
        nodes.append(code)
    hint = " ".join(
        " ".join([p.get("class") or "", p.get("data-lang") or "", p.get("lang") or ""]) for p in nodes
    ).lower().strip()
    if not hint:
        return ""
    m = re.search(r"(?:language|lang|brush)[:\s-]+([a-z0-9+#]+)", hint)
    if m:
        lang = m.group(1)
        return {"js": "javascript", "ts": "typescript", "shell": "bash", "sh": "bash",
                "c#": "csharp", "cs": "csharp", "c++": "cpp"}.get(lang, lang)
    tokens = set(re.findall(r"[a-z0-9+#]+", hint))
    aliases = {
        "python": {"python", "py"},
        "javascript": {"javascript", "js"},
        "typescript": {"typescript", "ts"},
        "bash": {"bash", "shell", "sh"},
        "json": {"json"},
        "go": {"go", "golang"},
        "rust": {"rust"},
        "java": {"java"},
        "sql": {"sql"},
        "xml": {"xml", "html"},
    }
    for lang, keys in aliases.items():
        if tokens & keys:
            return lang
    return ""


def _absolute(base_url: str, ref: str) -> str:
    ref = (ref or "").strip()
    if not ref:
        return ""
    return urljoin(base_url, ref) if base_url else ref


def _wrap(marker: str, inner: str) -> str:
    # Markers hug the text; surrounding whitespace stays outside them.
    m = re.match(r"^(\s*)(.*?)(\s*)$", inner, re.S)
    lead, core, trail = m.group(1), m.group(2), m.group(3)
    if not core:
        return inner
    return f"{lead}{marker}{core}{marker}{trail}"


def _normalize_inline(text: str) -> str:
    lines = [" ".join(line.split()) for line in text.split("\n")]
    return "\n".join(line for line in lines if line)


class MarkdownConverter:
    def __init__(self, base_url: str = ""):
        self.base_url = base_url

    def convert(self, root: HtmlElement) -> str:
        return render_blocks(self.blocks(root))

    def blocks(self, root: HtmlElement) -> list[tuple[str, str]]:
        out: list[tuple[str, str]] = []
        self._walk(root, out)
        return out

    # Inline content

    def inline(self, node: HtmlElement, skip: Optional[set[str]] = None) -> str:
        parts = [node.text or ""]
        for child in node:
            if isinstance(child.tag, str) and not (skip and child.tag in skip):
                parts.append(self._inline_element(child, skip))
            parts.append(child.tail or "")
        return "".join(parts)

    def _inline_element(self, node: HtmlElement, skip: Optional[set[str]] = None) -> str:
        tag = node.tag
        if tag in SKIP_TAGS:
            return ""
        if tag == "br":
            return "\n"
        if tag == "img":
            src = _absolute(self.base_url, node.get("src") or "")
            if not src:
                return ""
            alt = " ".join((node.get("alt") or "").split())
            return f"![{alt}]({src})"
        if tag == "code":
            code = node.text_content()
            return f"`{code.strip()}`" if code.strip() else code
        inner = self.inline(node, skip)
        if tag in {"strong", "b"}:
            return _wrap("**", inner)
        if tag in {"em", "i"}:
            return _wrap("*", inner)
        if tag == "a":
            href = (node.get("href") or "").strip()
            if not href or href.startswith(("#", "javascript:")):
                return inner
            label = " ".join(inner.split())
            if not label:
                return ""
            return f"[{label}]({_absolute(self.base_url, href)})"
        if tag in BLOCK_TAGS:
            return f" {inner} "
        return inner

    # Block content

    def _walk(self, node: HtmlElement, out: list[tuple[str, str]]) -> None:
        tag = node.tag
        if not isinstance(tag, str) or tag in SKIP_TAGS:
            return
        if tag in HEADINGS or tag in {"p", "dt", "dd", "figcaption", "summary"}:
            if self._has_block_child(node):
                self._walk_mixed(node, out)
                return
            kind = tag if tag in HEADINGS else "p"
            _emit(out, kind, _normalize_inline(self.inline(node)))
        elif tag == "pre":
            code = node.text_content().replace("\r\n", "\n").replace("\r", "\n").strip("\n")
            if code.strip():
                lang = detect_code_lang(node)
                out.append((f"pre:{lang}" if lang else "pre", code))
        elif tag in {"ul", "ol"}:
            self._walk_list(node, out)
        elif tag == "blockquote":
            inner: list[tuple[str, str]] = []
            self._walk_mixed(node, inner)
            text = render_blocks(inner)
            if text:
                out.append(("blockquote", text))
        elif tag == "hr":
            out.append(("hr", "---"))
        elif tag == "table":
            table = self._table(node)
            if table:
                out.append(("table", table))
        elif tag == "img":
            _emit(out, "p", self._inline_element(node))
        else:
            self._walk_mixed(node, out)

    def _walk_mixed(self, node: HtmlElement, out: list[tuple[str, str]]) -> None:
        """Emit block children in order, gathering loose inline runs into paragraphs."""
        run = [node.text or ""]
        for child in node:
            if isinstance(child.tag, str) and (child.tag in BLOCK_TAGS or self._has_block_child(child)):
                _emit(out, "p", _normalize_inline("".join(run)))
                self._walk(child, out)
                run = [child.tail or ""]
                continue
            if isinstance(child.tag, str):
                run.append(self._inline_element(child))
            run.append(child.tail or "")
        _emit(out, "p", _normalize_inline("".join(run)))

    def _walk_list(self, node: HtmlElement, out: list[tuple[str, str]]) -> None:
        ordered = node.tag == "ol"
        index = 0
        for item in node:
            if not isinstance(item.tag, str):
                continue
            if item.tag != "li":
                self._walk(item, out)
                continue
            index += 1
            text = _normalize_inline(self.inline(item, skip={"ul", "ol"})).replace("\n", " ")
            if text:
                out.append((f"ol:{index}" if ordered else "li", text))
            for nested in item:
                if isinstance(nested.tag, str) and nested.tag in {"ul", "ol"}:
                    self._walk_list(nested, out)

    def _table(self, node: HtmlElement) -> str:
        rows: list[list[str]] = []
        for tr in node.iter("tr"):
            cells = [
                _normalize_inline(self.inline(cell)).replace("\n", " ").replace("|", "\\|")
                for cell in tr
                if isinstance(cell.tag, str) and cell.tag in {"td", "th"}
            ]
            if any(cells):
                rows.append(cells)
        if not rows:
            return ""
        width = max(len(r) for r in rows)
        lines = []
        for i, row in enumerate(rows):
            row = row + [""] * (width - len(row))
            lines.append("| " + " | ".join(row) + " |")
            if i == 0:
                lines.append("|" + "|".join(["---"] * width) + "|")
        return "\n".join(lines)

    @staticmethod
    def _has_block_child(node: HtmlElement) -> bool:
        return any(isinstance(d.tag, str) and d.tag in BLOCK_TAGS for d in node.iterdescendants())


def _emit(out: list[tuple[str, str]], tag: str, text: str) -> None:
    if text.strip():
        out.append((tag, text))


def render_blocks(blocks: list[tuple[str, str]]) -> str:
    chunks: list[str] = []
    prev_tag = ""
    for tag, block in blocks:
        if not block:
            continue
        if tag in HEADINGS:
            # The document title is the only level-one heading.
            level = min(int(tag[1]) + 1, 6)
            text = f"{'#' * level} {block.replace(chr(10), ' ')}"
        elif tag == "pre" or tag.startswith("pre:"):
            lang = tag.split(":", 1)[1] if ":" in tag else ""
            fence = "````" if "```" in block else "```"
            text = f"{fence}{lang}\n{block}\n{fence}"
        elif tag == "li":
            text = f"- {block}"
        elif tag.startswith("ol:"):
            text = f"{tag.split(':', 1)[1]}. {block}"
        elif tag == "blockquote":
            text = "\n".join(f"> {line}" if line else ">" for line in block.splitlines())
        else:
            text = block
        if chunks:
            tight = tag.startswith(LIST_ITEM_TAGS) and prev_tag.startswith(LIST_ITEM_TAGS)
            chunks.append("\n" if tight else "\n\n")
        chunks.append(text)
        prev_tag = tag
    return "".join(chunks).strip()
