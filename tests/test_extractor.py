import json
import unittest

import lxml.html

from articles.extractor import ContentExtractor, parse_document, title_from_url
from articles.heuristics import Scorer, compare_extractions, word_similarity
from articles.markdown import MarkdownConverter
from articles.metadata import MetadataExtractor
from articles.rules import RuleRegistry
from core import ExtractionError

LOREM = (
    "Static pages still carry most of the writing on the web, and a reader that keeps a local "
    "copy of each article never loses it to link rot or redesigns."
)

RULE_PAGE = """
<html><head><title>Example Post | Blog</title></head>
<body>
  <nav><a href="/">Home</a></nav>
  <h1 class="post-title">Example Post</h1>
  <span class="byline">J. Doe</span>
  <time datetime="2024-01-01">Jan 1</time>
  <div class="post-body">
    <p>First paragraph with <strong>bold</strong> and a <a href="/other">link</a>.</p>
    <div class="ad">Buy now</div>
    <div class="callout">Callout text</div>
    <h2>Section</h2>
    <ul><li>one</li><li>two</li></ul>
    <script>var x = 1;</script>
  </div>
</body></html>
"""


def rule_registry() -> RuleRegistry:
    return RuleRegistry.from_mapping({
        "blog.example.com": {
            "title": "//h1[@class='post-title']",
            "author": "//span[@class='byline']",
            "date": "//time/@datetime",
            "body": "//div[@class='post-body']",
            "strip": ["//div[@class='ad']"],
            "strip_id_or_class": ["callout"],
        },
    })


class TestRuleExtraction(unittest.TestCase):
    def setUp(self):
        self.extractor = ContentExtractor(rule_registry())

    def test_fields_from_rule(self):
        content = self.extractor.extract(RULE_PAGE, "https://blog.example.com/posts/example")

        self.assertEqual(content.title, "Example Post")
        self.assertEqual(content.author, "J. Doe")
        self.assertEqual(content.date, "2024-01-01")
        # One short paragraph is not enough for the heuristics to weigh in.
        self.assertEqual(content.method, "xpath-preferred")
        self.assertEqual(content.confidence, 0.85)

    def test_body_markdown(self):
        content = self.extractor.extract(RULE_PAGE, "https://blog.example.com/posts/example")

        self.assertEqual(
            content.markdown,
            "First paragraph with **bold** and a [link](https://blog.example.com/other).\n\n"
            "### Section\n\n"
            "- one\n- two",
        )

    def test_strip_and_noise_removed_from_html(self):
        content = self.extractor.extract(RULE_PAGE, "https://blog.example.com/posts/example")

        for gone in ("Buy now", "Callout text", "var x", "Home"):
            self.assertNotIn(gone, content.html)
        self.assertIn('href="https://blog.example.com/other"', content.html)
        self.assertNotIn("class=", content.html)

    def test_unmatched_rule_body_falls_back(self):
        page = RULE_PAGE.replace('class="post-body"', 'class="entry"')

        content = self.extractor.extract(page, "https://blog.example.com/posts/example")

        self.assertNotIn(content.method, {"dual-validated", "xpath-preferred"})
        self.assertIn("First paragraph", content.markdown)
        self.assertEqual(content.title, "Example Post")

    def test_deterministic(self):
        url = "https://blog.example.com/posts/example"

        self.assertEqual(self.extractor.extract(RULE_PAGE, url), self.extractor.extract(RULE_PAGE, url))


OTHER = (
    "Subscribers receive weekly digests covering gardening tips, regional weather summaries "
    "and upcoming community events. "
) * 3

CONTENT_BLOCK = '<div class="content">%s</div>' % "".join(f"<p>{LOREM} ({i})</p>" for i in range(3))


def registry_with_body(xpath: str) -> RuleRegistry:
    return RuleRegistry.from_mapping({"news.example.com": {"body": xpath}})


class TestRuleCrossCheck(unittest.TestCase):
    url = "https://news.example.com/story"

    def extract(self, body_html: str, xpath: str):
        page = f"<html><head><title>Story</title></head><body><h1>Story</h1>{body_html}</body></html>"
        return ContentExtractor(registry_with_body(xpath)).extract(page, self.url)

    def test_agreeing_rule_and_heuristics(self):
        content = self.extract(CONTENT_BLOCK, "//div[@class='content']")

        self.assertEqual(content.method, "dual-validated")
        self.assertEqual(content.confidence, 0.95)
        self.assertIn("(2)", content.markdown)

    def test_heuristics_found_much_more_text(self):
        content = self.extract('<div class="lede"><p>Short teaser.</p></div>' + CONTENT_BLOCK,
                               "//div[@class='lede']")

        self.assertEqual(content.method, "heuristic-preferred")
        self.assertEqual(content.confidence, 0.80)
        self.assertIn("(0)", content.markdown)
        self.assertNotIn("Short teaser", content.markdown)

    def test_similar_length_but_different_text(self):
        content = self.extract(f'<div id="teaser"><p>{OTHER}</p></div>' + CONTENT_BLOCK,
                               "//div[@id='teaser']")

        self.assertEqual(content.method, "heuristic-fallback")
        self.assertEqual(content.confidence, 0.70)
        self.assertIn("(1)", content.markdown)
        self.assertNotIn("Subscribers", content.markdown)

    def test_unreadable_page_keeps_rule_body(self):
        content = self.extract("<div class='story'><p>Only one paragraph here.</p></div>", "//div[@class='story']")

        self.assertEqual(content.method, "xpath-preferred")
        self.assertEqual(content.markdown, "Only one paragraph here.")


class TestRuleFlags(unittest.TestCase):
    def test_prune_and_tidy_disabled(self):
        registry = RuleRegistry.from_mapping({
            "blog.example.com": {"body": "//div[@class='post-body']", "prune": "no", "tidy": False},
        })

        content = ContentExtractor(registry).extract(RULE_PAGE, "https://blog.example.com/posts/example")

        self.assertIn("var x", content.html)
        self.assertIn('class="post-body"', content.html)

    def test_defaults_clean_the_body(self):
        registry = RuleRegistry.from_mapping({"blog.example.com": {"body": "//div[@class='post-body']"}})

        content = ContentExtractor(registry).extract(RULE_PAGE, "https://blog.example.com/posts/example")

        self.assertNotIn("var x", content.html)
        self.assertNotIn("class=", content.html)


class TestHeuristics(unittest.TestCase):
    def test_word_similarity(self):
        self.assertEqual(word_similarity("", ""), 1.0)
        self.assertEqual(word_similarity("a b", ""), 0.0)
        self.assertEqual(word_similarity("The cat sat", "the CAT sat"), 1.0)
        self.assertAlmostEqual(word_similarity("a b c", "b c d"), 0.5)

    def test_compare_extractions(self):
        self.assertEqual(compare_extractions("one two three", "three two one"), ("dual-validated", 0.95))
        self.assertEqual(compare_extractions("alpha beta gamma delta", "x"), ("xpath-preferred", 0.85))
        self.assertEqual(compare_extractions("x", "alpha beta gamma delta"), ("heuristic-preferred", 0.80))
        self.assertEqual(compare_extractions("alpha beta", "gamma delta"), ("heuristic-fallback", 0.70))

    def test_best_candidate_needs_a_readable_page(self):
        scorer = Scorer()
        two = parse_document(f"<html><body><div class='content'><p>{LOREM}</p><p>{LOREM}</p></div></body></html>")
        three = parse_document(f"<html><body>{CONTENT_BLOCK}</body></html>")

        self.assertIsNone(scorer.best_candidate(two))
        candidate = scorer.best_candidate(three)
        self.assertIsNotNone(candidate)
        self.assertEqual(candidate.node.get("class"), "content")


class TestGenericExtraction(unittest.TestCase):
    def setUp(self):
        self.extractor = ContentExtractor(RuleRegistry())

    def test_metadata_and_article_element(self):
        page = f"""
        <html><head>
          <meta property="og:title" content="OG Title">
          <meta name="author" content="Jane Roe">
          <meta property="article:published_time" content="2023-05-06T10:00:00Z">
          <title>Doc title</title>
        </head><body>
          <article>
            <p>{LOREM}</p>
            <div style="display:none">Hidden text</div>
            <div class="share-buttons">Share this</div>
            <aside>Aside text</aside>
            <p>Second paragraph.</p>
          </article>
        </body></html>
        """
        content = self.extractor.extract(page, "https://unknown.org/a")

        self.assertEqual(content.title, "OG Title")
        self.assertEqual(content.author, "Jane Roe")
        self.assertEqual(content.date, "2023-05-06T10:00:00Z")
        self.assertEqual(content.method, "semantic-html")
        self.assertEqual(content.markdown, f"{LOREM}\n\nSecond paragraph.")

    def test_json_ld_metadata(self):
        ld = {
            "@context": "https://schema.org",
            "@type": "NewsArticle",
            "headline": "LD Headline",
            "author": {"@type": "Person", "name": "Ann Lee"},
            "datePublished": "2022-02-02",
        }
        page = (
            f'<html><head><script type="application/ld+json">{json.dumps(ld)}</script></head>'
            f"<body><main><p>{LOREM}</p></main></body></html>"
        )
        content = self.extractor.extract(page, "https://unknown.org/b")

        self.assertEqual((content.title, content.author, content.date), ("LD Headline", "Ann Lee", "2022-02-02"))

    def test_scored_container(self):
        paragraphs = "".join(f"<p>{LOREM} ({i})</p>" for i in range(3))
        links = "".join(f'<li><a href="/p{i}">Sidebar link {i}</a></li>' for i in range(5))
        page = (
            "<html><head><title>Scored</title></head><body>"
            f'<div class="content">{paragraphs}</div>'
            f'<div class="sidebar"><ul>{links}</ul></div>'
            "</body></html>"
        )
        content = self.extractor.extract(page, "https://unknown.org/c")

        self.assertEqual(content.method, "heuristic")
        self.assertGreater(content.confidence, 0.5)
        self.assertIn("(2)", content.markdown)
        self.assertNotIn("Sidebar link", content.markdown)

    def test_paragraph_density_and_url_title(self):
        page = "<html><body><p>Hello there</p></body></html>"

        content = self.extractor.extract(page, "https://example.com/blog/my-first-post.html")

        self.assertEqual(content.title, "my first post")
        self.assertEqual(content.method, "paragraph-density")
        self.assertEqual(content.markdown, "Hello there")

    def test_document_text_fallback(self):
        content = self.extractor.extract("<html><body>Just some loose text</body></html>", "https://example.com/")

        self.assertEqual(content.method, "document-text")
        self.assertEqual(content.markdown, "Just some loose text")
        self.assertEqual(content.title, "example.com")

    def test_no_text_raises(self):
        for page in ("", "   ", "<html><body><script>var a;</script></body></html>"):
            with self.assertRaises(ExtractionError):
                self.extractor.extract(page, "https://example.com/x")

    def test_xml_declaration(self):
        page = '<?xml version="1.0" encoding="utf-8"?><html><body><p>Declared</p></body></html>'

        self.assertEqual(self.extractor.extract(page, "https://example.com/x").markdown, "Declared")

    def test_long_title_truncated(self):
        page = f"<html><head><title>{'t' * 400}</title></head><body><p>x</p></body></html>"

        self.assertEqual(len(self.extractor.extract(page, "https://example.com/x").title), 300)


class TestMetadata(unittest.TestCase):
    def test_author_skips_urls(self):
        doc = parse_document(
            '<html><head><meta property="article:author" content="https://facebook.com/someone">'
            '<meta name="author" content="Real Name"></head><body></body></html>'
        )

        self.assertEqual(MetadataExtractor(doc).author(), "Real Name")

    def test_time_element_date(self):
        doc = parse_document('<html><body><time datetime="2020-10-10">Oct</time></body></html>')

        self.assertEqual(MetadataExtractor(doc).published_date(), "2020-10-10")

    def test_site_name_sources(self):
        og = parse_document('<html><head><meta property="og:site_name" content="The Daily">'
                            '<meta name="application-name" content="App"></head></html>')
        ld = parse_document(
            '<html><head><script type="application/ld+json">'
            + json.dumps({"@type": "NewsArticle", "publisher": {"@type": "Organization", "name": "Planet"}})
            + '</script><meta name="application-name" content="App"></head></html>'
        )
        app = parse_document('<html><head><meta name="application-name" content="App"></head></html>')

        self.assertEqual(MetadataExtractor(og).site_name(), "The Daily")
        self.assertEqual(MetadataExtractor(ld).site_name(), "Planet")
        self.assertEqual(MetadataExtractor(app).site_name(), "App")
        self.assertEqual(MetadataExtractor(parse_document("<p>x</p>")).site_name(), "")

    def test_language_sources(self):
        lang = parse_document('<html lang="de"><head><meta property="og:locale" content="en_US"></head></html>')
        locale = parse_document('<html><head><meta property="og:locale" content="en_US"></head></html>')
        header = parse_document('<html><head><meta http-equiv="Content-Language" content="fr"></head></html>')

        self.assertEqual(MetadataExtractor(lang).language(), "de")
        self.assertEqual(MetadataExtractor(locale).language(), "en_US")
        self.assertEqual(MetadataExtractor(header).language(), "fr")
        self.assertEqual(MetadataExtractor(parse_document("<p>x</p>")).language(), "")

    def test_extracted_content_carries_site_and_language(self):
        page = ('<html lang="en"><head><meta property="og:site_name" content="Example News"></head>'
                "<body><p>Hello there</p></body></html>")

        content = ContentExtractor(RuleRegistry()).extract(page, "https://example.com/a")

        self.assertEqual((content.site_name, content.language), ("Example News", "en"))

    def test_title_from_url(self):
        self.assertEqual(title_from_url("https://example.com/a/some_post-name/"), "some post name")
        self.assertEqual(title_from_url("https://example.com/"), "example.com")


class TestMarkdown(unittest.TestCase):
    def convert(self, fragment: str, base_url: str = "https://example.com/x") -> str:
        return MarkdownConverter(base_url).convert(lxml.html.fragment_fromstring(fragment, create_parent="div"))

    def test_headings_shift_down(self):
        self.assertEqual(self.convert("<h1>A</h1><h3>B</h3>"), "## A\n\n#### B")

    def test_code_block(self):
        self.assertEqual(
            self.convert('<pre><code class="language-python">print(1)\n</code></pre>'),
            "```python\nprint(1)\n```",
        )

    def test_ordered_list(self):
        self.assertEqual(self.convert("<ol><li>a</li><li>b</li></ol>"), "1. a\n2. b")

    def test_blockquote(self):
        self.assertEqual(self.convert("<blockquote><p>q1</p><p>q2</p></blockquote>"), "> q1\n>\n> q2")

    def test_image_made_absolute(self):
        self.assertEqual(self.convert('<p><img src="/a.png" alt="Alt"></p>'), "![Alt](https://example.com/a.png)")

    def test_emphasis_keeps_spacing(self):
        self.assertEqual(self.convert("<p>a<em> b </em>c</p>"), "a *b* c")

    def test_inline_code(self):
        self.assertEqual(self.convert("<p>run <code>make</code> now</p>"), "run `make` now")

    def test_table(self):
        self.assertEqual(
            self.convert("<table><tr><th>h1</th><th>h2</th></tr><tr><td>a</td><td>b</td></tr></table>"),
            "| h1 | h2 |\n|---|---|\n| a | b |",
        )

    def test_loose_text_becomes_paragraphs(self):
        self.assertEqual(
            self.convert("<div>Loose <b>text</b><p>Para</p>tail</div>"),
            "Loose **text**\n\nPara\n\ntail",
        )


if __name__ == "__main__":
    unittest.main()
