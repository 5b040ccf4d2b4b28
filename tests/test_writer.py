import os
import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from unittest import mock

from articles.writer import (
    ArtifactWriter,
    artifact_basename,
    canonicalize_url,
    remove_artifacts,
    slugify,
)
from core import ExtractedContent, PersistenceError


def fixed_clock() -> datetime:
    return datetime(2024, 1, 2, 3, 4, 5)


def sample_content(**overrides) -> ExtractedContent:
    fields = dict(
        url="https://blog.example.com/posts/example",
        title="Example Post",
        author="J. Doe",
        date="2024-01-01",
        markdown="Body text.",
        html="<div><p>Body text.</p></div>",
        method="rule",
        confidence=1.0,
    )
    fields.update(overrides)
    return ExtractedContent(**fields)


class TestNaming(unittest.TestCase):
    def test_canonicalize_url(self):
        self.assertEqual(canonicalize_url("HTTPS://Example.COM:443/Path/?q=1#frag"), "https://example.com/Path?q=1")
        self.assertEqual(canonicalize_url("http://example.com:8080/"), "http://example.com:8080")

    def test_slugify(self):
        self.assertEqual(slugify("Café déjà vu!"), "cafe-deja-vu")
        self.assertEqual(slugify("日本語"), "article")
        self.assertEqual(slugify(""), "article")
        self.assertLessEqual(len(slugify("word " * 40)), 60)
        self.assertFalse(slugify("word " * 40).endswith("-"))

    def test_basename_stable_for_equivalent_urls(self):
        a = artifact_basename("Example Post", "https://Example.com/post/")
        b = artifact_basename("Example Post", "https://example.com/post#top")

        self.assertEqual(a, b)
        self.assertRegex(a, r"^example-post-[0-9a-f]{10}$")

    def test_basename_differs_by_url(self):
        self.assertNotEqual(
            artifact_basename("Same", "https://example.com/a"),
            artifact_basename("Same", "https://example.com/b"),
        )


class TestArtifactWriter(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.dir = Path(self.tmp.name) / "articles"
        self.writer = ArtifactWriter(clock=fixed_clock)

    def test_writes_both_files(self):
        md_path, html_path = self.writer.write(sample_content(), self.dir)

        self.assertTrue(os.path.isfile(md_path))
        self.assertTrue(os.path.isfile(html_path))
        self.assertEqual(Path(md_path).stem, Path(html_path).stem)
        markdown = Path(md_path).read_text(encoding="utf-8")
        self.assertEqual(
            markdown,
            "# Example Post\n\n"
            "**Author:** J. Doe\n\n"
            "**Date:** 2024-01-01\n\n"
            "**Source:** https://blog.example.com/posts/example\n\n"
            "**Saved:** 2024-01-02 03:04:05\n\n"
            "---\n\n"
            "Body text.\n",
        )

    def test_optional_fields_omitted(self):
        md_path, _ = self.writer.write(sample_content(author="", date=""), self.dir)
        markdown = Path(md_path).read_text(encoding="utf-8")

        self.assertNotIn("**Author:**", markdown)
        self.assertNotIn("**Date:**", markdown)

    def test_html_document(self):
        _, html_path = self.writer.write(sample_content(title="A <b> & C"), self.dir)
        html = Path(html_path).read_text(encoding="utf-8")

        self.assertTrue(html.startswith("<!DOCTYPE html>"))
        self.assertIn("<title>A &lt;b&gt; &amp; C</title>", html)
        self.assertIn("<div><p>Body text.</p></div>", html)
        self.assertIn('href="https://blog.example.com/posts/example"', html)

    def test_site_name_and_language(self):
        md_path, html_path = self.writer.write(sample_content(site_name="Example Blog", language="en-GB"), self.dir)
        markdown = Path(md_path).read_text(encoding="utf-8")
        html = Path(html_path).read_text(encoding="utf-8")

        self.assertIn("**Date:** 2024-01-01\n\n**Site:** Example Blog\n\n**Source:**", markdown)
        self.assertIn('<html lang="en-GB">', html)
        self.assertIn("Example Blog", html)

    def test_language_attribute_omitted_when_unknown(self):
        _, html_path = self.writer.write(sample_content(), self.dir)

        self.assertIn("<!DOCTYPE html>\n<html>\n", Path(html_path).read_text(encoding="utf-8"))

    def test_existing_files_never_overwritten(self):
        first = self.writer.write(sample_content(), self.dir)
        second = self.writer.write(sample_content(markdown="Other body."), self.dir)

        self.assertNotEqual(first, second)
        self.assertTrue(Path(second[0]).stem.endswith("-2"))
        self.assertIn("Body text.", Path(first[0]).read_text(encoding="utf-8"))

    def test_html_failure_removes_markdown(self):
        real_write = self.writer._write_file

        def failing_write(path, text):
            if path.suffix == ".html":
                raise OSError("disk full")
            real_write(path, text)

        with mock.patch.object(self.writer, "_write_file", side_effect=failing_write):
            with self.assertRaises(PersistenceError) as ctx:
                self.writer.write(sample_content(), self.dir)

        self.assertIsInstance(ctx.exception.__cause__, OSError)
        self.assertEqual(list(self.dir.iterdir()), [])

    def test_markdown_failure_writes_nothing(self):
        with mock.patch.object(self.writer, "_write_file", side_effect=PermissionError("denied")):
            with self.assertRaises(PersistenceError):
                self.writer.write(sample_content(), self.dir)

        self.assertEqual(list(self.dir.iterdir()), [])

    def test_unwritable_directory(self):
        blocker = Path(self.tmp.name) / "file"
        blocker.write_text("x", encoding="utf-8")

        with self.assertRaises(PersistenceError):
            self.writer.write(sample_content(), blocker / "sub")


class TestRemoveArtifacts(unittest.TestCase):
    def test_reports_missing(self):
        with tempfile.TemporaryDirectory() as tmp:
            present = Path(tmp) / "a.md"
            present.write_text("x", encoding="utf-8")
            missing = Path(tmp) / "a.html"

            gone = remove_artifacts(present, missing, "")

            self.assertFalse(present.exists())
            self.assertEqual(gone, [str(missing)])


if __name__ == "__main__":
    unittest.main()
