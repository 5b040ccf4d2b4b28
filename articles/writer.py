"""Write extracted articles to disk as a Markdown and an HTML file.

Both files share a base name derived from the title and the canonical URL.
Files are created exclusively, so an existing artifact is never overwritten;
a taken name gets a ``-2``, ``-3``... suffix instead.
"""
import hashlib
import html
import logging
import os
import re
import unicodedata
from datetime import datetime
from pathlib import Path
from typing import Callable, Union
from urllib.parse import urlsplit, urlunsplit

from core import ExtractedContent, PersistenceError

logger = logging.getLogger(__name__)

SLUG_MAX_LENGTH = 60
HASH_LENGTH = 10
MAX_NAME_ATTEMPTS = 100
DEFAULT_PORTS = {"http": 80, "https": 443}
SAVED_FORMAT = "%Y-%m-%d %H:%M:%S"

HTML_TEMPLATE = """<!DOCTYPE html>
<html{lang}>
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{title}</title>
  <style>
    body {{ font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px; }}
    pre {{ background-color: #f4f4f4; padding: 10px; border-radius: 4px; overflow-x: auto; }}
    blockquote {{ border-left: 4px solid #ccc; padding-left: 16px; margin-left: 0; }}
    .meta {{ color: #666; font-size: 0.9em; }}
  </style>
</head>
<body>
  <h1>{title}</h1>
  <p class="meta">{meta}</p>
  <hr>
{body}
</body>
</html>
"""

PathLike = Union[str, os.PathLike]


def canonicalize_url(url: str) -> str:
    """Lowercase scheme and host, drop default port, fragment and trailing slash."""
    parts = urlsplit((url or "").strip())
    scheme = parts.scheme.lower()
    netloc = (parts.hostname or "").lower()
    try:
        port = parts.port
    except ValueError:
        port = None
    if port and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"
    path = parts.path.rstrip("/")
    return urlunsplit((scheme, netloc, path, parts.query, ""))


def slugify(title: str, max_length: int = SLUG_MAX_LENGTH) -> str:
    folded = unicodedata.normalize("NFKD", title or "").encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", folded.lower()).strip("-")
    slug = slug[:max_length].strip("-")
    return slug or "article"


def artifact_basename(title: str, url: str) -> str:
    digest = hashlib.sha256(canonicalize_url(url).encode("utf-8")).hexdigest()[:HASH_LENGTH]
    return f"{slugify(title)}-{digest}"


def render_markdown(content: ExtractedContent, saved: str) -> str:
    lines = [f"# {content.title}", ""]
    if content.author:
        lines += [f"**Author:** {content.author}", ""]
    if content.date:
        lines += [f"**Date:** {content.date}", ""]
    if content.site_name:
        lines += [f"**Site:** {content.site_name}", ""]
    lines += [f"**Source:** {content.url}", "", f"**Saved:** {saved}", "", "---", "", content.markdown]
    return "\n".join(lines).rstrip("\n") + "\n"


def render_html(content: ExtractedContent, saved: str) -> str:
    meta = []
    if content.author:
        meta.append(f"By {html.escape(content.author)}")
    if content.date:
        meta.append(html.escape(content.date))
    if content.site_name:
        meta.append(html.escape(content.site_name))
    source = html.escape(content.url, quote=True)
    meta.append(f'Source: <a href="{source}">{source}</a>')
    meta.append(f"Saved: {html.escape(saved)}")
    lang = f' lang="{html.escape(content.language, quote=True)}"' if content.language else ""
    return HTML_TEMPLATE.format(
        lang=lang,
        title=html.escape(content.title),
        meta=" &middot; ".join(meta),
        body=content.html,
    )


def remove_artifacts(*paths: PathLike) -> list[str]:
    """Delete each path that exists; return the ones that were already gone."""
    missing: list[str] = []
    for path in paths:
        if not path:
            continue
        try:
            os.remove(path)
        except FileNotFoundError:
            missing.append(str(path))
        except OSError as exc:
            logger.warning("Could not remove %s: %s", path, exc)
    return missing


class ArtifactWriter:
    """Persists one article as ``<base>.md`` and ``<base>.html``, both or neither."""

    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self.clock = clock

    def write(self, content: ExtractedContent, directory: PathLike) -> tuple[str, str]:
        directory = Path(directory)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"cannot create storage directory {directory}", url=content.url,
                                   cause=exc) from exc

        saved = self.clock().strftime(SAVED_FORMAT)
        markdown_text = render_markdown(content, saved)
        html_text = render_html(content, saved)
        base = artifact_basename(content.title, content.url)

        for attempt in range(1, MAX_NAME_ATTEMPTS + 1):
            stem = base if attempt == 1 else f"{base}-{attempt}"
            markdown_path = directory / f"{stem}.md"
            html_path = directory / f"{stem}.html"
            if markdown_path.exists() or html_path.exists():
                continue
            try:
                self._write_file(markdown_path, markdown_text)
            except FileExistsError:
                continue
            except OSError as exc:
                raise PersistenceError(f"failed to write {markdown_path.name}", url=content.url,
                                       cause=exc) from exc
            try:
                self._write_file(html_path, html_text)
            except FileExistsError:
                remove_artifacts(markdown_path)
                continue
            except OSError as exc:
                remove_artifacts(markdown_path)
                raise PersistenceError(f"failed to write {html_path.name}", url=content.url,
                                       cause=exc) from exc
            logger.debug("Wrote %s and %s", markdown_path, html_path)
            return str(markdown_path), str(html_path)

        raise PersistenceError(f"no free file name for {base} in {directory}", url=content.url)

    def _write_file(self, path: Path, text: str) -> None:
        try:
            with open(path, "x", encoding="utf-8") as f:
                f.write(text)
        except FileExistsError:
            raise
        except OSError:
            # Drop whatever part of the file was written.
            remove_artifacts(path)
            raise
