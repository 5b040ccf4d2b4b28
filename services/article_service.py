"""Article service: ingestion pipeline plus catalog browsing.

``add`` walks a fixed sequence of stages::

    START -> DUPLICATE_CHECK -> FETCHING -> EXTRACTING -> WRITING -> CATALOGING -> DONE

A URL already in the catalog short-circuits to DONE with the existing
record. Any failure moves the attempt to ABORTED; once artifacts exist on
disk, an abort removes them again before the error propagates.
"""
import logging
import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Sequence, Union
from urllib.parse import urlparse

from articles import ArtifactWriter, ContentExtractor, FetchClient, RuleRegistry, load_rules, remove_artifacts
from core import (
    Article,
    ArticleError,
    ArticleNotFoundError,
    IngestionCancelled,
    PersistenceError,
    ValidationError,
)
from core.config import Config
from storage import ArticleRepository, connect

logger = logging.getLogger(__name__)

PREVIEW_LINES = 20
DEFAULT_WORKERS = 4


class IngestionState(Enum):
    START = "start"
    DUPLICATE_CHECK = "duplicate_check"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    WRITING = "writing"
    CATALOGING = "cataloging"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class AddResult:
    article: Article
    created: bool
    state: IngestionState = IngestionState.DONE


@dataclass
class ArticleView:
    article: Article
    markdown_exists: bool
    html_exists: bool
    preview: list[str] = field(default_factory=list)


def validate_url(url: str) -> str:
    url = (url or "").strip()
    if not url:
        raise ValidationError("url", "is required")
    try:
        parsed = urlparse(url)
    except ValueError as exc:
        raise ValidationError("url", "is not a valid URL", url=url, cause=exc) from exc
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValidationError("url", "must be an absolute http(s) URL", url=url)
    return url


def parse_article_id(value: Union[str, int]) -> int:
    try:
        article_id = int(str(value).strip())
    except ValueError:
        raise ValidationError("id", f"invalid article id {value!r}") from None
    if article_id <= 0:
        raise ValidationError("id", f"invalid article id {value!r}")
    return article_id


class UrlLocks:
    """One lock per URL, kept only while someone holds or waits for it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


class ArticleService:
    """Adds, lists, views, reads and removes saved articles."""

    def __init__(self, repository: ArticleRepository, storage_dir: Union[str, Path],
                 fetcher: Optional[FetchClient] = None,
                 extractor: Optional[ContentExtractor] = None,
                 writer: Optional[ArtifactWriter] = None,
                 registry: Optional[RuleRegistry] = None):
        self.repository = repository
        self.storage_dir = Path(storage_dir)
        self.registry = registry if registry is not None else (
            extractor.registry if extractor is not None else load_rules()
        )
        self.fetcher = fetcher or FetchClient()
        self.extractor = extractor or ContentExtractor(self.registry)
        self.writer = writer or ArtifactWriter()
        self._locks = UrlLocks()
        self._conn: Optional[sqlite3.Connection] = None

    @classmethod
    def from_config(cls, config: Config) -> "ArticleService":
        conn = connect(config.database_path)
        registry = load_rules(config.rules_path)
        service = cls(
            ArticleRepository(conn),
            config.storage_dir,
            fetcher=FetchClient(timeout=config.fetch_timeout),
            registry=registry,
        )
        service._conn = conn
        return service

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # Ingestion

    def add(self, url: str, cancel: Optional[threading.Event] = None) -> AddResult:
        """Fetch, extract, write and catalog ``url``.

        Returns the existing record with ``created=False`` when the URL is
        already saved. Raises an ArticleError tagged with the failing stage
        otherwise; artifacts written before the failure are removed.
        """
        url = validate_url(url)
        with self._locks.hold(url):
            self._check_cancel(cancel, IngestionState.DUPLICATE_CHECK, url)
            with self._stage(IngestionState.DUPLICATE_CHECK, url):
                existing = self.repository.get_by_url(url)
            if existing is not None:
                logger.info("Already saved: %s (id %s)", url, existing.id)
                return AddResult(existing, created=False)

            rule = self.registry.rules_for(url)
            self._check_cancel(cancel, IngestionState.FETCHING, url)
            with self._stage(IngestionState.FETCHING, url):
                raw_html = self.fetcher.fetch(url, headers=dict(rule.headers))

            self._check_cancel(cancel, IngestionState.EXTRACTING, url)
            with self._stage(IngestionState.EXTRACTING, url):
                content = self.extractor.extract(raw_html, url)

            self._check_cancel(cancel, IngestionState.WRITING, url)
            with self._stage(IngestionState.WRITING, url):
                markdown_path, html_path = self.writer.write(content, self.storage_dir)

            article = Article(
                url=url,
                title=content.title,
                author=content.author,
                date=content.date,
                markdown_path=markdown_path,
                html_path=html_path,
            )
            try:
                self._check_cancel(cancel, IngestionState.CATALOGING, url)
                with self._stage(IngestionState.CATALOGING, url):
                    self.repository.create(article)
            except BaseException:
                missing = remove_artifacts(markdown_path, html_path)
                if missing:
                    logger.warning("Rollback of %s: files already gone: %s", url, ", ".join(missing))
                raise

        logger.info("Saved %s as article %s (%s, confidence %.2f)", url, article.id,
                    content.method, content.confidence)
        return AddResult(article, created=True)

    def add_many(self, urls: Sequence[str], workers: int = DEFAULT_WORKERS,
                 cancel: Optional[threading.Event] = None) -> list[tuple[str, Union[AddResult, ArticleError]]]:
        """Add several URLs concurrently; results come back in input order."""
        results: list = [None] * len(urls)
        with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
            futures = {pool.submit(self.add, url, cancel): i for i, url in enumerate(urls)}
            for future in as_completed(futures):
                i = futures[future]
                try:
                    results[i] = (urls[i], future.result())
                except ArticleError as exc:
                    results[i] = (urls[i], exc)
        return results

    @contextmanager
    def _stage(self, state: IngestionState, url: str) -> Iterator[None]:
        logger.debug("%s: %s", state.value, url)
        try:
            yield
        except ArticleError as exc:
            exc.with_stage(state.value, url)
            logger.debug("%s: %s at %s", IngestionState.ABORTED.value, url, state.value)
            raise

    @staticmethod
    def _check_cancel(cancel: Optional[threading.Event], state: IngestionState, url: str) -> None:
        if cancel is not None and cancel.is_set():
            raise IngestionCancelled("ingestion cancelled", url=url, stage=state.value)

    # Catalog

    def list_articles(self, query: str = "", author: str = "", limit: int = 20) -> list[Article]:
        return self.repository.list_all(title=query, author=author, limit=limit)

    def get(self, article_id: int) -> Article:
        article = self.repository.get(article_id)
        if article is None:
            raise ArticleNotFoundError(article_id)
        return article

    def view(self, article_id: int) -> ArticleView:
        article = self.get(article_id)
        markdown_path = Path(article.markdown_path)
        preview: list[str] = []
        markdown_exists = markdown_path.is_file()
        if markdown_exists:
            with open(markdown_path, "r", encoding="utf-8", errors="replace") as f:
                for i, line in enumerate(f):
                    if i >= PREVIEW_LINES:
                        break
                    preview.append(line.rstrip("\n"))
        return ArticleView(
            article=article,
            markdown_exists=markdown_exists,
            html_exists=Path(article.html_path).is_file(),
            preview=preview,
        )

    def read(self, article_id: int) -> str:
        article = self.get(article_id)
        try:
            with open(article.markdown_path, "r", encoding="utf-8") as f:
                return f.read()
        except OSError as exc:
            raise PersistenceError(f"cannot read {article.markdown_path}", url=article.url,
                                   cause=exc) from exc

    def remove(self, article_id: int) -> Article:
        """Delete the catalog record, then its files; missing files are only logged."""
        article = self.get(article_id)
        if not self.repository.delete(article_id):
            raise ArticleNotFoundError(article_id)
        for path in remove_artifacts(article.markdown_path, article.html_path):
            logger.warning("File already missing for article %s: %s", article_id, path)
        logger.info("Removed article %s (%s)", article_id, article.url)
        return article

    # Help

    def supported_domains(self) -> list[str]:
        return self.registry.supported_domains()
