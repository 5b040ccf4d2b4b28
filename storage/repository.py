import datetime as dt
import sqlite3
import threading
from typing import Optional
from urllib.parse import urlparse

from core import Article, CatalogError, DuplicateArticleError, ValidationError

MAX_TITLE_LENGTH = 500
MAX_AUTHOR_LENGTH = 200


def now_iso() -> str:
    return dt.datetime.now().isoformat(timespec="seconds")


def validate_article(article: Article) -> None:
    """Raise ValidationError when a record is not fit for the catalog."""
    if not article.url.strip():
        raise ValidationError("url", "is required", url=article.url)
    try:
        parsed = urlparse(article.url)
    except ValueError as exc:
        raise ValidationError("url", "is not a valid URL", url=article.url, cause=exc) from exc
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValidationError("url", "must be an absolute http(s) URL", url=article.url)
    title = article.title.strip()
    if not title:
        raise ValidationError("title", "is required", url=article.url)
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError("title", f"must be at most {MAX_TITLE_LENGTH} characters", url=article.url)
    if len(article.author or "") > MAX_AUTHOR_LENGTH:
        raise ValidationError("author", f"must be at most {MAX_AUTHOR_LENGTH} characters", url=article.url)
    if not article.markdown_path:
        raise ValidationError("markdown_path", "is required", url=article.url)
    if not article.html_path:
        raise ValidationError("html_path", "is required", url=article.url)


class ArticleRepository:
    """Repository for Article catalog records."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self._lock = threading.RLock()

    def create(self, article: Article) -> int:
        """Insert a new article and return its ID.

        The URL column is unique; a second insert for the same URL raises
        DuplicateArticleError.
        """
        validate_article(article)
        now = now_iso()
        with self._lock:
            try:
                cursor = self.conn.execute(
                    """
                    INSERT INTO articles (url, title, author, date, markdown_path, html_path,
                                          created_at, modified_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        article.url,
                        article.title.strip(),
                        article.author or "",
                        article.date or "",
                        article.markdown_path,
                        article.html_path,
                        now,
                        now,
                    ),
                )
                self.conn.commit()
            except sqlite3.IntegrityError as exc:
                self.conn.rollback()
                raise DuplicateArticleError(
                    "an article with this URL already exists", url=article.url, cause=exc
                ) from exc
            except sqlite3.Error as exc:
                self.conn.rollback()
                raise CatalogError("failed to insert article", url=article.url, cause=exc) from exc
        article.id = cursor.lastrowid
        article.created_at = now
        article.modified_at = now
        return cursor.lastrowid

    def get(self, article_id: int) -> Optional[Article]:
        """Get an article by ID."""
        return self._fetch_one("SELECT * FROM articles WHERE id = ?", (article_id,))

    def get_by_url(self, url: str) -> Optional[Article]:
        """Get an article by its source URL."""
        return self._fetch_one("SELECT * FROM articles WHERE url = ?", (url,))

    def delete(self, article_id: int) -> bool:
        """Delete an article. Returns False when no row matched."""
        with self._lock:
            try:
                cursor = self.conn.execute("DELETE FROM articles WHERE id = ?", (article_id,))
                self.conn.commit()
            except sqlite3.Error as exc:
                self.conn.rollback()
                raise CatalogError(f"failed to delete article {article_id}", cause=exc) from exc
        return cursor.rowcount > 0

    def list_all(self, title: str = "", author: str = "", limit: int = 20, offset: int = 0) -> list[Article]:
        """List articles, newest first, filtered by title/author substrings."""
        if limit < 0:
            raise ValidationError("limit", f"must not be negative, got {limit}")
        if offset < 0:
            raise ValidationError("offset", f"must not be negative, got {offset}")
        query = "SELECT * FROM articles"
        where, params = self._filters(title, author)
        query += where
        query += " ORDER BY created_at DESC, id DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)
            if offset:
                query += " OFFSET ?"
                params.append(offset)
        with self._lock:
            try:
                rows = self.conn.execute(query, params).fetchall()
            except sqlite3.Error as exc:
                raise CatalogError("failed to list articles", cause=exc) from exc
        return [Article(**dict(row)) for row in rows]

    def count(self, title: str = "", author: str = "") -> int:
        where, params = self._filters(title, author)
        with self._lock:
            try:
                row = self.conn.execute(f"SELECT COUNT(*) AS c FROM articles{where}", params).fetchone()
            except sqlite3.Error as exc:
                raise CatalogError("failed to count articles", cause=exc) from exc
        return int(row["c"])

    @staticmethod
    def _filters(title: str, author: str) -> tuple[str, list]:
        conditions = []
        params: list = []
        if title:
            conditions.append("title LIKE ?")
            params.append(f"%{title}%")
        if author:
            conditions.append("author LIKE ?")
            params.append(f"%{author}%")
        if not conditions:
            return "", params
        return " WHERE " + " AND ".join(conditions), params

    def _fetch_one(self, query: str, params: tuple) -> Optional[Article]:
        with self._lock:
            try:
                row = self.conn.execute(query, params).fetchone()
            except sqlite3.Error as exc:
                raise CatalogError("failed to query articles", cause=exc) from exc
        if row:
            return Article(**dict(row))
        return None
