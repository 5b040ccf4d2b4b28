"""Error types raised along the ingestion pipeline.

Every error carries the pipeline ``stage`` it came from (set by the
service when it propagates the error), the ``url`` being processed and the
underlying ``cause`` when one exists.
"""
from typing import Optional


class ArticleError(Exception):
    """Base class for article ingestion and catalog errors."""

    def __init__(self, message: str, *, url: str = "", stage: str = "",
                 cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.url = url
        self.stage = stage
        self.cause = cause

    def with_stage(self, stage: str, url: str = "") -> "ArticleError":
        """Tag the error with the stage that failed, keeping an earlier tag."""
        if not self.stage:
            self.stage = stage
        if url and not self.url:
            self.url = url
        return self

    def __str__(self) -> str:
        prefix = f"[{self.stage}] " if self.stage else ""
        where = f"{self.url}: " if self.url else ""
        detail = self.message
        if self.cause is not None and str(self.cause) and str(self.cause) not in detail:
            detail = f"{detail} ({self.cause})"
        return f"{prefix}{where}{detail}"


class FetchError(ArticleError):
    """Network failure, timeout or non-success HTTP status."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class ExtractionError(ArticleError):
    """No article body could be isolated from the page."""


class PersistenceError(ArticleError):
    """Artifact files could not be written or read."""


class CatalogError(ArticleError):
    """The catalog store rejected or failed an operation."""


class DuplicateArticleError(CatalogError):
    """An article with the same URL is already in the catalog."""


class ArticleNotFoundError(CatalogError):
    """No catalog record matches the requested ID."""

    def __init__(self, article_id: int, **kwargs):
        super().__init__(f"article with id {article_id} not found", **kwargs)
        self.article_id = article_id


class ValidationError(ArticleError):
    """Malformed URL, ID or field value."""

    def __init__(self, field: str, message: str, **kwargs):
        super().__init__(f"{field}: {message}", **kwargs)
        self.field = field


class IngestionCancelled(ArticleError):
    """The caller cancelled an ingestion attempt between stages."""
