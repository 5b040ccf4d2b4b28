# Domain models
from dataclasses import dataclass
from typing import Optional

from .errors import (
    ArticleError,
    ArticleNotFoundError,
    CatalogError,
    DuplicateArticleError,
    ExtractionError,
    FetchError,
    IngestionCancelled,
    PersistenceError,
    ValidationError,
)


@dataclass
class Article:
    """Catalog record for one saved article."""
    id: Optional[int] = None
    url: str = ""
    title: str = ""
    author: str = ""
    date: str = ""
    markdown_path: str = ""
    html_path: str = ""
    created_at: str = ""
    modified_at: str = ""

    def has_author(self) -> bool:
        return bool(self.author)

    def has_date(self) -> bool:
        return bool(self.date)


@dataclass
class ExtractedContent:
    """Article content pulled out of a page, before it is written to disk."""
    url: str = ""
    title: str = ""
    author: str = ""
    date: str = ""
    site_name: str = ""
    language: str = ""
    markdown: str = ""
    html: str = ""
    method: str = ""
    confidence: float = 0.0


__all__ = [
    "Article",
    "ExtractedContent",
    "ArticleError",
    "ArticleNotFoundError",
    "CatalogError",
    "DuplicateArticleError",
    "ExtractionError",
    "FetchError",
    "IngestionCancelled",
    "PersistenceError",
    "ValidationError",
]
