# Storage layer
from .db import connect, SCHEMA_SQL
from .repository import ArticleRepository, validate_article

__all__ = ["connect", "SCHEMA_SQL", "ArticleRepository", "validate_article"]
