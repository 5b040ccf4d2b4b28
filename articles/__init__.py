from .extractor import ContentExtractor
from .fetch import DEFAULT_HEADERS, DEFAULT_TIMEOUT, FetchClient
from .rules import GENERIC_RULE, ExtractionRule, RuleRegistry, default_registry, load_rules
from .writer import ArtifactWriter, artifact_basename, canonicalize_url, remove_artifacts

__all__ = [
    "ArtifactWriter",
    "ContentExtractor",
    "DEFAULT_HEADERS",
    "DEFAULT_TIMEOUT",
    "ExtractionRule",
    "FetchClient",
    "GENERIC_RULE",
    "RuleRegistry",
    "artifact_basename",
    "canonicalize_url",
    "default_registry",
    "load_rules",
    "remove_artifacts",
]
