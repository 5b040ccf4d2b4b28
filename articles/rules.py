"""Per-site extraction rules.

Rules are plain data: ``parser_rules.json`` maps a domain to XPath
expressions for the title, author, date and body of that site's articles.
Adding a site means adding an entry there; the extractor never branches on
the domain itself.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

RULES_FILE = os.path.join(os.path.dirname(os.path.abspath(__file__)), "parser_rules.json")

DEFAULT_PARSER_RULES: dict[str, Any] = {
    "rules": {},
}


@dataclass(frozen=True)
class ExtractionRule:
    domain: str = ""
    title: str = ""
    author: str = ""
    date: str = ""
    body: str = ""
    strip: tuple[str, ...] = ()
    strip_id_or_class: tuple[str, ...] = ()
    headers: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    test_urls: tuple[str, ...] = ()
    # prune: drop navigation, forms and other non-content nodes from the body.
    # tidy: drop comments and presentational attributes from the body.
    prune: bool = True
    tidy: bool = True

    @property
    def is_generic(self) -> bool:
        return not self.domain

    def matches(self, host: str) -> bool:
        h = host.lower()
        return bool(self.domain) and (h == self.domain or h.endswith(f".{self.domain}"))


# Applies when no site rule matches: the extractor falls back to its
# structural heuristics for every field.
GENERIC_RULE = ExtractionRule()


def _merge_dict(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dict(base_value, value)
        else:
            merged[key] = value
    return merged


def _str_tuple(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"expected a list of strings, got {type(value).__name__}")
    return tuple(str(v).strip() for v in value if str(v).strip())


def _flag(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    raise ValueError(f"expected a boolean, got {type(value).__name__}")


def rule_from_config(domain: str, cfg: Mapping[str, Any]) -> ExtractionRule:
    """Build an ExtractionRule from one JSON descriptor."""
    domain = domain.strip().lower()
    if not domain:
        raise ValueError("rule domain must not be empty")
    headers_raw = cfg.get("headers") or {}
    if not isinstance(headers_raw, dict):
        raise ValueError("headers must be an object")
    headers = {str(k): str(v) for k, v in headers_raw.items() if str(v).strip()}
    return ExtractionRule(
        domain=domain,
        title=str(cfg.get("title") or "").strip(),
        author=str(cfg.get("author") or "").strip(),
        date=str(cfg.get("date") or "").strip(),
        body=str(cfg.get("body") or "").strip(),
        strip=_str_tuple(cfg.get("strip")),
        strip_id_or_class=_str_tuple(cfg.get("strip_id_or_class")),
        headers=MappingProxyType(headers),
        test_urls=_str_tuple(cfg.get("test_urls")),
        prune=_flag(cfg.get("prune"), True),
        tidy=_flag(cfg.get("tidy"), True),
    )


class RuleRegistry:
    """Read-only mapping from domain to ExtractionRule."""

    def __init__(self, rules: Mapping[str, ExtractionRule] = MappingProxyType({})):
        self._rules: Mapping[str, ExtractionRule] = MappingProxyType(
            {domain.lower(): rule for domain, rule in rules.items()}
        )

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "RuleRegistry":
        """Build a registry from ``{domain: descriptor}``, skipping bad entries."""
        built: dict[str, ExtractionRule] = {}
        for domain, cfg in config.items():
            if not isinstance(cfg, dict):
                logger.warning("Skipping rule %r: descriptor is not an object", domain)
                continue
            try:
                rule = rule_from_config(str(domain), cfg)
            except ValueError as exc:
                logger.warning("Skipping rule %r: %s", domain, exc)
                continue
            built[rule.domain] = rule
        return cls(built)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, domain: object) -> bool:
        return isinstance(domain, str) and domain.lower() in self._rules

    def rules_for(self, url: str) -> ExtractionRule:
        """Return the rule for ``url``'s host, or GENERIC_RULE.

        An exact host match wins; otherwise the longest domain the host is a
        subdomain of.
        """
        try:
            host = (urlparse(url or "").hostname or "").lower()
        except ValueError:
            return GENERIC_RULE
        if not host:
            return GENERIC_RULE
        exact = self._rules.get(host)
        if exact is not None:
            return exact
        suffix_matches = [rule for domain, rule in self._rules.items() if host.endswith(f".{domain}")]
        if not suffix_matches:
            return GENERIC_RULE
        return max(suffix_matches, key=lambda r: len(r.domain))

    def supported_domains(self) -> list[str]:
        return sorted(self._rules)


def load_parser_rules(path: Optional[Path] = None) -> dict[str, Any]:
    """Read the bundled rules file, merging an optional override file over it."""
    config = DEFAULT_PARSER_RULES
    for candidate in (Path(RULES_FILE), path):
        if candidate is None or not candidate.exists():
            continue
        try:
            with open(candidate, "r", encoding="utf-8") as f:
                user_config = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring rules file %s: %s", candidate, exc)
            continue
        if not isinstance(user_config, dict):
            logger.warning("Ignoring rules file %s: expected a JSON object", candidate)
            continue
        config = _merge_dict(config, user_config)
    return config


def load_rules(path: Optional[Path] = None) -> RuleRegistry:
    rules_cfg = load_parser_rules(path).get("rules", {})
    if not isinstance(rules_cfg, dict):
        logger.warning("Rules file has no 'rules' object; using heuristics only")
        return RuleRegistry()
    return RuleRegistry.from_mapping(rules_cfg)


@lru_cache(maxsize=None)
def default_registry() -> RuleRegistry:
    """The bundled rule set, loaded once per process."""
    return load_rules()
