#!/usr/bin/env python3
"""clipleaf CLI - save web articles as Markdown and HTML."""
import argparse
import csv
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from core import ArticleError
from core.config import load_config
from services.article_service import ArticleService, parse_article_id


def _parse_import_file(path: Path) -> list[str]:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    suffix = path.suffix.lower()
    if suffix == ".txt":
        urls = []
        with path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#"):
                    urls.append(line)
        return urls
    if suffix == ".jsonl":
        rows = []
        with path.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    rows.append(json.loads(line))
    elif suffix == ".json":
        rows = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(rows, list):
            raise ValueError("JSON file must be a list of URLs or objects.")
    elif suffix == ".csv":
        with path.open("r", encoding="utf-8-sig", newline="") as f:
            rows = list(csv.DictReader(f))
    else:
        raise ValueError("Unsupported format. Use .txt, .jsonl, .json, or .csv")

    urls = []
    for row in rows:
        url = row if isinstance(row, str) else (row.get("url") if isinstance(row, dict) else None)
        if url and str(url).strip():
            urls.append(str(url).strip())
    return urls


def add_article(service: ArticleService, args: argparse.Namespace) -> None:
    result = service.add(args.url)
    article = result.article
    if not result.created:
        print(f"Article already exists: {article.title} (ID: {article.id})")
        return
    print(f"Article saved: {article.title} (ID: {article.id})")
    if article.author:
        print(f"Author: {article.author}")
    if article.date:
        print(f"Date: {article.date}")
    print(f"Markdown: {article.markdown_path}")
    print(f"HTML: {article.html_path}")


def import_articles(service: ArticleService, args: argparse.Namespace) -> None:
    urls = _parse_import_file(Path(args.file))
    if not urls:
        print("No URLs found.")
        return

    saved = skipped = failed = 0
    for url, outcome in service.add_many(urls, workers=args.workers):
        if isinstance(outcome, ArticleError):
            failed += 1
            print(f"FAILED  {url}: {outcome}")
        elif outcome.created:
            saved += 1
            print(f"SAVED   [{outcome.article.id}] {outcome.article.title}")
        else:
            skipped += 1
            print(f"EXISTS  [{outcome.article.id}] {outcome.article.title}")
    print(f"\nImported {saved}, already saved {skipped}, failed {failed}.")


def list_articles(service: ArticleService, args: argparse.Namespace) -> None:
    articles = service.list_articles(query=args.query, author=args.author, limit=args.limit)
    if not articles:
        print("No articles found.")
        return

    for a in articles:
        byline = " - ".join(v for v in (a.author, a.date) if v)
        print(f"[{a.id}] {a.title}")
        if byline:
            print(f"     {byline}")
        print(f"     {a.url}")
    print(f"\n{len(articles)} article(s).")


def view_article(service: ArticleService, args: argparse.Namespace) -> None:
    view = service.view(parse_article_id(args.id))
    a = view.article
    print(f"Title: {a.title}")
    if a.author:
        print(f"Author: {a.author}")
    if a.date:
        print(f"Date: {a.date}")
    print(f"URL: {a.url}")
    print(f"Added: {a.created_at}")
    print(f"Markdown: {a.markdown_path}" + ("" if view.markdown_exists else " (file not found)"))
    print(f"HTML: {a.html_path}" + ("" if view.html_exists else " (file not found)"))
    if view.preview:
        print("\n--- Preview ---")
        print("\n".join(view.preview))


def read_article(service: ArticleService, args: argparse.Namespace) -> None:
    print(service.read(parse_article_id(args.id)))


def remove_article(service: ArticleService, args: argparse.Namespace) -> None:
    article = service.remove(parse_article_id(args.id))
    print(f"Removed article: {article.title} (ID: {article.id})")


def show_domains(service: ArticleService, args: argparse.Namespace) -> None:
    domains = service.supported_domains()
    print("Sites with dedicated extraction rules:")
    for domain in domains:
        print(f"  - {domain}")
    print("Other sites are handled by generic content detection.")
    print(f"\nArticles are stored in: {service.storage_dir}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="clipleaf: save web articles as Markdown and HTML.")
    parser.add_argument("--config", default=None, help="Config file path.")
    parser.add_argument("--db", default=None, help="SQLite database path (overrides config).")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log pipeline progress.")
    sub = parser.add_subparsers(dest="command", required=True)

    p_add = sub.add_parser("add", help="Save one article by URL.")
    p_add.add_argument("url", help="Article URL.")
    p_add.set_defaults(func=add_article)

    p_import = sub.add_parser("import", help="Save URLs listed in a txt/json/jsonl/csv file.")
    p_import.add_argument("--file", required=True, help="Input file path.")
    p_import.add_argument("--workers", type=int, default=4, help="Concurrent downloads.")
    p_import.set_defaults(func=import_articles)

    p_list = sub.add_parser("list", help="List saved articles.")
    p_list.add_argument("--query", default="", help="Title substring.")
    p_list.add_argument("--author", default="", help="Author substring.")
    p_list.add_argument("--limit", type=int, default=20, help="Max items.")
    p_list.set_defaults(func=list_articles)

    p_view = sub.add_parser("view", help="Show article details and a preview.")
    p_view.add_argument("id", help="Article ID.")
    p_view.set_defaults(func=view_article)

    p_read = sub.add_parser("read", help="Print an article's Markdown.")
    p_read.add_argument("id", help="Article ID.")
    p_read.set_defaults(func=read_article)

    p_remove = sub.add_parser("remove", help="Delete an article and its files.")
    p_remove.add_argument("id", help="Article ID.")
    p_remove.set_defaults(func=remove_article)

    p_domains = sub.add_parser("domains", help="List supported domains and the storage directory.")
    p_domains.set_defaults(func=show_domains)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config(Path(args.config) if args.config else None)
    if args.db:
        config.db_path = Path(args.db)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    service = ArticleService.from_config(config)
    try:
        args.func(service, args)
    except ArticleError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        service.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
