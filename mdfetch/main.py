"""
Command-line entry point for mdfetch.

Commands:
    fetch <url>        Fetch a URL as markdown and cache it
    list               List cached references
    promote <ref_id>   Move a reference to the permanent docs directory
    delete <ref_id>    Delete a cached reference
    links <ref_id>     Fetch and cache every outbound link of a reference
    config             Show effective configuration
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from mdfetch.crawler.browser_fetcher import BrowserFetcher
from mdfetch.crawler.browser_lease import get_browser_lease_manager
from mdfetch.crawler.fetch_links import LinkFetchResult, fetch_links
from mdfetch.crawler.pipeline import FetchPipeline, InvalidThresholdsError
from mdfetch.errors import MdfetchError
from mdfetch.extractor.quality import format_quality_report
from mdfetch.storage.references import ReferenceStore
from mdfetch.utils.config import Settings, get_settings
from mdfetch.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

EXCERPT_PREVIEW_CHARS = 150


def _add_output_option(
    parser: argparse.ArgumentParser, choices: list[str] | None = None
) -> None:
    choices = choices or ["text", "json"]
    parser.add_argument(
        "--output", "-o",
        choices=choices,
        default=choices[0],
        help=f"Output format (default: {choices[0]})",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    common.add_argument("--temp-dir", help="Temporary reference directory")
    common.add_argument("--docs-dir", help="Permanent reference directory")

    fetching = argparse.ArgumentParser(add_help=False)
    fetching.add_argument(
        "--min-quality",
        type=int,
        help="Minimum quality score 0-100 (default: quality.min_score)",
    )
    fetching.add_argument(
        "--wait-strategy",
        choices=["networkidle", "domcontentloaded", "load"],
        help="Browser wait strategy",
    )

    parser = argparse.ArgumentParser(
        prog="mdfetch",
        description="mdfetch - fetch web pages as quality-checked markdown references",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch_parser = subparsers.add_parser(
        "fetch", parents=[common, fetching], help="Fetch a URL and cache it"
    )
    fetch_parser.add_argument("url", help="URL to fetch")
    fetch_parser.add_argument("--query", "-q", help="Free-text tag saved with the reference")
    fetch_parser.add_argument(
        "--force-fallback", "--force-playwright",
        dest="force_fallback",
        action="store_true",
        help="Skip the plain HTTP fetch and render in the browser",
    )
    fetch_parser.add_argument(
        "--refetch", action="store_true", help="Overwrite an existing reference for the URL"
    )
    _add_output_option(fetch_parser, ["text", "json", "summary", "path"])

    list_parser = subparsers.add_parser("list", parents=[common], help="List cached references")
    list_parser.add_argument(
        "--permanent", action="store_true", help="List the permanent directory"
    )
    _add_output_option(list_parser)

    promote_parser = subparsers.add_parser(
        "promote", parents=[common], help="Move a reference to the docs directory"
    )
    promote_parser.add_argument("ref_id", help="Reference id")
    _add_output_option(promote_parser)

    delete_parser = subparsers.add_parser("delete", parents=[common], help="Delete a reference")
    delete_parser.add_argument("ref_id", help="Reference id")
    _add_output_option(delete_parser)

    links_parser = subparsers.add_parser(
        "links", parents=[common, fetching], help="Fetch all links of a reference"
    )
    links_parser.add_argument("ref_id", help="Reference id")
    links_parser.add_argument(
        "--refetch", action="store_true", help="Overwrite references that already exist"
    )
    _add_output_option(links_parser)

    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Show effective configuration"
    )
    _add_output_option(config_parser, ["json"])

    return parser


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _store(args: argparse.Namespace, settings: Settings) -> ReferenceStore:
    return ReferenceStore(
        args.temp_dir or settings.paths.temp_dir,
        args.docs_dir or settings.paths.docs_dir,
    )


def _pipeline(args: argparse.Namespace, settings: Settings) -> FetchPipeline:
    return FetchPipeline(
        browser_fetcher=BrowserFetcher(wait_strategy=args.wait_strategy),
        min_score=args.min_quality if args.min_quality is not None else settings.quality.min_score,
    )


async def command_fetch(args: argparse.Namespace, settings: Settings) -> int:
    """Fetch one URL and save it."""
    store = _store(args, settings)
    pipeline = _pipeline(args, settings)
    try:
        outcome = await pipeline.fetch(args.url, force_fallback=args.force_fallback)
    finally:
        await pipeline.close()
        await get_browser_lease_manager().request_shutdown()

    if not outcome.success:
        if args.output == "json":
            _print_json(outcome.to_dict())
        else:
            print(f"Error: {outcome.error}", file=sys.stderr)
            if outcome.suggestion:
                print(f"Suggestion: {outcome.suggestion}", file=sys.stderr)
            if outcome.verdict:
                print(format_quality_report(outcome.verdict), file=sys.stderr)
        return 1

    saved = store.save(
        outcome.title or args.url,
        args.url,
        outcome.markdown or "",
        query=args.query,
        refetch=args.refetch,
    )
    size = len(outcome.markdown or "")

    if args.output == "json":
        _print_json(
            {
                "success": True,
                "ref_id": saved.ref_id,
                "path": str(saved.path),
                "already_exists": saved.already_exists,
                "title": outcome.title,
                "byline": outcome.byline,
                "site_name": outcome.site_name,
                "excerpt": outcome.excerpt,
                "url": args.url,
                "size": size,
                "tokens": round(size / 4),
                "quality": outcome.score,
                "used_fallback_renderer": outcome.used_fallback_renderer,
                "fallback_reason": (
                    outcome.fallback_reason.value if outcome.fallback_reason else None
                ),
                "query": args.query,
            }
        )
    elif args.output == "summary":
        print(f"{saved.ref_id}|{saved.path}")
    elif args.output == "path":
        print(saved.path)
    else:
        print(f"{'Already cached' if saved.already_exists else 'Cached'}: {saved.ref_id}")
        print(f"Title: {outcome.title}")
        if outcome.byline:
            print(f"Author: {outcome.byline}")
        if outcome.site_name:
            print(f"Source: {outcome.site_name}")
        if outcome.excerpt:
            excerpt = outcome.excerpt[:EXCERPT_PREVIEW_CHARS]
            ellipsis = "..." if len(outcome.excerpt) > EXCERPT_PREVIEW_CHARS else ""
            print(f"Summary: {excerpt}{ellipsis}")
        print(f"Path: {saved.path}")
        print(f"Size: {size} chars (~{round(size / 4)} tokens)")
        print(f"Quality: {outcome.score}/100")
        if outcome.used_fallback_renderer and outcome.fallback_reason:
            print(f"Browser: yes ({outcome.fallback_reason.value})")
    return 0


def command_list(args: argparse.Namespace, settings: Settings) -> int:
    """List cached references."""
    references = _store(args, settings).list_references(permanent=args.permanent)

    if args.output == "json":
        _print_json({"references": [r.to_dict() for r in references], "count": len(references)})
        return 0

    if not references:
        print("No cached references.")
        return 0

    print(f"Cached references ({len(references)}):")
    for reference in references:
        print(f"{reference.ref_id} | {reference.title} | {reference.fetched_date}")
        print(f"  {reference.url}")
        if reference.query:
            print(f"  query: {reference.query}")
    return 0


def command_promote(args: argparse.Namespace, settings: Settings) -> int:
    """Promote a reference to the docs directory."""
    result = _store(args, settings).promote(args.ref_id)
    if args.output == "json":
        _print_json({"success": True, **result.to_dict()})
    else:
        print(f"Promoted {args.ref_id}: {result.from_path} -> {result.to_path}")
    return 0


def command_delete(args: argparse.Namespace, settings: Settings) -> int:
    """Delete a cached reference."""
    path = _store(args, settings).delete(args.ref_id)
    if args.output == "json":
        _print_json({"success": True, "path": str(path)})
    else:
        print(f"Deleted {args.ref_id}: {path}")
    return 0


async def command_links(args: argparse.Namespace, settings: Settings) -> int:
    """Fetch every outbound link of a reference."""
    pipeline = _pipeline(args, settings)

    def report(result: LinkFetchResult) -> None:
        if args.output == "text":
            detail = result.ref_id or result.error or ""
            print(f"[{result.status}] {result.url} {detail}".rstrip())

    try:
        batch = await fetch_links(
            args.ref_id,
            refetch=args.refetch,
            store=_store(args, settings),
            pipeline=pipeline,
            lease_manager=get_browser_lease_manager(),
            on_progress=report,
        )
    finally:
        await pipeline.close()

    summary = batch.summary
    if args.output == "json":
        _print_json(batch.to_dict())
    elif not batch.results:
        print(f"No links found in {args.ref_id}.")
    else:
        print(f"new: {summary['new']}, cached: {summary['cached']}, failed: {summary['failed']}")
    return 1 if batch.results and summary["failed"] == len(batch.results) else 0


def command_config(args: argparse.Namespace, settings: Settings) -> int:
    """Print effective settings."""
    _print_json(settings.model_dump(mode="json"))
    return 0


async def run(args: argparse.Namespace) -> int:
    """Dispatch a parsed command.

    Returns:
        Process exit code.
    """
    settings = get_settings()
    configure_logging(
        log_level="DEBUG" if args.verbose else settings.general.log_level,
        json_format=True,
    )
    logger.debug("Command started", command=args.command)

    try:
        if args.command == "fetch":
            return await command_fetch(args, settings)
        if args.command == "list":
            return command_list(args, settings)
        if args.command == "promote":
            return command_promote(args, settings)
        if args.command == "delete":
            return command_delete(args, settings)
        if args.command == "links":
            return await command_links(args, settings)
        return command_config(args, settings)
    except MdfetchError as e:
        logger.error("Command failed", command=args.command, error_code=e.code.value)
        if args.output == "json":
            _print_json(e.to_dict())
        else:
            print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except InvalidThresholdsError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
