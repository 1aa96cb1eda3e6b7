"""
Command line entry point.

    python -m shieldfetch fetch https://example.com --browser auto
    python -m shieldfetch batch urls.txt --concurrency 3 --out run1
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .options import BrowserMode, FetchOptions
from .results import BatchProgress, FetchResult
from .service import CrawlerService
from .settings import load_crawler_config
from .storage import save_df

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shieldfetch", description="Paced, block-aware page fetcher")
    parser.add_argument("--config", help="Path to crawler_config.yaml")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--browser", choices=[m.value for m in BrowserMode], default=BrowserMode.AUTO.value)
    parser.add_argument("--timeout", type=float, help="Direct fetch timeout in seconds")
    parser.add_argument("--no-delay", action="store_true", help="Disable the random pre-request delay")
    sub = parser.add_subparsers(dest="command", required=True)

    fetch = sub.add_parser("fetch", help="Fetch a single URL")
    fetch.add_argument("url")
    fetch.add_argument("--html", action="store_true", help="Print the document body instead of a summary")

    batch = sub.add_parser("batch", help="Fetch URLs listed one per line in a file")
    batch.add_argument("file", type=Path)
    batch.add_argument("--concurrency", type=int)
    batch.add_argument("--out", default="batch_results", help="CSV name under results/")
    return parser


def _summary(result: FetchResult) -> dict:
    row = result.to_row()
    row["elapsed_s"] = round(row["elapsed_s"], 3)
    return row


def _read_urls(path: Path) -> list[str]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [ln.strip() for ln in lines if ln.strip() and not ln.strip().startswith("#")]


def _log_progress(progress: BatchProgress) -> None:
    logger.info(
        "Batch progress: %.2f%% (%d/%d) %s",
        progress.percentage, progress.completed, progress.total, progress.current_url,
    )


async def _run(args: argparse.Namespace) -> int:
    config = load_crawler_config(args.config)
    options = FetchOptions(
        use_browser=args.browser,
        timeout_s=args.timeout,
        random_delay=not args.no_delay,
    )

    async with CrawlerService(config) as crawler:
        if args.command == "fetch":
            result = await crawler.fetch_one(args.url, options)
            if args.html and result.success:
                sys.stdout.write(result.html)
            else:
                print(json.dumps(_summary(result), indent=2))
            return 0 if result.success else 1

        urls = _read_urls(args.file)
        batch = await crawler.fetch_batch(
            urls, options, concurrency=args.concurrency, on_progress=_log_progress
        )
        out_path = save_df(batch.to_frame(), args.out)
        if out_path:
            logger.info("Saved %s", out_path)
        print(json.dumps(vars(batch.summary), indent=2))
        return 0 if batch.summary.failed == 0 else 1


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    return asyncio.run(_run(args))
