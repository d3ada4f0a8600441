from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

import structlog

from site_checks.config import CheckerConfig, load_config
from site_checks.logging_setup import configure_logging
from site_checks.normalize import normalize_url
from site_checks.outcome import PENDING
from site_checks.pipeline import BatchFatalError, run_batch
from site_checks.stores import open_stores

logger = structlog.get_logger(__name__)


def _read_urls_file(path: Path) -> list[str]:
    urls: list[str] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        s = line.strip()
        if s and not s.startswith("#"):
            urls.append(s)
    return urls


async def run_check(urls: list[str], config: CheckerConfig) -> int:
    try:
        async with open_stores(config) as stores:
            report = await run_batch(urls, config=config, stores=stores)
    except BatchFatalError as exc:
        logger.error("Check batch aborted", error=str(exc))
        print(json.dumps({"error": str(exc)}, ensure_ascii=False))
        return 2
    print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    return 0


async def run_add(urls: list[str], config: CheckerConfig) -> int:
    async with open_stores(config) as stores:
        for raw in urls:
            url = normalize_url(raw)
            await stores.records.upsert(url, {"image": None, "isValid": False, "ssl_status": PENDING})
            logger.info("Record admitted", url=url)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Site health checks: TLS, page load and screenshots")
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (INFO, WARNING, ...); defaults to the config value",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Check a batch of URLs once and print the results as JSON")
    check.add_argument("urls", nargs="*", help="URLs to check")
    check.add_argument("--urls-file", default=None, help="File with one URL per line")

    add = sub.add_parser("add", help="Admit URLs into the record store as pending")
    add.add_argument("urls", nargs="+", help="URLs to admit")

    serve = sub.add_parser("serve", help="Serve the HTTP trigger")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "serve":
        from site_checks.server import serve

        serve(host=args.host, port=args.port, config_path=args.config)
        return 0

    config = load_config(args.config)
    configure_logging(args.log_level or config.log_level)

    if args.command == "add":
        return asyncio.run(run_add(list(args.urls), config))

    urls = list(args.urls)
    if args.urls_file:
        urls.extend(_read_urls_file(Path(args.urls_file)))
    return asyncio.run(run_check(urls, config))


if __name__ == "__main__":
    sys.exit(main())
