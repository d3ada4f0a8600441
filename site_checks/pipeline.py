"""Batch pipeline: normalize, inspect TLS, capture the page, classify and persist each URL.

One browser process is shared by the whole batch. At most ``config.concurrency``
URLs are in flight at once; the rest wait in submission order. Every URL gets a
result entry, in input order, whatever happens to its siblings.
"""

from __future__ import annotations

import asyncio
import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Callable

import structlog
from playwright.async_api import Browser, async_playwright

from site_checks.config import CheckerConfig
from site_checks.normalize import normalize_url, safe_url
from site_checks.outcome import OK, classify_outcome
from site_checks.page_fetch import CaptureOptions, capture_page
from site_checks.persist import PerURLResult, ResultPersister
from site_checks.stores import Stores
from site_checks.tls_inspect import inspect_tls

logger = structlog.get_logger(__name__)

MESSAGE_EMPTY = "No URLs provided."
MESSAGE_DONE = "Processing completed."


class BatchFatalError(RuntimeError):
    """The shared browser could not be started, so no URL in the batch can be checked."""


@dataclass(frozen=True)
class BatchReport:
    message: str
    results: list[PerURLResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"message": self.message, "results": [r.to_dict() for r in self.results]}


def find_chromium_executable() -> str | None:
    env_path = os.getenv("CHROMIUM_PATH")
    if env_path and Path(env_path).exists():
        return env_path

    candidates = [
        "/usr/bin/chromium",
        "/usr/bin/chromium-browser",
        "/usr/bin/google-chrome",
        "/usr/bin/google-chrome-stable",
        "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    ]
    for path in candidates:
        if Path(path).exists():
            return path
    return None


def _browser_launch_kwargs(config: CheckerConfig) -> dict[str, Any]:
    args = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-gpu",
        "--disable-extensions",
        "--disable-background-networking",
        "--disable-sync",
        "--no-first-run",
        "--no-default-browser-check",
    ]

    shm_bytes = 0
    try:
        st = os.statvfs("/dev/shm")
        shm_bytes = int(st.f_frsize) * int(st.f_blocks)
    except Exception:
        shm_bytes = 0
    if shm_bytes < (512 * 1024 * 1024):
        # Containers default to a tiny /dev/shm; renderers crash without this.
        args.append("--disable-dev-shm-usage")

    launch_kwargs: dict[str, Any] = {"headless": bool(config.browser_headless), "args": args}
    chromium_path = config.chromium_path or find_chromium_executable()
    if chromium_path:
        launch_kwargs["executable_path"] = chromium_path
    return launch_kwargs


@asynccontextmanager
async def launch_browser(config: CheckerConfig) -> AsyncIterator[Browser]:
    """Start one Chromium for a batch; it is closed exactly once on every exit path."""
    try:
        playwright = await async_playwright().start()
    except Exception as exc:
        raise BatchFatalError(f"playwright_start_failed: {type(exc).__name__}: {exc}") from exc

    browser: Browser | None = None
    try:
        try:
            browser = await playwright.chromium.launch(**_browser_launch_kwargs(config))
        except Exception as exc:
            raise BatchFatalError(f"browser_launch_failed: {type(exc).__name__}: {exc}") from exc
        logger.info("Browser launched", headless=config.browser_headless)
        yield browser
    finally:
        if browser is not None:
            try:
                await browser.close()
            except Exception as exc:
                logger.warning("Browser close failed", error=f"{type(exc).__name__}: {exc}")
            else:
                logger.info("Browser closed")
        try:
            await playwright.stop()
        except Exception as exc:
            logger.warning("Playwright stop failed", error=f"{type(exc).__name__}: {exc}")


def capture_options(config: CheckerConfig) -> CaptureOptions:
    return CaptureOptions(
        viewport_width=config.viewport_width,
        viewport_height=config.viewport_height,
        navigation_timeout_seconds=config.navigation_timeout_seconds,
        screenshot_quality=config.screenshot_quality,
    )


async def check_one_url(
    url: str,
    *,
    browser: Browser,
    persister: ResultPersister,
    options: CaptureOptions,
    tls_timeout_seconds: float,
) -> PerURLResult:
    target = normalize_url(url)

    tls = await inspect_tls(target, timeout_seconds=tls_timeout_seconds)
    if not tls.valid:
        logger.warning("TLS check failed; skipping page capture", url=safe_url(url), error=tls.error)
        return await persister.record_tls_failure(url, tls)

    capture = await capture_page(target, browser, options)
    ssl_status, load_status = classify_outcome(tls, capture)
    return await persister.record_capture(url, tls, capture, ssl_status=ssl_status, load_status=load_status)


async def run_batch(
    urls: list[str] | None,
    *,
    config: CheckerConfig,
    stores: Stores,
    browser_factory: Callable[[CheckerConfig], Any] = launch_browser,
) -> BatchReport:
    """
    Check every URL of the batch and return one result per input URL, in order.

    Raises ``BatchFatalError`` only when the shared browser cannot be started.
    """
    batch = list(urls or [])
    if not batch:
        return BatchReport(message=MESSAGE_EMPTY, results=[])

    started = time.perf_counter()
    persister = ResultPersister(stores.records, stores.objects, screenshot_prefix=config.screenshot_prefix)
    options = capture_options(config)
    semaphore = asyncio.Semaphore(max(1, int(config.concurrency)))

    logger.info("Running check batch", size=len(batch), concurrency=config.concurrency)

    async with browser_factory(config) as browser:

        async def _safe_check(url: str) -> PerURLResult:
            async with semaphore:
                try:
                    return await check_one_url(
                        url,
                        browser=browser,
                        persister=persister,
                        options=options,
                        tls_timeout_seconds=config.tls_timeout_seconds,
                    )
                except Exception as exc:
                    err = f"{type(exc).__name__}: {exc}"
                    logger.exception("URL check crashed", url=safe_url(url), error=err)
                    return await persister.record_failure(url, err)

        tasks = [asyncio.create_task(_safe_check(url)) for url in batch]
        results = list(await asyncio.gather(*tasks))

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    logger.info(
        "Check batch finished",
        size=len(results),
        ok=sum(1 for r in results if r.status == OK),
        elapsed_ms=round(elapsed_ms, 3),
    )
    return BatchReport(message=MESSAGE_DONE, results=results)
