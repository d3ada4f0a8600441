from __future__ import annotations

import time
from dataclasses import dataclass

import structlog
from playwright.async_api import Browser

from site_checks.normalize import safe_url
from site_checks.outcome import ERROR, classify_http_status, classify_navigation_error

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CaptureOptions:
    viewport_width: int = 1920
    viewport_height: int = 1080
    navigation_timeout_seconds: float = 15.0
    screenshot_quality: int = 60
    wait_until: str = "networkidle"


@dataclass(frozen=True)
class PageCapture:
    url: str
    outcome: str
    http_status: int | None = None
    screenshot: bytes | None = None
    error: str | None = None
    screenshot_error: str | None = None
    elapsed_ms: float | None = None
    browser_infra_error: bool = False


def _is_browser_infra_error(exc: Exception) -> bool:
    name = type(exc).__name__
    msg = str(exc or "").lower()

    if name == "TargetClosedError":
        return True
    if "target page, context or browser has been closed" in msg:
        return True
    if "browser has been closed" in msg:
        return True
    # Renderer crashes come from resource pressure on our host, not the site.
    if "page crashed" in msg or "target crashed" in msg:
        return True
    if "connection closed while reading from the driver" in msg:
        return True
    return False


def _error_label(exc: Exception, stage: str, infra: bool) -> str:
    if infra:
        stage = "browser_infra_error"
    return f"{stage}: {type(exc).__name__}: {exc}"


async def capture_page(url: str, browser: Browser, options: CaptureOptions | None = None) -> PageCapture:
    """
    Navigate one page of the shared browser to ``url`` and take a viewport JPEG.

    The screenshot is attempted whatever the navigation outcome; an error page
    is still evidence. The page and its context are closed on every exit path.
    """
    opts = options or CaptureOptions()
    started = time.perf_counter()
    timeout_ms = int(float(opts.navigation_timeout_seconds) * 1000)

    context = None
    page = None
    try:
        try:
            context = await browser.new_context(
                viewport={"width": int(opts.viewport_width), "height": int(opts.viewport_height)}
            )
            page = await context.new_page()
        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            infra = _is_browser_infra_error(e)
            error = _error_label(e, "browser_context_error", infra)
            logger.warning("Browser page could not be opened", url=safe_url(url), error=error)
            return PageCapture(
                url=url,
                outcome=ERROR,
                error=error,
                elapsed_ms=round(elapsed_ms, 3),
                browser_infra_error=infra,
            )

        http_status = None
        error = None
        infra = False
        try:
            response = await page.goto(url, wait_until=opts.wait_until, timeout=timeout_ms)
        except Exception as e:
            infra = _is_browser_infra_error(e)
            # A crashed renderer says nothing about the site.
            outcome = ERROR if infra else classify_navigation_error(str(e))
            error = _error_label(e, "browser_goto_error", infra)
        else:
            http_status = response.status if response is not None else None
            outcome = classify_http_status(http_status)

        screenshot = None
        screenshot_error = None
        try:
            screenshot = await page.screenshot(
                type="jpeg",
                quality=int(opts.screenshot_quality),
                full_page=False,
            )
            logger.debug("Screenshot captured", url=safe_url(url), size=len(screenshot))
        except Exception as e:
            screenshot_error = f"{type(e).__name__}: {e}"
            logger.warning("Screenshot failed", url=safe_url(url), error=screenshot_error)

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        logger.info(
            "Page navigation finished",
            url=safe_url(url),
            outcome=outcome,
            http_status=http_status,
            error=error,
            elapsed_ms=round(elapsed_ms, 3),
        )
        return PageCapture(
            url=url,
            outcome=outcome,
            http_status=http_status,
            screenshot=screenshot,
            error=error,
            screenshot_error=screenshot_error,
            elapsed_ms=round(elapsed_ms, 3),
            browser_infra_error=infra,
        )
    finally:
        if page is not None:
            try:
                await page.close()
            except Exception:
                pass
        if context is not None:
            try:
                await context.close()
            except Exception:
                pass
