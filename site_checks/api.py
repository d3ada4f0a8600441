from __future__ import annotations

from typing import Any, Callable

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from site_checks.config import CheckerConfig, load_config
from site_checks.pipeline import MESSAGE_EMPTY, BatchFatalError, launch_browser, run_batch
from site_checks.schema import CheckRequest, CheckResponse, ErrorResponse
from site_checks.stores import open_stores

logger = structlog.get_logger(__name__)


def create_app(
    config: CheckerConfig | None = None,
    *,
    stores_factory: Callable[[CheckerConfig], Any] = open_stores,
    browser_factory: Callable[[CheckerConfig], Any] = launch_browser,
) -> FastAPI:
    app = FastAPI(title="Site Checks", version="0.1.0")
    app.state.config = config or load_config()
    app.state.stores_factory = stores_factory
    app.state.browser_factory = browser_factory

    @app.get("/healthz")
    async def healthz() -> dict[str, Any]:
        return {"ok": True}

    @app.post(
        "/api/check",
        response_model=CheckResponse,
        response_model_exclude_none=True,
        responses={500: {"model": ErrorResponse}},
    )
    async def check_urls(payload: CheckRequest):
        urls = [str(u) for u in (payload.urls or [])]
        if not urls:
            return {"message": MESSAGE_EMPTY, "results": []}

        cfg: CheckerConfig = app.state.config
        try:
            async with app.state.stores_factory(cfg) as stores:
                report = await run_batch(urls, config=cfg, stores=stores, browser_factory=app.state.browser_factory)
        except BatchFatalError as exc:
            logger.error("Check batch aborted", error=str(exc), size=len(urls))
            return JSONResponse(status_code=500, content={"error": str(exc)})
        except Exception as exc:
            logger.exception("Check request handler error", error=f"{type(exc).__name__}: {exc}")
            return JSONResponse(status_code=500, content={"error": f"{type(exc).__name__}: {exc}"})

        return report.to_dict()

    return app
