from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

import structlog

from site_checks.normalize import safe_url, screenshot_file_name
from site_checks.outcome import FAILED, OK, PENDING, SSL_FAILED, UNKNOWN, VALID
from site_checks.page_fetch import PageCapture
from site_checks.stores import ObjectStore, RecordStore
from site_checks.tls_inspect import TlsInspection

logger = structlog.get_logger(__name__)

SCREENSHOT_CONTENT_TYPE = "image/jpeg"


@dataclass(frozen=True)
class PerURLResult:
    url: str
    status: str
    ssl_status: str
    image_url: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"url": self.url, "status": self.status, "ssl_status": self.ssl_status}
        if self.image_url is not None:
            out["imageUrl"] = self.image_url
        if self.error is not None:
            out["error"] = self.error
        return out


def failed_result(url: str, error: str) -> PerURLResult:
    return PerURLResult(url=url, status=FAILED, ssl_status=UNKNOWN, error=error)


class ResultPersister:
    """Writes one URL's classified outcome back to the stores."""

    def __init__(
        self,
        records: RecordStore,
        objects: ObjectStore,
        *,
        screenshot_prefix: str = "",
        clock: Callable[[], datetime] | None = None,
    ):
        self.records = records
        self.objects = objects
        self.screenshot_prefix = screenshot_prefix
        self._clock = clock

    async def _update(self, url: str, fields: dict[str, Any]) -> None:
        found = await self.records.update(url, fields)
        if not found:
            logger.warning("No record matched URL; nothing updated", url=safe_url(url))

    async def record_tls_failure(self, url: str, tls: TlsInspection) -> PerURLResult:
        try:
            await self._update(
                url,
                {"image": None, "isValid": False, "load_status": PENDING, "ssl_status": SSL_FAILED},
            )
        except Exception as exc:
            return await self.record_failure(url, f"record update failed: {type(exc).__name__}: {exc}")
        return PerURLResult(url=url, status=SSL_FAILED, ssl_status=SSL_FAILED, error=tls.error)

    async def record_capture(
        self,
        url: str,
        tls: TlsInspection,
        capture: PageCapture,
        *,
        ssl_status: str,
        load_status: str,
    ) -> PerURLResult:
        image_url = None
        try:
            if capture.screenshot:
                now = self._clock() if self._clock is not None else None
                name = screenshot_file_name(url, prefix=self.screenshot_prefix, now=now)
                logger.debug("Uploading screenshot", url=safe_url(url), name=name, size=len(capture.screenshot))
                image_url = await self.objects.upload(name, capture.screenshot, content_type=SCREENSHOT_CONTENT_TYPE)

            fields: dict[str, Any] = {
                "image": image_url,
                "isValid": True,
                "load_status": load_status,
                "ssl_status": ssl_status,
            }
            if ssl_status == VALID:
                fields["ssl_name"] = tls.common_name
                fields["ssl_expiry"] = tls.expiry
            await self._update(url, fields)
        except Exception as exc:
            return await self.record_failure(url, f"{type(exc).__name__}: {exc}")

        error = capture.error if load_status != OK else None
        return PerURLResult(url=url, status=load_status, ssl_status=ssl_status, image_url=image_url, error=error)

    async def record_failure(self, url: str, error: str) -> PerURLResult:
        logger.error("Persisting URL result failed", url=safe_url(url), error=error)
        try:
            await self._update(url, {"image": None, "isValid": False, "ssl_status": UNKNOWN})
        except Exception as exc:
            logger.error(
                "Marking record as failed also failed",
                url=safe_url(url),
                error=f"{type(exc).__name__}: {exc}",
            )
        return failed_result(url, error)
