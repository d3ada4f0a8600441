from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from typing import Any

import pytest
import structlog

from site_checks.stores import StoreError, Stores


class FakeRecordStore:
    def __init__(self, urls: list[str] | None = None) -> None:
        self.rows: dict[str, dict[str, Any]] = {u: {"ssl_status": "pending", "isValid": False} for u in urls or []}
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.fail_urls: set[str] = set()

    async def upsert(self, url: str, fields: dict[str, Any]) -> None:
        self.rows.setdefault(url, {}).update(fields)

    async def update(self, url: str, fields: dict[str, Any]) -> bool:
        self.updates.append((url, dict(fields)))
        if url in self.fail_urls:
            raise StoreError(f"record update failed for {url}")
        if url not in self.rows:
            return False
        self.rows[url].update(fields)
        return True

    async def get(self, url: str) -> dict[str, Any] | None:
        return self.rows.get(url)


class FakeObjectStore:
    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.fail_when_name_contains: set[str] = set()

    async def upload(self, name: str, data: bytes, *, content_type: str) -> str:
        if any(s in name for s in self.fail_when_name_contains):
            raise StoreError(f"upload failed: {name}")
        if name in self.objects:
            raise StoreError(f"upload failed: object already exists: {name}")
        self.objects[name] = (data, content_type)
        return f"https://cdn.example/{name}"


class FakeBrowserFactory:
    """Stands in for the shared browser launcher and counts its lifecycle."""

    def __init__(self, *, fail_launch: Exception | None = None) -> None:
        self.starts = 0
        self.stops = 0
        self.fail_launch = fail_launch
        self.browser = object()

    def __call__(self, config):
        @asynccontextmanager
        async def _cm():
            self.starts += 1
            if self.fail_launch is not None:
                raise self.fail_launch
            try:
                yield self.browser
            finally:
                self.stops += 1

        return _cm()


@pytest.fixture(autouse=True)
def _reset_structlog():
    # configure_logging() binds structlog to the per-test captured stderr; restore
    # global defaults so later tests don't log to a closed stream.
    yield
    structlog.reset_defaults()
    # Module-level lazy proxies cache their bound logger on first use; drop it too.
    for name, module in list(sys.modules.items()):
        if name.startswith("site_checks"):
            proxy = getattr(module, "logger", None)
            if isinstance(proxy, structlog._config.BoundLoggerLazyProxy):
                vars(proxy).pop("bind", None)


@pytest.fixture
def record_store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def object_store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def stores(record_store: FakeRecordStore, object_store: FakeObjectStore) -> Stores:
    return Stores(records=record_store, objects=object_store)


@pytest.fixture
def browser_factory() -> FakeBrowserFactory:
    return FakeBrowserFactory()
