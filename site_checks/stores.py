"""Record store and object store adapters.

The checker only needs two narrow capabilities from storage: a table of URL
records supporting upsert and per-key update, and a blob store that accepts
JPEG bytes and hands back a public address. Two backends are provided:

- Supabase (hosted Postgres REST + storage API) over ``httpx``.
- A single-host backend: SQLite for records and a directory for screenshots.
"""

from __future__ import annotations

import asyncio
import sqlite3
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Protocol
from urllib.parse import quote

import httpx
import structlog

from site_checks.config import CheckerConfig

logger = structlog.get_logger(__name__)

RECORD_FIELDS = ("image", "isValid", "load_status", "ssl_status", "ssl_name", "ssl_expiry")


class StoreError(RuntimeError):
    """A record or object store write failed."""


class RecordStore(Protocol):
    async def upsert(self, url: str, fields: dict[str, Any]) -> None: ...

    async def update(self, url: str, fields: dict[str, Any]) -> bool: ...

    async def get(self, url: str) -> dict[str, Any] | None: ...


class ObjectStore(Protocol):
    async def upload(self, name: str, data: bytes, *, content_type: str) -> str: ...


def _check_fields(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = sorted(k for k in fields if k not in RECORD_FIELDS)
    if unknown:
        raise ValueError(f"Unknown record fields: {unknown}")
    return dict(fields)


def _error_text(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except Exception:
        data = None
    if isinstance(data, dict):
        msg = data.get("message") or data.get("error") or data.get("msg")
        if msg:
            return str(msg)[:500]
    return (resp.text or resp.reason_phrase or "")[:500]


class SupabaseRecordStore:
    def __init__(self, client: httpx.AsyncClient, *, base_url: str, api_key: str, table: str, url_column: str):
        self._client = client
        self._endpoint = f"{base_url.rstrip('/')}/rest/v1/{quote(table)}"
        self._headers = {"apikey": api_key, "Authorization": f"Bearer {api_key}"}
        self._url_column = url_column

    async def upsert(self, url: str, fields: dict[str, Any]) -> None:
        row = {self._url_column: url, **_check_fields(fields)}
        try:
            resp = await self._client.post(
                self._endpoint,
                headers={**self._headers, "Prefer": "resolution=merge-duplicates,return=minimal"},
                params={"on_conflict": self._url_column},
                json=row,
            )
        except httpx.RequestError as exc:
            raise StoreError(f"record upsert failed: {type(exc).__name__}: {exc}") from exc
        if resp.status_code >= 400:
            raise StoreError(f"record upsert failed: HTTP {resp.status_code}: {_error_text(resp)}")

    async def update(self, url: str, fields: dict[str, Any]) -> bool:
        try:
            resp = await self._client.patch(
                self._endpoint,
                headers={**self._headers, "Prefer": "return=representation"},
                params={self._url_column: f"eq.{url}"},
                json=_check_fields(fields),
            )
        except httpx.RequestError as exc:
            raise StoreError(f"record update failed: {type(exc).__name__}: {exc}") from exc
        if resp.status_code >= 400:
            raise StoreError(f"record update failed: HTTP {resp.status_code}: {_error_text(resp)}")
        try:
            rows = resp.json()
        except Exception:
            return True
        return bool(rows) if isinstance(rows, list) else True

    async def get(self, url: str) -> dict[str, Any] | None:
        try:
            resp = await self._client.get(
                self._endpoint,
                headers=self._headers,
                params={"select": "*", self._url_column: f"eq.{url}"},
            )
        except httpx.RequestError as exc:
            raise StoreError(f"record read failed: {type(exc).__name__}: {exc}") from exc
        if resp.status_code >= 400:
            raise StoreError(f"record read failed: HTTP {resp.status_code}: {_error_text(resp)}")
        rows = resp.json()
        if isinstance(rows, list) and rows and isinstance(rows[0], dict):
            return rows[0]
        return None


class SupabaseObjectStore:
    def __init__(self, client: httpx.AsyncClient, *, base_url: str, api_key: str, bucket: str):
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._headers = {"apikey": api_key, "Authorization": f"Bearer {api_key}"}
        self._bucket = bucket

    def public_url(self, name: str) -> str:
        return f"{self._base_url}/storage/v1/object/public/{quote(self._bucket)}/{quote(name)}"

    async def upload(self, name: str, data: bytes, *, content_type: str) -> str:
        url = f"{self._base_url}/storage/v1/object/{quote(self._bucket)}/{quote(name)}"
        try:
            resp = await self._client.post(
                url,
                headers={**self._headers, "Content-Type": content_type, "x-upsert": "false"},
                content=data,
            )
        except httpx.RequestError as exc:
            raise StoreError(f"upload failed: {type(exc).__name__}: {exc}") from exc
        if resp.status_code >= 400:
            raise StoreError(f"upload failed: HTTP {resp.status_code}: {_error_text(resp)}")
        return self.public_url(name)


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing db_path")
    Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000;")
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except Exception:
        pass
    return conn


class SqliteRecordStore:
    def __init__(self, db_path: str):
        self.db_path = str(db_path)
        self._ensured = False

    def _conn(self) -> sqlite3.Connection:
        conn = _connect(self.db_path)
        if not self._ensured:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS url_records (
                  url TEXT PRIMARY KEY,
                  image TEXT,
                  isValid INTEGER NOT NULL DEFAULT 0,
                  load_status TEXT NOT NULL DEFAULT 'pending',
                  ssl_status TEXT NOT NULL DEFAULT 'pending',
                  ssl_name TEXT,
                  ssl_expiry TEXT,
                  updated_at_ts REAL NOT NULL
                );
                """
            )
            self._ensured = True
        return conn

    def _upsert_sync(self, url: str, fields: dict[str, Any]) -> None:
        conn = self._conn()
        try:
            conn.execute(
                "INSERT INTO url_records (url, updated_at_ts) VALUES (?, ?) ON CONFLICT(url) DO NOTHING",
                (url, time.time()),
            )
            if fields:
                self._update_conn(conn, url, fields)
        finally:
            conn.close()

    @staticmethod
    def _update_conn(conn: sqlite3.Connection, url: str, fields: dict[str, Any]) -> bool:
        cols = list(fields.keys())
        values = [int(bool(fields[c])) if c == "isValid" else fields[c] for c in cols]
        assignments = ", ".join(f"{c}=?" for c in cols)
        cur = conn.execute(
            f"UPDATE url_records SET {assignments}, updated_at_ts=? WHERE url=?",
            (*values, time.time(), url),
        )
        return int(cur.rowcount or 0) > 0

    def _update_sync(self, url: str, fields: dict[str, Any]) -> bool:
        conn = self._conn()
        try:
            return self._update_conn(conn, url, fields)
        finally:
            conn.close()

    def _get_sync(self, url: str) -> dict[str, Any] | None:
        conn = self._conn()
        try:
            row = conn.execute("SELECT * FROM url_records WHERE url=?", (url,)).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        out = dict(row)
        out["isValid"] = bool(out.get("isValid"))
        return out

    async def upsert(self, url: str, fields: dict[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._upsert_sync, url, _check_fields(fields))
        except sqlite3.Error as exc:
            raise StoreError(f"record upsert failed: {type(exc).__name__}: {exc}") from exc

    async def update(self, url: str, fields: dict[str, Any]) -> bool:
        try:
            return await asyncio.to_thread(self._update_sync, url, _check_fields(fields))
        except sqlite3.Error as exc:
            raise StoreError(f"record update failed: {type(exc).__name__}: {exc}") from exc

    async def get(self, url: str) -> dict[str, Any] | None:
        try:
            return await asyncio.to_thread(self._get_sync, url)
        except sqlite3.Error as exc:
            raise StoreError(f"record read failed: {type(exc).__name__}: {exc}") from exc


class LocalObjectStore:
    def __init__(self, root: str, *, public_base_url: str = ""):
        self.root = Path(root)
        self.public_base_url = (public_base_url or "").rstrip("/")

    def _write_sync(self, name: str, data: bytes) -> Path:
        root = self.root.resolve()
        path = (root / name).resolve()
        if root not in path.parents:
            raise StoreError(f"upload failed: object name escapes store root: {name!r}")
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            # "x" refuses to overwrite an existing object.
            with open(path, "xb") as f:
                f.write(data)
        except FileExistsError as exc:
            raise StoreError(f"upload failed: object already exists: {name}") from exc
        except OSError as exc:
            raise StoreError(f"upload failed: {type(exc).__name__}: {exc}") from exc
        return path

    async def upload(self, name: str, data: bytes, *, content_type: str) -> str:
        path = await asyncio.to_thread(self._write_sync, name, data)
        if self.public_base_url:
            return f"{self.public_base_url}/{quote(name)}"
        return path.as_uri()


@dataclass(frozen=True)
class Stores:
    records: RecordStore
    objects: ObjectStore


@asynccontextmanager
async def open_stores(config: CheckerConfig) -> AsyncIterator[Stores]:
    """Build the configured record/object store pair; closes any HTTP client on exit."""
    if config.store_backend == "local":
        yield Stores(
            records=SqliteRecordStore(config.local_db_path),
            objects=LocalObjectStore(config.local_artifacts_dir, public_base_url=config.local_public_base_url),
        )
        return

    if not config.supabase_url or not config.supabase_key:
        raise ValueError("supabase store_backend requires supabase_url and supabase_key")

    async with httpx.AsyncClient(timeout=config.store_timeout_seconds) as client:
        logger.debug("Opened Supabase stores", table=config.records_table, bucket=config.screenshot_bucket)
        yield Stores(
            records=SupabaseRecordStore(
                client,
                base_url=config.supabase_url,
                api_key=config.supabase_key,
                table=config.records_table,
                url_column=config.url_column,
            ),
            objects=SupabaseObjectStore(
                client,
                base_url=config.supabase_url,
                api_key=config.supabase_key,
                bucket=config.screenshot_bucket,
            ),
        )
