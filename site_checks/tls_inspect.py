from __future__ import annotations

import asyncio
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlsplit

import structlog

from site_checks.normalize import safe_url

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TlsInspection:
    url: str
    valid: bool
    status_code: int | None = None
    expiry: str | None = None
    common_name: str | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)


def _tls_host_port_from_url(url: str) -> tuple[str, int] | None:
    try:
        parts = urlsplit(str(url or "").strip())
        port = parts.port
    except Exception:
        return None
    if (parts.scheme or "").lower() != "https":
        return None
    host = (parts.hostname or "").strip()
    if not host:
        return None
    return host, int(port or 443)


def _request_target(url: str) -> str:
    parts = urlsplit(str(url or "").strip())
    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    return path


def _parse_cert_not_after(cert: dict[str, Any]) -> datetime | None:
    # Python ssl.getpeercert() returns e.g. "Feb  6 12:00:00 2026 GMT"
    s = cert.get("notAfter")
    if not isinstance(s, str) or not s.strip():
        return None
    try:
        dt = datetime.strptime(s.strip(), "%b %d %H:%M:%S %Y %Z")
    except Exception:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _cert_common_name(cert: dict[str, Any]) -> str | None:
    # subject is a tuple of RDNs, each a tuple of (key, value) pairs.
    subject = cert.get("subject") or ()
    for rdn in subject:
        for item in rdn:
            if len(item) == 2 and item[0] == "commonName":
                return str(item[1])
    return None


def _parse_status_line(line: bytes) -> int | None:
    # "HTTP/1.1 301 Moved Permanently"
    parts = line.decode("latin-1", errors="replace").split()
    if len(parts) < 2 or not parts[0].upper().startswith("HTTP/"):
        return None
    try:
        return int(parts[1])
    except ValueError:
        return None


async def _close_writer(writer: asyncio.StreamWriter, *, timeout_seconds: float) -> None:
    # A peer that never answers close_notify would otherwise hold us for the
    # loop's SSL shutdown timeout (30s).
    try:
        writer.close()
        await asyncio.wait_for(writer.wait_closed(), timeout=timeout_seconds)
    except Exception as exc:
        logger.debug("TLS stream close did not finish, aborting", error=f"{type(exc).__name__}: {exc}")
        writer.transport.abort()


async def _read_status_code(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    *,
    host: str,
    target: str,
    timeout_seconds: float,
) -> int | None:
    request = (
        f"HEAD {target} HTTP/1.1\r\n"
        f"Host: {host}\r\n"
        "User-Agent: site-checks\r\n"
        "Accept: */*\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    try:
        writer.write(request.encode("ascii", errors="ignore"))
        await writer.drain()
        line = await asyncio.wait_for(reader.readline(), timeout=timeout_seconds)
    except Exception as exc:
        logger.debug("TLS status probe failed", host=host, error=f"{type(exc).__name__}: {exc}")
        return None
    return _parse_status_line(line)


async def inspect_tls(url: str, *, timeout_seconds: float = 10.0) -> TlsInspection:
    """
    Handshake with the URL's host and read its certificate.

    Failures (DNS, refusal, timeout, handshake/verification) come back as
    ``valid=False`` with an error string; nothing is raised.
    """
    target = _tls_host_port_from_url(url)
    if target is None:
        return TlsInspection(url=url, valid=False, error=f"not_an_https_url: {safe_url(url)!r}")
    host, port = target

    ctx = ssl.create_default_context()
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED

    loop = asyncio.get_running_loop()
    deadline = loop.time() + max(1.0, float(timeout_seconds))

    writer = None
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host=host, port=port, ssl=ctx, server_hostname=host),
            timeout=max(1.0, float(timeout_seconds)),
        )
        sslobj = writer.get_extra_info("ssl_object")
        cert = sslobj.getpeercert() if sslobj else {}
        if not isinstance(cert, dict):
            cert = {}

        not_after = _parse_cert_not_after(cert)
        status_code = await _read_status_code(
            reader,
            writer,
            host=host,
            target=_request_target(url),
            timeout_seconds=max(0.1, deadline - loop.time()),
        )
        return TlsInspection(
            url=url,
            valid=True,
            status_code=status_code,
            expiry=not_after.isoformat() if not_after is not None else None,
            common_name=_cert_common_name(cert),
            details={
                "host": host,
                "port": port,
                "not_after": cert.get("notAfter"),
                "issuer": cert.get("issuer"),
                "subjectAltName": cert.get("subjectAltName"),
            },
        )
    except asyncio.TimeoutError:
        return TlsInspection(
            url=url,
            valid=False,
            error=f"tls_timeout: no handshake within {float(timeout_seconds):.1f}s",
            details={"host": host, "port": port},
        )
    except Exception as exc:
        return TlsInspection(
            url=url,
            valid=False,
            error=f"{type(exc).__name__}: {exc}",
            details={"host": host, "port": port},
        )
    finally:
        if writer is not None:
            await _close_writer(writer, timeout_seconds=max(0.1, deadline - loop.time()))
