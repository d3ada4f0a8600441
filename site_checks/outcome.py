"""Outcome taxonomy and the deterministic mapping from raw TLS/navigation signals to it."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from site_checks.page_fetch import PageCapture
    from site_checks.tls_inspect import TlsInspection


# load_status values
PENDING = "pending"
OK = "ok"
CLIENT_ERROR = "client_error"
SERVER_ERROR = "server_error"
NO_RESPONSE = "no_response"
NOT_LOADING = "not_loading"
REFUSED = "refused"
SSL_FAILED = "ssl_failed"
ERROR = "error"
UNKNOWN = "unknown"

# ssl_status values (plus PENDING, SSL_FAILED and UNKNOWN above)
VALID = "valid"
INVALID = "invalid"

# Reported when persisting a URL's outcome failed.
FAILED = "failed"

LOAD_STATUSES = frozenset(
    {PENDING, OK, CLIENT_ERROR, SERVER_ERROR, NO_RESPONSE, NOT_LOADING, REFUSED, SSL_FAILED, ERROR, UNKNOWN}
)
SSL_STATUSES = frozenset({PENDING, VALID, INVALID, SSL_FAILED, UNKNOWN})

# Chromium net error signatures, checked in order.
_NAVIGATION_ERROR_SIGNATURES: tuple[tuple[str, str], ...] = (
    ("ERR_NAME_NOT_RESOLVED", NOT_LOADING),
    ("ERR_CONNECTION_REFUSED", REFUSED),
    ("net::ERR_CERT", SSL_FAILED),
)


def classify_http_status(status: int | None) -> str:
    if status is None:
        return NO_RESPONSE
    try:
        code = int(status)
    except (TypeError, ValueError):
        return UNKNOWN
    if 200 <= code < 400:
        return OK
    if 400 <= code < 500:
        return CLIENT_ERROR
    if code >= 500:
        return SERVER_ERROR
    return UNKNOWN


def classify_navigation_error(message: str | None) -> str:
    msg = str(message or "")
    for signature, status in _NAVIGATION_ERROR_SIGNATURES:
        if signature in msg:
            return status
    return ERROR


def classify_outcome(tls: TlsInspection, capture: PageCapture | None) -> tuple[str, str]:
    """
    Returns (ssl_status, load_status).

    A failed TLS inspection short-circuits navigation, so the load status stays
    pending. Otherwise the navigation outcome is reported verbatim; anything
    outside the taxonomy becomes unknown.
    """
    if not tls.valid:
        return SSL_FAILED, PENDING
    if capture is None:
        return VALID, UNKNOWN
    outcome = capture.outcome
    if outcome not in LOAD_STATUSES or outcome == PENDING:
        return VALID, UNKNOWN
    return VALID, outcome
