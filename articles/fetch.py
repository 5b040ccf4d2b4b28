import logging
import re
import socket
import threading
import time
from types import MappingProxyType
from typing import Mapping, Optional
from urllib.parse import urlparse

import requests
from requests.structures import CaseInsensitiveDict

from core import FetchError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
CHUNK_SIZE = 8 * 1024

DEFAULT_HEADERS: Mapping[str, str] = MappingProxyType({
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/133.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Connection": "keep-alive",
})

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml", "text/plain")


def _extract_meta_charset(raw: bytes) -> str:
    # Parse charset from early HTML bytes using latin-1 to avoid decode failures.
    head = raw[:8192].decode("latin-1", errors="ignore")
    m = re.search(r'(?is)<meta[^>]+charset=["\']?\s*([a-zA-Z0-9._-]+)\s*["\']?', head)
    if m:
        return m.group(1).strip().lower()
    m = re.search(r'(?is)<meta[^>]+content=["\'][^"\']*charset=([a-zA-Z0-9._-]+)[^"\']*["\']', head)
    if m:
        return m.group(1).strip().lower()
    return ""


def decode_html_bytes(raw: bytes, preferred_encoding: str = "") -> str:
    candidates: list[str] = []
    pref = (preferred_encoding or "").strip().lower()
    if pref:
        candidates.append(pref)
    meta_charset = _extract_meta_charset(raw)
    if meta_charset and meta_charset not in candidates:
        candidates.append(meta_charset)
    for enc in ("utf-8", "gb18030", "big5", "latin-1"):
        if enc not in candidates:
            candidates.append(enc)

    for enc in candidates:
        try:
            return raw.decode(enc, errors="strict")
        except (LookupError, UnicodeDecodeError):
            continue
    return raw.decode("utf-8", errors="replace")


def merge_headers(defaults: Mapping[str, str], headers: Optional[Mapping[str, str]]) -> CaseInsensitiveDict:
    """Fill in default headers the caller did not set."""
    merged = CaseInsensitiveDict(headers or {})
    for name, value in defaults.items():
        if name not in merged:
            merged[name] = value
    return merged


def _abort_read(resp: requests.Response, expired: threading.Event) -> None:
    """Shut the response socket down so a blocked body read returns at once."""
    expired.set()
    sock = getattr(getattr(resp.raw, "_connection", None), "sock", None)
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as exc:
        logger.debug("Could not shut down socket for %s: %s", resp.url, exc)


class FetchClient:
    """Fetches static HTML with a conventional browser header set.

    The default headers are fixed at construction time; per-request headers
    passed to :meth:`fetch` always win over them. ``timeout`` bounds connecting,
    each read and the whole body download.
    """

    def __init__(self, headers: Mapping[str, str] = DEFAULT_HEADERS,
                 timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.headers: Mapping[str, str] = MappingProxyType(dict(headers))
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self, url: str, headers: Optional[Mapping[str, str]] = None) -> str:
        """GET ``url`` and return the decoded HTML body.

        Raises FetchError for malformed URLs, connection failures, timeouts,
        non-success statuses and non-HTML responses. No retries.
        """
        try:
            parsed = urlparse(url or "")
            valid = parsed.scheme in {"http", "https"} and bool(parsed.hostname)
        except ValueError as exc:
            raise FetchError("malformed URL", url=url, cause=exc) from exc
        if not valid:
            raise FetchError("malformed URL", url=url)

        request_headers = merge_headers(self.headers, headers)
        deadline = time.monotonic() + self.timeout
        logger.debug("GET %s", url)
        try:
            resp = self.session.get(
                url,
                headers=request_headers,
                timeout=(self.timeout, self.timeout),
                stream=True,
                allow_redirects=True,
            )
        except requests.Timeout as exc:
            raise self._timed_out(url, cause=exc) from exc
        except requests.RequestException as exc:
            raise FetchError("request failed", url=url, cause=exc) from exc

        expired = threading.Event()
        watchdog = threading.Timer(max(0.0, deadline - time.monotonic()), _abort_read, (resp, expired))
        watchdog.daemon = True
        watchdog.start()
        try:
            if not 200 <= resp.status_code < 300:
                raise FetchError(f"HTTP error: {resp.status_code}", url=url, status_code=resp.status_code)

            content_type = (resp.headers.get("Content-Type") or "").lower()
            if content_type and not any(ct in content_type for ct in HTML_CONTENT_TYPES):
                raise FetchError(f"unsupported content type: {content_type}", url=url,
                                 status_code=resp.status_code)

            chunks: list[bytes] = []
            try:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    if expired.is_set() or time.monotonic() > deadline:
                        raise self._timed_out(url, status_code=resp.status_code)
                    if chunk:
                        chunks.append(chunk)
            except (requests.RequestException, OSError) as exc:
                if expired.is_set():
                    raise self._timed_out(url, status_code=resp.status_code, cause=exc) from exc
                raise FetchError("failed to read response body", url=url, cause=exc,
                                 status_code=resp.status_code) from exc
            # A shut-down socket can also end the body early without an error.
            if expired.is_set():
                raise self._timed_out(url, status_code=resp.status_code)
            raw = b"".join(chunks)
            encoding = resp.encoding if "charset" in content_type else ""
            return decode_html_bytes(raw, preferred_encoding=encoding or "")
        finally:
            watchdog.cancel()
            resp.close()

    def _timed_out(self, url: str, status_code: Optional[int] = None,
                   cause: Optional[BaseException] = None) -> FetchError:
        return FetchError(f"timed out after {self.timeout:g}s", url=url, status_code=status_code, cause=cause)
