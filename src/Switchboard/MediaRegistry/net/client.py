"""
HTTPX Client Factory & Redirect-Following Download Protocol.

Provides:
- Client construction with explicit connect/read timeouts
- Debug-level event hooks per request/response
- Manual redirect following (no auto-follow) with a fixed hop bound and
  per-hop cookie propagation
- Translation of httpx failures into the registry error taxonomy
- A file-like adapter over a streamed response body

Architecture:
1. build_http_client(config) → httpx.Client with follow_redirects=False
2. open_download(client, url) walks 301/302/303/307 hops, returns Download
3. Download.stream() feeds the storage pipeline; body read failures raise
   DataStreamError
"""

from __future__ import annotations

import io
import logging
import time
from dataclasses import dataclass
from email.message import Message
from typing import Optional
from urllib.parse import urljoin

import httpx

from Switchboard.MediaRegistry.config.models import HttpClientConfig
from Switchboard.MediaRegistry.errors import (
    BadUrlError,
    DataStreamError,
    LinkConnectionError,
    ResponseError,
    StatusError,
    TooManyRedirectsError,
)

logger = logging.getLogger(__name__)

MAX_ALLOWED_REDIRECTS = 5
REDIRECT_STATUSES = frozenset({301, 302, 303, 307})
STREAM_CHUNK_SIZE = 1 << 16
_INVALID_LOCATION_PREFIX = "Invalid URL in location header"

# ============================================================================
# Client Construction
# ============================================================================


def build_http_client(
    config: HttpClientConfig, *, transport: Optional[httpx.BaseTransport] = None
) -> httpx.Client:
    """Build an HTTPX client for downloads.

    Args:
        config: HTTP client settings (timeouts, TLS, user agent)
        transport: Optional transport override (tests use ``httpx.MockTransport``)

    Returns:
        httpx.Client that never follows redirects on its own. Its cookie jar
        is emptied after every hop; cookies travel only via open_download.
    """
    timeout = httpx.Timeout(config.timeout_read_s, connect=config.timeout_connect_s)
    client = httpx.Client(
        transport=transport,
        timeout=timeout,
        verify=config.verify_tls,
        headers={"User-Agent": config.user_agent, "Accept": "*/*"},
        follow_redirects=False,  # hops are walked by open_download
    )
    client.event_hooks["request"] = [_on_request]
    client.event_hooks["response"] = [_on_response]
    logger.debug(
        f"HTTPX client created: connect={config.timeout_connect_s}s read={config.timeout_read_s}s"
    )
    return client


# ============================================================================
# Event Hooks
# ============================================================================


def _on_request(request: httpx.Request) -> None:
    request.extensions["t0_perf"] = time.perf_counter()


def _on_response(response: httpx.Response) -> None:
    req = response.request
    t0 = req.extensions.get("t0_perf", time.perf_counter())
    elapsed_ms = (time.perf_counter() - t0) * 1000.0
    logger.debug(f"net.request: {req.method} {req.url} -> {response.status_code} ({elapsed_ms:.1f} ms)")


# ============================================================================
# Download Protocol
# ============================================================================


@dataclass
class Download:
    """An open 2xx response at the end of a redirect chain."""

    response: httpx.Response
    url: str
    redirects: int
    filename: Optional[str] = None

    def stream(self) -> "ResponseStream":
        return ResponseStream(self.response)

    def close(self) -> None:
        self.response.close()

    def __enter__(self) -> "Download":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def open_download(
    client: httpx.Client,
    url: str,
    *,
    max_redirects: int = MAX_ALLOWED_REDIRECTS,
) -> Download:
    """
    Follow redirects from ``url`` until a 2xx response is reached.

    Each hop is a streamed ``GET``. The cookie set by one hop is sent to the
    next one, which some DOI and handle landing chains require.

    Args:
        client: HTTPX client (follow_redirects must be False)
        url: Initial download URL
        max_redirects: Maximum redirect hops

    Returns:
        Download with the live response, final URL and redirect count

    Raises:
        TooManyRedirectsError: If more than ``max_redirects`` hops are needed
        StatusError: If a hop answers with a non-2xx, non-redirect status
        BadUrlError, LinkConnectionError, ResponseError: On request failures
    """
    current = url
    cookie: Optional[str] = None
    redirects = 0

    while True:
        response = _send(client, current, cookie)
        status = response.status_code

        if status in REDIRECT_STATUSES:
            location = response.headers.get("location")
            set_cookie = response.headers.get_list("set-cookie")
            response.close()
            if not location:
                raise ResponseError(f"Redirect {status} without Location header", url=current)
            target = urljoin(current, location)
            if redirects >= max_redirects:
                raise TooManyRedirectsError(
                    f"Exceeded {max_redirects} redirect hops", url=target
                )
            redirects += 1
            cookie = _cookie_header(set_cookie)
            logger.debug(f"Redirect {redirects}: {current} → {target}")
            current = target
            continue

        if 200 <= status < 300:
            break

        response.close()
        raise StatusError(status, url=current)

    filename = filename_from_disposition(response.headers.get("content-disposition"))
    return Download(response=response, url=current, redirects=redirects, filename=filename)


def _send(client: httpx.Client, url: str, cookie: Optional[str]) -> httpx.Response:
    try:
        request = client.build_request("GET", url)
        # only the cookie captured from the previous hop is forwarded
        request.headers.pop("Cookie", None)
        if cookie:
            request.headers["Cookie"] = cookie
        return client.send(request, stream=True)
    except (httpx.InvalidURL, httpx.UnsupportedProtocol, ValueError) as e:
        raise BadUrlError(f"Malformed URL: {e}", url=url) from e
    except (httpx.RemoteProtocolError, httpx.DecodingError) as e:
        # httpx parses Location itself while building response.next_request
        if str(e).startswith(_INVALID_LOCATION_PREFIX):
            raise BadUrlError(f"Malformed redirect target: {e}", url=url) from e
        raise ResponseError(f"Cannot read response: {e}", url=url) from e
    except httpx.TransportError as e:
        raise LinkConnectionError(f"Connection failed: {e}", url=url) from e
    finally:
        # the jar is never consulted, keep it from growing across downloads
        client.cookies.clear()


def _cookie_header(set_cookie: list[str]) -> Optional[str]:
    pairs = []
    for value in set_cookie:
        pair = value.split(";", 1)[0].strip()
        if "=" in pair:
            pairs.append(pair)
    return "; ".join(pairs) or None


def filename_from_disposition(header: Optional[str]) -> Optional[str]:
    """Return the filename parameter of a Content-Disposition header.

    Malformed headers yield ``None``.
    """
    if not header:
        return None
    message = Message()
    try:
        message["content-disposition"] = header
        filename = message.get_filename()
    except (ValueError, TypeError, LookupError) as e:
        logger.debug(f"Ignoring malformed Content-Disposition {header!r}: {e}")
        return None
    if filename:
        return filename.strip() or None
    return None


# ============================================================================
# Streaming
# ============================================================================


class ResponseStream(io.RawIOBase):
    """Readable binary stream over a streamed httpx response body."""

    def __init__(self, response: httpx.Response, chunk_size: int = STREAM_CHUNK_SIZE) -> None:
        self._response = response
        self._chunks = response.iter_bytes(chunk_size)
        self._buffer = b""

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        try:
            while not self._buffer:
                self._buffer = next(self._chunks)
        except StopIteration:
            return 0
        except httpx.HTTPError as e:
            raise DataStreamError(
                f"Error reading response body: {e}", url=str(self._response.url)
            ) from e
        n = min(len(b), len(self._buffer))
        b[:n] = self._buffer[:n]
        self._buffer = self._buffer[n:]
        return n

    def close(self) -> None:
        if not self.closed:
            self._response.close()
        super().close()
