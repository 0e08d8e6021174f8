"""
Network layer for the Media Registry.

Architecture:
- One HTTPX client per registry, explicit connect/read timeouts
- Redirect chains walked by hand with a fixed bound (no auto-follow)
- Per-hop cookie propagation
- Streaming response bodies into the blob store
"""

from .client import (
    MAX_ALLOWED_REDIRECTS,
    Download,
    ResponseStream,
    build_http_client,
    filename_from_disposition,
    open_download,
)

__all__ = [
    "MAX_ALLOWED_REDIRECTS",
    "Download",
    "ResponseStream",
    "build_http_client",
    "filename_from_disposition",
    "open_download",
]
