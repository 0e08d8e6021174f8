"""Identifier parsing: URLs, DOIs and handles to an initial download link.

Only the identifier syntax is handled here. Following the DOI or handle
proxy redirect chain is left to the download protocol in
:mod:`Switchboard.MediaRegistry.net.client`.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Optional, Protocol
from urllib.parse import unquote, urlsplit

from Switchboard.MediaRegistry.errors import BadIdentifierError

logger = logging.getLogger(__name__)

DOI_RESOLVER = "https://doi.org/"
HANDLE_RESOLVER = "https://hdl.handle.net/"

_DOI_URL_PREFIXES = (
    "https://doi.org/",
    "http://doi.org/",
    "https://dx.doi.org/",
    "http://dx.doi.org/",
)
_HANDLE_URL_PREFIXES = (
    "https://hdl.handle.net/",
    "http://hdl.handle.net/",
)
_DOI_RE = re.compile(r"^10\.\d{4,9}/\S+$")
_HANDLE_RE = re.compile(r"^\d+(?:\.\d+)*/\S+$")


@dataclass
class LinkInfo:
    """Initial download link plus the filename suggested by the identifier."""

    download_link: str
    filename: str


class LinkResolver(Protocol):
    def resolve(self, identifier: str) -> LinkInfo: ...


def normalize_doi(value: str | None) -> str | None:
    """Return the bare DOI for ``value``, or ``None`` when it is not a DOI."""

    if not value:
        return None
    text = value.strip()
    lower = text.lower()
    for prefix in _DOI_URL_PREFIXES:
        if lower.startswith(prefix):
            text = unquote(text[len(prefix) :])
            lower = text.lower()
            break
    if lower.startswith("doi:"):
        text = text[len("doi:") :].strip()
    return text if _DOI_RE.match(text) else None


def normalize_handle(value: str | None) -> str | None:
    """Return the bare handle for ``value``, or ``None`` when it is not a handle."""

    if not value:
        return None
    text = value.strip()
    lower = text.lower()
    for prefix in _HANDLE_URL_PREFIXES:
        if lower.startswith(prefix):
            text = unquote(text[len(prefix) :])
            lower = text.lower()
            break
    if lower.startswith("hdl:"):
        text = text[len("hdl:") :].strip()
    return text if _HANDLE_RE.match(text) else None


def filename_from_url(url: str, fallback_seed: Optional[str] = None) -> str:
    """Extract the last path segment of ``url``, with a hashed fallback."""

    try:
        basename = PurePosixPath(unquote(urlsplit(url).path)).name
    except ValueError:
        basename = ""
    if basename:
        return basename
    seed = fallback_seed or url
    return f"download_{hashlib.md5(seed.encode()).hexdigest()[:8]}"


class IdentifierResolver:
    """Default :class:`LinkResolver` for http(s) URLs, DOIs and handles."""

    def resolve(self, identifier: str) -> LinkInfo:
        text = (identifier or "").strip()
        if not text:
            raise BadIdentifierError("Empty identifier", url=identifier)

        doi = normalize_doi(text)
        if doi is not None:
            logger.debug(f"Identifier {text!r} parsed as DOI {doi}")
            return LinkInfo(DOI_RESOLVER + doi, filename_from_url(doi, text))

        handle = normalize_handle(text)
        if handle is not None:
            logger.debug(f"Identifier {text!r} parsed as handle {handle}")
            return LinkInfo(HANDLE_RESOLVER + handle, filename_from_url(handle, text))

        try:
            parts = urlsplit(text)
        except ValueError as e:
            raise BadIdentifierError(f"Cannot parse identifier: {e}", url=text) from e
        if parts.scheme.lower() not in ("http", "https") or not parts.netloc:
            raise BadIdentifierError(
                f"Identifier is not a URL, DOI or handle: {text}", url=text
            )
        return LinkInfo(text, filename_from_url(text))


__all__ = (
    "LinkInfo",
    "LinkResolver",
    "IdentifierResolver",
    "normalize_doi",
    "normalize_handle",
    "filename_from_url",
    "DOI_RESOLVER",
    "HANDLE_RESOLVER",
)
