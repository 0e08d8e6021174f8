# === NAVMAP v1 ===
# {
#   "module": "Switchboard.MediaRegistry.errors",
#   "purpose": "Typed error taxonomy and logging helpers for media ingestion.",
#   "sections": [
#     {
#       "id": "linkerrorkind",
#       "name": "LinkErrorKind",
#       "anchor": "class-linkerrorkind",
#       "kind": "class"
#     },
#     {
#       "id": "mediaregistryerror",
#       "name": "MediaRegistryError",
#       "anchor": "class-mediaregistryerror",
#       "kind": "class"
#     },
#     {
#       "id": "linkerror",
#       "name": "LinkError",
#       "anchor": "class-linkerror",
#       "kind": "class"
#     },
#     {
#       "id": "describe-error",
#       "name": "describe_error",
#       "anchor": "function-describe-error",
#       "kind": "function"
#     },
#     {
#       "id": "log-ingest-failure",
#       "name": "log_ingest_failure",
#       "anchor": "function-log-ingest-failure",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Typed error taxonomy and logging helpers for media ingestion.

Responsibilities
----------------
- Define one exception type per failure kind of the ingestion pipeline so
  callers can map them onto transport-level responses without string
  matching.
- Group link resolution and download failures under :class:`LinkError`, which
  carries a :class:`LinkErrorKind` plus the URL that was being processed.
- Translate errors into short user-facing messages via
  :func:`describe_error` and emit structured failure logs through
  :func:`log_ingest_failure`.

Design Notes
------------
- Nothing in this module retries. Every error is final for the pipeline run
  that raised it.
- The module has no third-party imports so it is safe to use from rollback
  and cleanup paths.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

__all__ = (
    "LinkErrorKind",
    "MediaRegistryError",
    "LinkError",
    "BadIdentifierError",
    "BadUrlError",
    "LinkConnectionError",
    "ResponseError",
    "StatusError",
    "TooManyRedirectsError",
    "DataStreamError",
    "StorageError",
    "ClassificationError",
    "PolicyRejectedError",
    "EntryNotFoundError",
    "ArchiveError",
    "UnsupportedContentError",
    "describe_error",
    "log_ingest_failure",
)


class LinkErrorKind(Enum):
    """Machine-readable kinds of link resolution and download failures."""

    BAD_IDENTIFIER = "bad_identifier"
    BAD_URL = "bad_url"
    CONNECTION_ERROR = "connection_error"
    RESPONSE_ERROR = "response_error"
    STATUS_ERROR = "status_error"
    TOO_MANY_REDIRECTS = "too_many_redirects"
    DATA_STREAM_ERROR = "data_stream_error"


class MediaRegistryError(Exception):
    """Base class for every error raised by the media registry."""


class LinkError(MediaRegistryError):
    """Raised when an identifier cannot be turned into a usable byte stream."""

    kind: LinkErrorKind = LinkErrorKind.CONNECTION_ERROR

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.http_status = http_status


class BadIdentifierError(LinkError):
    """The identifier is neither a URL, a DOI nor a handle."""

    kind = LinkErrorKind.BAD_IDENTIFIER


class BadUrlError(LinkError):
    """A malformed URL was encountered while connecting."""

    kind = LinkErrorKind.BAD_URL


class LinkConnectionError(LinkError):
    """Transport-level failure (DNS, refused connection, timeout)."""

    kind = LinkErrorKind.CONNECTION_ERROR


class ResponseError(LinkError):
    """The HTTP status line or redirect headers could not be obtained."""

    kind = LinkErrorKind.RESPONSE_ERROR


class StatusError(LinkError):
    """The server answered with a status that is neither 2xx nor a redirect."""

    kind = LinkErrorKind.STATUS_ERROR

    def __init__(self, status: int, *, url: str | None = None) -> None:
        super().__init__(f"Unexpected HTTP status {status}", url=url, http_status=status)

    @property
    def status(self) -> int:
        return int(self.http_status or 0)


class TooManyRedirectsError(LinkError):
    """The redirect chain exceeded the redirect bound."""

    kind = LinkErrorKind.TOO_MANY_REDIRECTS


class DataStreamError(LinkError):
    """Reading the response body failed after a good connection."""

    kind = LinkErrorKind.DATA_STREAM_ERROR


class StorageError(MediaRegistryError):
    """The blob store failed to persist or rewrite content."""


class ClassificationError(MediaRegistryError):
    """The profiler failed or produced no profile."""


class PolicyRejectedError(MediaRegistryError):
    """The storage policy refused a classified entry."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class EntryNotFoundError(MediaRegistryError, LookupError):
    """An operation referenced an identity that is not registered."""

    def __init__(self, entry_id: Any) -> None:
        super().__init__(f"No entry registered for {entry_id}")
        self.entry_id = entry_id


class ArchiveError(MediaRegistryError):
    """An archive entry could not be opened."""


class UnsupportedContentError(MediaRegistryError):
    """Content replacement was requested for a non text entry."""

    def __init__(self, media_type: str) -> None:
        super().__init__(f"Content of {media_type} entries cannot be replaced")
        self.media_type = media_type


_LINK_MESSAGES = {
    LinkErrorKind.BAD_IDENTIFIER: "The input is not a valid URL, DOI or handle",
    LinkErrorKind.BAD_URL: "The link contains a malformed URL",
    LinkErrorKind.CONNECTION_ERROR: "Could not connect to the remote server",
    LinkErrorKind.RESPONSE_ERROR: "The remote server sent an unreadable response",
    LinkErrorKind.TOO_MANY_REDIRECTS: "The link redirects too many times",
    LinkErrorKind.DATA_STREAM_ERROR: "The download was interrupted",
}


def describe_error(error: BaseException) -> str:
    """Return a short user-facing description of ``error``.

    Examples:
        >>> describe_error(StatusError(404, url="https://example.org/x"))
        'The remote server answered with HTTP 404'
    """

    if isinstance(error, StatusError):
        return f"The remote server answered with HTTP {error.status}"
    if isinstance(error, LinkError):
        return _LINK_MESSAGES[error.kind]
    if isinstance(error, PolicyRejectedError):
        return f"The file was not accepted: {error.reason}"
    if isinstance(error, ClassificationError):
        return "The file type could not be determined"
    if isinstance(error, StorageError):
        return "The file could not be stored"
    if isinstance(error, EntryNotFoundError):
        return "The file is no longer available"
    return str(error) or type(error).__name__


def log_ingest_failure(
    logger: logging.Logger,
    error: BaseException,
    *,
    identifier: str | None = None,
    filename: str | None = None,
) -> None:
    """Log an ingestion failure with structured context.

    Args:
        logger: Logger instance to use for output
        error: The error that ended the pipeline run
        identifier: Original URL, DOI or handle, if the run was a download
        filename: Suggested filename, if known
    """

    log_entry: dict[str, Any] = {
        "identifier": identifier,
        "filename": filename,
        "error_type": type(error).__name__,
        "error_message": str(error),
    }
    if isinstance(error, LinkError):
        log_entry["kind"] = error.kind.value
        log_entry["url"] = error.url
        if error.http_status is not None:
            log_entry["http_status"] = error.http_status
    elif isinstance(error, PolicyRejectedError):
        log_entry["reason"] = error.reason

    logger.error(
        "Ingestion failed: %s", describe_error(error), extra={"extra_fields": log_entry}
    )
