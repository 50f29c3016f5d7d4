"""
Upstream Response Handling

Gateways (aiohttp) and the OAuth token client (httpx) both reduce an upstream
reply to an UpstreamResponse and hand it to decode_response(), so every
provider failure maps onto the same error taxonomy:

    429                      -> UpstreamRateLimitedError (Retry-After, default 300s)
    non-JSON content type    -> UpstreamFormatError
    other non-2xx            -> UpstreamError (or the caller's subclass) with status + body
    2xx JSON                 -> parsed payload
"""

import json
from dataclasses import dataclass
from typing import Any, Optional, Type

from core.errors import (
    UpstreamError,
    UpstreamFormatError,
    UpstreamRateLimitedError,
    parse_retry_after,
)


PREVIEW_CHARS = 500


@dataclass(frozen=True)
class UpstreamResponse:
    """Transport-independent view of one upstream reply."""

    status: int
    content_type: Optional[str]
    text: str
    retry_after: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def is_json(self) -> bool:
        return is_json_content_type(self.content_type)


def is_json_content_type(content_type: Optional[str]) -> bool:
    """
    Example:
        >>> is_json_content_type("application/json; charset=utf-8")
        True
        >>> is_json_content_type("text/html")
        False
    """
    if not content_type:
        return False
    media_type = content_type.split(";")[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


def decode_response(
    source: str,
    response: UpstreamResponse,
    error_cls: Type[UpstreamError] = UpstreamError,
    content_type_first: bool = False,
) -> Any:
    """
    Turn an UpstreamResponse into a parsed payload or a typed failure.

    Args:
        source: Provider name used in error messages
        response: The upstream reply
        error_cls: Exception raised for non-2xx replies
        content_type_first: Reject non-JSON bodies before looking at the
            status (token endpoints answer errors with HTML pages)

    Raises:
        UpstreamRateLimitedError: Status 429
        UpstreamFormatError: Body is not JSON
        UpstreamError: Any other non-2xx status (error_cls)
    """
    if response.status == 429:
        raise UpstreamRateLimitedError(
            f"{source} rate limit exceeded",
            retry_after=parse_retry_after(response.retry_after),
            body=_body_or_preview(response),
        )

    if content_type_first and not response.is_json:
        raise UpstreamFormatError(
            f"{source} returned {response.content_type or 'no content type'} instead of JSON",
            status=response.status,
            body=response.text[:PREVIEW_CHARS],
            content_type=response.content_type,
        )

    if not response.ok:
        raise error_cls(
            f"{source} returned HTTP {response.status}",
            status=response.status,
            body=_body_or_preview(response),
        )

    if not response.is_json:
        raise UpstreamFormatError(
            f"{source} returned {response.content_type or 'no content type'} instead of JSON",
            status=response.status,
            body=response.text[:PREVIEW_CHARS],
            content_type=response.content_type,
        )

    try:
        return json.loads(response.text) if response.text else {}
    except ValueError as e:
        raise UpstreamFormatError(
            f"{source} returned malformed JSON: {e}",
            status=response.status,
            body=response.text[:PREVIEW_CHARS],
            content_type=response.content_type,
        )


def _body_or_preview(response: UpstreamResponse) -> Any:
    if response.is_json:
        try:
            return json.loads(response.text)
        except ValueError:
            pass
    return response.text[:PREVIEW_CHARS]
