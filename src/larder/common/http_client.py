"""Shared HTTP helpers used by the index and API transports.

Encapsulates common request/timeout error handling so transports avoid
duplicating try/except blocks. Failures are raised as ``TransportError``; no
retries happen here, retry policy belongs to the caller of a fetch.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from larder.common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from larder.constants import Constants
from larder.errors import NotFound, TransportError

logger = logging.getLogger(__name__)


def _headers(headers: Optional[Dict[str, str]]) -> Dict[str, str]:
    merged = {"User-Agent": Constants.USER_AGENT}
    if headers:
        merged.update(headers)
    return merged


def safe_get(
    url: str,
    *,
    context: str,
    timeout: float = Constants.REQUEST_TIMEOUT,
    headers: Optional[Dict[str, str]] = None,
    **kwargs: Any,
) -> requests.Response:
    """Perform a GET request with consistent error handling and DEBUG traces.

    Args:
        url: Target URL.
        context: Human-readable source tag for logs (e.g., "index", "api").
        timeout: Seconds before the request is abandoned.
        headers: Extra request headers.
        **kwargs: Passed through to requests.get.

    Returns:
        requests.Response: The HTTP response object.

    Raises:
        TransportError: On timeouts and connection failures.
    """
    safe_target = safe_url(url)
    with Timer() as t:
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP request",
                extra=extra_context(
                    event="http_request",
                    component="http_client",
                    action="GET",
                    target=safe_target,
                    context=context,
                ),
            )
        try:
            res = requests.get(url, timeout=timeout, headers=_headers(headers), **kwargs)
        except requests.Timeout as exc:
            raise TransportError(
                f"{context} request timed out after {timeout} seconds",
                context={"url": safe_target},
            ) from exc
        except requests.RequestException as exc:  # includes ConnectionError
            raise TransportError(
                f"{context} connection error: {exc}",
                context={"url": safe_target},
            ) from exc
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP response ok",
                extra=extra_context(
                    event="http_response",
                    component="http_client",
                    action="GET",
                    outcome="success",
                    status_code=res.status_code,
                    duration_ms=t.duration_ms(),
                    target=safe_target,
                    context=context,
                ),
            )
        return res


def get_json(
    url: str,
    *,
    context: str,
    timeout: float = Constants.REQUEST_TIMEOUT,
    headers: Optional[Dict[str, str]] = None,
) -> Any:
    """Perform a GET request and parse its JSON body.

    Returns:
        The decoded JSON document.

    Raises:
        NotFound: When the server answers 404.
        TransportError: On any other non-200 status, transport failure, or
            undecodable body.
    """
    res = safe_get(
        url,
        context=context,
        timeout=timeout,
        headers={"Accept": "application/json", **(headers or {})},
    )
    if res.status_code == 404:
        raise NotFound(f"{context}: {safe_url(url)} returned 404")
    if res.status_code != 200:
        raise TransportError(
            f"{context}: {safe_url(url)} returned HTTP {res.status_code}",
            context={"url": safe_url(url), "status_code": res.status_code},
        )
    try:
        return json.loads(res.text)
    except json.JSONDecodeError as exc:
        raise TransportError(
            f"{context}: {safe_url(url)} returned invalid JSON",
            context={"url": safe_url(url)},
        ) from exc


def download_file(
    url: str,
    destination: Path,
    *,
    context: str,
    timeout: float = Constants.REQUEST_TIMEOUT,
    headers: Optional[Dict[str, str]] = None,
) -> Path:
    """Stream ``url`` into ``destination``.

    A partially written file is removed before the error propagates.
    """
    res = safe_get(url, context=context, timeout=timeout, headers=headers, stream=True)
    try:
        if res.status_code == 404:
            raise NotFound(f"{context}: {safe_url(url)} returned 404")
        if res.status_code != 200:
            raise TransportError(
                f"{context}: {safe_url(url)} returned HTTP {res.status_code}",
                context={"url": safe_url(url), "status_code": res.status_code},
            )
        try:
            with open(destination, "wb") as fh:
                for chunk in res.iter_content(chunk_size=Constants.DOWNLOAD_CHUNK_SIZE):
                    if chunk:
                        fh.write(chunk)
        except requests.RequestException as exc:
            destination.unlink(missing_ok=True)
            raise TransportError(
                f"{context}: download of {safe_url(url)} interrupted: {exc}",
                context={"url": safe_url(url)},
            ) from exc
    finally:
        res.close()
    logger.debug(
        "Downloaded archive",
        extra=extra_context(event="download", component="http_client", target=safe_url(url)),
    )
    return destination
