# src/polymorph/utils.py
import importlib.metadata
import os
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry  # type: ignore

from polymorph.constants import (
    DEFAULT_BACKOFF_FACTOR,
    DEFAULT_CONNECT_RETRIES,
    HTTP_RETRIES_ENV_VAR,
)
from polymorph.log_utils import logger

# Cache for the User-Agent string to avoid repeated metadata lookups
_USER_AGENT_CACHE = None


def get_polymorph_version() -> str:
    """
    Return the installed polymorph package version, or "unknown" when the
    distribution metadata is not available (e.g. running from a source tree).
    """
    try:
        return importlib.metadata.version("polymorph")
    except importlib.metadata.PackageNotFoundError:
        return "unknown"


def get_user_agent() -> str:
    """
    Get the User-Agent string used for HTTP requests.

    Returns:
        The string `polymorph/{version}`.
    """
    global _USER_AGENT_CACHE

    if _USER_AGENT_CACHE is None:
        _USER_AGENT_CACHE = f"polymorph/{get_polymorph_version()}"

    return _USER_AGENT_CACHE


def get_http_retries() -> int:
    """
    Number of automatic HTTP retries, read from the POLYMORPH_HTTP_RETRIES environment
    variable. Missing, malformed or negative values fall back to the default (no retry).
    """
    raw = os.environ.get(HTTP_RETRIES_ENV_VAR)
    if not raw:
        return DEFAULT_CONNECT_RETRIES
    try:
        retries = int(raw)
    except ValueError:
        logger.warning(
            f"Invalid {HTTP_RETRIES_ENV_VAR}={raw!r}; using {DEFAULT_CONNECT_RETRIES}."
        )
        return DEFAULT_CONNECT_RETRIES
    if retries < 0:
        logger.warning(
            f"Negative {HTTP_RETRIES_ENV_VAR}={raw!r}; using {DEFAULT_CONNECT_RETRIES}."
        )
        return DEFAULT_CONNECT_RETRIES
    return retries


def create_session(retries: Optional[int] = None) -> requests.Session:
    """
    Build a requests Session for downloads.

    The session mounts an HTTPAdapter whose urllib3 Retry allows `retries` attempts
    (defaults to get_http_retries()). Final HTTP errors are not raised by urllib3 so that
    callers see them through `raise_for_status`.

    Parameters:
        retries (Optional[int]): Retry budget override.

    Returns:
        requests.Session: A session carrying the polymorph User-Agent.
    """
    if retries is None:
        retries = get_http_retries()

    retry_strategy: Retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        status=retries,
        backoff_factor=DEFAULT_BACKOFF_FACTOR,
        status_forcelist=[408, 429, 500, 502, 503, 504],
        allowed_methods=frozenset({"GET", "HEAD"}),
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)

    session = requests.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"User-Agent": get_user_agent()})
    return session
