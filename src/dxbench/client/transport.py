from __future__ import annotations

from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from dxbench.config.constants import DEFAULT_RETRY_BACKOFF_SECONDS, DEFAULT_RETRY_TOTAL
from dxbench.errors import ConfigError

DEFAULT_HTTP_RETRY_STATUS_CODES = (429, 502, 503, 504)
DEFAULT_HTTP_RETRY_METHODS = ("GET", "POST")
DEFAULT_SCHEME = "http"
_VALID_SCHEMES = frozenset({"http", "https"})


def normalize_host_url(host: str, default_port: int) -> str:
    text = str(host).strip()
    if not text:
        raise ConfigError("empty host in host list")
    if "://" not in text:
        text = f"{DEFAULT_SCHEME}://{text}"
    try:
        parsed = urlparse(text)
        port = parsed.port
    except ValueError as exc:
        raise ConfigError(f"invalid host {host!r}", exc) from exc
    scheme = (parsed.scheme or DEFAULT_SCHEME).lower()
    if scheme not in _VALID_SCHEMES:
        raise ConfigError(f"invalid host {host!r}: scheme must be http or https")
    hostname = parsed.hostname
    if not hostname:
        raise ConfigError(f"invalid host {host!r}")
    if ":" in hostname:
        hostname = f"[{hostname}]"
    return f"{scheme}://{hostname}:{port or int(default_port)}"


def build_session(
    *,
    pool_size: int = 32,
    retry_total: int = DEFAULT_RETRY_TOTAL,
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS,
    user_agent: str | None = None,
) -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=retry_total,
        backoff_factor=retry_backoff_seconds,
        status_forcelist=DEFAULT_HTTP_RETRY_STATUS_CODES,
        allowed_methods=DEFAULT_HTTP_RETRY_METHODS,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retries, pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    if user_agent:
        session.headers.update({"User-Agent": user_agent})
    return session
