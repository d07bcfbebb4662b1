import pytest

from dxbench.client.transport import (
    DEFAULT_HTTP_RETRY_STATUS_CODES,
    build_session,
    normalize_host_url,
)
from dxbench.errors import ConfigError


@pytest.mark.parametrize(
    ("host", "expected"),
    [
        ("localhost", "http://localhost:10101"),
        ("db1:9000", "http://db1:9000"),
        ("https://db1", "https://db1:10101"),
        ("  HTTP://db1:1234 ", "http://db1:1234"),
        ("[::1]:8080", "http://[::1]:8080"),
    ],
)
def test_normalize_host_url(host, expected):
    assert normalize_host_url(host, 10101) == expected


@pytest.mark.parametrize("host", ["", "   ", "ftp://db1", "db1:notaport", "http://"])
def test_normalize_host_url_rejects_invalid(host):
    with pytest.raises(ConfigError):
        normalize_host_url(host, 10101)


def test_build_session_mounts_retrying_adapter():
    session = build_session(pool_size=4, retry_total=5, retry_backoff_seconds=0.5)
    adapter = session.get_adapter("http://db1:10101/index")
    retries = adapter.max_retries
    assert retries.total == 5
    assert retries.backoff_factor == 0.5
    assert set(retries.status_forcelist) == set(DEFAULT_HTTP_RETRY_STATUS_CODES)
    assert "POST" in retries.allowed_methods
    assert session.get_adapter("https://db1") is not None


def test_build_session_without_retries():
    retries = build_session(retry_total=0).get_adapter("http://db1:10101").max_retries
    assert retries.total == 0
    assert retries.raise_on_status is False


def test_build_session_applies_user_agent():
    session = build_session(user_agent="dxbench/1.0")
    assert session.headers["User-Agent"] == "dxbench/1.0"
