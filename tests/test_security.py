"""URL admission: normalization and private-host rejection."""

from __future__ import annotations

import pytest

from backend.errors import ValidationError
from backend.security import (
    NormalizedUrl,
    RejectionReason,
    UrlRejected,
    is_private_host,
    normalize_url,
    parse_ipv4_host,
    same_origin,
)


pytestmark = [pytest.mark.security, pytest.mark.unit]


def test_scheme_less_input_defaults_to_https():
    url = normalize_url("example.com")
    assert url == NormalizedUrl(scheme="https", host="example.com", href="https://example.com/")
    assert str(url) == "https://example.com/"


def test_explicit_http_and_path_are_kept():
    url = normalize_url("  http://Example.com/docs/intro?lang=en  ")
    assert url.scheme == "http"
    assert url.host == "example.com"
    assert url.href == "http://example.com/docs/intro?lang=en"


def test_default_port_dropped_custom_port_kept():
    assert normalize_url("https://example.com:443/a").href == "https://example.com/a"
    assert normalize_url("https://example.com:8443/a").href == "https://example.com:8443/a"


@pytest.mark.parametrize(
    "raw",
    [
        "http://localhost:3000",
        "localhost",
        "http://127.0.0.1",
        "https://127.8.9.10/",
        "http://10.0.0.1",
        "http://172.16.5.4",
        "http://172.31.255.255",
        "http://192.168.1.1/admin",
        "http://169.254.169.254/latest/meta-data",
        "http://0.0.0.0",
        "http://[::1]/",
        "http://2130706433/",
        "http://127.1/",
        "http://0x7f000001/",
        "http://0177.0.0.1/",
        "http://0xa.1/",
        "http://127.0.0.1./",
    ],
)
def test_private_and_loopback_hosts_rejected(raw):
    with pytest.raises(UrlRejected) as info:
        normalize_url(raw)
    assert info.value.reason is RejectionReason.PRIVATE_OR_LOOPBACK_HOST
    assert info.value.message == "Cannot scrape localhost or private IP addresses"


def test_public_ip_literal_accepted():
    url = normalize_url("http://93.184.216.34")
    assert url.host == "93.184.216.34"
    assert url.href == "http://93.184.216.34/"


def test_numeric_public_host_is_written_as_dotted_quad():
    url = normalize_url("http://134744072/dns")
    assert url.host == "8.8.8.8"
    assert url.href == "http://8.8.8.8/dns"


@pytest.mark.parametrize(
    "host, expected",
    [
        ("2130706433", "127.0.0.1"),
        ("0x7F.1", "127.0.0.1"),
        ("0177.0.0.01", "127.0.0.1"),
        ("192.168.257", "192.168.1.1"),
        ("10.0.0.1.", "10.0.0.1"),
        ("0", "0.0.0.0"),
    ],
)
def test_numeric_hosts_parse_like_a_browser(host, expected):
    assert str(parse_ipv4_host(host)) == expected


@pytest.mark.parametrize("host", ["example.com", "1.2.3.4.5", "08.1.1.1", "256.1.1.1", "4294967296", "1e3", ""])
def test_non_numeric_hosts_are_left_alone(host):
    assert parse_ipv4_host(host) is None


def test_fragment_is_dropped_from_the_normalized_url():
    url = normalize_url("example.com/docs?page=2#intro")
    assert url.href == "https://example.com/docs?page=2"


def test_neighbouring_public_range_is_not_private():
    assert not is_private_host("172.32.0.1")
    assert not is_private_host("example.com")
    assert is_private_host("LOCALHOST")


@pytest.mark.parametrize(
    "raw",
    ["ftp://example.com/file", "mailto:someone@example.com", "javascript:alert(1)", "file:///etc/passwd"],
)
def test_unsupported_schemes_rejected(raw):
    with pytest.raises(UrlRejected) as info:
        normalize_url(raw)
    assert info.value.reason is RejectionReason.UNSUPPORTED_SCHEME
    assert info.value.message == "Only HTTP and HTTPS protocols are supported"


@pytest.mark.parametrize("raw", ["", "   ", None])
def test_empty_input_rejected(raw):
    with pytest.raises(UrlRejected) as info:
        normalize_url(raw)
    assert info.value.reason is RejectionReason.EMPTY_INPUT
    assert info.value.message == "URL cannot be empty"


def test_missing_host_rejected():
    with pytest.raises(UrlRejected) as info:
        normalize_url("https:///path-only")
    assert info.value.reason is RejectionReason.MISSING_HOST


def test_bad_port_is_malformed():
    with pytest.raises(UrlRejected) as info:
        normalize_url("https://example.com:99999/")
    assert info.value.reason is RejectionReason.MALFORMED_URL
    assert info.value.message == "Invalid URL format"


def test_rejection_is_a_validation_error():
    with pytest.raises(ValidationError):
        normalize_url("http://localhost")
    with pytest.raises(ValueError):
        normalize_url("")


def test_same_origin_compares_hostnames_only():
    origin = normalize_url("https://example.com")
    assert same_origin(origin, "http://example.com:8080/other")
    assert not same_origin(origin, "https://docs.example.com/")
    assert not same_origin(origin, "not a url")
