"""
Tests for feed URL validation (SSRF protection).
"""

import socket
from unittest.mock import patch

import pytest

from feed_pipeline.url_validator import SSRFError, is_ip_blocked, validate_url


class TestAllowedUrls:

    def test_allows_https_url(self):
        assert validate_url("https://example.com/feed.xml", resolve_dns=False) == "https://example.com/feed.xml"

    def test_allows_public_ip(self):
        assert validate_url("http://8.8.8.8/feed", resolve_dns=False) == "http://8.8.8.8/feed"

    def test_unresolvable_host_passes(self):
        with patch("feed_pipeline.url_validator.socket.getaddrinfo", side_effect=socket.gaierror):
            assert validate_url("https://no-such-host.example/feed") == "https://no-such-host.example/feed"


class TestBlockedUrls:

    @pytest.mark.parametrize("url", ["file:///etc/passwd", "ftp://example.com/feed", "javascript:alert(1)"])
    def test_blocks_non_http_schemes(self, url):
        with pytest.raises(SSRFError, match="HTTP or HTTPS"):
            validate_url(url, resolve_dns=False)

    def test_blocks_missing_host(self):
        with pytest.raises(SSRFError, match="Invalid URL format"):
            validate_url("http:///feed", resolve_dns=False)

    @pytest.mark.parametrize("url", [
        "http://localhost/admin",
        "http://metadata.google.internal/",
        "http://printer.local/feed",
    ])
    def test_blocks_internal_hostnames(self, url):
        with pytest.raises(SSRFError, match="not allowed"):
            validate_url(url, resolve_dns=False)

    @pytest.mark.parametrize("url", [
        "http://127.0.0.1/",
        "http://10.1.2.3/",
        "http://192.168.1.1/",
        "http://169.254.169.254/latest/meta-data",
        "http://[::1]/",
    ])
    def test_blocks_private_ips(self, url):
        with pytest.raises(SSRFError, match="not allowed"):
            validate_url(url, resolve_dns=False)

    def test_blocks_hostname_resolving_to_private_ip(self):
        addrinfo = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("10.0.0.5", 80))]
        with patch("feed_pipeline.url_validator.socket.getaddrinfo", return_value=addrinfo):
            with pytest.raises(SSRFError, match="resolves to blocked IP"):
                validate_url("https://sneaky.example.com/feed")


class TestIpBlocking:

    def test_private_and_public(self):
        assert is_ip_blocked("172.16.0.1")
        assert not is_ip_blocked("1.1.1.1")

    def test_non_ip_is_not_blocked(self):
        assert not is_ip_blocked("example.com")
