"""Unit tests for linkpreview.services.network_safety: private-host detection."""

import httpx
import pytest

from linkpreview.services.network_safety import (
    UnsafeTargetError,
    assert_public_hostname,
    get_hostname,
    guard_outbound_request,
    is_private_hostname,
)


class TestIsPrivateHostname:
    @pytest.mark.parametrize(
        "hostname",
        [
            "",
            "localhost",
            "LOCALHOST.",
            "api.localhost",
            "printer.local",
            "0.0.0.0",
            "127.0.0.1",
            "127.8.9.10",
            "10.1.2.3",
            "172.16.0.1",
            "172.31.255.255",
            "192.168.1.1",
            "169.254.169.254",
            "169.254.1.1",
            "foo.local",
            "::1",
            "[::1]",
            "fd12:3456::1",
            "fd00::1",
            "fe80::1",
            "fe80::1%eth0",
            "::ffff:127.0.0.1",
            "[::ffff:10.0.0.1]",
        ],
    )
    def test_blocks_private_and_loopback(self, hostname):
        assert is_private_hostname(hostname) is True

    @pytest.mark.parametrize("hostname", ["2130706433", "0x7f.1", "017700000001", "127.1"])
    def test_blocks_numeric_shorthands(self, hostname):
        """Non-canonical numeric hosts are rejected rather than resolved."""
        assert is_private_hostname(hostname) is True

    @pytest.mark.parametrize(
        "hostname",
        [
            "example.com",
            "www.github.com",
            "8.8.8.8",
            "1.1.1.1",
            "172.32.0.1",
            "192.169.0.1",
            "2606:4700:4700::1111",
            "1password.com",
            "localhost.example.com",
        ],
    )
    def test_allows_public_hosts(self, hostname):
        assert is_private_hostname(hostname) is False


class TestGetHostname:
    def test_lowercases(self):
        assert get_hostname("https://Example.COM/path") == "example.com"

    def test_unparseable_is_empty(self):
        assert get_hostname("http://[::1") == ""
        assert get_hostname("not a url") == ""


class TestGuard:
    def test_assert_public_hostname_raises(self):
        with pytest.raises(UnsafeTargetError) as exc_info:
            assert_public_hostname("127.0.0.1")
        assert exc_info.value.hostname == "127.0.0.1"

    @pytest.mark.asyncio
    async def test_request_hook_blocks_private_target(self):
        with pytest.raises(UnsafeTargetError):
            await guard_outbound_request(httpx.Request("GET", "http://192.168.0.10/admin"))

    @pytest.mark.asyncio
    async def test_request_hook_allows_public_target(self):
        await guard_outbound_request(httpx.Request("GET", "https://example.com/"))
