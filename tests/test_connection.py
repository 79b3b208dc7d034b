"""
Tests for aci_listener.connection module.

Covers the trust-all default, opt-in verification and CA bundle loading.
"""

import ssl
from unittest.mock import patch

import pytest

from aci_listener import connection


class TestSslContext:
    def test_verification_disabled_by_default(self):
        ctx = connection.create_ssl_context()
        assert ctx.verify_mode == ssl.CERT_NONE
        assert ctx.check_hostname is False

    def test_verify_true(self):
        ctx = connection.create_ssl_context(verify=True)
        assert ctx.verify_mode == ssl.CERT_REQUIRED
        assert ctx.check_hostname is True

    def test_ca_bundle_ignored_without_verify(self, tmp_path):
        """An unreadable bundle is never loaded when verification is off."""
        ctx = connection.create_ssl_context(verify=False, ca_bundle=str(tmp_path / "missing.pem"))
        assert ctx.verify_mode == ssl.CERT_NONE

    def test_invalid_ca_bundle_raises(self, tmp_path):
        with pytest.raises((ssl.SSLError, FileNotFoundError, OSError)):
            connection.create_ssl_context(verify=True, ca_bundle=str(tmp_path / "missing.pem"))


class TestTimeouts:
    def test_stream_timeout_has_no_total(self):
        timeout = connection.create_stream_timeout(12)
        assert timeout.total is None
        assert timeout.connect == 12
        assert timeout.sock_connect == 12

    def test_request_timeout(self):
        assert connection.create_request_timeout(30).total == 30


class TestCreateConnector:
    def test_passes_settings_to_ssl_context(self, tmp_path):
        calls = []
        original = connection.create_ssl_context

        def tracking_wrapper(**kwargs):
            calls.append(kwargs)
            return original(**kwargs)

        with patch.object(connection, "create_ssl_context", side_effect=tracking_wrapper):
            # Patch TCPConnector to avoid needing a running event loop
            with patch("aiohttp.TCPConnector"):
                connection.create_connector(verify_ssl=False, ca_bundle="bundle.pem")

        assert calls == [{"verify": False, "ca_bundle": "bundle.pem"}]
