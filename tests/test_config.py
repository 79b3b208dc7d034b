"""Tests for configuration loading and URL handling."""

import pytest

from aci_listener.config import Config, DEFAULT_QUERY_PARAMS, get_int_env, normalize_apic_url
from aci_listener.connection import build_stream_url


class TestNormalizeApicUrl:
    """Tests for normalize_apic_url()."""

    def test_bare_hostname(self):
        assert normalize_apic_url("apic.example.com") == "https://apic.example.com"

    def test_bare_ip_with_port(self):
        assert normalize_apic_url("10.0.0.1:8443") == "https://10.0.0.1:8443"

    def test_keeps_scheme(self):
        assert normalize_apic_url("http://127.0.0.1:8080") == "http://127.0.0.1:8080"

    def test_strips_path_and_whitespace(self):
        assert normalize_apic_url("  https://apic.example.com/api/  ") == "https://apic.example.com"

    def test_empty_rejected(self):
        with pytest.raises(ValueError):
            normalize_apic_url("   ")


class TestStreamUrl:
    """Tests for build_stream_url()."""

    def test_https_becomes_wss(self):
        assert build_stream_url("https://apic.example.com", "T1") == "wss://apic.example.com/socketT1"

    def test_http_becomes_ws(self):
        assert build_stream_url("http://127.0.0.1:8080", "abc") == "ws://127.0.0.1:8080/socketabc"


class TestConfig:
    """Tests for the Config dataclass."""

    def test_normalizes_url(self):
        config = Config(apic_url="apic", username="admin", password="pw", target_class="faultInst")
        assert config.apic_url == "https://apic"
        assert config.host == "apic"
        assert config.query_params == DEFAULT_QUERY_PARAMS
        assert config.query_params is not DEFAULT_QUERY_PARAMS

    def test_password_not_in_repr(self):
        config = Config(apic_url="apic", username="admin", password="hunter2", target_class="faultInst")
        assert "hunter2" not in repr(config)

    def test_class_required(self):
        with pytest.raises(ValueError, match="class"):
            Config(apic_url="apic", username="admin", password="pw", target_class="")

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ACI_URL", "apic.example.com")
        monkeypatch.setenv("ACI_USER", "admin")
        monkeypatch.setenv("ACI_PASSWORD", "pw")
        monkeypatch.setenv("ACI_CLASS", "faultInst")

        config = Config.from_env()

        assert config.apic_url == "https://apic.example.com"
        assert config.username == "admin"
        assert config.password == "pw"
        assert config.target_class == "faultInst"

    def test_from_env_overrides(self, monkeypatch):
        monkeypatch.setenv("ACI_URL", "apic.example.com")
        monkeypatch.setenv("ACI_CLASS", "faultInst")

        config = Config.from_env(
            username="ops", password="pw", target_class="eventRecord", verify_ssl=None
        )

        assert config.username == "ops"
        assert config.target_class == "eventRecord"


class TestGetIntEnv:
    def test_default_when_unset(self, monkeypatch):
        monkeypatch.delenv("ACI_TEST_VALUE", raising=False)
        assert get_int_env("ACI_TEST_VALUE", 7) == 7

    def test_parses_value(self, monkeypatch):
        monkeypatch.setenv("ACI_TEST_VALUE", "42")
        assert get_int_env("ACI_TEST_VALUE", 7) == 42

    def test_default_when_invalid(self, monkeypatch):
        monkeypatch.setenv("ACI_TEST_VALUE", "soon")
        assert get_int_env("ACI_TEST_VALUE", 7) == 7
