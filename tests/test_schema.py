"""
Tests for manual server input validation.
"""

import pytest
from serverscout.config import Settings
from serverscout.errors import InvalidOverrideFormat
from serverscout.models import Endpoint
from serverscout.schema import validate_override, parse_override, override_endpoint


class TestValidateOverride:
    """Test the error-list validator."""

    @pytest.mark.parametrize("value", [
        "10.1.1.50",
        "192.168.29.2:5001",
        "localhost",
        "my-laptop.local",
        "http://10.0.0.5:5000/api/",
        "https://nutri.example.com/api/",
    ])
    def test_accepts_usable_addresses(self, value):
        assert validate_override(value) == []

    def test_empty_value(self):
        errors = validate_override("   ")
        assert len(errors) == 1
        assert "non-empty" in errors[0]

    def test_bad_octets(self):
        """Numeric hosts must be real IPv4 addresses."""
        assert validate_override("999.1.1.1")
        assert validate_override("192.168.1")

    def test_bad_port(self):
        errors = validate_override("10.0.0.5:70000")
        assert any("port" in e.lower() for e in errors)
        assert validate_override("10.0.0.5:abc")

    def test_path_without_scheme(self):
        errors = validate_override("10.0.0.5/api")
        assert any("path" in e.lower() for e in errors)

    def test_unsupported_scheme(self):
        errors = validate_override("ftp://10.0.0.5/")
        assert any("scheme" in e.lower() for e in errors)

    def test_url_with_query(self):
        assert validate_override("http://10.0.0.5:5000/api/?x=1")


class TestParseOverride:
    """Test splitting and endpoint construction."""

    def test_bare_ip(self):
        assert parse_override(" 10.1.1.50 ") == (None, "10.1.1.50", None, None)

    def test_host_and_port(self):
        assert parse_override("Laptop.Local:5001") == (None, "laptop.local", 5001, None)

    def test_raises_with_all_errors(self):
        with pytest.raises(InvalidOverrideFormat) as exc_info:
            parse_override("300.1.1.1:0")
        assert len(exc_info.value.errors) == 2
        assert isinstance(exc_info.value, ValueError)

    def test_override_endpoint_fills_defaults(self):
        settings = Settings(port=5000)
        assert override_endpoint("10.1.1.50", settings) == Endpoint("http", "10.1.1.50", 5000, "/api/")

    def test_override_endpoint_keeps_url_parts(self):
        """A full URL keeps its own scheme and (absent) port."""
        settings = Settings(port=5000)
        endpoint = override_endpoint("https://nutri.example.com/api/", settings)
        assert endpoint.base_url == "https://nutri.example.com/api/"
