"""
Unit tests for configuration validation.
"""

import logging

import pytest

from imaginary.config import Flags, ServerOptions, ThrottleConfig
from imaginary.errors import (
    CacheTtlOutOfRange,
    ConfigError,
    MountInvalid,
    PortInvalid,
    ThrottleInvalid,
    TlsPairIncomplete,
)
from imaginary.validation import (
    build_options,
    resolve_port,
    validate_cache_ttl,
    validate_mount,
    validate_port,
    validate_throttle,
    validate_tls_pair,
)


class TestResolvePort:
    """PORT environment override."""

    def test_no_override(self):
        assert resolve_port(8088, {}) == 8088

    def test_positive_override_wins(self):
        assert resolve_port(8088, {"PORT": "9000"}) == 9000

    @pytest.mark.parametrize("raw", ["", "notanumber", "-5", "0", "80.5", " "])
    def test_bad_override_ignored(self, raw):
        """Anything but a positive integer keeps the configured port."""
        assert resolve_port(8088, {"PORT": raw}) == 8088

    def test_ignored_override_is_logged(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="imaginary.validation"):
            resolve_port(8088, {"PORT": "notanumber"})

        assert "notanumber" in caplog.text

    def test_reads_os_environ_by_default(self, monkeypatch):
        monkeypatch.setenv("PORT", "7001")

        assert resolve_port(8088) == 7001


class TestValidatePort:
    @pytest.mark.parametrize("port", [1, 80, 8088, 65535])
    def test_valid(self, port):
        validate_port(port)

    @pytest.mark.parametrize("port", [0, -1, 65536])
    def test_invalid(self, port):
        with pytest.raises(PortInvalid):
            validate_port(port)


class TestValidateMount:
    """Mount directory checks."""

    def test_existing_directory_passes(self, tmp_path):
        validate_mount(str(tmp_path))

    def test_missing_path_fails(self, tmp_path):
        with pytest.raises(MountInvalid) as exc_info:
            validate_mount(str(tmp_path / "nope"))

        assert str(exc_info.value).startswith("error while mounting directory:")

    def test_regular_file_fails(self, tmp_path):
        image = tmp_path / "cat.jpg"
        image.write_bytes(b"\xff\xd8")

        with pytest.raises(MountInvalid) as exc_info:
            validate_mount(str(image))

        assert str(exc_info.value) == f"mount path is not a directory: {image}"


class TestValidateCacheTtl:
    """Cache TTL bounds."""

    @pytest.mark.parametrize("ttl", [-1, 0, 1, 3600, 31556926])
    def test_in_range(self, ttl):
        validate_cache_ttl(ttl)

    @pytest.mark.parametrize("ttl", [-2, -100, 31556927])
    def test_out_of_range(self, ttl):
        with pytest.raises(CacheTtlOutOfRange) as exc_info:
            validate_cache_ttl(ttl)

        assert str(exc_info.value) == "The -http-cache-ttl flag accepts a value from 0 to 31556926"

    def test_zero_logs_no_cache(self, caplog):
        with caplog.at_level(logging.INFO, logger="imaginary.validation"):
            validate_cache_ttl(0)

        assert "prevent caching" in caplog.text


class TestValidateTlsPair:
    def test_neither(self):
        validate_tls_pair("", "")

    def test_both(self):
        validate_tls_pair("cert.pem", "key.pem")

    def test_cert_only(self):
        with pytest.raises(TlsPairIncomplete, match="-keyfile"):
            validate_tls_pair("cert.pem", "")

    def test_key_only(self):
        with pytest.raises(TlsPairIncomplete, match="-certfile"):
            validate_tls_pair("", "key.pem")


class TestValidateThrottleAndCpus:
    def test_throttle_defaults_pass(self):
        validate_throttle(0, 100)

    def test_negative_concurrency(self):
        with pytest.raises(ThrottleInvalid):
            validate_throttle(-1, 100)

    def test_zero_burst(self):
        with pytest.raises(ThrottleInvalid):
            validate_throttle(10, 0)


class TestBuildOptions:
    """Flags to ServerOptions composition."""

    def test_defaults(self, no_env):
        options = build_options(Flags(), no_env)

        assert options == ServerOptions()
        assert options.port == 8088
        assert options.throttle == ThrottleConfig(concurrency=0, burst=100)
        assert options.http_cache_ttl == -1

    def test_all_fields_carried(self, tmp_path):
        flags = Flags(
            address="127.0.0.1",
            port=9001,
            cors=True,
            gzip=True,
            key="s3cret",
            mount=str(tmp_path),
            http_cache_ttl=60,
            cert_file="c.pem",
            key_file="k.pem",
            concurrency=4,
            burst=8,
        )
        options = build_options(flags, {})

        assert options.address == "127.0.0.1"
        assert options.port == 9001
        assert options.cors and options.gzip
        assert options.api_key == "s3cret"
        assert options.mount == str(tmp_path)
        assert options.http_cache_ttl == 60
        assert options.tls_enabled
        assert (options.concurrency, options.burst) == (4, 8)

    def test_port_env_applies(self):
        assert build_options(Flags(port=8088), {"PORT": "9000"}).port == 9000

    def test_idempotent(self, tmp_path):
        """Identical inputs give equal records."""
        flags = Flags(mount=str(tmp_path), http_cache_ttl=0, concurrency=2, cpus=1)
        env = {"PORT": "9100"}

        assert build_options(flags, env) == build_options(flags, env)

    def test_first_failure_wins(self, tmp_path):
        """Mount is checked before the cache TTL."""
        flags = Flags(mount=str(tmp_path / "missing"), http_cache_ttl=-5)

        with pytest.raises(MountInvalid):
            build_options(flags, {})

    @pytest.mark.parametrize("flags", [
        Flags(http_cache_ttl=-2),
        Flags(cert_file="only-cert.pem"),
        Flags(concurrency=-3),
        Flags(port=70000),
    ])
    def test_invalid_flags_raise_config_error(self, flags):
        with pytest.raises(ConfigError):
            build_options(flags, {})
