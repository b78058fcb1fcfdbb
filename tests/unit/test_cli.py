"""
Unit tests for command-line flag parsing.
"""

import pytest

from imaginary.cli import parse_bool, parse_flags, usage_text
from imaginary.config import available_cpus
from imaginary.errors import FlagError
from imaginary.version import __version__


class TestParseFlags:
    """Go-style flag handling."""

    def test_defaults(self):
        flags = parse_flags([])

        assert flags.address == ""
        assert flags.port == 8088
        assert flags.cors is False
        assert flags.gzip is False
        assert flags.http_cache_ttl == -1
        assert flags.concurrency == 0
        assert flags.burst == 100
        assert flags.mrelease == 30
        assert flags.cpus == available_cpus()

    def test_single_dash_long_names(self):
        flags = parse_flags([
            "-a", "127.0.0.1",
            "-p", "9000",
            "-key", "s3cret",
            "-mount", "/srv/images",
            "-http-cache-ttl", "3600",
            "-certfile", "cert.pem",
            "-keyfile", "key.pem",
            "-concurrency", "20",
            "-burst", "50",
            "-mrelease", "0",
            "-cpus", "2",
        ])

        assert flags.address == "127.0.0.1"
        assert flags.port == 9000
        assert flags.key == "s3cret"
        assert flags.mount == "/srv/images"
        assert flags.http_cache_ttl == 3600
        assert flags.cert_file == "cert.pem"
        assert flags.key_file == "key.pem"
        assert flags.concurrency == 20
        assert flags.burst == 50
        assert flags.mrelease == 0
        assert flags.cpus == 2

    def test_equals_and_double_dash(self):
        flags = parse_flags(["--p=9001", "-mount=/tmp", "--burst", "3"])

        assert flags.port == 9001
        assert flags.mount == "/tmp"
        assert flags.burst == 3

    def test_boolean_switches(self):
        flags = parse_flags(["-cors", "-gzip"])

        assert flags.cors is True
        assert flags.gzip is True

    def test_boolean_explicit_value(self):
        assert parse_flags(["-cors=false"]).cors is False
        assert parse_flags(["-gzip=true"]).gzip is True

    @pytest.mark.parametrize("argv", [["-h"], ["-help"], ["--help"]])
    def test_help(self, argv):
        assert parse_flags(argv).help is True

    @pytest.mark.parametrize("argv", [["-v"], ["-version"]])
    def test_version(self, argv):
        assert parse_flags(argv).version is True

    def test_negative_ttl_value(self):
        """A negative number is a value, not a flag."""
        assert parse_flags(["-http-cache-ttl", "-1"]).http_cache_ttl == -1

    def test_unknown_flag(self):
        with pytest.raises(FlagError) as exc_info:
            parse_flags(["-nope"])

        assert str(exc_info.value) == "flag provided but not defined: -nope"
        assert "Usage:" in exc_info.value.usage

    def test_no_abbreviations(self):
        with pytest.raises(FlagError):
            parse_flags(["-conc", "5"])

    def test_non_integer_value(self):
        with pytest.raises(FlagError):
            parse_flags(["-p", "eighty"])

    def test_missing_value(self):
        with pytest.raises(FlagError):
            parse_flags(["-burst"])

    @pytest.mark.parametrize("argv, field, value", [
        (["-key", "-secret"], "key", "-secret"),
        (["-mount", "-dir"], "mount", "-dir"),
        (["--key", "--"], "key", "--"),
    ])
    def test_value_may_start_with_dash(self, argv, field, value):
        """A flag that takes a value consumes the next argument as is."""
        assert getattr(parse_flags(argv), field) == value

    def test_switch_does_not_consume_next_argument(self):
        """In "-cors false" the "false" ends flag parsing."""
        flags = parse_flags(["-cors", "false", "-gzip"])

        assert flags.cors is True
        assert flags.gzip is False

    def test_stops_at_first_non_flag(self):
        flags = parse_flags(["-p", "9000", "extra", "-gzip", "-nope"])

        assert flags.port == 9000
        assert flags.gzip is False

    def test_stops_after_double_dash(self):
        assert parse_flags(["-cors", "--", "-gzip"]).gzip is False

    def test_leading_argument_disables_flags(self):
        assert parse_flags(["extra", "-gzip"]).gzip is False

    @pytest.mark.parametrize("arg", ["---p", "-=1"])
    def test_bad_syntax(self, arg):
        with pytest.raises(FlagError) as exc_info:
            parse_flags([arg])

        assert str(exc_info.value).startswith("bad flag syntax")

    def test_missing_value_message(self):
        with pytest.raises(FlagError) as exc_info:
            parse_flags(["-key"])

        assert str(exc_info.value) == "flag needs an argument: -key"


class TestParseBool:
    @pytest.mark.parametrize("value", ["1", "t", "true", "TRUE", "yes"])
    def test_true(self, value):
        assert parse_bool(value) is True

    @pytest.mark.parametrize("value", ["0", "f", "false", "no"])
    def test_false(self, value):
        assert parse_bool(value) is False


class TestUsage:
    def test_usage_mentions_flags_and_defaults(self):
        text = usage_text()

        assert __version__ in text
        assert "-http-cache-ttl" in text
        assert "[default: 8088]" in text
        assert f"is {available_cpus()} cores" in text
