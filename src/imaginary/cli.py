"""
=============================================================================
COMMAND-LINE FLAGS
=============================================================================

Parses the server's command line into a Flags record.

The flag names are a compatibility contract with existing deployments,
so they follow Go's flag conventions rather than the usual argparse ones:

    imaginary -p 80
    imaginary -cors -gzip -http-cache-ttl 3600
    imaginary -mount=/srv/images -concurrency 20 -burst 50
    imaginary --p=80             # two dashes work too

- Long names take a single dash (-mount, -http-cache-ttl).
- -flag value, -flag=value, --flag value and --flag=value are equivalent
  for flags that take a value. The next argument is the value even when
  it starts with a dash: -key -s3cret sets the key to "-s3cret".
- Boolean flags only take a value after "=": -cors, -cors=false.
  In "-cors false" the "false" is an ordinary argument, not a value.
- Parsing stops at the first argument that is not a flag, or after "--".
  Everything from there on is left alone.
- No prefix matching: -conc is an error, not -concurrency.
- -h/-help and -v/-version are ordinary flags; the bootstrap decides what
  to print and which status to exit with.

    argv ──► FlagParser.split() ──► ["--p=80", "--cors", ...] ──► argparse
               Go scanning rules      one token per flag          types and
               unknown flag errors                                defaults

Parse errors raise FlagError instead of exiting, so the caller stays in
control of the process.

=============================================================================
"""

import argparse
import sys
from typing import List, Optional, Sequence, Set, Tuple

from .config import (
    CACHE_TTL_UNSET,
    DEFAULT_BURST,
    DEFAULT_MEMORY_RELEASE_INTERVAL,
    DEFAULT_PORT,
    Flags,
    available_cpus,
)
from .errors import FlagError
from .version import __version__


USAGE = """imaginary server {version}

Usage:
  imaginary -p 80
  imaginary -cors -gzip
  imaginary -h | -help
  imaginary -v | -version

Options:
  -a <addr>             bind address [default: *]
  -p <port>             bind port [default: {port}]
  -h, -help             output help
  -v, -version          output version
  -cors                 Enable CORS support [default: false]
  -gzip                 Enable gzip compression [default: false]
  -key <key>            Define API key for authorization
  -mount <path>         Mount server directory
  -http-cache-ttl <num> The TTL in seconds. Adds caching headers to locally served files.
  -certfile <path>      TLS certificate file path
  -keyfile <path>       TLS key file path
  -concurrency <num>    Throttle concurrency limit [default: disabled]
  -burst <num>          Throttle burst max queue size [default: {burst}]
  -mrelease <num>       Force OS memory release interval in seconds [default: {mrelease}]
  -cpus <num>           Number of used cpu cores.
                        (default for current machine is {cpus} cores)
"""

_TRUE = {"1", "t", "true", "yes", "on"}
_FALSE = {"0", "f", "false", "no", "off"}


def usage_text() -> str:
    return USAGE.format(
        version=__version__,
        port=DEFAULT_PORT,
        burst=DEFAULT_BURST,
        mrelease=DEFAULT_MEMORY_RELEASE_INTERVAL,
        cpus=available_cpus(),
    )


def parse_bool(value: str) -> bool:
    """Parse the value of -flag=value for a boolean flag."""
    lowered = value.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value {value!r}")


class FlagParser(argparse.ArgumentParser):
    """ArgumentParser that scans like Go's flag package and raises FlagError."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.value_flags: Set[str] = set()
        self.switches: Set[str] = set()

    def _fail(self, message: str) -> FlagError:
        return FlagError(message, usage=usage_text())

    def split(self, argv: Sequence[str]) -> Tuple[List[str], List[str]]:
        """
        Separate flags from the remaining arguments, the way Go does.

        Returns:
            (flags, rest): flags rewritten as "--name" or "--name=value",
            and the untouched arguments after the last flag.

        Raises:
            FlagError: Unknown flag, bad syntax, or a missing value.
        """
        args = list(argv)
        flags: List[str] = []
        i = 0
        while i < len(args):
            arg = args[i]
            if len(arg) < 2 or not arg.startswith("-"):
                break
            i += 1
            if arg == "--":
                break

            body = arg[2:] if arg.startswith("--") else arg[1:]
            name, has_value, value = body.partition("=")
            if not name or name.startswith("-"):
                raise self._fail(f"bad flag syntax: {arg}")

            if name in self.switches:
                flags.append(f"--{name}={value}" if has_value else f"--{name}")
            elif name in self.value_flags:
                if not has_value:
                    if i >= len(args):
                        raise self._fail(f"flag needs an argument: -{name}")
                    value = args[i]
                    i += 1
                flags.append(f"--{name}={value}")
            else:
                raise self._fail(f"flag provided but not defined: -{name}")

        return flags, args[i:]

    def error(self, message: str):
        raise self._fail(message)


def build_parser() -> FlagParser:
    parser = FlagParser(
        prog="imaginary",
        add_help=False,
        allow_abbrev=False,
    )

    def flag(*names: str, **kwargs):
        parser.value_flags.update(names)
        parser.add_argument(*(f"--{name}" for name in names), **kwargs)

    def switch(*names: str, dest: str):
        # split() never leaves a bare value after a switch, so "?" only
        # ever sees the "--name=value" form.
        parser.switches.update(names)
        parser.add_argument(
            *(f"--{name}" for name in names),
            dest=dest, nargs="?", const=True, default=False, type=parse_bool,
        )

    # ─────────────────────────────────────────────────────────────────────
    # LISTENER
    # ─────────────────────────────────────────────────────────────────────
    flag("a", dest="address", default="", metavar="<addr>")
    flag("p", dest="port", type=int, default=DEFAULT_PORT, metavar="<port>")
    flag("certfile", dest="cert_file", default="", metavar="<path>")
    flag("keyfile", dest="key_file", default="", metavar="<path>")

    # ─────────────────────────────────────────────────────────────────────
    # META
    # ─────────────────────────────────────────────────────────────────────
    switch("h", "help", dest="help")
    switch("v", "version", dest="version")

    # ─────────────────────────────────────────────────────────────────────
    # FEATURES
    # ─────────────────────────────────────────────────────────────────────
    switch("cors", dest="cors")
    switch("gzip", dest="gzip")
    flag("key", dest="key", default="", metavar="<key>")
    flag("mount", dest="mount", default="", metavar="<path>")
    flag("http-cache-ttl", dest="http_cache_ttl", type=int, default=CACHE_TTL_UNSET, metavar="<num>")

    # ─────────────────────────────────────────────────────────────────────
    # RESOURCES
    # ─────────────────────────────────────────────────────────────────────
    flag("concurrency", dest="concurrency", type=int, default=0, metavar="<num>")
    flag("burst", dest="burst", type=int, default=DEFAULT_BURST, metavar="<num>")
    flag("mrelease", dest="mrelease", type=int, default=DEFAULT_MEMORY_RELEASE_INTERVAL, metavar="<num>")
    flag("cpus", dest="cpus", type=int, default=None, metavar="<num>")

    return parser


def parse_flags(argv: Optional[Sequence[str]] = None) -> Flags:
    """
    Parse command-line arguments.

    Args:
        argv: Arguments without the program name. Defaults to sys.argv[1:].

    Returns:
        The raw, unvalidated Flags. Arguments after the flags are ignored.

    Raises:
        FlagError: Unknown flag or a value of the wrong type.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = build_parser()
    flag_args, _ = parser.split(argv)
    ns = parser.parse_args(flag_args)

    return Flags(
        address=ns.address,
        port=ns.port,
        help=ns.help,
        version=ns.version,
        cors=ns.cors,
        gzip=ns.gzip,
        key=ns.key,
        mount=ns.mount,
        http_cache_ttl=ns.http_cache_ttl,
        cert_file=ns.cert_file,
        key_file=ns.key_file,
        concurrency=ns.concurrency,
        burst=ns.burst,
        mrelease=ns.mrelease,
        cpus=ns.cpus if ns.cpus is not None else available_cpus(),
    )
