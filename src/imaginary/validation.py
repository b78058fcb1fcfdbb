"""
=============================================================================
CONFIGURATION VALIDATION
=============================================================================

Turns raw Flags into a ServerOptions record, or raises a ConfigError
explaining what the operator has to fix.

=============================================================================
FAIL-FAST, BUT NEVER EXIT HERE
=============================================================================

Validation happens once, at startup, before the server binds a socket.
Each check raises on the first problem it sees; nothing is collected or
retried. These functions never print and never call sys.exit(): the
bootstrap orchestrator is the single place that reports errors and
chooses an exit status, which keeps every check unit-testable.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      build_options() ORDER                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. resolve_port()        PORT env overrides -p when positive      │
    │   2. validate_port()       1-65535                                  │
    │   3. validate_mount()      only when -mount is set                  │
    │   4. validate_cache_ttl()  only when -http-cache-ttl != -1          │
    │   5. validate_tls_pair()   both or neither of -certfile/-keyfile    │
    │   6. validate_throttle()   concurrency >= 0, burst >= 1             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import logging
import os
import stat
from typing import Mapping, Optional

from .config import CACHE_TTL_UNSET, MAX_CACHE_TTL, Flags, ServerOptions, ThrottleConfig
from .errors import (
    CacheTtlOutOfRange,
    MountInvalid,
    PortInvalid,
    ThrottleInvalid,
    TlsPairIncomplete,
)


logger = logging.getLogger(__name__)

PORT_ENV = "PORT"


def resolve_port(configured_port: int, environ: Optional[Mapping[str, str]] = None) -> int:
    """
    Return the port the server should listen on.

    The PORT environment variable wins when it holds a positive integer.
    Anything else (missing, empty, not a number, zero, negative) is
    ignored and the configured port is kept.

    Args:
        configured_port: Value of the -p flag.
        environ: Environment to read. Defaults to os.environ.

    Returns:
        The effective port.
    """
    env = os.environ if environ is None else environ
    raw = env.get(PORT_ENV, "")
    if not raw:
        return configured_port

    try:
        override = int(raw)
    except ValueError:
        logger.debug(f"Ignoring {PORT_ENV}={raw!r}: not an integer")
        return configured_port

    if override <= 0:
        logger.debug(f"Ignoring {PORT_ENV}={raw!r}: not a positive port")
        return configured_port

    return override


def validate_port(port: int) -> None:
    if not 0 < port < 65536:
        raise PortInvalid(f"invalid port: {port}. Must be 1-65535")


def validate_mount(path: str) -> None:
    """
    Check that the mount path names an existing directory.

    Raises:
        MountInvalid: The path cannot be stat'ed or is a regular file.
    """
    try:
        st = os.stat(path)
    except OSError as e:
        raise MountInvalid(f"error while mounting directory: {e}") from e

    if not stat.S_ISDIR(st.st_mode):
        raise MountInvalid(f"mount path is not a directory: {path}")


def validate_cache_ttl(ttl: int) -> None:
    """
    Check the -http-cache-ttl value.

    -1 is accepted as "unset". 0 is a deliberate request to forbid
    caching, so it is accepted and noted in the log.

    Raises:
        CacheTtlOutOfRange: ttl < -1 or ttl > 31556926.
    """
    if ttl < CACHE_TTL_UNSET or ttl > MAX_CACHE_TTL:
        raise CacheTtlOutOfRange(
            f"The -http-cache-ttl flag accepts a value from 0 to {MAX_CACHE_TTL}"
        )

    if ttl == 0:
        logger.info("Adding HTTP cache control headers set to prevent caching.")


def validate_tls_pair(cert_file: str, key_file: str) -> None:
    """
    Reject a half-specified TLS pair: both files or neither.
    """
    if bool(cert_file) != bool(key_file):
        missing = "-keyfile" if cert_file else "-certfile"
        raise TlsPairIncomplete(
            f"TLS requires both -certfile and -keyfile, {missing} is missing"
        )


def validate_throttle(concurrency: int, burst: int) -> None:
    if concurrency < 0:
        raise ThrottleInvalid(f"-concurrency must be >= 0, got {concurrency}")
    if burst < 1:
        raise ThrottleInvalid(f"-burst must be >= 1, got {burst}")


def build_options(flags: Flags, environ: Optional[Mapping[str, str]] = None) -> ServerOptions:
    """
    Validate raw flags and compose the immutable ServerOptions.

    Args:
        flags: Parsed command-line values.
        environ: Environment used for the PORT override.

    Returns:
        A ServerOptions record. Calling this twice with the same inputs
        returns equal records.

    Raises:
        ConfigError: The first validation failure encountered.
    """
    port = resolve_port(flags.port, environ)
    validate_port(port)

    if flags.mount:
        validate_mount(flags.mount)

    if flags.http_cache_ttl != CACHE_TTL_UNSET:
        validate_cache_ttl(flags.http_cache_ttl)

    validate_tls_pair(flags.cert_file, flags.key_file)
    validate_throttle(flags.concurrency, flags.burst)

    return ServerOptions(
        port=port,
        address=flags.address,
        gzip=flags.gzip,
        cors=flags.cors,
        api_key=flags.key,
        throttle=ThrottleConfig(concurrency=flags.concurrency, burst=flags.burst),
        mount=flags.mount,
        cert_file=flags.cert_file,
        key_file=flags.key_file,
        http_cache_ttl=flags.http_cache_ttl,
    )
