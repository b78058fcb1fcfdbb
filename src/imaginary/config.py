"""
=============================================================================
SERVER CONFIGURATION RECORDS
=============================================================================

Three immutable records carry configuration through the process:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION FLOW                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   argv ──► cli.parse_flags() ──► Flags                              │
    │                                    │                                 │
    │   os.environ (PORT) ───────────────┤                                 │
    │                                    ▼                                 │
    │                      validation.build_options()                      │
    │                                    │                                 │
    │                                    ▼                                 │
    │                     ServerOptions (+ ThrottleConfig)                 │
    │                                    │                                 │
    │                                    ▼                                 │
    │                          server.serve(options)                       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

All three are frozen dataclasses. They are built once at startup and then
passed by reference; nothing mutates them afterwards, so the request path
and the memory reclaimer never need a lock around configuration.

=============================================================================
"""

import os
from dataclasses import dataclass, field
from typing import Tuple

from .version import __version__


# ─────────────────────────────────────────────────────────────────────────
# DEFAULTS AND LIMITS
# ─────────────────────────────────────────────────────────────────────────

DEFAULT_PORT = 8088
DEFAULT_BURST = 100
DEFAULT_MEMORY_RELEASE_INTERVAL = 30

# -1 is the "no Cache-Control header" sentinel, 0 disables caching.
CACHE_TTL_UNSET = -1
MAX_CACHE_TTL = 31556926  # one year in seconds


def available_cpus() -> int:
    """Number of cores this process may run on."""
    if hasattr(os, "sched_getaffinity"):
        return len(os.sched_getaffinity(0))
    return os.cpu_count() or 1


@dataclass(frozen=True)
class Flags:
    """
    Raw command-line values, exactly as the operator typed them.

    Nothing here has been validated yet. `mrelease` and `cpus` only
    influence the bootstrap and never reach the server layer.
    """

    address: str = ""
    port: int = DEFAULT_PORT
    help: bool = False
    version: bool = False
    cors: bool = False
    gzip: bool = False
    key: str = ""
    mount: str = ""
    http_cache_ttl: int = CACHE_TTL_UNSET
    cert_file: str = ""
    key_file: str = ""
    concurrency: int = 0
    burst: int = DEFAULT_BURST
    mrelease: int = DEFAULT_MEMORY_RELEASE_INTERVAL
    cpus: int = field(default_factory=available_cpus)


@dataclass(frozen=True)
class ThrottleConfig:
    """
    Admission-control parameters.

    concurrency bounds how many requests are processed at once
    (0 = unthrottled). burst bounds how many more may wait for a slot;
    anything beyond that is turned away.
    """

    concurrency: int = 0
    burst: int = DEFAULT_BURST

    @property
    def enabled(self) -> bool:
        return self.concurrency > 0


@dataclass(frozen=True)
class ServerOptions:
    """
    The validated configuration handed to the HTTP server.

    =========================================================================
    FIELD GROUPS
    =========================================================================

    LISTENER        port, address, cert_file, key_file
    FEATURES        gzip, cors, api_key, mount, http_cache_ttl
    ADMISSION       throttle (concurrency, burst)
    TRANSPORT       backlog, read_timeout, keep_alive_timeout,
                    max_request_size, server_name

    =========================================================================
    """

    port: int = DEFAULT_PORT
    address: str = ""
    gzip: bool = False
    cors: bool = False
    api_key: str = ""
    throttle: ThrottleConfig = field(default_factory=ThrottleConfig)
    mount: str = ""
    cert_file: str = ""
    key_file: str = ""
    http_cache_ttl: int = CACHE_TTL_UNSET

    # Transport tuning. Not exposed as flags.
    backlog: int = 128
    read_timeout: float = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024
    server_name: str = f"imaginary/{__version__}"

    @property
    def concurrency(self) -> int:
        return self.throttle.concurrency

    @property
    def burst(self) -> int:
        return self.throttle.burst

    @property
    def tls_enabled(self) -> bool:
        return bool(self.cert_file and self.key_file)

    @property
    def cache_enabled(self) -> bool:
        """True when responses get Cache-Control headers."""
        return self.http_cache_ttl != CACHE_TTL_UNSET

    @property
    def bind_address(self) -> Tuple[str, int]:
        # An empty host binds every interface.
        return (self.address, self.port)
