"""
=============================================================================
ERROR TAXONOMY
=============================================================================

Every fatal condition the server core can hit is an exception defined here.
Validation code raises them; only the bootstrap orchestrator catches them,
prints the one-line message and decides the exit status.

    ImaginaryError
    ├── ConfigError            bad operator input, caught before startup
    │   ├── FlagError          malformed command line (exit 2)
    │   ├── PortInvalid
    │   ├── MountInvalid
    │   ├── CacheTtlOutOfRange
    │   ├── TlsPairIncomplete
    │   └── ThrottleInvalid
    ├── ServerStartFailure     the server could not bind or load TLS material
    └── ServerRuntimeFailure   the accept loop died while the server was running

A malformed PORT environment variable is NOT an error: it is ignored and
the configured port is kept.

=============================================================================
"""


class ImaginaryError(Exception):
    """Base class for all server core errors."""


class ConfigError(ImaginaryError):
    """Raised when a configuration value fails validation."""


class FlagError(ConfigError):
    """
    Raised when the command line cannot be parsed.

    Carries the usage text so the orchestrator can print it alongside
    the error, the way Go's flag package does.
    """

    def __init__(self, message: str, usage: str = ""):
        super().__init__(message)
        self.usage = usage


class PortInvalid(ConfigError):
    """Raised when the effective port is outside 1-65535."""


class MountInvalid(ConfigError):
    """Raised when the mount path is missing or is not a directory."""


class CacheTtlOutOfRange(ConfigError):
    """Raised when -http-cache-ttl is outside [-1, 31556926]."""


class TlsPairIncomplete(ConfigError):
    """Raised when only one of -certfile / -keyfile is given."""


class ThrottleInvalid(ConfigError):
    """Raised when concurrency is negative or burst is not positive."""


class ServerStartFailure(ImaginaryError):
    """Raised by the server layer when it cannot start serving."""


class ServerRuntimeFailure(ImaginaryError):
    """Raised when the server stops serving without being asked to."""
