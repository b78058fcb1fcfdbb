"""
=============================================================================
PROCESS BOOTSTRAP
=============================================================================

Everything between `imaginary ...` on the command line and a listening
server, as a small state machine:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       BOOTSTRAP STATES                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   PARSING ──► VALIDATING ──► STARTING ──► RUNNING ──► EXITED (0)    │
    │      │             │                         │                       │
    │      │             └────────► FAILED (1) ◄───┘  ServerStartFailure   │
    │      │                                          ServerRuntimeFailure │
    │      │                                                               │
    │      ├── -help      usage on stderr         ──► EXITED (1)          │
    │      ├── -version   version on stdout       ──► EXITED (1)          │
    │      └── bad flag   error + usage on stderr ──► FAILED (2)          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

STARTING pins the process to -cpus cores and starts the memory reclaimer
(unless -mrelease is 0). Both happen only after every configuration check
passed, so a rejected configuration never leaves a thread behind.

run() returns the exit status; it never calls sys.exit() itself. Every
collaborator (server entry point, reclaimer, streams, environment) can be
swapped out, which is how the tests drive it.

=============================================================================
"""

from enum import Enum
from typing import Callable, List, Mapping, Optional, Sequence, TextIO
import logging
import os
import sys

from .cli import parse_flags, usage_text
from .config import ServerOptions
from .errors import ConfigError, FlagError, ServerRuntimeFailure, ServerStartFailure
from .reclaimer import MemoryReclaimer, start_reclaimer
from .server import serve
from .validation import build_options
from .version import __version__


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class State(Enum):
    PARSING = "parsing"
    VALIDATING = "validating"
    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"
    FAILED = "failed"


def log_level_from_env(environ: Mapping[str, str]) -> int:
    """
    Pick the log level.

    DEBUG=imaginary (or DEBUG=*) turns on debug output, the switch the
    server has always used. LOG_LEVEL=warning etc. is honoured otherwise.
    """
    debug = environ.get("DEBUG", "")
    if "*" in debug or "imaginary" in debug.split(","):
        return logging.DEBUG

    level = logging.getLevelName(environ.get("LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging(environ: Mapping[str, str]) -> None:
    level = log_level_from_env(environ)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
    )
    logging.getLogger("imaginary").setLevel(level)


def apply_cpu_limit(cpus: int) -> None:
    """
    Restrict the process to the first `cpus` cores it may run on.

    Values below 1 leave the affinity unchanged, as does a platform
    without sched_setaffinity.
    """
    if cpus < 1:
        logger.debug(f"-cpus {cpus} ignored: keeping all available cores")
        return
    if not hasattr(os, "sched_setaffinity"):
        logger.debug(f"-cpus {cpus} ignored: CPU affinity not supported here")
        return

    available = sorted(os.sched_getaffinity(0))
    if cpus >= len(available):
        return
    os.sched_setaffinity(0, available[:cpus])
    logger.debug(f"Pinned to cores {available[:cpus]}")


class Bootstrap:
    """
    Runs the server process from raw arguments to exit status.

    Usage:
        sys.exit(Bootstrap().run(sys.argv[1:]))
    """

    def __init__(
        self,
        serve: Callable[[ServerOptions], None] = serve,
        start_reclaimer: Callable[[float], Optional[MemoryReclaimer]] = start_reclaimer,
        set_cpu_limit: Callable[[int], None] = apply_cpu_limit,
        environ: Optional[Mapping[str, str]] = None,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
    ):
        self.serve = serve
        self.start_reclaimer = start_reclaimer
        self.set_cpu_limit = set_cpu_limit
        self.environ = os.environ if environ is None else environ
        self.stdout = stdout or sys.stdout
        self.stderr = stderr or sys.stderr

        self.state = State.PARSING
        self.options: Optional[ServerOptions] = None
        self.reclaimer: Optional[MemoryReclaimer] = None
        self.history: List[State] = [self.state]

    def _enter(self, state: State) -> None:
        self.state = state
        self.history.append(state)

    def _fail(self, message: str, status: int = EXIT_FAILURE) -> int:
        self.stderr.write(message.rstrip("\n") + "\n")
        self._enter(State.FAILED)
        return status

    def run(self, argv: Optional[Sequence[str]] = None) -> int:
        """
        Parse, validate, start and serve.

        Args:
            argv: Arguments without the program name.

        Returns:
            0 after a clean stop, 1 for help/version or any fatal error,
            2 for a malformed command line.
        """
        # PARSING
        try:
            flags = parse_flags(argv)
        except FlagError as e:
            return self._fail(f"{e}\n{e.usage}", EXIT_USAGE)

        if flags.help:
            self.stderr.write(usage_text())
            self._enter(State.EXITED)
            return EXIT_FAILURE

        if flags.version:
            self.stdout.write(f"{__version__}\n")
            self._enter(State.EXITED)
            return EXIT_FAILURE

        setup_logging(self.environ)

        # VALIDATING
        self._enter(State.VALIDATING)
        try:
            self.options = build_options(flags, self.environ)
        except ConfigError as e:
            return self._fail(str(e))

        # STARTING
        self._enter(State.STARTING)
        self.set_cpu_limit(flags.cpus)
        self.reclaimer = self.start_reclaimer(flags.mrelease)

        # RUNNING
        self._enter(State.RUNNING)
        try:
            self.serve(self.options)
        except ServerStartFailure as e:
            return self._fail(f"cannot start the server: {e}")
        except ServerRuntimeFailure as e:
            return self._fail(f"server stopped unexpectedly: {e}")

        self._enter(State.EXITED)
        return EXIT_OK
