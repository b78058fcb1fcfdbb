"""
=============================================================================
IMAGINARY SERVER CORE
=============================================================================

Bootstrap and resource governance for an HTTP image-processing server:
command-line configuration, validation, admission control, periodic
memory release, and the HTTP server those feed into.

    from imaginary import ServerOptions, serve

    serve(ServerOptions(port=8088, gzip=True))

=============================================================================
"""

from .config import Flags, ServerOptions, ThrottleConfig
from .reclaimer import MemoryReclaimer, release_memory, start_reclaimer
from .server import HTTPServer, create_server, serve
from .version import __version__

__all__ = [
    "Flags",
    "ServerOptions",
    "ThrottleConfig",
    "MemoryReclaimer",
    "release_memory",
    "start_reclaimer",
    "HTTPServer",
    "create_server",
    "serve",
    "__version__",
]
