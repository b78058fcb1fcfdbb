"""
=============================================================================
BUILT-IN HANDLERS
=============================================================================

    GET /               index()                   versions
    GET /health         HealthHandler.handle      process statistics
    GET /mount/*path    StaticFileHandler.handle  files under -mount

Image processing routes are not built in; a processing engine registers
them through serve(options, engine=...).

=============================================================================
"""

from .health import HealthHandler, index, max_resident_memory_mib
from .static import MOUNT_PREFIX, StaticFileHandler, content_type_for, serve_mount

__all__ = [
    "HealthHandler",
    "index",
    "max_resident_memory_mib",
    "MOUNT_PREFIX",
    "StaticFileHandler",
    "content_type_for",
    "serve_mount",
]
