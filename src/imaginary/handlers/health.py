"""
=============================================================================
INDEX AND HEALTH ENDPOINTS
=============================================================================

    GET /         versions, for humans and deploy checks
    GET /health   process statistics, for load balancers and dashboards

Example /health response:

    {
        "uptime": 3600,
        "maxResidentMemory": 181.2,     MiB, peak resident set size
        "gcCollections": 42,            total collections, all generations
        "gcPendingObjects": 311,        allocations awaiting collection
        "threads": 7,
        "cpus": 4
    }

Both paths are public: the API key and cache middleware skip them.

=============================================================================
"""

from typing import Any, Callable, Dict, Optional
import gc
import platform
import sys
import threading
import time

from ..config import available_cpus
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder
from ..version import __version__

if sys.platform != "win32":
    import resource
else:
    resource = None


def max_resident_memory_mib() -> Optional[float]:
    """Peak RSS of this process in MiB, or None where unavailable."""
    if resource is None:
        return None
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports KiB, macOS reports bytes.
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return round(peak / divisor, 2)


class HealthHandler:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._start_time = clock()

    @property
    def uptime(self) -> int:
        return int(self._clock() - self._start_time)

    def stats(self) -> Dict[str, Any]:
        collections = sum(generation["collections"] for generation in gc.get_stats())
        return {
            "uptime": self.uptime,
            "maxResidentMemory": max_resident_memory_mib(),
            "gcCollections": collections,
            "gcPendingObjects": sum(gc.get_count()),
            "threads": threading.active_count(),
            "cpus": available_cpus(),
        }

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        return (ResponseBuilder()
            .json(self.stats())
            .header("Cache-Control", "no-store")
            .build())


def index(request: HTTPRequest) -> HTTPResponse:
    return (ResponseBuilder()
        .json({
            "imaginary": __version__,
            "python": platform.python_version(),
            "implementation": platform.python_implementation(),
        })
        .build())
