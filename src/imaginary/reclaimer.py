"""
=============================================================================
PERIODIC MEMORY RECLAMATION
=============================================================================

Image codecs allocate large transient buffers. Once they are freed, the
allocator tends to keep the pages mapped for reuse, so under bursty load
resident memory climbs and never comes back down. The reclaimer is a blunt
fix: every N seconds, unconditionally, ask the runtime and the C allocator
to hand unused pages back to the operating system.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     RECLAIMER TIMELINE                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   main thread   ── start_reclaimer(30) ── serve() (blocks) ──────►  │
    │                          │                                           │
    │   daemon thread          └─ wait 30s ─ release ─ wait 30s ─ ...     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The thread is a daemon and is never joined: it lives until the process
exits. stop() exists so tests can end it; the server never calls it.

It touches nothing but process-wide allocator state, so no lock is shared
with the request path.

=============================================================================
"""

import ctypes
import ctypes.util
import gc
import logging
import sys
import threading
from typing import Callable, Optional


logger = logging.getLogger(__name__)

ReleaseFunc = Callable[[], None]


def _load_malloc_trim() -> Optional[Callable[[int], int]]:
    """Find glibc's malloc_trim(), or None on platforms without it."""
    if not sys.platform.startswith("linux"):
        return None
    name = ctypes.util.find_library("c") or "libc.so.6"
    try:
        libc = ctypes.CDLL(name)
    except OSError:
        return None
    # musl and other libcs do not export it
    return getattr(libc, "malloc_trim", None)


_malloc_trim = _load_malloc_trim()


def release_memory() -> None:
    """
    Return unused heap memory to the operating system.

    A full collection first frees unreachable cycles, then malloc_trim(0)
    releases the free space at the top of every glibc arena. Both are
    hints; neither can fail in a way the caller could act on.
    """
    gc.collect()
    if _malloc_trim is not None:
        _malloc_trim(0)


class MemoryReclaimer:
    """
    Background thread that calls `release` on a fixed period.

    Usage:
        reclaimer = MemoryReclaimer(30).start()
        ...
        reclaimer.stop()   # tests only
    """

    def __init__(self, interval: float, release: ReleaseFunc = release_memory):
        """
        Args:
            interval: Seconds between releases. Must be positive.
            release: The reclamation primitive. Tests pass a recorder.
        """
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")

        self.interval = interval
        self.release = release
        self.ticks = 0

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "MemoryReclaimer":
        if self.running:
            return self

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="memory-reclaimer",
            daemon=True,
        )
        self._thread.start()
        logger.debug(f"Memory release enabled every {self.interval}s")
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        """Ask the thread to exit and wait for it."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        # Event.wait() doubles as the ticker: it returns True only when
        # stop() was called, otherwise it times out after one period.
        while not self._stop_event.wait(self.interval):
            logger.debug("releasing memory to the OS")
            self.release()
            # Only this thread writes ticks; readers see a whole int.
            self.ticks += 1


def start_reclaimer(interval: float, release: ReleaseFunc = release_memory) -> Optional[MemoryReclaimer]:
    """
    Start periodic memory release, or do nothing when disabled.

    Args:
        interval: Seconds between releases. Zero or negative disables it.
        release: The reclamation primitive.

    Returns:
        The running reclaimer, or None when disabled.
    """
    if interval <= 0:
        logger.debug("Memory release disabled")
        return None
    return MemoryReclaimer(interval, release).start()
