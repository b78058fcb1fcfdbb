"""Package version, kept apart so low-level modules can import it."""

__version__ = "1.0.0"
