"""Token-savings tracking in SQLite and verification of filter test suites."""

__version__ = "0.2.1"
__all__ = ["tracking", "verify"]