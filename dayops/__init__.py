"""Local-first daily workflow store (capture → plan → execute → close)."""

__version__ = "0.3.0"
